"""
LLM Adapter - Abstract interface and implementations for model providers.

This module provides:
- Abstract LLMAdapter interface
- OpenAICompatibleAdapter for OpenAI and OpenAI-compatible endpoints
- MockLLMAdapter for testing (echoes the prompt)
- LLMGateway, which picks the adapter from the provider type
"""
from abc import ABC, abstractmethod

import httpx
import structlog

from ..config import LLMConfig
from ..errors import ModelAPIError, ProviderError
from .model_catalog import MOCK_PROVIDER_TYPE, ModelConfig, ProviderConfig

logger = structlog.get_logger()


class LLMAdapter(ABC):
    """
    Abstract base class for LLM adapters.

    One call, one prompt, one completion. Retries are left to the caller.
    """

    @abstractmethod
    async def complete(
        self,
        provider: ProviderConfig,
        model: ModelConfig,
        prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """
        Generate a completion for a single user prompt.

        Args:
            provider: Provider serving the model
            model: Model to call
            prompt: Rendered prompt text
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate

        Returns:
            Completion text

        Raises:
            ModelAPIError: provider answered with a non-success status
        """
        pass

    async def close(self) -> None:
        """Release held connections."""
        return None


class MockLLMAdapter(LLMAdapter):
    """
    Mock LLM adapter for testing.

    Returns queued responses in order, then echoes the prompt.
    This allows tests to run without API keys.
    """

    def __init__(self, responses: list[str] | None = None) -> None:
        self.call_count = 0
        self.last_prompt: str | None = None
        self.responses = list(responses or [])

    async def complete(
        self,
        provider: ProviderConfig,
        model: ModelConfig,
        prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        self.call_count += 1
        self.last_prompt = prompt

        text = self.responses.pop(0) if self.responses else prompt

        logger.debug("mock_llm_response", model=model.name, prompt=prompt[:50], response=text[:50])
        return text


class OpenAICompatibleAdapter(LLMAdapter):
    """
    Adapter for OpenAI and OpenAI-compatible chat completion endpoints.

    Posts to ``{endpoint_url}chat/completions`` with a bearer key.
    """

    def __init__(
        self,
        timeout: float = 60.0,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def complete(
        self,
        provider: ProviderConfig,
        model: ModelConfig,
        prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Generate a completion using a chat completions endpoint."""
        client = self._get_client()

        body = {
            "model": model.name,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature if temperature is not None else self.temperature,
        }
        limit = max_tokens or self.max_tokens
        if limit:
            body["max_tokens"] = limit

        headers = {"Content-Type": "application/json"}
        if provider.api_key:
            headers["Authorization"] = f"Bearer {provider.api_key}"

        try:
            response = await client.post(
                provider.endpoint_url + "chat/completions",
                json=body,
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.error("llm_request_failed", provider=provider.name, error=str(e))
            raise ProviderError(f"Error calling {provider.name} API: {e}")

        if response.status_code >= 400:
            logger.error(
                "llm_api_error",
                provider=provider.name,
                status_code=response.status_code,
            )
            raise ModelAPIError(provider.name, response.status_code, response.text)

        data = response.json()
        try:
            text = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            raise ProviderError(f"Unexpected response from {provider.name} API")

        logger.debug(
            "llm_completion",
            provider=provider.name,
            model=model.name,
            tokens=(data.get("usage") or {}).get("total_tokens", 0),
        )
        return text

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class LLMGateway(LLMAdapter):
    """Dispatches completions to the adapter registered for a provider type."""

    def __init__(self, adapters: dict[str, LLMAdapter]) -> None:
        self._adapters = dict(adapters)

    async def complete(
        self,
        provider: ProviderConfig,
        model: ModelConfig,
        prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        adapter = self._adapters.get(provider.provider_type)
        if adapter is None:
            raise ProviderError(f"Unsupported provider type: {provider.provider_type}")
        return await adapter.complete(
            provider, model, prompt, temperature=temperature, max_tokens=max_tokens
        )

    async def close(self) -> None:
        for adapter in set(self._adapters.values()):
            await adapter.close()


def create_llm_gateway(config: LLMConfig) -> LLMGateway:
    """Factory function to create the model gateway."""
    http_adapter = OpenAICompatibleAdapter(
        timeout=config.request_timeout_s,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
    )
    return LLMGateway(
        {
            "openai": http_adapter,
            "openai-compatible": http_adapter,
            MOCK_PROVIDER_TYPE: MockLLMAdapter(),
        }
    )
