"""
Model catalog - lookup of model and provider configuration.

Generate and categorize nodes name a model by id; the catalog resolves it
to the model and the provider that serves it.
"""
import json
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from ..errors import ConfigurationError, NotFoundError

logger = structlog.get_logger()

MOCK_PROVIDER_TYPE = "mock"


@dataclass
class ProviderConfig:
    """A model provider endpoint."""

    id: str
    name: str
    provider_type: str  # "openai", "openai-compatible", "mock"
    endpoint_url: str = ""
    api_key: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProviderConfig":
        api_key = data.get("apiKey")
        if not api_key and data.get("apiKeyEnv"):
            api_key = os.getenv(data["apiKeyEnv"])

        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            provider_type=data.get("providerType", "openai-compatible"),
            endpoint_url=data.get("endpointUrl", ""),
            api_key=api_key,
        )


@dataclass
class ModelConfig:
    """A model served by a provider."""

    id: str
    name: str
    provider: ProviderConfig
    model_type: str = "chat"
    is_active: bool = True
    is_default: bool = False
    options: dict[str, Any] = field(default_factory=dict)


class ModelCatalog(ABC):
    """Abstract model catalog."""

    @abstractmethod
    def list_models(self) -> list[ModelConfig]:
        """All known models."""
        pass

    def get_model(self, model_id: str) -> ModelConfig:
        """
        Resolve a model reference by id, falling back to name.

        Raises:
            NotFoundError: unknown model
            ConfigurationError: model is inactive
        """
        models = self.list_models()
        model = next((m for m in models if m.id == model_id), None)
        if model is None:
            model = next((m for m in models if m.name == model_id), None)

        if model is None:
            raise NotFoundError(f"Model not found: {model_id}")
        if not model.is_active:
            raise ConfigurationError(f"Model is not active: {model.name}")
        return model

    def default_chat_model(self) -> ModelConfig | None:
        """Default active chat model, or the first active one."""
        chat_models = [
            m for m in self.list_models() if m.is_active and m.model_type == "chat"
        ]
        for model in chat_models:
            if model.is_default:
                return model
        return chat_models[0] if chat_models else None


class InMemoryModelCatalog(ModelCatalog):
    """Catalog backed by a list of models."""

    def __init__(self, models: list[ModelConfig] | None = None) -> None:
        self._models = list(models or [])

    def add(self, model: ModelConfig) -> None:
        self._models.append(model)

    def list_models(self) -> list[ModelConfig]:
        return list(self._models)


class JsonFileModelCatalog(ModelCatalog):
    """
    Catalog loaded from a JSON file.

    Layout::

        {
          "providers": [{"id", "name", "providerType", "endpointUrl", "apiKey" | "apiKeyEnv"}],
          "models": [{"id", "name", "providerId", "modelType", "isActive", "isDefault"}]
        }
    """

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self._models = self._load()

    def _load(self) -> list[ModelConfig]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise ConfigurationError(f"Model catalog not found: {self.path}")
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid model catalog {self.path}: {e}")

        providers = {
            p["id"]: ProviderConfig.from_dict(p) for p in data.get("providers", [])
        }

        models = []
        for item in data.get("models", []):
            provider = providers.get(item.get("providerId"))
            if provider is None:
                raise ConfigurationError(
                    f"Provider not found for model {item.get('id')}: {item.get('providerId')}"
                )
            models.append(
                ModelConfig(
                    id=item["id"],
                    name=item.get("name", item["id"]),
                    provider=provider,
                    model_type=item.get("modelType", "chat"),
                    is_active=item.get("isActive", True),
                    is_default=item.get("isDefault", False),
                    options=item.get("options", {}),
                )
            )

        logger.info("model_catalog_loaded", path=str(self.path), models=len(models))
        return models

    def list_models(self) -> list[ModelConfig]:
        return list(self._models)


def mock_model(model_id: str = "mock", is_default: bool = True) -> ModelConfig:
    """Model served by the in-process mock provider."""
    return ModelConfig(
        id=model_id,
        name=model_id,
        provider=ProviderConfig(id="mock", name="Mock", provider_type=MOCK_PROVIDER_TYPE),
        is_default=is_default,
    )


def create_model_catalog(models_file: str | None = None) -> ModelCatalog:
    """
    Factory function to create the model catalog.

    Without a catalog file only the mock model is available.
    """
    if models_file:
        return JsonFileModelCatalog(models_file)

    logger.warning("LLM_MODELS_FILE not set, only the mock model is available")
    return InMemoryModelCatalog([mock_model()])
