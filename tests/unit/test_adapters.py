"""Tests for model and retrieval adapters."""

import json

import httpx
import pytest

from agentflow.adapters import (
    InMemoryModelCatalog,
    JsonFileModelCatalog,
    KnowledgeChunk,
    LLMGateway,
    LocalRetrievalAdapter,
    MockLLMAdapter,
    OpenAICompatibleAdapter,
    ModelConfig,
    ProviderConfig,
)
from agentflow.adapters.model_catalog import mock_model
from agentflow.errors import ConfigurationError, ModelAPIError, NotFoundError, ProviderError


@pytest.fixture
def openai_provider():
    return ProviderConfig(
        id="openai",
        name="OpenAI",
        provider_type="openai",
        endpoint_url="https://api.example.test/v1/",
        api_key="sk-test",
    )


@pytest.fixture
def openai_model(openai_provider):
    return ModelConfig(id="m1", name="gpt-test", provider=openai_provider)


class TestModelCatalog:
    def test_lookup_by_id_then_name(self, openai_model):
        catalog = InMemoryModelCatalog([openai_model])

        assert catalog.get_model("m1") is openai_model
        assert catalog.get_model("gpt-test") is openai_model

    def test_unknown_and_inactive_models(self, openai_provider):
        inactive = ModelConfig(id="old", name="old", provider=openai_provider, is_active=False)
        catalog = InMemoryModelCatalog([inactive])

        with pytest.raises(NotFoundError):
            catalog.get_model("nope")
        with pytest.raises(ConfigurationError):
            catalog.get_model("old")
        assert catalog.default_chat_model() is None

    def test_json_file_catalog(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_PROVIDER_KEY", "sk-env")
        path = tmp_path / "models.json"
        path.write_text(
            json.dumps(
                {
                    "providers": [
                        {
                            "id": "p1",
                            "name": "Local",
                            "providerType": "openai-compatible",
                            "endpointUrl": "http://localhost:8000/v1/",
                            "apiKeyEnv": "TEST_PROVIDER_KEY",
                        }
                    ],
                    "models": [
                        {"id": "m1", "name": "llama", "providerId": "p1", "isDefault": True}
                    ],
                }
            )
        )

        model = JsonFileModelCatalog(str(path)).default_chat_model()

        assert model.name == "llama"
        assert model.provider.api_key == "sk-env"
        assert model.provider.provider_type == "openai-compatible"


class TestOpenAICompatibleAdapter:
    @pytest.mark.asyncio
    async def test_posts_chat_completion(self, openai_provider, openai_model):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={"choices": [{"message": {"content": "Hello there"}}], "usage": {"total_tokens": 7}},
            )

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        adapter = OpenAICompatibleAdapter(client=client)

        text = await adapter.complete(openai_provider, openai_model, "Say hi", temperature=0.2, max_tokens=50)

        assert text == "Hello there"
        assert seen["url"] == "https://api.example.test/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"] == {
            "model": "gpt-test",
            "messages": [{"role": "user", "content": "Say hi"}],
            "temperature": 0.2,
            "max_tokens": 50,
        }
        await adapter.close()

    @pytest.mark.asyncio
    async def test_api_error(self, openai_provider, openai_model):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(429, text="slow down"))
        )
        adapter = OpenAICompatibleAdapter(client=client)

        with pytest.raises(ModelAPIError) as exc_info:
            await adapter.complete(openai_provider, openai_model, "x")

        assert exc_info.value.status_code == 429
        await adapter.close()

    @pytest.mark.asyncio
    async def test_unexpected_response(self, openai_provider, openai_model):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"choices": []}))
        )
        adapter = OpenAICompatibleAdapter(client=client)

        with pytest.raises(ProviderError):
            await adapter.complete(openai_provider, openai_model, "x")
        await adapter.close()


class TestLLMGateway:
    @pytest.mark.asyncio
    async def test_dispatches_by_provider_type(self):
        mock = MockLLMAdapter(responses=["queued"])
        gateway = LLMGateway({"mock": mock})
        model = mock_model()

        assert await gateway.complete(model.provider, model, "prompt") == "queued"
        assert await gateway.complete(model.provider, model, "prompt") == "prompt"
        assert mock.call_count == 2

    @pytest.mark.asyncio
    async def test_unsupported_provider(self, openai_model):
        gateway = LLMGateway({})

        with pytest.raises(ProviderError, match="Unsupported provider type: openai"):
            await gateway.complete(openai_model.provider, openai_model, "x")

    @pytest.mark.asyncio
    async def test_close_releases_http_clients(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
        gateway = LLMGateway({"openai": OpenAICompatibleAdapter(client=client), "mock": MockLLMAdapter()})

        await gateway.close()

        assert client.is_closed


class TestLocalRetrievalAdapter:
    @pytest.fixture
    def adapter(self, tmp_path):
        return LocalRetrievalAdapter(str(tmp_path / "knowledge.db"))

    @pytest.mark.asyncio
    async def test_search_ranks_matching_chunks(self, adapter):
        await adapter.upsert(
            "kb-1",
            [
                KnowledgeChunk(id="1", content="Refunds are processed within five days", source="refunds.md"),
                KnowledgeChunk(id="2", content="Our office is closed on public holidays", source="office.md"),
            ],
        )

        hits = await adapter.search("kb-1", "how are refunds processed", limit=3, threshold=0.4)

        assert [hit.source for hit in hits] == ["refunds.md"]
        assert hits[0].metadata["knowledge_base_id"] == "kb-1"
        assert 0.4 <= hits[0].similarity <= 1.0

    @pytest.mark.asyncio
    async def test_knowledge_bases_are_isolated(self, adapter):
        await adapter.upsert("kb-1", [KnowledgeChunk(id="1", content="refund policy", source="a")])

        assert await adapter.search("kb-2", "refund policy", threshold=0.0) == []

    @pytest.mark.asyncio
    async def test_delete_knowledge_base(self, adapter):
        await adapter.upsert("kb-1", [KnowledgeChunk(id="1", content="refund policy", source="a")])

        assert await adapter.delete_knowledge_base("kb-1") == 1
        assert await adapter.search("kb-1", "refund policy", threshold=0.0) == []
