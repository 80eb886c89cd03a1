"""Adapters for model providers and knowledge retrieval."""
from .llm_adapter import (
    LLMAdapter,
    LLMGateway,
    MockLLMAdapter,
    OpenAICompatibleAdapter,
    create_llm_gateway,
)
from .model_catalog import (
    InMemoryModelCatalog,
    JsonFileModelCatalog,
    ModelCatalog,
    ModelConfig,
    ProviderConfig,
    create_model_catalog,
)
from .retrieval_adapter import (
    KnowledgeChunk,
    LocalRetrievalAdapter,
    RetrievalAdapter,
    RetrievalHit,
    create_retrieval_adapter,
)

__all__ = [
    "LLMAdapter",
    "LLMGateway",
    "MockLLMAdapter",
    "OpenAICompatibleAdapter",
    "create_llm_gateway",
    "InMemoryModelCatalog",
    "JsonFileModelCatalog",
    "ModelCatalog",
    "ModelConfig",
    "ProviderConfig",
    "create_model_catalog",
    "KnowledgeChunk",
    "LocalRetrievalAdapter",
    "RetrievalAdapter",
    "RetrievalHit",
    "create_retrieval_adapter",
]
