"""Shared pytest fixtures for testing."""

import os
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport

# Set test environment before importing the app
os.environ["ENVIRONMENT"] = "test"

from agentflow.adapters import InMemoryModelCatalog, MockLLMAdapter, RetrievalAdapter, RetrievalHit
from agentflow.adapters.model_catalog import mock_model
from agentflow.config import ExecutionConfig, Settings
from agentflow.engine.executor import FlowExecutor
from agentflow.main import create_app
from agentflow.models import Flow
from agentflow.nodes import create_handler_registry
from agentflow.services import FlowService, InMemoryConversationStore, InMemoryFlowRepository


# =============================================================================
# Doubles
# =============================================================================


class FakeRetriever(RetrievalAdapter):
    """Retrieval adapter returning canned hits per knowledge base."""

    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.hits: Dict[str, List[RetrievalHit]] = {}
        self.error: Optional[Exception] = None

    async def search(self, knowledge_base_id, query, limit=3, threshold=0.7):
        self.calls.append((knowledge_base_id, query, limit, threshold))
        if self.error:
            raise self.error
        return list(self.hits.get(knowledge_base_id, []))


class FlowFactory:
    """Builds flow configs in the flow editor's JSON shape."""

    @staticmethod
    def node(node_id: str, kind: str, **form: Any) -> Dict[str, Any]:
        return {
            "id": node_id,
            "type": kind,
            "data": {"label": node_id, "type": kind, "form": form},
        }

    @staticmethod
    def edge(source: str, target: str, handle: Optional[str] = None) -> Dict[str, Any]:
        edge = {"id": f"{source}-{target}", "source": source, "target": target}
        if handle:
            edge["sourceHandle"] = handle
        return edge

    def chain(self, *nodes: Dict[str, Any]) -> Dict[str, Any]:
        """Config with the nodes connected in order."""
        edges = [self.edge(a["id"], b["id"]) for a, b in zip(nodes, nodes[1:])]
        return {"nodes": list(nodes), "edges": edges}

    def build(self, config: Dict[str, Any], flow_id: str = "test-flow") -> Flow:
        return Flow.from_dict(config, flow_id=flow_id).validate()


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    """Test settings."""
    return Settings(
        environment="test",
        execution=ExecutionConfig(node_timeout_ms=5000, max_visits_per_node=2),
    )


@pytest.fixture
def factory() -> FlowFactory:
    return FlowFactory()


@pytest.fixture
def mock_llm() -> MockLLMAdapter:
    """Mock LLM adapter that echoes prompts."""
    return MockLLMAdapter()


@pytest.fixture
def catalog() -> InMemoryModelCatalog:
    return InMemoryModelCatalog([mock_model("mock")])


@pytest.fixture
def retriever() -> FakeRetriever:
    return FakeRetriever()


@pytest.fixture
def registry(mock_llm, catalog, retriever):
    return create_handler_registry(mock_llm, catalog, retriever)


@pytest.fixture
def executor(registry, settings) -> FlowExecutor:
    return FlowExecutor(registry, settings)


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def flows() -> InMemoryFlowRepository:
    return InMemoryFlowRepository()


@pytest.fixture
def echo_flow_config(factory) -> Dict[str, Any]:
    """begin(greeting="Hi") -> interface -> generate("Echo: {{userInput}}") -> interface."""
    return factory.chain(
        factory.node("begin", "begin", greeting="Hi"),
        factory.node("ask", "interface"),
        factory.node("echo", "generate", prompt="Echo: {{userInput}}", model="mock"),
        factory.node("reply", "interface"),
    )


@pytest.fixture
def flow_service(flows, store, executor, settings, echo_flow_config) -> FlowService:
    """Flow service with the echo flow registered as ``echo``."""
    flows.add("echo", echo_flow_config)
    return FlowService(flows=flows, store=store, executor=executor, settings=settings)


# =============================================================================
# API Fixtures
# =============================================================================


@pytest.fixture
def app(flow_service, settings) -> FastAPI:
    """Create test FastAPI application."""
    return create_app(flow_service=flow_service, settings=settings)


@pytest_asyncio.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
