"""Tests for node handlers."""

import json
from unittest.mock import AsyncMock

import pytest

from agentflow.adapters import (
    InMemoryModelCatalog,
    MockLLMAdapter,
    ModelConfig,
    ProviderConfig,
    RetrievalHit,
)
from agentflow.config import ExecutionStatus, MessageRole, OutputFormat
from agentflow.errors import (
    ConfigurationError,
    ModelAPIError,
    NotFoundError,
    RetrievalError,
    ValidationError,
)
from agentflow.models import Category, FlowState, MessagePart
from agentflow.nodes import (
    BeginNodeHandler,
    CategorizeNodeHandler,
    GenerateNodeHandler,
    InterfaceNodeHandler,
    KeywordClassifier,
    LLMClassifier,
    NodeContext,
    RetrievalNodeHandler,
    format_hits,
)
from agentflow.nodes.registry import HandlerRegistry


def context_for(flow, state=None, role=MessageRole.SYSTEM, content=""):
    return NodeContext(
        flow=flow,
        flow_state=state or FlowState(),
        input=MessagePart(role=role, content=content),
    )


# =============================================================================
# Begin
# =============================================================================


class TestBeginNode:
    @pytest.mark.asyncio
    async def test_renders_greeting_and_seeds_variables(self, factory):
        flow = factory.build(
            factory.chain(
                factory.node(
                    "begin",
                    "begin",
                    greeting="Hi {{customer}}",
                    variables=[{"title": "customer", "default": "guest"}, {"title": "plan", "default": "free"}],
                ),
                factory.node("ask", "interface"),
            )
        )
        state = FlowState(variables={"plan": "pro"})
        context = context_for(flow, state)

        result = await BeginNodeHandler().execute(flow.get_node("begin"), context)

        assert result.status == ExecutionStatus.IN_PROGRESS
        assert result.next_node_id == "ask"
        assert result.node_info.role == MessageRole.SYSTEM
        # the greeting is rendered before declared defaults are seeded
        assert result.execution.output == "Hi {{customer}}"
        assert context.flow_state.variables == {"plan": "pro", "customer": "guest"}
        assert context.flow_state.components["begin"] == {"output": "Hi {{customer}}", "type": "begin"}

    @pytest.mark.asyncio
    async def test_default_greeting(self, factory):
        flow = factory.build(factory.chain(factory.node("begin", "begin"), factory.node("ask", "interface")))

        result = await BeginNodeHandler().execute(flow.get_node("begin"), context_for(flow))

        assert result.execution.output == "Hello!"

    @pytest.mark.asyncio
    async def test_missing_next_node(self, factory):
        flow = factory.build(
            {"nodes": [factory.node("begin", "begin"), factory.node("ask", "interface")], "edges": []}
        )

        with pytest.raises(ConfigurationError):
            await BeginNodeHandler().execute(flow.get_node("begin"), context_for(flow))


# =============================================================================
# Interface
# =============================================================================


class TestInterfaceNode:
    @pytest.mark.asyncio
    async def test_pauses_without_user_input(self, factory, echo_flow_config):
        flow = factory.build(echo_flow_config)
        context = context_for(flow, role=MessageRole.SYSTEM, content="Hi")

        result = await InterfaceNodeHandler().execute(flow.get_node("ask"), context)

        assert result.status == ExecutionStatus.COMPLETED
        assert result.next_node_id == "ask"
        assert result.execution.output == "Hi"
        assert result.node_info.role == MessageRole.SYSTEM
        assert "userInput" not in context.flow_state.variables

    @pytest.mark.asyncio
    async def test_continues_with_user_input(self, factory, echo_flow_config):
        flow = factory.build(echo_flow_config)
        context = context_for(flow, role=MessageRole.USER, content="ping")

        result = await InterfaceNodeHandler().execute(flow.get_node("ask"), context)

        assert result.status == ExecutionStatus.IN_PROGRESS
        assert result.next_node_id == "echo"
        assert result.node_info.role == MessageRole.USER
        assert context.flow_state.variables["userInput"] == "ping"
        assert context.flow_state.components["ask"]["output"] == "ping"

    @pytest.mark.asyncio
    async def test_terminal_interface_waits_again(self, factory, echo_flow_config):
        flow = factory.build(echo_flow_config)
        context = context_for(flow, role=MessageRole.USER, content="again")

        result = await InterfaceNodeHandler().execute(flow.get_node("reply"), context)

        assert result.status == ExecutionStatus.COMPLETED
        assert result.next_node_id == "reply"


# =============================================================================
# Generate
# =============================================================================


class TestGenerateNode:
    @pytest.mark.asyncio
    async def test_calls_model_with_rendered_prompt(self, factory, echo_flow_config, mock_llm, catalog):
        flow = factory.build(echo_flow_config)
        state = FlowState(variables={"userInput": "ping"})
        context = context_for(flow, state, role=MessageRole.USER, content="ping")

        result = await GenerateNodeHandler(mock_llm, catalog).execute(flow.get_node("echo"), context)

        assert mock_llm.call_count == 1
        assert mock_llm.last_prompt == "Echo: ping"
        assert result.execution.output == "Echo: ping"
        assert result.node_info.role == MessageRole.ASSISTANT
        assert result.next_node_id == "reply"
        assert context.flow_state.components["echo"]["output"] == "Echo: ping"

    @pytest.mark.asyncio
    async def test_context_and_question_synonyms(self, factory, mock_llm, catalog):
        flow = factory.build(
            factory.chain(
                factory.node("begin", "begin"),
                factory.node("gen", "generate", prompt="Q: {{question}} C: {{context}}", model="mock"),
                factory.node("ask", "interface"),
            )
        )
        state = FlowState(variables={"userInput": "refund?", "retrievalContext": "[1] Refunds take 5 days"})

        await GenerateNodeHandler(mock_llm, catalog).execute(flow.get_node("gen"), context_for(flow, state))

        assert mock_llm.last_prompt == "Q: refund? C: [1] Refunds take 5 days"

    @pytest.mark.asyncio
    async def test_missing_model(self, factory, mock_llm, catalog):
        flow = factory.build(
            factory.chain(
                factory.node("begin", "begin"),
                factory.node("gen", "generate", prompt="x"),
                factory.node("ask", "interface"),
            )
        )

        with pytest.raises(ConfigurationError, match="No AI model specified in the form"):
            await GenerateNodeHandler(mock_llm, catalog).execute(flow.get_node("gen"), context_for(flow))
        assert mock_llm.call_count == 0

    @pytest.mark.asyncio
    async def test_unknown_model(self, factory, mock_llm, catalog):
        flow = factory.build(
            factory.chain(
                factory.node("begin", "begin"),
                factory.node("gen", "generate", prompt="x", model="gpt-unknown"),
                factory.node("ask", "interface"),
            )
        )

        with pytest.raises(NotFoundError):
            await GenerateNodeHandler(mock_llm, catalog).execute(flow.get_node("gen"), context_for(flow))

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self, factory, echo_flow_config, catalog):
        llm = AsyncMock()
        llm.complete.side_effect = ModelAPIError("Mock", 503, "unavailable")
        flow = factory.build(echo_flow_config)

        with pytest.raises(ModelAPIError):
            await GenerateNodeHandler(llm, catalog).execute(
                flow.get_node("echo"), context_for(flow, role=MessageRole.USER, content="ping")
            )
        llm.complete.assert_awaited_once()


# =============================================================================
# Categorize
# =============================================================================


@pytest.fixture
def categorize_flow(factory):
    config = {
        "nodes": [
            factory.node("begin", "begin"),
            factory.node(
                "sort",
                "categorize",
                categories=[
                    {"name": "billing", "description": "Payments", "examples": ["invoice", "charged"]},
                    {"name": "support", "description": "Everything else"},
                ],
                defaultCategory="support",
            ),
            factory.node("billing", "interface"),
            factory.node("support", "interface"),
        ],
        "edges": [
            factory.edge("begin", "sort"),
            factory.edge("sort", "billing", handle="out-billing"),
            factory.edge("sort", "support", handle="out-support"),
        ],
    }
    return factory.build(config)


@pytest.fixture
def chat_catalog():
    provider = ProviderConfig(id="openai", name="OpenAI", provider_type="openai")
    return InMemoryModelCatalog([ModelConfig(id="gpt", name="gpt", provider=provider, is_default=True)])


class TestCategorizeNode:
    @pytest.mark.asyncio
    async def test_unmatched_input_routes_to_default(self, categorize_flow, chat_catalog):
        llm = MockLLMAdapter(responses=['{"category": "sales", "confidence": 0.8}'])
        handler = CategorizeNodeHandler(llm, chat_catalog)
        state = FlowState(variables={"userInput": "what's the weather"})
        context = context_for(categorize_flow, state)

        result = await handler.execute(categorize_flow.get_node("sort"), context)

        assert result.execution.output == "support"
        assert result.next_node_id == "support"
        assert result.node_info.role == MessageRole.DEVELOPER
        assert context.flow_state.variables["category"] == "support"
        assert context.flow_state.variables["categorization"] == {
            "input": "what's the weather",
            "result": "support",
            "confidence": 0.0,
        }

    @pytest.mark.asyncio
    async def test_llm_answer_selects_branch(self, categorize_flow, chat_catalog):
        llm = MockLLMAdapter(responses=['Sure. {"category": "billing", "confidence": 1.7}'])
        handler = CategorizeNodeHandler(llm, chat_catalog)
        context = context_for(categorize_flow, FlowState(variables={"userInput": "I was charged twice"}))

        result = await handler.execute(categorize_flow.get_node("sort"), context)

        assert result.next_node_id == "billing"
        assert context.flow_state.variables["categorization"]["confidence"] == 1.0
        assert "I was charged twice" in llm.last_prompt

    @pytest.mark.asyncio
    async def test_keyword_fallback_without_model(self, categorize_flow):
        handler = CategorizeNodeHandler()
        context = context_for(categorize_flow, FlowState(variables={"userInput": "Where is my invoice?"}))

        result = await handler.execute(categorize_flow.get_node("sort"), context)

        assert result.execution.output == "billing"
        assert result.next_node_id == "billing"

    @pytest.mark.asyncio
    async def test_mock_model_uses_keywords(self, categorize_flow, catalog):
        llm = MockLLMAdapter()
        handler = CategorizeNodeHandler(llm, catalog)
        context = context_for(categorize_flow, FlowState(variables={"userInput": "I was charged twice"}))

        result = await handler.execute(categorize_flow.get_node("sort"), context)

        assert result.next_node_id == "billing"
        assert llm.call_count == 0

    @pytest.mark.asyncio
    async def test_target_node_overrides_edges(self, factory):
        config = {
            "nodes": [
                factory.node("begin", "begin"),
                factory.node(
                    "sort",
                    "categorize",
                    categories=[{"name": "billing", "targetNode": "human"}],
                    defaultCategory="billing",
                ),
                factory.node("bot", "interface"),
                factory.node("human", "interface"),
            ],
            "edges": [factory.edge("begin", "sort"), factory.edge("sort", "bot", handle="out-billing")],
        }
        flow = factory.build(config)

        result = await CategorizeNodeHandler().execute(
            flow.get_node("sort"), context_for(flow, content="anything")
        )

        assert result.next_node_id == "human"

    @pytest.mark.asyncio
    async def test_no_input(self, categorize_flow):
        with pytest.raises(ValidationError):
            await CategorizeNodeHandler().execute(categorize_flow.get_node("sort"), context_for(categorize_flow))

    @pytest.mark.asyncio
    async def test_missing_branch(self, factory):
        config = factory.chain(
            factory.node("begin", "begin"),
            factory.node("sort", "categorize", categories=[{"name": "a"}], defaultCategory="a"),
            factory.node("ask", "interface"),
        )
        flow = factory.build(config)

        with pytest.raises(ConfigurationError):
            await CategorizeNodeHandler().execute(flow.get_node("sort"), context_for(flow, content="x"))


class TestClassifiers:
    @pytest.mark.asyncio
    async def test_keyword_classifier_no_match(self):
        categories = [Category(name="billing"), Category(name="support")]
        result = await KeywordClassifier().classify("hello there", categories)
        assert result.category is None

    def test_llm_response_parsing(self):
        categories = [Category(name="billing")]

        assert LLMClassifier.parse_response('{"category": "billing", "confidence": 0.4}', categories).confidence == 0.4
        assert LLMClassifier.parse_response('{"category": "billing"}', categories).confidence == 1.0
        assert LLMClassifier.parse_response("no json here", categories).category is None
        assert LLMClassifier.parse_response('{"category": "other"}', categories).category is None


# =============================================================================
# Retrieval
# =============================================================================


@pytest.fixture
def retrieval_flow(factory):
    def build(**form):
        return factory.build(
            factory.chain(
                factory.node("begin", "begin"),
                factory.node("kb", "retrieval", **form),
                factory.node("ask", "interface"),
            )
        )

    return build


HITS = [
    RetrievalHit(text="Refunds take 5 days", source="refunds.md", similarity=0.9),
    RetrievalHit(text="Cards are charged monthly", source="billing.md", similarity=0.8),
]


class TestRetrievalNode:
    @pytest.mark.asyncio
    async def test_empty_knowledge_ids(self, retrieval_flow, retriever):
        flow = retrieval_flow(knowledgeIds=[])
        context = context_for(flow, FlowState(variables={"userInput": "refund"}))

        result = await RetrievalNodeHandler(retriever).execute(flow.get_node("kb"), context)

        assert result.status == ExecutionStatus.ERROR
        assert result.message == "No knowledge bases specified"
        assert retriever.calls == []

    @pytest.mark.asyncio
    async def test_no_query(self, retrieval_flow, retriever):
        flow = retrieval_flow(knowledgeIds=["kb-1"])

        result = await RetrievalNodeHandler(retriever).execute(flow.get_node("kb"), context_for(flow))

        assert result.status == ExecutionStatus.ERROR
        assert result.message == "No query available for retrieval"
        assert retriever.calls == []

    @pytest.mark.asyncio
    async def test_searches_each_knowledge_base(self, retrieval_flow, retriever):
        retriever.hits = {"kb-1": HITS[:1], "kb-2": HITS[1:]}
        flow = retrieval_flow(knowledgeIds=["kb-1", "kb-2"], maxResults=5, threshold=0.5)
        context = context_for(flow, FlowState(variables={"userInput": "refund"}))

        result = await RetrievalNodeHandler(retriever).execute(flow.get_node("kb"), context)

        assert sorted(retriever.calls) == [("kb-1", "refund", 5, 0.5), ("kb-2", "refund", 5, 0.5)]
        assert result.status == ExecutionStatus.IN_PROGRESS
        assert result.next_node_id == "ask"
        assert result.execution.output == (
            "[1] Refunds take 5 days\nSource: refunds.md\n\n"
            "[2] Cards are charged monthly\nSource: billing.md"
        )
        assert context.flow_state.variables["retrievalContext"] == result.execution.output

    @pytest.mark.asyncio
    async def test_truncates_to_max_results(self, retrieval_flow, retriever):
        retriever.hits = {"kb-1": HITS, "kb-2": HITS}
        flow = retrieval_flow(knowledgeIds=["kb-1", "kb-2"], maxResults=3, outputFormat="json")
        context = context_for(flow, content="refund")

        result = await RetrievalNodeHandler(retriever).execute(flow.get_node("kb"), context)

        assert len(json.loads(result.execution.output)) == 3

    @pytest.mark.asyncio
    async def test_query_from_input_reference(self, retrieval_flow, retriever):
        flow = retrieval_flow(
            knowledgeIds=["kb-1"],
            inputRefs=[{"sourceNodeId": "gen", "outputName": "output", "inputName": "query"}],
        )
        state = FlowState(
            variables={"userInput": "ignored"},
            components={"gen": {"output": "rewritten query", "type": "generate"}},
        )

        await RetrievalNodeHandler(retriever).execute(flow.get_node("kb"), context_for(flow, state))

        assert retriever.calls[0][1] == "rewritten query"

    @pytest.mark.asyncio
    async def test_provider_failure(self, retrieval_flow, retriever):
        retriever.error = RetrievalError("index offline")
        flow = retrieval_flow(knowledgeIds=["kb-1"])

        result = await RetrievalNodeHandler(retriever).execute(
            flow.get_node("kb"), context_for(flow, content="refund")
        )

        assert result.status == ExecutionStatus.ERROR
        assert result.message == "Error retrieving information: index offline"


class TestFormatHits:
    def test_citations(self):
        assert format_hits(HITS, OutputFormat.CITATIONS) == (
            "Refunds take 5 days [1]\n\nCards are charged monthly [2]"
            "\n\nSources:\n[1] refunds.md\n[2] billing.md"
        )

    def test_json(self):
        data = json.loads(format_hits(HITS[:1], OutputFormat.JSON))
        assert data == [
            {"text": "Refunds take 5 days", "source": "refunds.md", "similarity": 0.9, "metadata": {}}
        ]


# =============================================================================
# Registry
# =============================================================================


def test_registry_requires_every_kind():
    with pytest.raises(ConfigurationError, match="generate"):
        HandlerRegistry([BeginNodeHandler(), InterfaceNodeHandler()])


def test_registry_lookup(registry):
    from agentflow.config import NodeKind

    assert isinstance(registry.get(NodeKind.INTERFACE), InterfaceNodeHandler)
    assert set(registry.kinds()) == set(NodeKind)
