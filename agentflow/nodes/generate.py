"""Generate node: renders a prompt and calls a model."""

import structlog

from ..adapters.llm_adapter import LLMAdapter
from ..adapters.model_catalog import ModelCatalog
from ..config import ExecutionStatus, MessageRole, NodeKind, USER_INPUT_NODE_TYPE
from ..engine.navigator import find_next_node
from ..engine.template import render_template
from ..errors import ConfigurationError
from ..models.flow import GenerateForm, Node
from ..models.state import ExecutionResult, FlowState, now_ms
from .base import NodeContext, NodeHandler

logger = structlog.get_logger()


def prompt_variables(flow_state: FlowState) -> dict:
    """
    Variables visible to a generate prompt.

    Adds ``context`` (latest retrieval output) and ``question`` (latest
    user input) on top of the flow variables.
    """
    variables = flow_state.variables
    context = variables.get("retrievalContext")
    if context is None:
        context = flow_state.latest_output(NodeKind.RETRIEVAL.value)

    question = variables.get("lastUserInput") or variables.get("userInput")
    if not question:
        for entry in reversed(flow_state.history):
            if entry.node_type == USER_INPUT_NODE_TYPE and entry.input:
                question = entry.input
                break

    return {**variables, "context": context or "", "question": question or ""}


class GenerateNodeHandler(NodeHandler):
    kind = NodeKind.GENERATE

    def __init__(self, llm: LLMAdapter, catalog: ModelCatalog) -> None:
        self.llm = llm
        self.catalog = catalog

    async def execute(self, node: Node, context: NodeContext) -> ExecutionResult:
        started_at = now_ms()
        form: GenerateForm = node.form

        if not form.model:
            raise ConfigurationError("No AI model specified in the form")

        model = self.catalog.get_model(form.model)
        prompt = render_template(form.prompt, prompt_variables(context.flow_state))

        completion = await self.llm.complete(
            model.provider,
            model,
            prompt,
            temperature=model.options.get("temperature"),
            max_tokens=model.options.get("maxTokens"),
        )

        self.record_output(node, context.flow_state, completion)
        context.flow_state.variables["generatedText"] = completion

        next_node_id = find_next_node(context.flow, node.id)
        if next_node_id is None:
            raise ConfigurationError(f"No next node found after generate node {node.name}")

        logger.debug(
            "generate_node_executed",
            node_id=node.id,
            model=model.name,
            completion_length=len(completion),
        )

        return self.result(
            node,
            context,
            ExecutionStatus.IN_PROGRESS,
            output=completion,
            role=MessageRole.ASSISTANT,
            next_node_id=next_node_id,
            started_at=started_at,
        )
