"""Begin node: greets and seeds declared variables."""

import structlog

from ..config import ExecutionStatus, MessageRole, NodeKind
from ..engine.navigator import find_next_node
from ..engine.template import render_template
from ..errors import ConfigurationError
from ..models.flow import BeginForm, Node
from ..models.state import ExecutionResult, now_ms
from .base import NodeContext, NodeHandler

logger = structlog.get_logger()


class BeginNodeHandler(NodeHandler):
    kind = NodeKind.BEGIN

    async def execute(self, node: Node, context: NodeContext) -> ExecutionResult:
        started_at = now_ms()
        form: BeginForm = node.form
        variables = context.flow_state.variables

        greeting = render_template(form.greeting or "Hello!", variables)

        for declaration in form.variables:
            if declaration.name not in variables:
                variables[declaration.name] = declaration.default

        self.record_output(node, context.flow_state, greeting)

        next_node_id = find_next_node(context.flow, node.id)
        if next_node_id is None:
            raise ConfigurationError(f"No next node found after begin node {node.name}")

        logger.debug("begin_node_executed", node_id=node.id, next_node_id=next_node_id)

        return self.result(
            node,
            context,
            ExecutionStatus.IN_PROGRESS,
            output=greeting,
            role=MessageRole.SYSTEM,
            next_node_id=next_node_id,
            started_at=started_at,
        )
