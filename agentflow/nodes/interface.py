"""Interface node: the pause point between the flow and the human."""

from ..config import ExecutionStatus, MessageRole, NodeKind
from ..engine.navigator import find_next_node
from ..models.flow import Node
from ..models.state import ExecutionResult, now_ms
from .base import NodeContext, NodeHandler


class InterfaceNodeHandler(NodeHandler):
    """
    Waits for user input.

    Reached with anything but user input, the node pauses the turn and
    points the state back at itself so the next turn resumes here. Reached
    with user input, it stores the text as ``userInput`` and lets the turn
    continue.
    """

    kind = NodeKind.INTERFACE

    async def execute(self, node: Node, context: NodeContext) -> ExecutionResult:
        started_at = now_ms()
        message = context.input

        if message.role != MessageRole.USER:
            return self.result(
                node,
                context,
                ExecutionStatus.COMPLETED,
                output=message.content,
                role=message.role,
                next_node_id=node.id,
                started_at=started_at,
            )

        context.flow_state.variables["userInput"] = message.content
        self.record_output(node, context.flow_state, message.content)

        next_node_id = find_next_node(context.flow, node.id)
        if next_node_id is None:
            return self.result(
                node,
                context,
                ExecutionStatus.COMPLETED,
                output=message.content,
                role=message.role,
                next_node_id=node.id,
                started_at=started_at,
            )

        return self.result(
            node,
            context,
            ExecutionStatus.IN_PROGRESS,
            output=message.content,
            role=message.role,
            next_node_id=next_node_id,
            started_at=started_at,
        )
