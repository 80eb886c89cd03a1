"""
Node handler contract.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from ..config import ExecutionStatus, MessageRole, NodeKind
from ..models.flow import Flow, Node
from ..models.state import (
    ExecutionInfo,
    ExecutionResult,
    FlowState,
    MessagePart,
    NodeInfo,
    now_ms,
)


@dataclass
class NodeContext:
    """
    What a handler sees while executing one node.

    ``flow_state`` is a working copy owned by the engine; handlers may
    write ``variables`` and ``components`` on it.
    """

    flow: Flow
    flow_state: FlowState
    input: MessagePart


class NodeHandler(ABC):
    """Base class for node handlers."""

    kind: NodeKind

    @abstractmethod
    async def execute(self, node: Node, context: NodeContext) -> ExecutionResult:
        """
        Execute a node.

        Returns a result carrying the next node id, or an error result
        with a message. Raising fails the node for this turn.
        """

    def record_output(self, node: Node, flow_state: FlowState, output: Any) -> None:
        flow_state.components[node.id] = {"output": output, "type": node.kind.value}

    def result(
        self,
        node: Node,
        context: NodeContext,
        status: ExecutionStatus,
        output: Any,
        role: MessageRole,
        next_node_id: Optional[str] = None,
        message: Optional[str] = None,
        started_at: Optional[int] = None,
    ) -> ExecutionResult:
        return ExecutionResult(
            status=status,
            node_info=NodeInfo(
                id=node.id,
                name=node.name,
                kind=node.kind.value,
                role=role,
            ),
            execution=ExecutionInfo(
                output=output,
                node_id=node.id,
                node_name=node.name,
                start_time=started_at or now_ms(),
                end_time=now_ms(),
            ),
            next_node_id=next_node_id,
            flow_state=context.flow_state,
            message=message,
        )

    def error(
        self,
        node: Node,
        context: NodeContext,
        message: str,
        role: MessageRole = MessageRole.DEVELOPER,
        started_at: Optional[int] = None,
    ) -> ExecutionResult:
        return self.result(
            node,
            context,
            ExecutionStatus.ERROR,
            output=message,
            role=role,
            message=message,
            started_at=started_at,
        )
