"""
Flow Executor Engine.

Runs one conversation turn: walks the flow from the state's current node,
feeding each node's output to the next, until a node pauses, completes or
fails.
"""

import asyncio
import dataclasses
from typing import AsyncIterator, Optional

import structlog

from ..config import (
    ExecutionStatus,
    MessageRole,
    NodeKind,
    Settings,
    USER_INPUT_NODE_TYPE,
    get_settings,
)
from ..errors import ConfigurationError
from ..models.flow import Flow, Node
from ..models.state import (
    ExecutionInfo,
    ExecutionResult,
    FlowState,
    HistoryEntry,
    MessagePart,
    NodeInfo,
    now_ms,
)
from ..nodes.base import NodeContext
from ..nodes.registry import HandlerRegistry
from .navigator import resolve_current_node

logger = structlog.get_logger()


def apply_result(flow_state: FlowState, result: ExecutionResult) -> FlowState:
    """
    Fold a node result into a new flow state.

    The given state is left untouched.
    """
    state = flow_state.copy()
    state.merge(result.flow_state)

    if result.status == ExecutionStatus.ERROR:
        state.current_node_id = result.node_info.id
    elif result.next_node_id:
        state.current_node_id = result.next_node_id
        state.completed = False
    else:
        state.completed = True

    if result.node_info.kind != NodeKind.INTERFACE.value and result.status != ExecutionStatus.ERROR:
        state.history.append(
            HistoryEntry(
                node_id=result.node_info.id,
                node_type=result.node_info.kind,
                output=result.execution.output,
                timestamp=result.execution.end_time or now_ms(),
            )
        )

    return state


class FlowExecutor:
    """
    Executes flows one turn at a time.

    Features:
    - Explicit loop bounded by the flow's size
    - Per-node timeout
    - Handler failures converted into error results
    - Copy-on-write flow state
    """

    def __init__(self, registry: HandlerRegistry, settings: Optional[Settings] = None):
        """Initialize executor."""
        self.settings = settings or get_settings()
        self.registry = registry

    def max_iterations(self, flow: Flow) -> int:
        node_count = len(flow.nodes)
        return max(node_count * self.settings.execution.max_visits_per_node, node_count + 1)

    async def continue_flow(
        self,
        flow: Flow,
        flow_state: FlowState,
        input: MessagePart,
    ) -> ExecutionResult:
        """
        Run a turn and return its final result.

        Args:
            flow: Flow definition
            flow_state: Conversation state at the start of the turn
            input: Turn input

        Returns:
            The last node result; its ``flow_state`` is the full state after
            the turn

        Raises:
            ConfigurationError: the flow cannot make progress
        """
        last: Optional[ExecutionResult] = None
        async for result in self.stream_flow(flow, flow_state, input):
            last = result

        if last is None:
            raise ConfigurationError("Flow produced no result")
        return last

    async def stream_flow(
        self,
        flow: Flow,
        flow_state: FlowState,
        input: MessagePart,
    ) -> AsyncIterator[ExecutionResult]:
        """
        Run a turn, yielding one result per node visited.

        Each yielded result carries the full flow state after that node.
        Closing the generator stops further dispatch.
        """
        node = resolve_current_node(flow, flow_state.current_node_id)
        state = flow_state.copy()
        state.current_node_id = node.id

        # Removed again if the turn fails; a retry adds it back.
        input_entry_index = None
        if input.is_user_input:
            input_entry_index = len(state.history)
            state.history.append(
                HistoryEntry(node_id=node.id, node_type=USER_INPUT_NODE_TYPE, input=input.content)
            )

        limit = self.max_iterations(flow)
        iterations = 0
        current_input = input

        while True:
            iterations += 1
            if iterations > limit:
                raise ConfigurationError(
                    f"Maximum node executions exceeded ({limit}); check the flow for cycles"
                )

            result = await self._dispatch(flow, node, state, current_input)
            state = apply_result(state, result)
            if result.status == ExecutionStatus.ERROR and input_entry_index is not None:
                del state.history[input_entry_index]

            logger.info(
                "node_executed",
                node_id=node.id,
                node_type=node.kind.value,
                status=result.status.value,
                next_node_id=result.next_node_id,
            )

            yield dataclasses.replace(result, flow_state=state)

            if result.status in (ExecutionStatus.COMPLETED, ExecutionStatus.ERROR):
                return

            next_node = flow.get_node(result.next_node_id)
            if next_node is None:
                raise ConfigurationError(
                    f"No next node found after {node.kind.value} node {node.name}"
                )

            current_input = MessagePart(role=result.node_info.role, content=result.output_text)
            node = next_node

    async def _dispatch(
        self,
        flow: Flow,
        node: Node,
        flow_state: FlowState,
        input: MessagePart,
    ) -> ExecutionResult:
        """Execute a single node on a working copy of the state."""
        handler = self.registry.get(node.kind)
        context = NodeContext(flow=flow, flow_state=flow_state.copy(), input=input)
        started_at = now_ms()

        try:
            return await asyncio.wait_for(
                handler.execute(node, context),
                timeout=self.settings.execution.node_timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            logger.warning("node_timeout", node_id=node.id, node_type=node.kind.value)
            return self._error_result(node, "Node execution timed out", started_at)
        except Exception as e:
            logger.exception("node_failed", node_id=node.id, node_type=node.kind.value)
            return self._error_result(node, str(e) or e.__class__.__name__, started_at)

    def _error_result(self, node: Node, message: str, started_at: int) -> ExecutionResult:
        return ExecutionResult(
            status=ExecutionStatus.ERROR,
            node_info=NodeInfo(
                id=node.id,
                name=node.name,
                kind=node.kind.value,
                role=MessageRole.DEVELOPER,
            ),
            execution=ExecutionInfo(
                output=message,
                node_id=node.id,
                node_name=node.name,
                start_time=started_at,
                end_time=now_ms(),
            ),
            message=message,
        )
