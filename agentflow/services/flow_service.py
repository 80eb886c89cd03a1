"""
Flow Service - Runs conversation turns against stored flows.

This is the core service that:
1. Loads the flow and the conversation's flow state
2. Creates the conversation on its first turn
3. Records the user's message
4. Runs the executor
5. Persists the new state and the final output
"""
from contextlib import aclosing
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator

import structlog

from ..adapters.llm_adapter import LLMAdapter
from ..config import ExecutionStatus, MessageRole, Settings, get_settings
from ..engine.executor import FlowExecutor
from ..engine.inputs import extract_user_input_from_messages
from ..engine.navigator import find_begin_node
from ..engine.transformer import (
    SSE_DONE,
    error_envelope,
    format_sse_event,
    to_chat_completion,
    to_chat_completion_chunk,
)
from ..errors import ConfigurationError, FlowEngineError, InternalError, NotFoundError
from ..models.flow import Flow
from ..models.schemas import FlowRunRequest
from ..models.state import ExecutionResult, FlowState, MessagePart
from .conversation_store import ConversationMessage, ConversationStore
from .flow_repository import FlowRepository

logger = structlog.get_logger()

DEFAULT_GREETING = "Hello!"


@dataclass
class Turn:
    """A prepared turn, ready to run."""

    flow: Flow
    conversation_id: str
    flow_state: FlowState
    input: MessagePart
    model: str
    created: bool = False


class FlowService:
    """
    Turn orchestration around the flow executor.

    Turns of the same conversation must not run concurrently.
    """

    def __init__(
        self,
        flows: FlowRepository,
        store: ConversationStore,
        executor: FlowExecutor,
        settings: Settings | None = None,
        llm: LLMAdapter | None = None,
    ) -> None:
        self.flows = flows
        self.store = store
        self.executor = executor
        self.llm = llm
        self._settings = settings or get_settings()

    async def prepare_turn(self, request: FlowRunRequest) -> Turn:
        """
        Load everything a turn needs.

        Raises:
            NotFoundError: unknown flow
            ConfigurationError: invalid flow
        """
        flow = await self.flows.get(request.flow_id)
        model = request.model or self._settings.default_model_name

        user_input = extract_user_input_from_messages(request.messages)
        user_message = (
            ConversationMessage(role=MessageRole.USER.value, content=user_input)
            if user_input
            else None
        )

        conversation_id = request.conversation_id
        flow_state = await self.store.load(conversation_id) if conversation_id else None
        created = flow_state is None

        if flow_state is None:
            begin = find_begin_node(flow)
            if begin is None:
                raise ConfigurationError("No begin node found in flow")

            flow_state = FlowState(current_node_id=begin.id, variables=dict(request.variables))
            conversation_id = await self.store.save(
                flow_state, flow.id, conversation_id, message=user_message
            )
            default_input = MessagePart(role=MessageRole.SYSTEM, content=begin.form.greeting)
        else:
            flow_state.variables.update(request.variables)
            if user_message:
                await self.store.add_message(conversation_id, user_message)
            default_input = MessagePart(role=MessageRole.SYSTEM, content=DEFAULT_GREETING)

        turn_input = (
            MessagePart(role=MessageRole.USER, content=user_input) if user_input else default_input
        )

        logger.info(
            "turn_started",
            flow_id=flow.id,
            conversation_id=conversation_id,
            created=created,
            has_user_input=user_input is not None,
        )

        return Turn(
            flow=flow,
            conversation_id=conversation_id,
            flow_state=flow_state,
            input=turn_input,
            model=model,
            created=created,
        )

    async def run_turn(self, turn: Turn) -> dict[str, Any]:
        """Run a turn and return the chat completion envelope."""
        try:
            result = await self.executor.continue_flow(turn.flow, turn.flow_state, turn.input)
        except FlowEngineError as e:
            logger.warning("turn_failed", conversation_id=turn.conversation_id, error=e.message)
            return error_envelope(e, turn.conversation_id, turn.model, flow_state=turn.flow_state)
        except Exception as e:
            logger.exception("turn_failed", conversation_id=turn.conversation_id)
            return error_envelope(
                InternalError(str(e)), turn.conversation_id, turn.model, flow_state=turn.flow_state
            )

        await self._persist(turn, result)
        return to_chat_completion(result, turn.conversation_id, turn.model)

    async def stream_turn(self, turn: Turn) -> AsyncIterator[str]:
        """
        Run a turn as server-sent events.

        One chunk per node result, an error chunk if the turn fails, then
        the ``[DONE]`` terminator. A stream closed early is not persisted.
        """
        last: ExecutionResult | None = None
        try:
            async with aclosing(
                self.executor.stream_flow(turn.flow, turn.flow_state, turn.input)
            ) as results:
                async for result in results:
                    last = result
                    yield format_sse_event(
                        to_chat_completion_chunk(result, turn.conversation_id, turn.model)
                    )
        except FlowEngineError as e:
            logger.warning("turn_failed", conversation_id=turn.conversation_id, error=e.message)
            yield format_sse_event(
                error_envelope(
                    e,
                    turn.conversation_id,
                    turn.model,
                    stream=True,
                    flow_state=last.flow_state if last else turn.flow_state,
                )
            )
        except Exception as e:
            logger.exception("turn_failed", conversation_id=turn.conversation_id)
            yield format_sse_event(
                error_envelope(InternalError(str(e)), turn.conversation_id, turn.model, stream=True)
            )
        else:
            if last is not None:
                await self._persist(turn, last)

        yield SSE_DONE

    async def _persist(self, turn: Turn, result: ExecutionResult) -> None:
        message = None
        if result.status != ExecutionStatus.ERROR and result.output_text:
            message = ConversationMessage(
                role=result.node_info.role.value,
                content=result.output_text,
                node_id=result.node_info.id,
                node_type=result.node_info.kind,
            )

        await self.store.save(
            result.flow_state,
            turn.flow.id,
            turn.conversation_id,
            message=message,
        )

        logger.info(
            "turn_completed",
            flow_id=turn.flow.id,
            conversation_id=turn.conversation_id,
            status=result.status.value,
            node_id=result.node_info.id,
            history_length=len(result.flow_state.history),
        )

    async def get_state(self, conversation_id: str) -> dict[str, Any]:
        """
        Stored flow state of a conversation.

        Raises:
            NotFoundError: unknown conversation
        """
        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None or conversation.flow_state is None:
            raise NotFoundError(f"Conversation not found: {conversation_id}")

        return {
            "id": conversation.id,
            "flowState": conversation.flow_state.to_dict(),
            "metadata": {
                "flowId": conversation.flow_id,
                "fetchedAt": datetime.utcnow().isoformat(),
            },
        }

    async def get_conversation(self, conversation_id: str) -> dict[str, Any]:
        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError(f"Conversation not found: {conversation_id}")

        return {
            "id": conversation.id,
            "flowId": conversation.flow_id,
            "title": conversation.title,
            "createdAt": conversation.created_at.isoformat(),
            "lastMessageAt": (
                conversation.last_message_at.isoformat() if conversation.last_message_at else None
            ),
            "flowState": conversation.flow_state.to_dict() if conversation.flow_state else None,
            "messages": [m.to_dict() for m in conversation.messages],
        }

    async def delete_conversation(self, conversation_id: str) -> None:
        if not await self.store.delete(conversation_id):
            raise NotFoundError(f"Conversation not found: {conversation_id}")

    async def close(self) -> None:
        """Release the model clients."""
        if self.llm is not None:
            await self.llm.close()
