"""
OpenAI-compatible response envelopes and SSE framing.
"""

import json
import time
from typing import Any, Dict, Optional

from ..config import ExecutionStatus, MessageRole
from ..errors import FlowEngineError
from ..models.state import ExecutionResult, FlowState

SSE_DONE = "data: [DONE]\n\n"

ERROR_FINISH_REASON = "error"

_FINISH_REASONS = {
    ExecutionStatus.COMPLETED: "stop",
    ExecutionStatus.IN_PROGRESS: None,
    ExecutionStatus.ERROR: ERROR_FINISH_REASON,
}


def _usage() -> Dict[str, int]:
    return {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}


def _result_error(result: ExecutionResult) -> Dict[str, Any]:
    return {
        "message": result.message or result.output_text or "An error occurred",
        "type": "server_error",
        "code": "execution_error",
    }


def _envelope(
    result: ExecutionResult,
    conversation_id: Optional[str],
    model: str,
    stream: bool,
) -> Dict[str, Any]:
    content_key = "delta" if stream else "message"
    payload: Dict[str, Any] = {
        "id": conversation_id,
        "object": "chat.completion.chunk" if stream else "chat.completion",
        "created": int(time.time()),
        "model": model,
        "status": result.status.value,
        "choices": [
            {
                "index": 0,
                content_key: {
                    "role": (result.node_info.role or MessageRole.DEVELOPER).value,
                    "content": result.output_text,
                },
                "finish_reason": _FINISH_REASONS[result.status],
            }
        ],
        "usage": _usage(),
        "flowState": result.flow_state.to_dict() if result.flow_state else None,
    }

    if result.status == ExecutionStatus.ERROR:
        payload["error"] = _result_error(result)

    return payload


def to_chat_completion(
    result: ExecutionResult,
    conversation_id: Optional[str],
    model: str = "flow-default",
) -> Dict[str, Any]:
    """Non-streaming envelope for the final result of a turn."""
    return _envelope(result, conversation_id, model, stream=False)


def to_chat_completion_chunk(
    result: ExecutionResult,
    conversation_id: Optional[str],
    model: str = "flow-default",
) -> Dict[str, Any]:
    """Streaming chunk for one engine-yielded result."""
    return _envelope(result, conversation_id, model, stream=True)


def error_envelope(
    error: FlowEngineError,
    conversation_id: Optional[str],
    model: str = "flow-default",
    stream: bool = False,
    flow_state: Optional[FlowState] = None,
) -> Dict[str, Any]:
    """Envelope for a turn that failed before a node produced a result."""
    content_key = "delta" if stream else "message"
    return {
        "id": conversation_id,
        "object": "chat.completion.chunk" if stream else "chat.completion",
        "created": int(time.time()),
        "model": model,
        "status": ExecutionStatus.ERROR.value,
        "choices": [
            {
                "index": 0,
                content_key: {
                    "role": MessageRole.DEVELOPER.value,
                    "content": error.message,
                },
                "finish_reason": ERROR_FINISH_REASON,
            }
        ],
        "usage": _usage(),
        "flowState": flow_state.to_dict() if flow_state else None,
        "error": error.to_dict(),
    }


def format_sse_event(payload: Dict[str, Any]) -> str:
    """Frame a payload as a server-sent event."""
    return f"data: {json.dumps(payload, default=str)}\n\n"
