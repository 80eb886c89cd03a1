"""
Flow execution helpers.

The executor lives in ``agentflow.engine.executor``; this package exports
the pure helpers it is built from.
"""

from .inputs import extract_user_input_from_messages, get_input_from_source, resolve_input_references
from .navigator import find_begin_node, find_next_node, resolve_current_node
from .template import render_template
from .transformer import (
    SSE_DONE,
    error_envelope,
    format_sse_event,
    to_chat_completion,
    to_chat_completion_chunk,
)

__all__ = [
    "extract_user_input_from_messages",
    "get_input_from_source",
    "resolve_input_references",
    "find_begin_node",
    "find_next_node",
    "resolve_current_node",
    "render_template",
    "SSE_DONE",
    "error_envelope",
    "format_sse_event",
    "to_chat_completion",
    "to_chat_completion_chunk",
]
