"""
Input resolution for nodes that read other nodes' outputs.

Nodes can point at their input three ways: an explicit ``input_source``
(``user_input``, ``generated_text``, ``node:<id>`` or a variable name),
a list of input references mapping ``<source node>.<output>`` onto a
local name, or nothing, in which case the latest user input is used.
"""

from typing import Any, Dict, Iterable, List, Optional

from ..models.flow import InputReference
from ..models.state import FlowState

# Output names that may be satisfied by one of several variables.
OUTPUT_ALIASES: Dict[str, List[str]] = {
    "userInput": ["userInput"],
    "generatedText": ["generatedText", "generatedOutput"],
}


def resolve_input_references(
    input_refs: Iterable[InputReference],
    flow_state: FlowState,
) -> Dict[str, Any]:
    """
    Resolve input references against a flow state.

    Each resolved value is written to ``flow_state.variables`` under the
    reference's ``input_name``. Incomplete or unresolvable references are
    skipped.

    Returns:
        Mapping of input name to resolved value, in reference order
    """
    resolved: Dict[str, Any] = {}
    variables = flow_state.variables

    for ref in input_refs:
        if not (ref.source_node_id and ref.output_name and ref.input_name):
            continue

        value = _lookup_reference(ref, flow_state)
        if value is None:
            continue

        variables[ref.input_name] = value
        resolved[ref.input_name] = value

    return resolved


def _lookup_reference(ref: InputReference, flow_state: FlowState) -> Any:
    variables = flow_state.variables

    qualified = f"{ref.source_node_id}.{ref.output_name}"
    if variables.get(qualified) is not None:
        return variables[qualified]

    component = flow_state.components.get(ref.source_node_id)
    if component and component.get(ref.output_name) is not None:
        return component[ref.output_name]

    if variables.get(ref.output_name) is not None:
        return variables[ref.output_name]

    for alias in OUTPUT_ALIASES.get(ref.output_name, []):
        if variables.get(alias) is not None:
            return variables[alias]

    return None


def get_input_from_source(
    input_source: Optional[str],
    flow_state: FlowState,
) -> Optional[str]:
    """Resolve a named input source to text, or None if it has no value."""
    variables = flow_state.variables
    value: Any = None

    if input_source == "user_input":
        value = variables.get("userInput")
    elif input_source == "generated_text":
        value = variables.get("generatedText") or variables.get("generatedOutput")
    elif input_source and input_source.startswith("node:"):
        node_id = input_source[len("node:"):]
        component = flow_state.components.get(node_id)
        if component:
            value = component.get("output")
        else:
            for key, candidate in variables.items():
                if key.startswith(f"{node_id}."):
                    value = candidate
                    break
    elif input_source:
        value = variables.get(input_source)
    else:
        history_output = flow_state.history[-1].output if flow_state.history else None
        for candidate in (
            variables.get("userInput"),
            variables.get("generatedOutput"),
            variables.get("generatedText"),
            history_output,
        ):
            if candidate:
                value = candidate
                break

    if value is None or value == "":
        return None
    return value if isinstance(value, str) else str(value)


def extract_user_input_from_messages(messages: Iterable[Any]) -> Optional[str]:
    """
    Content of the latest non-empty user message.

    Accepts dicts or objects with ``role`` and ``content`` attributes.
    """
    latest = None
    for message in messages or []:
        if isinstance(message, dict):
            role, content = message.get("role"), message.get("content")
        else:
            role, content = getattr(message, "role", None), getattr(message, "content", None)

        if role == "user" and isinstance(content, str) and content.strip():
            latest = content
    return latest
