"""
Template processing for node prompts and greetings.

Supports ``{{variable}}`` and ``$variable`` placeholders. Dotted names
(``{{categorization.result}}``) walk into nested dicts.
"""

import json
import re
from typing import Any, Dict, List

PLACEHOLDER_PATTERN = re.compile(r"(\{\{([^}]+)\}\})|(\$([a-zA-Z0-9_]+))")

_MISSING = object()


def render_template(template: str, variables: Dict[str, Any]) -> str:
    """
    Substitute placeholders in a template.

    Known names with a None value render as an empty string; unknown names
    are left untouched.
    """
    if not template:
        return ""

    def replacer(match: re.Match) -> str:
        name = (match.group(2) or match.group(4)).strip()
        value = _lookup_variable(name, variables)

        if value is _MISSING:
            return match.group(0)
        return _to_text(value)

    return PLACEHOLDER_PATTERN.sub(replacer, template)


def _lookup_variable(name: str, variables: Dict[str, Any]) -> Any:
    if name in variables:
        return variables[name]

    path: List[str] = name.split(".")
    if len(path) == 1:
        return _MISSING

    value: Any = variables
    for key in path:
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return _MISSING
    return value


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
