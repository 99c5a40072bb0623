"""Runtime variable substitution for organization-authored tool templates.

Static tool configuration may contain ``{{variable}}`` placeholders that are
resolved per call. Substitution only ever touches strings; every other value
passes through unchanged.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

from callhub.models.tool import VariableContext

VARIABLE_PATTERN = re.compile(r"\{\{(\w+)\}\}")


@dataclass(frozen=True)
class ToolVariable:
    """A variable operators can reference in static tool configuration."""
    name: str
    display_name: str
    description: str
    example: str


TOOL_VARIABLES: Dict[str, ToolVariable] = {
    "caller_phone_number": ToolVariable(
        name="caller_phone_number",
        display_name="Caller Phone Number",
        description="Phone number of the person calling",
        example="+15551234567",
    ),
    "called_phone_number": ToolVariable(
        name="called_phone_number",
        display_name="Called Phone Number",
        description="Phone number that was called (the agent's number)",
        example="+15559876543",
    ),
    "now": ToolVariable(
        name="now",
        display_name="Current Time",
        description="Current date and time in ISO 8601 (UTC)",
        example="2025-01-15T14:30:00+00:00",
    ),
}

ContextLike = Union[VariableContext, Mapping[str, Optional[str]]]


def get_variable(name: str) -> Optional[ToolVariable]:
    return TOOL_VARIABLES.get(name)


def get_all_variables() -> List[ToolVariable]:
    return list(TOOL_VARIABLES.values())


def detect_variables(text: str) -> List[str]:
    """Return the known variable names referenced in text, in order, without duplicates."""
    if not isinstance(text, str):
        return []
    found = []
    for match in VARIABLE_PATTERN.finditer(text):
        name = match.group(1)
        if name in TOOL_VARIABLES and name not in found:
            found.append(name)
    return found


def has_variables(text: str) -> bool:
    return bool(detect_variables(text))


def _context_dict(context: ContextLike) -> Dict[str, Optional[str]]:
    if isinstance(context, VariableContext):
        return context.as_dict()
    return dict(context or {})


def substitute_variables(text: str, context: ContextLike) -> str:
    """
    Replace known ``{{variable}}`` placeholders in a string.

    Unknown placeholders, and known ones whose context value is None, are
    left verbatim. ``{{now}}`` falls back to the current UTC time.

    Args:
        text: Template string
        context: VariableContext or mapping of variable name to value

    Returns:
        The substituted string
    """
    if not isinstance(text, str) or "{{" not in text:
        return text

    values = _context_dict(context)
    if not values.get("now"):
        values["now"] = datetime.now(timezone.utc).isoformat()

    def _replace(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name not in TOOL_VARIABLES:
            return match.group(0)
        value = values.get(name)
        if value is None:
            return match.group(0)
        return str(value)

    return VARIABLE_PATTERN.sub(_replace, text)


def substitute_variables_in_value(value: Any, context: ContextLike) -> Any:
    """Recursively substitute placeholders inside strings, lists, and dicts."""
    if isinstance(value, str):
        return substitute_variables(value, context)
    if isinstance(value, list):
        return [substitute_variables_in_value(item, context) for item in value]
    if isinstance(value, dict):
        return {key: substitute_variables_in_value(item, context) for key, item in value.items()}
    return value
