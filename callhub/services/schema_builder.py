"""Derive AI-facing schemas, static config, and names from a tool configuration."""

import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from callhub.infra.config import config as app_config
from callhub.infra.error_handler import NameConflict
from callhub.models.tool import ParameterMode, ToolConfig, ToolType

logger = logging.getLogger(__name__)

# Platform function names are capped at 64; leave room for a numeric suffix
MAX_TOOL_NAME_LENGTH = 60

SENDER_TYPES = ("called_number", "specific_number")
SMS_TEXT_PARAM = "text"
SMS_RECIPIENTS_PARAM = "recipients"
PLACEHOLDER_PROPERTY = "_dummy"

_PARAM_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass
class ValidationResult:
    """Outcome of validate_tool_config. config is set only when valid."""
    valid: bool
    errors: List[str] = field(default_factory=list)
    config: Optional[ToolConfig] = None


def generate_tool_name(label: str) -> str:
    """
    Normalize a label to a machine-safe tool name.

    "Lookup Contact (CRM)" -> "lookup_contact_crm"
    """
    name = re.sub(r"[^a-z0-9]+", "_", (label or "").lower()).strip("_")
    if not name:
        name = "tool"
    if name[0].isdigit():
        name = f"tool_{name}"
    return name[:MAX_TOOL_NAME_LENGTH].rstrip("_")


def resolve_unique_name(
    base_name: str,
    name_exists: Callable[[str], bool],
    max_attempts: Optional[int] = None,
) -> str:
    """
    Find a name not yet used in the organization.

    Tries base_name, then base_name_2, base_name_3, ...

    Args:
        base_name: Normalized base name
        name_exists: Lookup returning True when a name is taken
        max_attempts: Candidates to try before giving up

    Returns:
        The first free candidate

    Raises:
        NameConflict: If every candidate is taken
    """
    attempts = max_attempts or app_config.MAX_NAME_ATTEMPTS
    candidate = base_name
    for attempt in range(1, attempts + 1):
        if attempt > 1:
            candidate = f"{base_name}_{attempt}"
        if not name_exists(candidate):
            return candidate
    raise NameConflict(f"Could not find a free name for '{base_name}' after {attempts} attempts")


def validate_tool_config(raw: Any) -> ValidationResult:
    """
    Validate a raw tool configuration.

    Checks structure (type discriminator, label, parameter shape) and the
    per-type required fields.

    Args:
        raw: JSON-decoded configuration object

    Returns:
        ValidationResult with every problem found
    """
    if not isinstance(raw, dict):
        return ValidationResult(valid=False, errors=["Tool configuration must be an object"])

    errors: List[str] = []
    tool_type = raw.get("type")
    if not tool_type:
        errors.append("type is required")
    elif tool_type not in {t.value for t in ToolType}:
        errors.append(f"Unknown tool type '{tool_type}'")
    if not str(raw.get("label") or "").strip():
        errors.append("label is required")
    if errors:
        return ValidationResult(valid=False, errors=errors)

    try:
        tool_config = ToolConfig.model_validate(raw)
    except PydanticValidationError as e:
        for err in e.errors():
            location = ".".join(str(part) for part in err["loc"])
            errors.append(f"{location}: {err['msg']}")
        return ValidationResult(valid=False, errors=errors)

    if not tool_config.attach_to_agent and not tool_config.execute_on_call_start:
        errors.append("Tools not attached to the agent must run on call start (execute_on_call_start)")

    seen = set()
    for param in tool_config.parameters:
        if not _PARAM_NAME_PATTERN.match(param.name):
            errors.append(f"Invalid parameter name '{param.name}'")
        if param.name in seen:
            errors.append(f"Duplicate parameter '{param.name}'")
        seen.add(param.name)
        if param.name == PLACEHOLDER_PROPERTY:
            errors.append(f"Parameter name '{PLACEHOLDER_PROPERTY}' is reserved")
        if param.mode == ParameterMode.FIXED and param.value is None:
            errors.append(f"Fixed parameter '{param.name}' requires a value")
        if param.mode == ParameterMode.ARRAY_EXTENDABLE and not isinstance(param.value, list):
            errors.append(f"Extendable parameter '{param.name}' requires a base array value")

    errors.extend(_validate_type_fields(tool_config))
    if errors:
        return ValidationResult(valid=False, errors=errors)
    return ValidationResult(valid=True, config=tool_config)


def _validate_type_fields(tool_config: ToolConfig) -> List[str]:
    errors = []
    if tool_config.type == ToolType.AUTOMATION_ACTION:
        if not tool_config.action or not tool_config.action.action_key:
            errors.append("automation_action tools require action.action_key")
    elif tool_config.type == ToolType.SMS:
        sender = tool_config.sender
        if sender is None:
            errors.append("sms tools require a sender")
        elif sender.type not in SENDER_TYPES:
            errors.append(f"sender.type must be one of {', '.join(SENDER_TYPES)}")
        elif sender.type == "specific_number" and not sender.phone_number_id:
            errors.append("sender.phone_number_id is required for specific_number")
        if tool_config.parameter(SMS_TEXT_PARAM) is None:
            errors.append("sms tools require a 'text' parameter")
        if tool_config.parameter(SMS_RECIPIENTS_PARAM) is None:
            errors.append("sms tools require a 'recipients' parameter")
    elif tool_config.type == ToolType.CALL_TRANSFER:
        if not tool_config.destination:
            errors.append("call_transfer tools require a destination")
    elif tool_config.type == ToolType.HTTP_REQUEST:
        if not tool_config.url:
            errors.append("http_request tools require a url")
    return errors


def build_function_schema(tool_config: ToolConfig, name: Optional[str] = None) -> Dict[str, Any]:
    """
    Build the function schema the AI sees.

    Fixed parameters are left out. Extendable parameters are included so the
    AI can add items; their base array stays in the static config.

    Args:
        tool_config: Validated tool configuration
        name: Resolved unique tool name

    Returns:
        {"name", "description", "parameters": JSON Schema object}
    """
    properties: Dict[str, Any] = {}
    required: List[str] = []

    for param in tool_config.parameters:
        if param.mode == ParameterMode.FIXED:
            continue

        prop: Dict[str, Any] = {"type": param.type}
        description = param.description
        if param.mode == ParameterMode.ARRAY_EXTENDABLE:
            prop["type"] = "array"
            description = f"{description} Items are added to a preset list.".strip()
        if description:
            prop["description"] = description
        if prop["type"] == "array":
            prop["items"] = copy.deepcopy(param.items) if param.items else {"type": "string"}
        if param.enum:
            prop["enum"] = list(param.enum)
        properties[param.name] = prop

        # Extendable params already carry a base list
        if param.required and param.mode == ParameterMode.AI:
            required.append(param.name)

    return {
        "name": name or tool_config.name or generate_tool_name(tool_config.label),
        "description": tool_config.description or tool_config.label,
        "parameters": {
            "type": "object",
            "properties": properties,
            "required": required,
        },
    }


def build_static_config(tool_config: ToolConfig) -> Dict[str, Any]:
    """
    Build the organization-fixed values hidden from the AI.

    Placeholders such as {{caller_phone_number}} are kept verbatim; they are
    resolved per call by the execution engine.
    """
    if tool_config.type == ToolType.SMS:
        return _build_sms_static_config(tool_config)

    static: Dict[str, Any] = {
        "params": {
            param.name: copy.deepcopy(param.value)
            for param in tool_config.parameters
            if param.mode == ParameterMode.FIXED
        }
    }
    extendable = {
        param.name: copy.deepcopy(param.value)
        for param in tool_config.parameters
        if param.mode == ParameterMode.ARRAY_EXTENDABLE
    }
    if extendable:
        static["extendableParams"] = extendable
    if tool_config.preloaded_params:
        static["preloadedParams"] = copy.deepcopy(tool_config.preloaded_params)
    if tool_config.destination:
        static["destination"] = tool_config.destination
    if tool_config.url:
        static["url"] = tool_config.url
        static["method"] = (tool_config.method or "POST").upper()
    return static


def _build_sms_static_config(tool_config: ToolConfig) -> Dict[str, Any]:
    static: Dict[str, Any] = {}

    text_param = tool_config.parameter(SMS_TEXT_PARAM)
    if text_param is not None and text_param.mode == ParameterMode.FIXED:
        static["text"] = text_param.value

    recipients_param = tool_config.parameter(SMS_RECIPIENTS_PARAM)
    if recipients_param is not None:
        value = recipients_param.value
        if isinstance(value, str):
            value = [value]
        if recipients_param.mode == ParameterMode.FIXED:
            static["recipients"] = list(value or [])
        elif recipients_param.mode == ParameterMode.ARRAY_EXTENDABLE:
            static["recipientsBase"] = list(value or [])

    if tool_config.sender is not None:
        static["from"] = tool_config.sender.model_dump(exclude_none=True)
    return static


def build_platform_tool(
    tool_id: str,
    function_schema: Dict[str, Any],
    is_async: bool = False,
    base_url: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build the voice platform representation of a tool.

    Every tool is an apiRequest tool whose callback URL embeds the local tool
    id. The platform requires at least one body property, so a placeholder
    property is added when the AI has nothing to supply.

    Args:
        tool_id: Local tool id (generated before the platform call)
        function_schema: Output of build_function_schema
        is_async: Whether the platform should not wait for the response
        base_url: Public base URL of this service

    Returns:
        Create-tool payload for the platform
    """
    base = (base_url or app_config.APP_BASE_URL).rstrip("/")
    parameters = function_schema.get("parameters") or {"type": "object", "properties": {}}

    body_properties = {}
    for key, prop in (parameters.get("properties") or {}).items():
        body_prop = dict(prop)
        if body_prop.get("default") is not None:
            body_prop["default"] = str(body_prop["default"])
        body_properties[key] = body_prop

    if not body_properties:
        body_properties[PLACEHOLDER_PROPERTY] = {
            "type": "string",
            "description": "Internal field - not used",
            "default": "",
        }

    payload: Dict[str, Any] = {
        "type": "apiRequest",
        "name": function_schema["name"],
        "function": {
            "name": function_schema["name"],
            "description": function_schema.get("description", ""),
            "parameters": parameters,
        },
        "messages": [],
        "url": f"{base}/api/tools/{tool_id}/execute",
        "method": "POST",
        "body": {
            "type": "object",
            "required": list(parameters.get("required") or []),
            "properties": body_properties,
        },
        "variableExtractionPlan": {
            "schema": {
                "type": "object",
                "required": ["success"],
                "properties": {
                    "success": {"type": "boolean", "description": "Whether the tool executed successfully"},
                    "result": {"type": "object", "description": "The result returned by the tool"},
                    "message": {"type": "string", "description": "A message describing what happened"},
                    "error": {"type": "string", "description": "Error message if the tool failed"},
                },
            },
            "aliases": [],
        },
    }
    if is_async:
        payload["async"] = True
    return payload


def build_platform_tool_update(
    tool_id: str,
    function_schema: Dict[str, Any],
    is_async: bool = False,
    base_url: Optional[str] = None,
) -> Dict[str, Any]:
    """Same as build_platform_tool without the immutable type field."""
    payload = build_platform_tool(tool_id, function_schema, is_async=is_async, base_url=base_url)
    payload.pop("type", None)
    return payload
