"""Tool definition, configuration, and execution models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, Any, List, Optional


class ToolType(str, Enum):
    """Tool variants. Each variant maps to one execution handler."""
    AUTOMATION_ACTION = "automation_action"
    SMS = "sms"
    HTTP_REQUEST = "http_request"
    CALL_TRANSFER = "call_transfer"
    KNOWLEDGE_QUERY = "knowledge_query"
    EXTERNAL_APP = "external_app"


class ParameterMode(str, Enum):
    """Who supplies a parameter's value."""
    AI = "ai"  # visible to the AI, supplied at call time
    FIXED = "fixed"  # organization value, hidden from the AI
    ARRAY_EXTENDABLE = "array_extendable"  # fixed base array the AI may extend


class ParameterConfig(BaseModel):
    """A declared tool parameter."""
    name: str = Field(..., description="Parameter name as the AI and provider see it")
    type: str = Field(default="string", description="JSON Schema type")
    description: str = Field(default="", description="Description shown to the AI")
    required: bool = Field(default=False, description="Whether the AI must supply it")
    mode: ParameterMode = Field(default=ParameterMode.AI)
    value: Any = Field(
        default=None,
        description="Fixed value (fixed mode) or base array (array_extendable mode); may contain {{variables}}"
    )
    items: Optional[Dict[str, Any]] = Field(default=None, description="Item schema for array parameters")
    enum: Optional[List[Any]] = Field(default=None, description="Allowed values")


class ActionConfig(BaseModel):
    """Automation-action binding for automation_action tools."""
    app: Optional[str] = Field(default=None, description="Provider app slug, e.g. 'hubspot'")
    app_name: Optional[str] = Field(default=None, description="App display name")
    app_field_name: Optional[str] = Field(
        default=None,
        description="Prop name the action expects the app auth under; falls back to app"
    )
    action_key: Optional[str] = Field(default=None, description="Provider action key, e.g. 'hubspot-search-crm'")
    action_name: Optional[str] = Field(default=None, description="Action display name")
    account_id: Optional[str] = Field(default=None, description="Connected account id used for auth")


class SenderConfig(BaseModel):
    """Selects the SMS sending number."""
    type: str = Field(..., description="'called_number' | 'specific_number'")
    phone_number_id: Optional[str] = Field(default=None, description="Required for specific_number")


class ToolConfig(BaseModel):
    """Operator-authored tool configuration, the input to the schema builder."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: ToolType
    label: str
    name: Optional[str] = Field(default=None, description="Explicit base name; derived from label when absent")
    description: str = ""
    is_async: bool = Field(default=False, alias="async")
    execute_on_call_start: bool = False
    attach_to_agent: bool = True
    parameters: List[ParameterConfig] = Field(default_factory=list)
    action: Optional[ActionConfig] = None
    preloaded_params: Dict[str, Any] = Field(default_factory=dict)
    sender: Optional[SenderConfig] = None
    destination: Optional[str] = None
    url: Optional[str] = None
    method: Optional[str] = None

    def parameter(self, name: str) -> Optional[ParameterConfig]:
        for param in self.parameters:
            if param.name == name:
                return param
        return None


class Tool(BaseModel):
    """Persisted tool record."""
    id: str
    organization_id: str
    type: ToolType
    name: str
    label: str
    description: str = ""
    function_schema: Dict[str, Any] = Field(default_factory=dict)
    static_config: Dict[str, Any] = Field(default_factory=dict)
    config_metadata: Dict[str, Any] = Field(default_factory=dict, description="Full original configuration")
    external_tool_id: Optional[str] = Field(default=None, description="Tool id on the voice platform")
    platform_data: Optional[Dict[str, Any]] = None
    is_async: bool = False
    execute_on_call_start: bool = False
    attach_to_agent: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class VariableContext:
    """Call-scoped values available for {{variable}} substitution."""
    caller_phone_number: Optional[str] = None
    called_phone_number: Optional[str] = None
    now: Optional[str] = None

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {
            "caller_phone_number": self.caller_phone_number,
            "called_phone_number": self.called_phone_number,
            "now": self.now,
        }


class ExecutionErrorKind(str, Enum):
    """Typed failure kinds returned by the execution engine."""
    NOT_FOUND = "not_found"
    PERSISTENCE_FAILED = "persistence_failed"
    NOT_IMPLEMENTED = "not_implemented"
    CONFIGURATION_ERROR = "configuration_error"
    ACTION_EXECUTION_FAILED = "action_execution_failed"
    MESSAGING_FAILED = "messaging_failed"
    INTERNAL_ERROR = "internal_error"


class ToolExecutionResult(BaseModel):
    """Outcome of a single tool invocation. Errors are values, never raised."""
    success: bool
    result: Any = None
    exports: Optional[Dict[str, Any]] = None
    logs: Optional[List[Any]] = None
    error: Optional[str] = None
    error_kind: Optional[ExecutionErrorKind] = None

    @classmethod
    def ok(cls, result: Any, exports: Optional[Dict[str, Any]] = None, logs: Optional[List[Any]] = None) -> "ToolExecutionResult":
        return cls(success=True, result=result, exports=exports, logs=logs)

    @classmethod
    def fail(cls, kind: ExecutionErrorKind, error: str, result: Any = None) -> "ToolExecutionResult":
        return cls(success=False, error=error, error_kind=kind, result=result)
