from .agent import Agent, PhoneNumber
from .tenant import OrganizationContext
from .tool import (
    ToolType,
    ParameterMode,
    ParameterConfig,
    ActionConfig,
    SenderConfig,
    ToolConfig,
    Tool,
    VariableContext,
    ExecutionErrorKind,
    ToolExecutionResult,
)

__all__ = [
    "Agent",
    "PhoneNumber",
    "OrganizationContext",
    "ToolType",
    "ParameterMode",
    "ParameterConfig",
    "ActionConfig",
    "SenderConfig",
    "ToolConfig",
    "Tool",
    "VariableContext",
    "ExecutionErrorKind",
    "ToolExecutionResult",
]
