"""API request/response models."""

from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field

from callhub.models.tool import Tool


# ============================================================================
# Tool Models
# ============================================================================

class ToolResponse(BaseModel):
    """Response model for a tool."""
    id: str
    organization_id: str
    type: str
    name: str
    label: str
    type_label: str
    description: str
    external_tool_id: Optional[str]
    function_schema: Dict[str, Any]
    static_config: Dict[str, Any]
    config_metadata: Dict[str, Any]
    is_async: bool = Field(..., serialization_alias="async")
    execute_on_call_start: bool
    attach_to_agent: bool
    created_at: Optional[str]
    updated_at: Optional[str]

    @classmethod
    def from_tool(cls, tool: Tool) -> "ToolResponse":
        from callhub.services.tool_registry import tool_type_label
        return cls(
            id=tool.id,
            organization_id=tool.organization_id,
            type=tool.type.value,
            name=tool.name,
            label=tool.label,
            type_label=tool_type_label(tool),
            description=tool.description,
            external_tool_id=tool.external_tool_id,
            function_schema=tool.function_schema,
            static_config=tool.static_config,
            config_metadata=tool.config_metadata,
            is_async=tool.is_async,
            execute_on_call_start=tool.execute_on_call_start,
            attach_to_agent=tool.attach_to_agent,
            created_at=tool.created_at.isoformat() if tool.created_at else None,
            updated_at=tool.updated_at.isoformat() if tool.updated_at else None,
        )


class ToolListResponse(BaseModel):
    """Response model for listing tools."""
    items: List[ToolResponse]
    count: int


class ToolPromptResponse(BaseModel):
    """Markdown description of a tool for prompt authors."""
    tool_id: str
    prompt: str


# ============================================================================
# Agent Tool Models
# ============================================================================

class AttachToolRequest(BaseModel):
    """Request model for attaching or detaching a tool."""
    tool_id: str = Field(..., description="Local tool id")


class AttachmentResponse(BaseModel):
    """Response model for attach/detach."""
    agent_id: str
    tool_id: str
    mode: str = Field(..., description="'platform' (assistant tool list) | 'local' (agent_tools row)")
    changed: bool


class AgentToolResponse(BaseModel):
    tool: ToolResponse
    mode: str


class AgentToolsListResponse(BaseModel):
    """Response model for an agent's tools."""
    agent_id: str
    items: List[AgentToolResponse]
    unmanaged_external_tool_ids: List[str] = Field(
        default_factory=list, description="Assistant tool ids with no local record"
    )
    platform_error: Optional[str] = None


# ============================================================================
# Execution Models
# ============================================================================

class ToolExecutionResponse(BaseModel):
    """Response returned to the voice platform's tool callback."""
    success: bool
    result: Any = None
    exports: Optional[Dict[str, Any]] = None
    logs: Optional[List[Any]] = None
    error: Optional[str] = None


class ExecuteStartToolsRequest(BaseModel):
    """Request model for running call-start tools."""
    agentId: str = Field(..., description="Local agent id")
    callerNumber: str = Field(..., description="Number of the person calling")
    calledNumber: str = Field(..., description="Number that was called")
    controlUrl: str = Field(..., description="Live call-control URL")


class ExecuteStartToolsResponse(BaseModel):
    success: bool = True
    callRecordId: str
