"""Tools API router (organization-scoped tool management)."""

from typing import Any, Dict
from fastapi import APIRouter, Body, Depends, Security, status

from callhub.api.dependencies import get_lifecycle_manager
from callhub.api.models import ToolListResponse, ToolPromptResponse, ToolResponse
from callhub.infra.auth import get_organization_context, require_organization_access
from callhub.models.tenant import OrganizationContext
from callhub.services.tool_lifecycle import ToolLifecycleManager
from callhub.services.tool_registry import format_tool_prompt

router = APIRouter()


@router.post(
    "/organizations/{organization_id}/tools",
    tags=["Tools"],
    response_model=ToolResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_tool(
    organization_id: str,
    tool_config: Dict[str, Any] = Body(...),
    manager: ToolLifecycleManager = Depends(get_lifecycle_manager),
    ctx: OrganizationContext = Security(get_organization_context),
):
    """
    Create a tool.

    Attachable tools (`attach_to_agent: true`, the default) are also created
    on the voice platform with a callback to `/api/tools/{id}/execute`. If the
    local insert fails, the platform tool is deleted again.

    **Example Request:**
    ```json
    {
        "type": "sms",
        "label": "Text Caller Confirmation",
        "parameters": [
            {"name": "text", "mode": "fixed", "value": "Thanks for calling! Your number: {{caller_phone_number}}"},
            {"name": "recipients", "type": "array", "mode": "fixed", "value": ["{{caller_phone_number}}"]}
        ],
        "sender": {"type": "called_number"}
    }
    ```
    """
    require_organization_access(organization_id, ctx)
    tool = await manager.create_tool(organization_id, tool_config)
    return ToolResponse.from_tool(tool)


@router.get("/organizations/{organization_id}/tools", tags=["Tools"], response_model=ToolListResponse)
async def list_tools(
    organization_id: str,
    manager: ToolLifecycleManager = Depends(get_lifecycle_manager),
    ctx: OrganizationContext = Security(get_organization_context),
):
    """List an organization's tools, newest first."""
    require_organization_access(organization_id, ctx)
    tools = manager.list_tools(organization_id)
    return ToolListResponse(items=[ToolResponse.from_tool(t) for t in tools], count=len(tools))


@router.get("/organizations/{organization_id}/tools/{tool_id}", tags=["Tools"], response_model=ToolResponse)
async def get_tool(
    organization_id: str,
    tool_id: str,
    manager: ToolLifecycleManager = Depends(get_lifecycle_manager),
    ctx: OrganizationContext = Security(get_organization_context),
):
    """Get a tool by id."""
    require_organization_access(organization_id, ctx)
    return ToolResponse.from_tool(manager.get_tool(organization_id, tool_id))


@router.patch("/organizations/{organization_id}/tools/{tool_id}", tags=["Tools"], response_model=ToolResponse)
async def update_tool(
    organization_id: str,
    tool_id: str,
    tool_config: Dict[str, Any] = Body(...),
    manager: ToolLifecycleManager = Depends(get_lifecycle_manager),
    ctx: OrganizationContext = Security(get_organization_context),
):
    """
    Replace a tool's configuration.

    Switching `attach_to_agent` creates or removes the tool on the voice
    platform. Platform failures (502) leave the tool unchanged and can be
    retried.
    """
    require_organization_access(organization_id, ctx)
    tool = await manager.update_tool(organization_id, tool_id, tool_config)
    return ToolResponse.from_tool(tool)


@router.delete(
    "/organizations/{organization_id}/tools/{tool_id}",
    tags=["Tools"],
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_tool(
    organization_id: str,
    tool_id: str,
    manager: ToolLifecycleManager = Depends(get_lifecycle_manager),
    ctx: OrganizationContext = Security(get_organization_context),
):
    """Delete a tool from every assistant, the voice platform, and the local store. Safe to retry."""
    require_organization_access(organization_id, ctx)
    await manager.delete_tool(organization_id, tool_id)


@router.get(
    "/organizations/{organization_id}/tools/{tool_id}/llm-prompt",
    tags=["Tools"],
    response_model=ToolPromptResponse,
)
async def get_tool_prompt(
    organization_id: str,
    tool_id: str,
    manager: ToolLifecycleManager = Depends(get_lifecycle_manager),
    ctx: OrganizationContext = Security(get_organization_context),
):
    """Markdown description of the tool for use in agent prompts."""
    require_organization_access(organization_id, ctx)
    tool = manager.get_tool(organization_id, tool_id)
    return ToolPromptResponse(tool_id=tool.id, prompt=format_tool_prompt(tool))
