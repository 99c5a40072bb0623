"""Agent tools API router (attach, detach, list)."""

from fastapi import APIRouter, Depends, Security

from callhub.adapters.vapi_client import VapiClient
from callhub.api.dependencies import get_lifecycle_manager, get_tool_store, get_vapi_client
from callhub.api.models import (
    AgentToolResponse,
    AgentToolsListResponse,
    AttachToolRequest,
    AttachmentResponse,
    ToolResponse,
)
from callhub.infra.auth import get_organization_context, require_organization_access
from callhub.models.tenant import OrganizationContext
from callhub.services.tool_lifecycle import ToolLifecycleManager
from callhub.services.tool_registry import get_agent_tools
from callhub.services.tool_store import ToolStore

router = APIRouter()


@router.get(
    "/organizations/{organization_id}/agents/{agent_id}/tools",
    tags=["Agent Tools"],
    response_model=AgentToolsListResponse,
)
async def list_agent_tools(
    organization_id: str,
    agent_id: str,
    store: ToolStore = Depends(get_tool_store),
    platform: VapiClient = Depends(get_vapi_client),
    ctx: OrganizationContext = Security(get_organization_context),
):
    """List tools attached to an agent through the assistant tool list or local attachment."""
    require_organization_access(organization_id, ctx)
    listing = await get_agent_tools(store, platform, organization_id, agent_id)
    return AgentToolsListResponse(
        agent_id=listing.agent_id,
        items=[AgentToolResponse(tool=ToolResponse.from_tool(t.tool), mode=t.mode) for t in listing.tools],
        unmanaged_external_tool_ids=listing.unmanaged_external_tool_ids,
        platform_error=listing.platform_error,
    )


@router.post(
    "/organizations/{organization_id}/agents/{agent_id}/tools/attach",
    tags=["Agent Tools"],
    response_model=AttachmentResponse,
)
async def attach_tool(
    organization_id: str,
    agent_id: str,
    request: AttachToolRequest,
    manager: ToolLifecycleManager = Depends(get_lifecycle_manager),
    ctx: OrganizationContext = Security(get_organization_context),
):
    """
    Attach a tool to an agent.

    Attachable tools are added to the assistant's tool list on the voice
    platform. Call-start-only tools get a local attachment. Attaching the
    same pair twice returns 409.
    """
    require_organization_access(organization_id, ctx)
    change = await manager.attach_tool(organization_id, agent_id, request.tool_id)
    return AttachmentResponse(**change.__dict__)


@router.post(
    "/organizations/{organization_id}/agents/{agent_id}/tools/detach",
    tags=["Agent Tools"],
    response_model=AttachmentResponse,
)
async def detach_tool(
    organization_id: str,
    agent_id: str,
    request: AttachToolRequest,
    manager: ToolLifecycleManager = Depends(get_lifecycle_manager),
    ctx: OrganizationContext = Security(get_organization_context),
):
    """Detach a tool from an agent. `changed` is false when it was not attached."""
    require_organization_access(organization_id, ctx)
    change = await manager.detach_tool(organization_id, agent_id, request.tool_id)
    return AttachmentResponse(**change.__dict__)
