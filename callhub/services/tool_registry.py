"""Read-side views over tools: an agent's tools and LLM-facing descriptions."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from callhub.adapters.vapi_client import VapiClient
from callhub.infra.error_handler import ExternalPlatformFailed, NotFound, Unauthorized
from callhub.models.tool import Tool, ToolType
from callhub.services.tool_store import ToolStore

logger = logging.getLogger(__name__)

TOOL_TYPE_LABELS = {
    ToolType.AUTOMATION_ACTION: "Automation Action",
    ToolType.SMS: "SMS",
    ToolType.HTTP_REQUEST: "HTTP Request",
    ToolType.CALL_TRANSFER: "Call Transfer",
    ToolType.KNOWLEDGE_QUERY: "Knowledge Query",
    ToolType.EXTERNAL_APP: "External App",
}


@dataclass
class AgentTool:
    tool: Tool
    mode: str  # "platform" | "local"


@dataclass
class AgentToolListing:
    """
    Tools attached to one agent through either mechanism.

    unmanaged_external_tool_ids holds assistant tool ids with no local
    record (added on the platform directly). platform_error is set when the
    assistant could not be read; the listing then holds local attachments only.
    """
    agent_id: str
    tools: List[AgentTool] = field(default_factory=list)
    unmanaged_external_tool_ids: List[str] = field(default_factory=list)
    platform_error: Optional[str] = None


async def get_agent_tools(
    store: ToolStore,
    platform: VapiClient,
    organization_id: str,
    agent_id: str,
) -> AgentToolListing:
    """
    List an agent's tools from the assistant's tool-id list and local attachments.

    Raises:
        NotFound: Agent does not exist
        Unauthorized: Agent belongs to another organization
    """
    agent = store.get_agent(agent_id)
    if agent is None:
        raise NotFound(f"Agent {agent_id} not found")
    if agent.organization_id != organization_id:
        raise Unauthorized(f"Agent {agent_id} does not belong to this organization")

    listing = AgentToolListing(agent_id=agent.id)

    platform_tool_ids: List[str] = []
    if agent.assistant_id:
        try:
            platform_tool_ids = await platform.get_assistant_tool_ids(agent.assistant_id)
        except ExternalPlatformFailed as e:
            logger.warning(
                f"Could not read assistant {agent.assistant_id}: {e.message}",
                extra={"agent_id": agent.id},
            )
            listing.platform_error = e.message

    local_tool_ids = store.list_local_attachment_tool_ids(agent.id, organization_id)
    tools = store.list_tools_by_ids(organization_id, tool_ids=local_tool_ids, external_tool_ids=platform_tool_ids)

    known_external_ids = set()
    local_ids = set(local_tool_ids)
    for tool in tools:
        if tool.external_tool_id and tool.external_tool_id in platform_tool_ids:
            known_external_ids.add(tool.external_tool_id)
            listing.tools.append(AgentTool(tool=tool, mode="platform"))
        elif tool.id in local_ids:
            listing.tools.append(AgentTool(tool=tool, mode="local"))

    listing.unmanaged_external_tool_ids = [t for t in platform_tool_ids if t not in known_external_ids]
    return listing


def tool_type_label(tool: Tool) -> str:
    """Human-readable type, with app and action names for automation actions."""
    if tool.type == ToolType.AUTOMATION_ACTION:
        action = tool.config_metadata.get("action") or {}
        if action.get("app_name") and action.get("action_name"):
            return f"{action['app_name']} - {action['action_name']}"
    return TOOL_TYPE_LABELS.get(tool.type, tool.type.value)


def format_tool_prompt(tool: Tool) -> str:
    """Render a markdown description of a tool for prompt authors."""
    lines = [f"# Tool: {tool.name}", "", "## Description", tool.description or "No description provided.", ""]

    parameters = (tool.function_schema or {}).get("parameters") or {}
    properties = parameters.get("properties") or {}
    if properties:
        required = set(parameters.get("required") or [])
        lines.append("## Parameters")
        for name, definition in properties.items():
            param_type = definition.get("type", "unknown")
            description = definition.get("description") or "No description provided."
            marker = " (required)" if name in required else ""
            lines.append(f"- **{name}** ({param_type}){marker}: {description}")
        lines.append("")

    return "\n".join(lines)
