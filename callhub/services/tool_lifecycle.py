"""Tool lifecycle: keep the local store and the voice platform consistent.

Every operation is a saga. Platform mutations come first and carry a
compensating action; the local write comes last. A failure part-way runs
the compensations in reverse and surfaces a typed error.

404 from the platform counts as "already done" only while removing things
(delete, detach, and the external delete of an attach_to_agent true -> false
update). Everywhere else it is a failure.
"""

import functools
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from callhub.adapters.vapi_client import VapiClient
from callhub.infra.config import config
from callhub.infra.error_handler import (
    AlreadyAttached,
    ExternalCreateFailed,
    ExternalDeleteFailed,
    ExternalPlatformFailed,
    ExternalUpdateFailed,
    InvalidAttachmentMode,
    LocalPersistFailed,
    NotFound,
    PersistenceFailed,
    Unauthorized,
    ValidationFailed,
    wrap_platform_error,
)
from callhub.infra.metrics import tool_lifecycle_operations_total
from callhub.models.agent import Agent
from callhub.models.tool import Tool, ToolConfig
from callhub.services.saga import Saga
from callhub.services.schema_builder import (
    build_function_schema,
    build_platform_tool,
    build_platform_tool_update,
    build_static_config,
    generate_tool_name,
    resolve_unique_name,
    validate_tool_config,
)
from callhub.services.tool_store import ToolStore

logger = logging.getLogger(__name__)

ATTACHMENT_PLATFORM = "platform"
ATTACHMENT_LOCAL = "local"


@dataclass
class AttachmentChange:
    """Result of an attach or detach."""
    agent_id: str
    tool_id: str
    mode: str  # "platform" | "local"
    changed: bool


def _tracked(operation: str):
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                result = await func(*args, **kwargs)
            except Exception:
                tool_lifecycle_operations_total.labels(operation=operation, status="failure").inc()
                raise
            tool_lifecycle_operations_total.labels(operation=operation, status="success").inc()
            return result
        return wrapper
    return decorator


class ToolLifecycleManager:
    """Create, update, delete, attach, and detach tools across both systems."""

    def __init__(self, store: ToolStore, platform: VapiClient, base_url: Optional[str] = None):
        self.store = store
        self.platform = platform
        self.base_url = base_url or config.APP_BASE_URL

    # Reads

    def get_tool(self, organization_id: str, tool_id: str) -> Tool:
        return self._load_owned_tool(organization_id, tool_id)

    def list_tools(self, organization_id: str) -> List[Tool]:
        return self.store.list_tools(organization_id)

    # Create

    @_tracked("create")
    async def create_tool(self, organization_id: str, raw_config: Dict[str, Any]) -> Tool:
        """
        Create a tool locally and, when attachable, on the voice platform.

        Args:
            organization_id: Owning organization
            raw_config: Operator-authored tool configuration

        Returns:
            The persisted Tool

        Raises:
            ValidationFailed: Invalid configuration
            NameConflict: No free name within the attempt limit
            ExternalCreateFailed: Platform refused the tool; nothing persisted
            LocalPersistFailed: Local insert failed; platform tool rolled back
        """
        tool_config = self._validate(raw_config)
        name = resolve_unique_name(
            generate_tool_name(tool_config.name or tool_config.label),
            lambda candidate: self.store.name_exists(organization_id, candidate),
        )

        tool = Tool(
            id=str(uuid.uuid4()),
            organization_id=organization_id,
            type=tool_config.type,
            name=name,
            label=tool_config.label,
            description=tool_config.description,
            function_schema=build_function_schema(tool_config, name),
            static_config=build_static_config(tool_config),
            config_metadata=_config_metadata(tool_config),
            is_async=tool_config.is_async,
            execute_on_call_start=tool_config.execute_on_call_start,
            attach_to_agent=tool_config.attach_to_agent,
        )

        saga = Saga("create_tool")
        if tool.attach_to_agent:
            saga.add_step(
                "platform_tool",
                lambda state: self._create_platform_tool(tool, ExternalCreateFailed),
                compensation=lambda state: self._delete_platform_tool(
                    state["platform_tool"]["id"], tolerate_missing=True
                ),
            )
        saga.add_step("local_tool", lambda state: self._persist(self.store.insert_tool, _with_platform(tool, state)))

        state = await saga.run()
        created = state["local_tool"]
        logger.info(
            f"Created tool {created.name}",
            extra={
                "organization_id": organization_id,
                "tool_id": created.id,
                "external_tool_id": created.external_tool_id,
                "tool_type": created.type.value,
            },
        )
        return created

    # Update

    @_tracked("update")
    async def update_tool(self, organization_id: str, tool_id: str, raw_config: Dict[str, Any]) -> Tool:
        """
        Update a tool, moving it on or off the voice platform as attach_to_agent changes.

        The platform is changed first; the local record last. A platform
        failure leaves both systems at the pre-update state.

        Raises:
            NotFound, Unauthorized, ValidationFailed
            ExternalUpdateFailed: Platform step failed (retryable)
            LocalPersistFailed: Local write failed after compensation
        """
        existing = self._load_owned_tool(organization_id, tool_id)
        tool_config = self._validate(raw_config)
        if tool_config.type != existing.type:
            raise ValidationFailed("Tool type cannot be changed")

        name = existing.name
        requested_base = generate_tool_name(tool_config.name or tool_config.label)
        if tool_config.label != existing.label or (tool_config.name and requested_base != existing.name):
            name = resolve_unique_name(
                requested_base,
                lambda candidate: self.store.name_exists(organization_id, candidate, exclude_tool_id=existing.id),
            )

        updated = existing.model_copy(update={
            "name": name,
            "label": tool_config.label,
            "description": tool_config.description,
            "function_schema": build_function_schema(tool_config, name),
            "static_config": build_static_config(tool_config),
            "config_metadata": _config_metadata(tool_config),
            "is_async": tool_config.is_async,
            "execute_on_call_start": tool_config.execute_on_call_start,
            "attach_to_agent": tool_config.attach_to_agent,
        })

        saga = Saga("update_tool")
        was_attached = existing.attach_to_agent
        now_attached = updated.attach_to_agent
        local_compensation = None
        after_local = []

        if now_attached and (not was_attached or not existing.external_tool_id):
            # false -> true, or a true tool that lost its platform representation
            if was_attached:
                logger.warning(
                    f"Tool {existing.id} has no platform representation, recreating it",
                    extra={"organization_id": organization_id, "tool_id": existing.id},
                )
            saga.add_step(
                "platform_tool",
                lambda state: self._create_platform_tool(updated, ExternalUpdateFailed),
                compensation=lambda state: self._delete_platform_tool(
                    state["platform_tool"]["id"], tolerate_missing=True
                ),
            )
        elif was_attached and not now_attached:
            external_id = existing.external_tool_id
            if external_id:
                saga.add_step(
                    "platform_detach",
                    lambda state: self._detach_everywhere(organization_id, external_id, state),
                    compensation=lambda state: self._restore_to_assistants(
                        external_id, state.get("detached_assistants", [])
                    ),
                )
                # Platform delete has no compensation; it runs after the local write
                local_compensation = lambda state: self._persist(self.store.update_tool, existing)
                after_local.append((
                    "platform_delete",
                    lambda state: self._delete_platform_tool(external_id, tolerate_missing=True),
                ))
            updated = updated.model_copy(update={"external_tool_id": None, "platform_data": None})
        elif was_attached and now_attached:
            saga.add_step(
                "platform_update",
                lambda state: self._update_platform_tool(updated),
                compensation=lambda state: self._update_platform_tool(existing),
            )

        saga.add_step(
            "local_tool",
            lambda state: self._persist(self.store.update_tool, _with_platform(updated, state)),
            compensation=local_compensation,
        )
        for name, action in after_local:
            saga.add_step(name, action)

        state = await saga.run()
        logger.info(
            f"Updated tool {updated.name}",
            extra={
                "organization_id": organization_id,
                "tool_id": existing.id,
                "attach_to_agent": f"{was_attached}->{now_attached}",
            },
        )
        return state["local_tool"]

    # Delete

    @_tracked("delete")
    async def delete_tool(self, organization_id: str, tool_id: str) -> None:
        """
        Delete a tool everywhere.

        Order: remove from every assistant's tool list (one write per agent),
        drop local attachments, delete the platform tool, delete the local
        record. Platform 404s count as done; any other platform failure stops
        before the local record goes, so a retry converges.

        Raises:
            NotFound, Unauthorized
            ExternalDeleteFailed: Non-404 platform failure
            PersistenceFailed: Local delete failed (safe to retry)
        """
        tool = self._load_owned_tool(organization_id, tool_id)

        saga = Saga("delete_tool")
        if tool.external_tool_id:
            saga.add_step(
                "platform_detach",
                lambda state: self._remove_from_all_assistants(organization_id, tool.external_tool_id),
            )
        saga.add_step(
            "local_detach",
            lambda state: self.store.delete_local_attachments_for_tool(tool.id, organization_id),
        )
        if tool.external_tool_id:
            saga.add_step(
                "platform_delete",
                lambda state: self._delete_platform_tool(tool.external_tool_id, tolerate_missing=True),
            )
        saga.add_step("local_delete", lambda state: self.store.delete_tool(tool.id, organization_id))

        await saga.run()
        logger.info(
            f"Deleted tool {tool.name}",
            extra={"organization_id": organization_id, "tool_id": tool.id},
        )

    # Attach / detach

    @_tracked("attach")
    async def attach_tool(self, organization_id: str, agent_id: str, tool_id: str) -> AttachmentChange:
        """
        Attach a tool to an agent through the mechanism its attach_to_agent flag selects.

        Raises:
            NotFound, Unauthorized
            AlreadyAttached: Pair is attached through either mechanism
            InvalidAttachmentMode: Tool cannot be attached in its mode
            ValidationFailed: Agent is not on the voice platform
            ExternalUpdateFailed: Assistant read or write failed
        """
        tool = self._load_owned_tool(organization_id, tool_id)
        agent = self._load_owned_agent(organization_id, agent_id)

        if self.store.has_local_attachment(agent.id, tool.id, organization_id):
            raise AlreadyAttached(f"Tool {tool.name} is already attached to agent {agent.name}")

        if tool.attach_to_agent:
            if not tool.external_tool_id:
                raise InvalidAttachmentMode(
                    f"Tool {tool.name} has no platform representation; update the tool to repair it"
                )
            if not agent.assistant_id:
                raise ValidationFailed(f"Agent {agent.name} is not deployed to the voice platform")

            external_id = tool.external_tool_id

            def _append(tool_ids: List[str]) -> List[str]:
                if external_id in tool_ids:
                    raise AlreadyAttached(f"Tool {tool.name} is already attached to agent {agent.name}")
                return tool_ids + [external_id]

            await self._modify_assistant(agent.assistant_id, _append)
            mode = ATTACHMENT_PLATFORM
        else:
            if not tool.execute_on_call_start:
                raise InvalidAttachmentMode(
                    f"Tool {tool.name} is not attachable and does not run on call start"
                )
            self._persist(self.store.insert_local_attachment, agent.id, tool.id, organization_id)
            mode = ATTACHMENT_LOCAL

        logger.info(
            f"Attached tool {tool.name} to agent {agent.name}",
            extra={"organization_id": organization_id, "tool_id": tool.id, "agent_id": agent.id, "mode": mode},
        )
        return AttachmentChange(agent_id=agent.id, tool_id=tool.id, mode=mode, changed=True)

    @_tracked("detach")
    async def detach_tool(self, organization_id: str, agent_id: str, tool_id: str) -> AttachmentChange:
        """
        Detach a tool from an agent. Detaching something not attached is a no-op.

        Raises:
            NotFound, Unauthorized
            ExternalUpdateFailed: Non-404 assistant read or write failure
        """
        tool = self._load_owned_tool(organization_id, tool_id)
        agent = self._load_owned_agent(organization_id, agent_id)

        changed = False
        if tool.attach_to_agent and tool.external_tool_id and agent.assistant_id:
            remove = _RemoveToolId(tool.external_tool_id)
            try:
                await self.platform.modify_assistant_tool_ids(agent.assistant_id, remove)
                changed = remove.removed
            except ExternalPlatformFailed as e:
                if not e.is_not_found:
                    raise wrap_platform_error(e, "detach_tool", ExternalUpdateFailed) from e
                logger.info(
                    f"Assistant {agent.assistant_id} not found, treating detach as done",
                    extra={"agent_id": agent.id, "tool_id": tool.id},
                )
            mode = ATTACHMENT_PLATFORM
        else:
            mode = ATTACHMENT_LOCAL

        # Local rows are removed in either mode so stray rows cannot linger
        if self.store.delete_local_attachment(agent.id, tool.id, organization_id):
            changed = True

        logger.info(
            f"Detached tool {tool.name} from agent {agent.name}",
            extra={
                "organization_id": organization_id,
                "tool_id": tool.id,
                "agent_id": agent.id,
                "mode": mode,
                "changed": changed,
            },
        )
        return AttachmentChange(agent_id=agent.id, tool_id=tool.id, mode=mode, changed=changed)

    # Helpers

    def _validate(self, raw_config: Dict[str, Any]) -> ToolConfig:
        result = validate_tool_config(raw_config)
        if not result.valid:
            raise ValidationFailed("Invalid tool configuration: " + "; ".join(result.errors), errors=result.errors)
        return result.config

    def _load_owned_tool(self, organization_id: str, tool_id: str) -> Tool:
        tool = self.store.get_tool(tool_id)
        if tool is None:
            raise NotFound(f"Tool {tool_id} not found")
        if tool.organization_id != organization_id:
            raise Unauthorized(f"Tool {tool_id} does not belong to this organization")
        return tool

    def _load_owned_agent(self, organization_id: str, agent_id: str) -> Agent:
        agent = self.store.get_agent(agent_id)
        if agent is None:
            raise NotFound(f"Agent {agent_id} not found")
        if agent.organization_id != organization_id:
            raise Unauthorized(f"Agent {agent_id} does not belong to this organization")
        return agent

    @staticmethod
    def _persist(write, *args):
        try:
            return write(*args)
        except PersistenceFailed as e:
            raise LocalPersistFailed(e.message) from e

    async def _create_platform_tool(self, tool: Tool, error_class: type) -> Dict[str, Any]:
        payload = build_platform_tool(tool.id, tool.function_schema, is_async=tool.is_async, base_url=self.base_url)
        try:
            created = await self.platform.create_tool(payload)
        except ExternalPlatformFailed as e:
            raise wrap_platform_error(e, "create_tool", error_class) from e
        if not created or not created.get("id"):
            raise error_class("Platform did not return a tool id")
        return created

    async def _update_platform_tool(self, tool: Tool) -> Dict[str, Any]:
        payload = build_platform_tool_update(
            tool.id, tool.function_schema, is_async=tool.is_async, base_url=self.base_url
        )
        try:
            return await self.platform.update_tool(tool.external_tool_id, payload)
        except ExternalPlatformFailed as e:
            raise wrap_platform_error(e, "update_tool", ExternalUpdateFailed) from e

    async def _delete_platform_tool(self, external_tool_id: str, tolerate_missing: bool) -> None:
        try:
            await self.platform.delete_tool(external_tool_id)
        except ExternalPlatformFailed as e:
            if tolerate_missing and e.is_not_found:
                logger.info(
                    f"Platform tool {external_tool_id} already gone",
                    extra={"external_tool_id": external_tool_id},
                )
                return
            raise wrap_platform_error(e, "delete_tool", ExternalDeleteFailed) from e

    async def _modify_assistant(self, assistant_id: str, modify) -> List[str]:
        try:
            return await self.platform.modify_assistant_tool_ids(assistant_id, modify)
        except ExternalPlatformFailed as e:
            raise wrap_platform_error(e, "update_assistant", ExternalUpdateFailed) from e

    async def _remove_from_all_assistants(
        self,
        organization_id: str,
        external_tool_id: str,
        changed: Optional[List[str]] = None,
    ) -> List[str]:
        """
        Remove one tool id from every assistant of the organization.

        Assistant ids whose list actually changed are appended to changed as
        they happen, so a caller still sees them if a later assistant fails.
        """
        changed = changed if changed is not None else []
        for agent in self.store.list_agents(organization_id):
            if not agent.assistant_id:
                continue
            remove = _RemoveToolId(external_tool_id)
            try:
                await self.platform.modify_assistant_tool_ids(agent.assistant_id, remove)
                if remove.removed:
                    changed.append(agent.assistant_id)
            except ExternalPlatformFailed as e:
                if e.is_not_found:
                    logger.info(
                        f"Assistant {agent.assistant_id} not found, skipping",
                        extra={"agent_id": agent.id, "external_tool_id": external_tool_id},
                    )
                    continue
                raise wrap_platform_error(e, "update_assistant", ExternalDeleteFailed) from e
        return changed

    async def _detach_everywhere(self, organization_id: str, external_tool_id: str, state: Dict[str, Any]) -> List[str]:
        detached = state.setdefault("detached_assistants", [])
        try:
            return await self._remove_from_all_assistants(organization_id, external_tool_id, detached)
        except ExternalPlatformFailed:
            # The saga only compensates completed steps; undo the partial fan-out here
            await self._restore_to_assistants(external_tool_id, detached)
            raise

    async def _restore_to_assistants(self, external_tool_id: str, assistant_ids: List[str]) -> None:
        """Put a tool id back on the given assistants. Failures are logged per assistant."""
        def _append(tool_ids: List[str]) -> List[str]:
            return tool_ids if external_tool_id in tool_ids else tool_ids + [external_tool_id]

        for assistant_id in assistant_ids:
            try:
                await self.platform.modify_assistant_tool_ids(assistant_id, _append)
            except ExternalPlatformFailed as e:
                logger.error(
                    f"Could not restore tool {external_tool_id} on assistant {assistant_id}: {e}",
                    extra={"assistant_id": assistant_id, "external_tool_id": external_tool_id},
                )


class _RemoveToolId:
    """Tool-id list transform that drops one id and records whether it was present."""

    def __init__(self, tool_id: str):
        self.tool_id = tool_id
        self.removed = False

    def __call__(self, tool_ids: List[str]) -> List[str]:
        if self.tool_id in tool_ids:
            self.removed = True
        return [t for t in tool_ids if t != self.tool_id]


def _config_metadata(tool_config: ToolConfig) -> Dict[str, Any]:
    return tool_config.model_dump(mode="json", by_alias=True, exclude_none=True)


def _with_platform(tool: Tool, state: Dict[str, Any]) -> Tool:
    created = state.get("platform_tool")
    if not created:
        return tool
    return tool.model_copy(update={"external_tool_id": created["id"], "platform_data": created})
