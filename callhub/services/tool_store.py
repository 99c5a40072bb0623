"""Local persistence for tools, local attachments, and the records they reference."""

import json
import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from callhub.infra.database import get_db_session
from callhub.infra.error_handler import PersistenceFailed
from callhub.models.agent import Agent, PhoneNumber
from callhub.models.tool import Tool

logger = logging.getLogger(__name__)

TOOL_COLUMNS = """
    id, organization_id, external_tool_id, type, name, label, description,
    function_schema, static_config, config_metadata, platform_data,
    async AS is_async, execute_on_call_start, attach_to_agent, created_at, updated_at
"""


def _json_value(value: Any) -> Any:
    # psycopg2 decodes jsonb, other drivers may hand back a string
    if isinstance(value, str):
        return json.loads(value)
    return value


def _row_to_tool(row) -> Tool:
    return Tool(
        id=str(row.id),
        organization_id=str(row.organization_id),
        external_tool_id=row.external_tool_id,
        type=row.type,
        name=row.name,
        label=row.label,
        description=row.description or "",
        function_schema=_json_value(row.function_schema) or {},
        static_config=_json_value(row.static_config) or {},
        config_metadata=_json_value(row.config_metadata) or {},
        platform_data=_json_value(row.platform_data),
        is_async=bool(row.is_async),
        execute_on_call_start=bool(row.execute_on_call_start),
        attach_to_agent=bool(row.attach_to_agent),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_agent(row) -> Agent:
    return Agent(
        id=str(row.id),
        organization_id=str(row.organization_id),
        name=row.name,
        assistant_id=row.vapi_assistant_id,
    )


def _row_to_phone_number(row) -> PhoneNumber:
    return PhoneNumber(
        id=str(row.id),
        organization_id=str(row.organization_id),
        phone_number=row.phone_number,
        provider=row.provider,
        credentials=_json_value(row.credentials) or {},
    )


class ToolStore:
    """SQL-backed tool store. One short session per call."""

    def __init__(self, session_factory: Callable = get_db_session):
        self._session_factory = session_factory

    @contextmanager
    def _session(self, organization_id: Optional[str], operation: str):
        try:
            with self._session_factory(organization_id) as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(
                f"Tool store {operation} failed: {e}",
                extra={"organization_id": organization_id, "operation": operation},
            )
            raise PersistenceFailed(f"Failed to {operation}") from e

    # Tools

    def get_tool(self, tool_id: str, organization_id: Optional[str] = None) -> Optional[Tool]:
        """Load a tool by id, optionally restricted to an organization."""
        query = f"SELECT {TOOL_COLUMNS} FROM tools WHERE id = :tool_id"
        params: Dict[str, Any] = {"tool_id": tool_id}
        if organization_id:
            query += " AND organization_id = :organization_id"
            params["organization_id"] = organization_id

        with self._session(organization_id, "load tool") as session:
            row = session.execute(text(query), params).fetchone()
        return _row_to_tool(row) if row else None

    def list_tools(self, organization_id: str) -> List[Tool]:
        with self._session(organization_id, "list tools") as session:
            rows = session.execute(
                text(f"""
                    SELECT {TOOL_COLUMNS} FROM tools
                    WHERE organization_id = :organization_id
                    ORDER BY created_at DESC
                """),
                {"organization_id": organization_id},
            ).fetchall()
        return [_row_to_tool(row) for row in rows]

    def list_tools_by_ids(
        self,
        organization_id: str,
        tool_ids: Iterable[str] = (),
        external_tool_ids: Iterable[str] = (),
        on_call_start_only: bool = False,
    ) -> List[Tool]:
        """
        Load tools matching either a local id or an external id.

        Args:
            organization_id: Owning organization
            tool_ids: Local tool ids
            external_tool_ids: Voice platform tool ids
            on_call_start_only: Restrict to execute_on_call_start tools

        Returns:
            Matching tools, oldest first
        """
        tool_ids = [str(t) for t in tool_ids]
        external_tool_ids = [str(t) for t in external_tool_ids]
        if not tool_ids and not external_tool_ids:
            return []

        query = f"""
            SELECT {TOOL_COLUMNS} FROM tools
            WHERE organization_id = :organization_id
              AND (CAST(id AS text) = ANY(:tool_ids) OR external_tool_id = ANY(:external_tool_ids))
        """
        if on_call_start_only:
            query += " AND execute_on_call_start = TRUE"
        query += " ORDER BY created_at ASC"

        with self._session(organization_id, "list tools by id") as session:
            rows = session.execute(
                text(query),
                {
                    "organization_id": organization_id,
                    "tool_ids": tool_ids,
                    "external_tool_ids": external_tool_ids,
                },
            ).fetchall()
        return [_row_to_tool(row) for row in rows]

    def name_exists(self, organization_id: str, name: str, exclude_tool_id: Optional[str] = None) -> bool:
        """Check whether a tool name is taken, ignoring exclude_tool_id's own row."""
        query = "SELECT 1 FROM tools WHERE organization_id = :organization_id AND name = :name"
        params: Dict[str, Any] = {"organization_id": organization_id, "name": name}
        if exclude_tool_id:
            query += " AND id <> :exclude_tool_id"
            params["exclude_tool_id"] = exclude_tool_id

        with self._session(organization_id, "check tool name") as session:
            row = session.execute(text(query), params).fetchone()
        return row is not None

    def insert_tool(self, tool: Tool) -> Tool:
        with self._session(tool.organization_id, "insert tool") as session:
            row = session.execute(
                text(f"""
                    INSERT INTO tools (
                        id, organization_id, external_tool_id, type, name, label, description,
                        function_schema, static_config, config_metadata, platform_data,
                        async, execute_on_call_start, attach_to_agent
                    ) VALUES (
                        :id, :organization_id, :external_tool_id, :type, :name, :label, :description,
                        CAST(:function_schema AS jsonb), CAST(:static_config AS jsonb),
                        CAST(:config_metadata AS jsonb), CAST(:platform_data AS jsonb),
                        :is_async, :execute_on_call_start, :attach_to_agent
                    )
                    RETURNING {TOOL_COLUMNS}
                """),
                self._tool_params(tool),
            ).fetchone()
        return _row_to_tool(row)

    def update_tool(self, tool: Tool) -> Tool:
        with self._session(tool.organization_id, "update tool") as session:
            row = session.execute(
                text(f"""
                    UPDATE tools SET
                        external_tool_id = :external_tool_id,
                        name = :name,
                        label = :label,
                        description = :description,
                        function_schema = CAST(:function_schema AS jsonb),
                        static_config = CAST(:static_config AS jsonb),
                        config_metadata = CAST(:config_metadata AS jsonb),
                        platform_data = CAST(:platform_data AS jsonb),
                        async = :is_async,
                        execute_on_call_start = :execute_on_call_start,
                        attach_to_agent = :attach_to_agent,
                        updated_at = NOW()
                    WHERE id = :id AND organization_id = :organization_id
                    RETURNING {TOOL_COLUMNS}
                """),
                self._tool_params(tool),
            ).fetchone()
        if row is None:
            raise PersistenceFailed(f"Tool {tool.id} disappeared during update")
        return _row_to_tool(row)

    def delete_tool(self, tool_id: str, organization_id: str) -> bool:
        """Delete a tool. agent_tools rows cascade."""
        with self._session(organization_id, "delete tool") as session:
            result = session.execute(
                text("DELETE FROM tools WHERE id = :tool_id AND organization_id = :organization_id"),
                {"tool_id": tool_id, "organization_id": organization_id},
            )
        return result.rowcount > 0

    @staticmethod
    def _tool_params(tool: Tool) -> Dict[str, Any]:
        return {
            "id": tool.id,
            "organization_id": tool.organization_id,
            "external_tool_id": tool.external_tool_id,
            "type": tool.type.value,
            "name": tool.name,
            "label": tool.label,
            "description": tool.description,
            "function_schema": json.dumps(tool.function_schema),
            "static_config": json.dumps(tool.static_config),
            "config_metadata": json.dumps(tool.config_metadata),
            "platform_data": json.dumps(tool.platform_data) if tool.platform_data is not None else None,
            "is_async": tool.is_async,
            "execute_on_call_start": tool.execute_on_call_start,
            "attach_to_agent": tool.attach_to_agent,
        }

    # Agents

    def get_agent(self, agent_id: str, organization_id: Optional[str] = None) -> Optional[Agent]:
        query = "SELECT id, organization_id, name, vapi_assistant_id FROM agents WHERE id = :agent_id"
        params: Dict[str, Any] = {"agent_id": agent_id}
        if organization_id:
            query += " AND organization_id = :organization_id"
            params["organization_id"] = organization_id

        with self._session(organization_id, "load agent") as session:
            row = session.execute(text(query), params).fetchone()
        return _row_to_agent(row) if row else None

    def list_agents(self, organization_id: str) -> List[Agent]:
        """Agents of an organization that exist on the voice platform."""
        with self._session(organization_id, "list agents") as session:
            rows = session.execute(
                text("""
                    SELECT id, organization_id, name, vapi_assistant_id FROM agents
                    WHERE organization_id = :organization_id
                      AND vapi_assistant_id IS NOT NULL
                    ORDER BY created_at ASC
                """),
                {"organization_id": organization_id},
            ).fetchall()
        return [_row_to_agent(row) for row in rows]

    # Local attachments (agent_tools)

    def list_local_attachment_tool_ids(self, agent_id: str, organization_id: Optional[str] = None) -> List[str]:
        with self._session(organization_id, "list agent tools") as session:
            rows = session.execute(
                text("SELECT tool_id FROM agent_tools WHERE agent_id = :agent_id ORDER BY created_at ASC"),
                {"agent_id": agent_id},
            ).fetchall()
        return [str(row.tool_id) for row in rows]

    def has_local_attachment(self, agent_id: str, tool_id: str, organization_id: Optional[str] = None) -> bool:
        with self._session(organization_id, "check agent tool") as session:
            row = session.execute(
                text("SELECT 1 FROM agent_tools WHERE agent_id = :agent_id AND tool_id = :tool_id"),
                {"agent_id": agent_id, "tool_id": tool_id},
            ).fetchone()
        return row is not None

    def insert_local_attachment(self, agent_id: str, tool_id: str, organization_id: Optional[str] = None) -> None:
        with self._session(organization_id, "attach tool locally") as session:
            session.execute(
                text("""
                    INSERT INTO agent_tools (agent_id, tool_id)
                    VALUES (:agent_id, :tool_id)
                """),
                {"agent_id": agent_id, "tool_id": tool_id},
            )

    def delete_local_attachment(self, agent_id: str, tool_id: str, organization_id: Optional[str] = None) -> bool:
        with self._session(organization_id, "detach tool locally") as session:
            result = session.execute(
                text("DELETE FROM agent_tools WHERE agent_id = :agent_id AND tool_id = :tool_id"),
                {"agent_id": agent_id, "tool_id": tool_id},
            )
        return result.rowcount > 0

    def delete_local_attachments_for_tool(self, tool_id: str, organization_id: Optional[str] = None) -> int:
        with self._session(organization_id, "delete tool attachments") as session:
            result = session.execute(
                text("DELETE FROM agent_tools WHERE tool_id = :tool_id"),
                {"tool_id": tool_id},
            )
        return result.rowcount

    # Sending numbers

    def get_phone_number(self, phone_number_id: str, organization_id: str) -> Optional[PhoneNumber]:
        with self._session(organization_id, "load phone number") as session:
            row = session.execute(
                text("""
                    SELECT id, organization_id, phone_number, provider, credentials
                    FROM phone_numbers
                    WHERE id = :phone_number_id AND organization_id = :organization_id
                """),
                {"phone_number_id": phone_number_id, "organization_id": organization_id},
            ).fetchone()
        return _row_to_phone_number(row) if row else None

    def get_phone_number_by_number(self, phone_number: str, organization_id: str) -> Optional[PhoneNumber]:
        with self._session(organization_id, "load phone number") as session:
            row = session.execute(
                text("""
                    SELECT id, organization_id, phone_number, provider, credentials
                    FROM phone_numbers
                    WHERE phone_number = :phone_number AND organization_id = :organization_id
                """),
                {"phone_number": phone_number, "organization_id": organization_id},
            ).fetchone()
        return _row_to_phone_number(row) if row else None
