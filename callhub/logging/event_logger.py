"""Tool call audit logging."""

import json
import logging
from typing import Any, Dict, Optional

from sqlalchemy import text

from callhub.infra.database import get_db_session

logger = logging.getLogger(__name__)

# Keep audit rows bounded; results can be large CRM payloads
MAX_RESULT_SUMMARY_CHARS = 4000


def _summarize(result: Any) -> Dict[str, Any]:
    encoded = json.dumps(result, default=str)
    if len(encoded) <= MAX_RESULT_SUMMARY_CHARS:
        return {"result": result}
    return {"truncated": True, "preview": encoded[:MAX_RESULT_SUMMARY_CHARS]}


async def log_tool_call(
    organization_id: str,
    tool_id: str,
    tool_name: str,
    tool_type: str,
    arguments: Dict[str, Any],
    result: Any,
    status: str = "success",
    error_message: Optional[str] = None,
    latency_ms: Optional[int] = None,
    trigger: str = "ai",
    call_id: Optional[str] = None,
) -> None:
    """
    Log a tool execution to tool_call_logs.

    Args:
        organization_id: Owning organization
        tool_id: Local tool id
        tool_name: Tool name at execution time
        tool_type: Tool type
        arguments: Merged parameters sent to the handler (AI params only, no secrets)
        result: Handler result payload (trimmed if large)
        status: 'success' | 'failure'
        error_message: Error message when status is 'failure'
        latency_ms: Latency in milliseconds
        trigger: 'ai' | 'call_start'
        call_id: Optional call identifier
    """
    with get_db_session(organization_id) as session:
        session.execute(
            text("""
                INSERT INTO tool_call_logs (
                    organization_id, tool_id, tool_name, tool_type, trigger, call_id,
                    arguments, result_summary, status, error_message, latency_ms
                ) VALUES (
                    :organization_id, :tool_id, :tool_name, :tool_type, :trigger, :call_id,
                    CAST(:arguments AS jsonb), CAST(:result_summary AS jsonb), :status,
                    :error_message, :latency_ms
                )
            """),
            {
                "organization_id": organization_id,
                "tool_id": tool_id,
                "tool_name": tool_name,
                "tool_type": tool_type,
                "trigger": trigger,
                "call_id": call_id,
                "arguments": json.dumps(arguments or {}, default=str),
                "result_summary": json.dumps(_summarize(result), default=str),
                "status": status,
                "error_message": error_message[:500] if error_message else None,
                "latency_ms": latency_ms,
            }
        )
