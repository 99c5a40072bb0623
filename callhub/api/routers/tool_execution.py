"""Tool execution API router (voice platform callbacks)."""

import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from callhub.api.dependencies import get_execution_engine, get_on_call_start_orchestrator
from callhub.api.models import ExecuteStartToolsResponse, ToolExecutionResponse
from callhub.models.tool import ExecutionErrorKind, VariableContext
from callhub.services.on_call_start import OnCallStartOrchestrator
from callhub.services.tool_execution_engine import ToolExecutionEngine, strip_placeholder_fields

logger = logging.getLogger(__name__)

router = APIRouter()

START_TOOLS_FIELDS = ("agentId", "callerNumber", "calledNumber", "controlUrl")


async def _read_json_object(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON in request body")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return body


def extract_call_parameters(body: Dict[str, Any]) -> Dict[str, Any]:
    """
    Pull the AI parameters out of a callback body.

    Parameters may arrive flat or nested under "parameters"; call metadata
    and the schema placeholder field are never passed through.
    """
    nested = body.get("parameters")
    if isinstance(nested, dict):
        params = dict(nested)
    else:
        params = {k: v for k, v in body.items() if k != "metadata"}
    return strip_placeholder_fields(params)


@router.post("/api/tools/{tool_id}/execute", tags=["Tool Execution"], response_model=ToolExecutionResponse)
async def execute_tool(
    tool_id: str,
    request: Request,
    engine: ToolExecutionEngine = Depends(get_execution_engine),
):
    """
    Execute a tool on behalf of the voice platform.

    **Example Request:**
    ```json
    {
        "parameters": {"email": "jane@example.com"},
        "metadata": {"callerPhoneNumber": "+15551234567", "calledPhoneNumber": "+15559876543"}
    }
    ```

    Returns 404 when the tool does not exist, 500 on any other failure.
    """
    body = await _read_json_object(request)
    metadata = body.get("metadata") if isinstance(body.get("metadata"), dict) else {}

    variable_context = VariableContext(
        caller_phone_number=metadata.get("callerPhoneNumber"),
        called_phone_number=metadata.get("calledPhoneNumber"),
    )
    result = await engine.execute(tool_id, extract_call_parameters(body), variable_context)

    if not result.success:
        status_code = 404 if result.error_kind == ExecutionErrorKind.NOT_FOUND else 500
        content: Dict[str, Any] = {"success": False, "error": result.error or "Tool execution failed"}
        if result.result is not None:
            content["result"] = result.result
        return JSONResponse(status_code=status_code, content=content)

    return ToolExecutionResponse(
        success=True,
        result=result.result,
        exports=result.exports,
        logs=result.logs,
    )


@router.post(
    "/api/calls/{call_id}/execute-start-tools",
    tags=["Tool Execution"],
    response_model=ExecuteStartToolsResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def execute_start_tools(
    call_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    orchestrator: OnCallStartOrchestrator = Depends(get_on_call_start_orchestrator),
):
    """
    Run the agent's call-start tools for a new call.

    The work runs after the response is sent; results are injected into the
    live call through `controlUrl`. Failures are logged, never returned.
    """
    body = await _read_json_object(request)
    missing = [name for name in START_TOOLS_FIELDS if not body.get(name)]
    if missing:
        raise HTTPException(
            status_code=400,
            detail=f"Missing required parameters: {', '.join(missing)}",
        )

    logger.info(
        f"Scheduling call-start tools for call {call_id}",
        extra={"call_id": call_id, "agent_id": body["agentId"]},
    )
    background_tasks.add_task(
        orchestrator.run,
        agent_id=body["agentId"],
        call_id=call_id,
        caller_number=body["callerNumber"],
        called_number=body["calledNumber"],
        control_url=body["controlUrl"],
    )
    return ExecuteStartToolsResponse(success=True, callRecordId=call_id)
