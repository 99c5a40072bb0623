"""Tool execution engine that resolves parameters and dispatches by tool type."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from callhub.adapters.pipedream_client import PipedreamClient
from callhub.adapters.twilio_sms import TwilioSmsSender
from callhub.infra.error_handler import ActionProviderFailed, PersistenceFailed
from callhub.infra.metrics import sms_messages_total, tool_execution_duration, tool_executions_total
from callhub.logging.event_logger import log_tool_call
from callhub.models.agent import PhoneNumber
from callhub.models.tool import (
    ExecutionErrorKind,
    Tool,
    ToolExecutionResult,
    ToolType,
    VariableContext,
)
from callhub.services.tool_store import ToolStore
from callhub.services.variables import substitute_variables_in_value

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Tool, Dict[str, Any], VariableContext], Awaitable[ToolExecutionResult]]

# Fields the platform sends only to satisfy its schema requirements
PLACEHOLDER_FIELDS = ("_dummy",)


def merge_parameters(
    ai_params: Dict[str, Any],
    static_params: Dict[str, Any],
    extendable_params: Optional[Dict[str, List[Any]]] = None,
) -> Dict[str, Any]:
    """
    Merge AI-supplied and organization-fixed parameters.

    Static values are applied last and always win, so the AI (or whoever is
    driving it) cannot override an organization-fixed value. Extendable
    parameters keep their base items and gain the AI's items.

    Args:
        ai_params: Parameters supplied by the AI at call time
        static_params: Substituted organization-fixed parameters
        extendable_params: Substituted base arrays the AI may extend

    Returns:
        The resolved parameter object
    """
    merged = dict(ai_params)
    for name, base in (extendable_params or {}).items():
        merged[name] = _unique(_as_list(base) + _as_list(ai_params.get(name)))
    merged.update(static_params)
    return merged


def strip_placeholder_fields(params: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in params.items() if key not in PLACEHOLDER_FIELDS}


def _as_list(value: Any) -> List[Any]:
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return list(value)
    return [value]


def _unique(items: List[Any]) -> List[Any]:
    # Items may be dicts, so no set()
    out: List[Any] = []
    for item in items:
        if item not in out:
            out.append(item)
    return out


class ToolExecutionEngine:
    """
    Executes one tool invocation and always returns a ToolExecutionResult.

    Handlers are registered per ToolType; types without a handler return a
    NOT_IMPLEMENTED result.
    """

    def __init__(
        self,
        store: ToolStore,
        action_client: PipedreamClient,
        sms_sender: TwilioSmsSender,
        audit_logger: Optional[Callable[..., Awaitable[None]]] = log_tool_call,
    ):
        self.store = store
        self.action_client = action_client
        self.sms_sender = sms_sender
        self.audit_logger = audit_logger
        self._handlers: Dict[ToolType, ToolHandler] = {
            ToolType.AUTOMATION_ACTION: self._execute_automation_action,
            ToolType.SMS: self._execute_sms,
        }

    def register_handler(self, tool_type: ToolType, handler: ToolHandler) -> None:
        self._handlers[tool_type] = handler

    async def execute(
        self,
        tool_id: str,
        ai_params: Optional[Dict[str, Any]],
        variable_context: VariableContext,
        trigger: str = "ai",
        call_id: Optional[str] = None,
    ) -> ToolExecutionResult:
        """
        Load a tool, resolve its parameters, and run the matching handler.

        Args:
            tool_id: Local tool id
            ai_params: Parameters from the AI (empty for call-start runs)
            variable_context: Call-scoped values for template substitution
            trigger: 'ai' | 'call_start', recorded in the audit log
            call_id: Call the run belongs to, recorded in the audit log

        Returns:
            ToolExecutionResult; failures are values with an error_kind
        """
        start_time = time.time()
        try:
            tool = self.store.get_tool(tool_id)
        except PersistenceFailed as e:
            logger.error(f"Failed to load tool {tool_id}: {e}", extra={"tool_id": tool_id})
            return ToolExecutionResult.fail(ExecutionErrorKind.PERSISTENCE_FAILED, "Database error")

        if tool is None:
            logger.warning(f"Tool {tool_id} not found", extra={"tool_id": tool_id})
            return ToolExecutionResult.fail(ExecutionErrorKind.NOT_FOUND, "Tool not found")

        ai_params = strip_placeholder_fields(dict(ai_params or {}))
        handler = self._handlers.get(tool.type)
        if handler is None:
            result = ToolExecutionResult.fail(
                ExecutionErrorKind.NOT_IMPLEMENTED,
                f"Tool type '{tool.type.value}' not yet implemented",
            )
        else:
            try:
                result = await handler(tool, ai_params, variable_context)
            except Exception as e:
                logger.error(
                    f"Handler for tool {tool.name} raised: {e}",
                    extra={"tool_id": tool.id, "tool_type": tool.type.value},
                    exc_info=True,
                )
                result = ToolExecutionResult.fail(ExecutionErrorKind.INTERNAL_ERROR, "Tool execution failed")

        duration = time.time() - start_time
        status = "success" if result.success else "failure"
        tool_executions_total.labels(tool_type=tool.type.value, status=status).inc()
        tool_execution_duration.labels(tool_type=tool.type.value).observe(duration)
        logger.info(
            f"Executed tool {tool.name}",
            extra={
                "tool_id": tool.id,
                "organization_id": tool.organization_id,
                "tool_type": tool.type.value,
                "status": status,
                "error_kind": result.error_kind.value if result.error_kind else None,
                "trigger": trigger,
                "duration_ms": int(duration * 1000),
            },
        )
        await self._audit(tool, ai_params, result, int(duration * 1000), trigger, call_id)
        return result

    async def _audit(
        self,
        tool: Tool,
        ai_params: Dict[str, Any],
        result: ToolExecutionResult,
        latency_ms: int,
        trigger: str,
        call_id: Optional[str] = None,
    ) -> None:
        if self.audit_logger is None:
            return
        try:
            await self.audit_logger(
                organization_id=tool.organization_id,
                tool_id=tool.id,
                tool_name=tool.name,
                tool_type=tool.type.value,
                arguments=ai_params,
                result=result.result,
                status="success" if result.success else "failure",
                error_message=result.error,
                latency_ms=latency_ms,
                trigger=trigger,
                call_id=call_id,
            )
        except Exception as e:
            logger.warning(f"Failed to write tool call audit log: {e}", extra={"tool_id": tool.id})

    # Handlers

    async def _execute_automation_action(
        self,
        tool: Tool,
        ai_params: Dict[str, Any],
        variable_context: VariableContext,
    ) -> ToolExecutionResult:
        action = tool.config_metadata.get("action") or {}
        action_key = action.get("action_key")
        if not action_key:
            return ToolExecutionResult.fail(
                ExecutionErrorKind.CONFIGURATION_ERROR, "Tool has no action configured"
            )

        static = substitute_variables_in_value(tool.static_config, variable_context)
        if "params" in static or "preloadedParams" in static:
            static_params = {**(static.get("preloadedParams") or {}), **(static.get("params") or {})}
        else:
            # Older configs stored the fixed params at the top level
            static_params = {k: v for k, v in static.items() if k != "extendableParams"}

        props = merge_parameters(ai_params, static_params, static.get("extendableParams"))

        account_id = action.get("account_id")
        if account_id:
            auth_field = action.get("app_field_name") or action.get("app")
            if auth_field:
                props[auth_field] = {"authProvisionId": account_id}
            else:
                logger.warning(
                    f"Tool {tool.name} has an account but no app field, skipping auth binding",
                    extra={"tool_id": tool.id},
                )

        try:
            run = await self.action_client.run_action(tool.organization_id, action_key, props)
        except ActionProviderFailed as e:
            logger.warning(
                f"Action {action_key} failed for tool {tool.name}: {e.message}",
                extra={"tool_id": tool.id, "action_key": action_key, "status_code": e.status_code},
            )
            return ToolExecutionResult.fail(ExecutionErrorKind.ACTION_EXECUTION_FAILED, "Action execution failed")

        return ToolExecutionResult.ok(run.return_value, exports=run.exports, logs=run.logs)

    async def _execute_sms(
        self,
        tool: Tool,
        ai_params: Dict[str, Any],
        variable_context: VariableContext,
    ) -> ToolExecutionResult:
        static = substitute_variables_in_value(tool.static_config, variable_context)

        text = static.get("text") or ai_params.get("text")
        text = text.strip() if isinstance(text, str) else ""

        recipients = _as_list(static.get("recipients")) + _as_list(static.get("recipientsBase"))
        recipients += _as_list(substitute_variables_in_value(ai_params.get("recipients"), variable_context))
        recipients = _unique([str(r).strip() for r in recipients if str(r).strip()])

        if not text:
            return ToolExecutionResult.fail(ExecutionErrorKind.CONFIGURATION_ERROR, "Message text is required")
        if not recipients:
            return ToolExecutionResult.fail(
                ExecutionErrorKind.CONFIGURATION_ERROR, "At least one recipient is required"
            )

        try:
            sender = self._resolve_sender(tool, static.get("from") or {}, variable_context)
        except PersistenceFailed:
            return ToolExecutionResult.fail(ExecutionErrorKind.PERSISTENCE_FAILED, "Database error")
        if sender is None or not sender.has_credentials:
            return ToolExecutionResult.fail(
                ExecutionErrorKind.CONFIGURATION_ERROR, "Sending number credentials not found"
            )

        outcomes = await asyncio.gather(
            *(self.sms_sender.send(sender.credentials, sender.phone_number, recipient, text) for recipient in recipients),
            return_exceptions=True,
        )

        results = []
        errors = []
        for recipient, outcome in zip(recipients, outcomes):
            if isinstance(outcome, BaseException):
                sms_messages_total.labels(status="failure").inc()
                logger.warning(
                    f"SMS to {recipient} failed: {outcome}",
                    extra={"tool_id": tool.id, "recipient": recipient},
                )
                errors.append({"recipient": recipient, "error": str(outcome), "success": False})
            else:
                sms_messages_total.labels(status="success").inc()
                results.append({"recipient": recipient, "sid": outcome.id, "status": outcome.status, "success": True})

        payload = {
            "message": f"Sent {len(results)} of {len(recipients)} messages",
            "results": results,
            "errors": errors,
            "details": {"from": sender.phone_number, "text": text, "recipientCount": len(recipients)},
        }
        if errors:
            return ToolExecutionResult.fail(
                ExecutionErrorKind.MESSAGING_FAILED,
                f"Failed to send {len(errors)} of {len(recipients)} messages",
                result=payload,
            )
        return ToolExecutionResult.ok(payload)

    def _resolve_sender(
        self,
        tool: Tool,
        sender_config: Dict[str, Any],
        variable_context: VariableContext,
    ) -> Optional[PhoneNumber]:
        sender_type = sender_config.get("type")
        if sender_type == "called_number":
            if not variable_context.called_phone_number:
                return None
            return self.store.get_phone_number_by_number(variable_context.called_phone_number, tool.organization_id)
        if sender_type == "specific_number" and sender_config.get("phone_number_id"):
            return self.store.get_phone_number(sender_config["phone_number_id"], tool.organization_id)
        return None
