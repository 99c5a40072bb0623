"""Run call-start tools and inject their results into the live call."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional

from callhub.adapters.call_control import CallControlClient
from callhub.adapters.vapi_client import VapiClient
from callhub.infra.error_handler import ExternalPlatformFailed, PersistenceFailed
from callhub.infra.metrics import context_injections_total, on_call_start_runs_total
from callhub.models.tool import VariableContext
from callhub.services.tool_execution_engine import ToolExecutionEngine
from callhub.services.tool_store import ToolStore

logger = logging.getLogger(__name__)

CONTEXT_HEADER = "Caller context from call-start tools:"


@dataclass
class ToolRunOutcome:
    tool_id: str
    label: str
    success: bool
    result: Any = None
    error: Optional[str] = None


@dataclass
class OnCallStartReport:
    """What happened during one call-start run. Failures are informational only."""
    call_id: str
    agent_id: str
    outcomes: List[ToolRunOutcome] = field(default_factory=list)
    injected: bool = False
    failures: List[str] = field(default_factory=list)
    skipped_reason: Optional[str] = None

    @property
    def outcome(self) -> str:
        if self.skipped_reason:
            return "skipped"
        if self.injected:
            return "injected"
        return "no_injection"


def build_context_message(outcomes: List[ToolRunOutcome]) -> str:
    lines = [CONTEXT_HEADER]
    for outcome in outcomes:
        lines.append(f"{outcome.label}: {json.dumps(outcome.result, default=str)}")
    return "\n".join(lines)


def _has_content(result: Any) -> bool:
    return result not in (None, "", [], {})


class OnCallStartOrchestrator:
    """Discovers an agent's call-start tools, runs them, and pushes the results into the call."""

    def __init__(
        self,
        store: ToolStore,
        platform: VapiClient,
        engine: ToolExecutionEngine,
        call_control: CallControlClient,
    ):
        self.store = store
        self.platform = platform
        self.engine = engine
        self.call_control = call_control

    async def run(
        self,
        agent_id: str,
        call_id: str,
        caller_number: Optional[str],
        called_number: Optional[str],
        control_url: Optional[str],
    ) -> OnCallStartReport:
        """
        Run once per call. Never raises.

        Args:
            agent_id: Local agent id
            call_id: Call identifier, for logging
            caller_number: Number of the person calling
            called_number: Number that was called
            control_url: Live call-control URL for context injection

        Returns:
            OnCallStartReport describing per-tool outcomes and injection
        """
        report = OnCallStartReport(call_id=call_id, agent_id=agent_id)
        try:
            await self._run(report, caller_number, called_number, control_url)
        except Exception as e:
            logger.error(
                f"Call-start flow failed for call {call_id}: {e}",
                extra={"call_id": call_id, "agent_id": agent_id},
                exc_info=True,
            )
            report.failures.append(f"orchestrator: {e}")

        on_call_start_runs_total.labels(outcome=report.outcome).inc()
        logger.info(
            f"Call-start flow finished for call {call_id}",
            extra={
                "call_id": call_id,
                "agent_id": agent_id,
                "outcome": report.outcome,
                "tools_run": len(report.outcomes),
                "failures": len(report.failures),
            },
        )
        return report

    async def _run(
        self,
        report: OnCallStartReport,
        caller_number: Optional[str],
        called_number: Optional[str],
        control_url: Optional[str],
    ) -> None:
        try:
            agent = self.store.get_agent(report.agent_id)
        except PersistenceFailed as e:
            report.failures.append(f"load agent: {e.message}")
            report.skipped_reason = "agent lookup failed"
            return
        if agent is None or not agent.assistant_id:
            logger.info(
                "Agent has no assistant, skipping call-start tools",
                extra={"call_id": report.call_id, "agent_id": report.agent_id},
            )
            report.skipped_reason = "agent has no assistant"
            return

        try:
            platform_tool_ids = await self.platform.get_assistant_tool_ids(agent.assistant_id)
        except ExternalPlatformFailed as e:
            # Local attachments can still run
            logger.warning(
                f"Could not read assistant tools: {e.message}",
                extra={"call_id": report.call_id, "assistant_id": agent.assistant_id},
            )
            report.failures.append(f"get assistant: {e.message}")
            platform_tool_ids = []

        local_tool_ids = self.store.list_local_attachment_tool_ids(agent.id, agent.organization_id)
        tools = self.store.list_tools_by_ids(
            agent.organization_id,
            tool_ids=local_tool_ids,
            external_tool_ids=platform_tool_ids,
            on_call_start_only=True,
        )
        if not tools:
            report.skipped_reason = "no call-start tools"
            return

        variable_context = VariableContext(
            caller_phone_number=caller_number,
            called_phone_number=called_number,
            now=datetime.now(timezone.utc).isoformat(),
        )

        for tool in tools:
            result = await self.engine.execute(
                tool.id, {}, variable_context, trigger="call_start", call_id=report.call_id
            )
            outcome = ToolRunOutcome(
                tool_id=tool.id,
                label=tool.label or tool.name,
                success=result.success,
                result=result.result,
                error=result.error,
            )
            report.outcomes.append(outcome)
            if not result.success:
                report.failures.append(f"{outcome.label}: {result.error}")

        successful = [o for o in report.outcomes if o.success and _has_content(o.result)]
        if not successful:
            return
        if not control_url:
            report.failures.append("inject: no control URL")
            return

        content = build_context_message(successful)
        try:
            await self.call_control.inject_system_context(control_url, content)
        except Exception as e:
            context_injections_total.labels(status="failure").inc()
            logger.warning(
                f"Context injection failed for call {report.call_id}: {e}",
                extra={"call_id": report.call_id},
            )
            report.failures.append(f"inject: {e}")
            return

        context_injections_total.labels(status="success").inc()
        report.injected = True
