"""Tests for the call-start orchestrator."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from callhub.adapters.pipedream_client import ActionRunResult
from callhub.infra.error_handler import ActionProviderFailed, ExternalPlatformFailed
from callhub.services.on_call_start import CONTEXT_HEADER, OnCallStartOrchestrator, ToolRunOutcome, build_context_message
from callhub.services.tool_execution_engine import ToolExecutionEngine
from tests.conftest import make_tool

CALLER = "+15551234567"
CALLED = "+15559876543"
CONTROL_URL = "https://calls.example.com/call-1/control"


@pytest.fixture
def call_control():
    client = MagicMock()
    client.inject_system_context = AsyncMock(return_value=None)
    return client


@pytest.fixture
def orchestrator(store, platform, engine, call_control):
    return OnCallStartOrchestrator(store, platform, engine, call_control)


def start_tool(**overrides):
    values = {
        "id": "tool-start",
        "label": "Caller Lookup",
        "external_tool_id": "ext-start",
        "execute_on_call_start": True,
        "static_config": {"params": {"phone": "{{caller_phone_number}}"}},
        "config_metadata": {"action": {"action_key": "hubspot-search-crm"}},
    }
    values.update(overrides)
    return make_tool(**values)


async def run(orchestrator, agent_id="agent-1"):
    return await orchestrator.run(agent_id, "call-1", CALLER, CALLED, CONTROL_URL)


class TestBuildContextMessage:
    def test_message_lists_each_tool(self):
        message = build_context_message([
            ToolRunOutcome(tool_id="t1", label="Caller Lookup", success=True, result={"name": "Jane"}),
            ToolRunOutcome(tool_id="t2", label="Open Tickets", success=True, result=[1, 2]),
        ])
        assert message.splitlines() == [
            CONTEXT_HEADER,
            'Caller Lookup: {"name": "Jane"}',
            "Open Tickets: [1, 2]",
        ]


class TestOnCallStartOrchestrator:
    """Test discovery, execution, and injection."""

    @pytest.mark.asyncio
    async def test_platform_attached_tool_injected(self, orchestrator, store, platform, action_client, call_control):
        store.add_agent("agent-1", assistant_id="asst-1")
        platform.add_assistant("asst-1", ["ext-start"])
        store.add_tool(start_tool())

        report = await run(orchestrator)

        assert report.outcome == "injected"
        # Call-start runs pass no AI params; the caller number comes from the template
        assert action_client.run_action.call_args[0][2] == {"phone": CALLER}
        control_url, content = call_control.inject_system_context.call_args[0]
        assert control_url == CONTROL_URL
        assert content.startswith(CONTEXT_HEADER)
        assert "Caller Lookup" in content

    @pytest.mark.asyncio
    async def test_locally_attached_tool_runs(self, orchestrator, store, platform, call_control):
        store.add_agent("agent-1", assistant_id="asst-1")
        platform.add_assistant("asst-1")
        store.add_tool(start_tool(external_tool_id=None, attach_to_agent=False))
        store.local_attachments.append(("agent-1", "tool-start"))

        report = await run(orchestrator)

        assert report.outcome == "injected"
        assert [o.tool_id for o in report.outcomes] == ["tool-start"]

    @pytest.mark.asyncio
    async def test_attached_tools_without_call_start_ignored(self, orchestrator, store, platform, action_client, call_control):
        store.add_agent("agent-1", assistant_id="asst-1")
        platform.add_assistant("asst-1", ["ext-start"])
        store.add_tool(start_tool(execute_on_call_start=False))

        report = await run(orchestrator)

        assert report.outcome == "skipped"
        assert report.skipped_reason == "no call-start tools"
        action_client.run_action.assert_not_called()
        call_control.inject_system_context.assert_not_called()

    @pytest.mark.asyncio
    async def test_agent_without_assistant_skipped(self, orchestrator, store, call_control):
        store.add_agent("agent-1")

        report = await run(orchestrator)

        assert report.skipped_reason == "agent has no assistant"
        call_control.inject_system_context.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_agent_skipped(self, orchestrator):
        report = await run(orchestrator, agent_id="missing")
        assert report.outcome == "skipped"

    @pytest.mark.asyncio
    async def test_platform_read_failure_still_runs_local_tools(self, orchestrator, store, platform):
        store.add_agent("agent-1", assistant_id="asst-1")
        platform.failures["get_assistant"] = ExternalPlatformFailed("timeout")
        store.add_tool(start_tool(external_tool_id=None, attach_to_agent=False))
        store.local_attachments.append(("agent-1", "tool-start"))

        report = await run(orchestrator)

        assert report.outcome == "injected"
        assert any(f.startswith("get assistant") for f in report.failures)

    @pytest.mark.asyncio
    async def test_failed_tools_not_injected(self, orchestrator, store, platform, action_client, call_control):
        store.add_agent("agent-1", assistant_id="asst-1")
        platform.add_assistant("asst-1", ["ext-start"])
        store.add_tool(start_tool())
        action_client.run_action.side_effect = ActionProviderFailed("down")

        report = await run(orchestrator)

        assert report.outcome == "no_injection"
        assert report.outcomes[0].success is False
        call_control.inject_system_context.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_results_not_injected(self, orchestrator, store, platform, action_client, call_control):
        store.add_agent("agent-1", assistant_id="asst-1")
        platform.add_assistant("asst-1", ["ext-start"])
        store.add_tool(start_tool())
        action_client.run_action.return_value = ActionRunResult(success=True, return_value=None)

        report = await run(orchestrator)

        assert report.outcome == "no_injection"
        call_control.inject_system_context.assert_not_called()

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_others(self, orchestrator, store, platform, action_client, call_control):
        store.add_agent("agent-1", assistant_id="asst-1")
        platform.add_assistant("asst-1", ["ext-a", "ext-b"])
        store.add_tool(start_tool(id="tool-a", label="Broken", external_tool_id="ext-a"))
        store.add_tool(start_tool(id="tool-b", label="Working", external_tool_id="ext-b"))
        action_client.run_action.side_effect = [
            ActionProviderFailed("down"),
            ActionRunResult(success=True, return_value={"open_tickets": 2}),
        ]

        report = await run(orchestrator)

        assert report.outcome == "injected"
        content = call_control.inject_system_context.call_args[0][1]
        assert "Working" in content
        assert "Broken" not in content

    @pytest.mark.asyncio
    async def test_injection_failure_does_not_raise(self, orchestrator, store, platform, call_control):
        store.add_agent("agent-1", assistant_id="asst-1")
        platform.add_assistant("asst-1", ["ext-start"])
        store.add_tool(start_tool())
        call_control.inject_system_context.side_effect = httpx.ConnectError("refused")

        report = await run(orchestrator)

        assert report.outcome == "no_injection"
        assert any(f.startswith("inject") for f in report.failures)

    @pytest.mark.asyncio
    async def test_store_failure_does_not_raise(self, orchestrator, store):
        store.fail_on.add("get_agent")

        report = await run(orchestrator)

        assert report.outcome == "skipped"
        assert report.failures == ["load agent: Failed to get_agent"]

    @pytest.mark.asyncio
    async def test_audit_rows_carry_call_id(self, store, platform, action_client, sms_sender, call_control):
        audit_logger = AsyncMock()
        engine = ToolExecutionEngine(store, action_client, sms_sender, audit_logger=audit_logger)
        orchestrator = OnCallStartOrchestrator(store, platform, engine, call_control)
        store.add_agent("agent-1", assistant_id="asst-1")
        platform.add_assistant("asst-1", ["ext-start"])
        store.add_tool(start_tool())

        await run(orchestrator)

        kwargs = audit_logger.call_args[1]
        assert kwargs["call_id"] == "call-1"
        assert kwargs["trigger"] == "call_start"
        assert kwargs["tool_id"] == "tool-start"
