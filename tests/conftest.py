"""Pytest configuration and fixtures."""

import copy
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from dotenv import load_dotenv

# Load test environment variables
load_dotenv()

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("APP_BASE_URL", "https://callhub.test")

from callhub.adapters.pipedream_client import ActionRunResult  # noqa: E402
from callhub.adapters.twilio_sms import SmsSendResult  # noqa: E402
from callhub.adapters.vapi_client import VapiClient  # noqa: E402
from callhub.infra.error_handler import ExternalPlatformFailed, MessagingProviderFailed, PersistenceFailed  # noqa: E402
from callhub.models.agent import Agent, PhoneNumber  # noqa: E402
from callhub.models.tool import Tool  # noqa: E402
from callhub.services.tool_execution_engine import ToolExecutionEngine  # noqa: E402
from callhub.services.tool_lifecycle import ToolLifecycleManager  # noqa: E402

ORG_ID = "org-1"
OTHER_ORG_ID = "org-2"
BASE_URL = "https://callhub.test"


class FakeToolStore:
    """In-memory ToolStore. Methods named in fail_on raise PersistenceFailed."""

    def __init__(self):
        self.tools: Dict[str, Tool] = {}
        self.agents: Dict[str, Agent] = {}
        self.local_attachments: List[tuple] = []
        self.phone_numbers: Dict[str, PhoneNumber] = {}
        self.fail_on = set()

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise PersistenceFailed(f"Failed to {operation}")

    # Seeding helpers

    def add_agent(self, agent_id: str, assistant_id: Optional[str] = None, organization_id: str = ORG_ID) -> Agent:
        agent = Agent(id=agent_id, organization_id=organization_id, name=f"Agent {agent_id}", assistant_id=assistant_id)
        self.agents[agent_id] = agent
        return agent

    def add_phone_number(self, phone_number_id: str, number: str, credentials=None, organization_id: str = ORG_ID):
        self.phone_numbers[phone_number_id] = PhoneNumber(
            id=phone_number_id,
            organization_id=organization_id,
            phone_number=number,
            provider="twilio",
            credentials=credentials if credentials is not None else {"accountSid": "AC123", "authToken": "secret"},
        )

    def add_tool(self, tool: Tool) -> Tool:
        self.tools[tool.id] = tool
        return tool

    # Tools

    def get_tool(self, tool_id, organization_id=None):
        self._check("get_tool")
        tool = self.tools.get(tool_id)
        if tool and organization_id and tool.organization_id != organization_id:
            return None
        return tool

    def list_tools(self, organization_id):
        return [t for t in self.tools.values() if t.organization_id == organization_id]

    def list_tools_by_ids(self, organization_id, tool_ids=(), external_tool_ids=(), on_call_start_only=False):
        tool_ids, external_tool_ids = set(tool_ids), set(external_tool_ids)
        return [
            t for t in self.tools.values()
            if t.organization_id == organization_id
            and (t.id in tool_ids or (t.external_tool_id and t.external_tool_id in external_tool_ids))
            and (t.execute_on_call_start or not on_call_start_only)
        ]

    def name_exists(self, organization_id, name, exclude_tool_id=None):
        return any(
            t.organization_id == organization_id and t.name == name and t.id != exclude_tool_id
            for t in self.tools.values()
        )

    def insert_tool(self, tool):
        self._check("insert_tool")
        now = datetime.now(timezone.utc)
        stored = tool.model_copy(update={"created_at": now, "updated_at": now})
        self.tools[tool.id] = stored
        return stored

    def update_tool(self, tool):
        self._check("update_tool")
        stored = tool.model_copy(update={"updated_at": datetime.now(timezone.utc)})
        self.tools[tool.id] = stored
        return stored

    def delete_tool(self, tool_id, organization_id):
        self._check("delete_tool")
        self.local_attachments = [pair for pair in self.local_attachments if pair[1] != tool_id]
        return self.tools.pop(tool_id, None) is not None

    # Agents

    def get_agent(self, agent_id, organization_id=None):
        self._check("get_agent")
        return self.agents.get(agent_id)

    def list_agents(self, organization_id):
        return [a for a in self.agents.values() if a.organization_id == organization_id and a.assistant_id]

    # Local attachments

    def list_local_attachment_tool_ids(self, agent_id, organization_id=None):
        return [tool_id for a_id, tool_id in self.local_attachments if a_id == agent_id]

    def has_local_attachment(self, agent_id, tool_id, organization_id=None):
        return (agent_id, tool_id) in self.local_attachments

    def insert_local_attachment(self, agent_id, tool_id, organization_id=None):
        self._check("insert_local_attachment")
        self.local_attachments.append((agent_id, tool_id))

    def delete_local_attachment(self, agent_id, tool_id, organization_id=None):
        if (agent_id, tool_id) in self.local_attachments:
            self.local_attachments.remove((agent_id, tool_id))
            return True
        return False

    def delete_local_attachments_for_tool(self, tool_id, organization_id=None):
        before = len(self.local_attachments)
        self.local_attachments = [pair for pair in self.local_attachments if pair[1] != tool_id]
        return before - len(self.local_attachments)

    # Sending numbers

    def get_phone_number(self, phone_number_id, organization_id):
        self._check("get_phone_number")
        number = self.phone_numbers.get(phone_number_id)
        return number if number and number.organization_id == organization_id else None

    def get_phone_number_by_number(self, phone_number, organization_id):
        self._check("get_phone_number")
        for number in self.phone_numbers.values():
            if number.phone_number == phone_number and number.organization_id == organization_id:
                return number
        return None


class FakePlatform(VapiClient):
    """
    VapiClient with the HTTP layer replaced by an in-memory platform.

    failures maps an operation name to the exception it raises.
    """

    def __init__(self):
        super().__init__(api_key="test-key", base_url="https://vapi.test", timeout=1)
        self.tools: Dict[str, Dict[str, Any]] = {}
        self.assistants: Dict[str, Dict[str, Any]] = {}
        self.failures: Dict[str, Exception] = {}
        self.calls: List[tuple] = []
        self._next_id = 0

    def add_assistant(self, assistant_id: str, tool_ids=None) -> None:
        self.assistants[assistant_id] = {
            "id": assistant_id,
            "model": {"provider": "openai", "model": "gpt-4o", "toolIds": list(tool_ids or [])},
        }

    def assistant_tool_ids(self, assistant_id: str) -> List[str]:
        return list(self.assistants[assistant_id]["model"].get("toolIds") or [])

    def calls_for(self, operation: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == operation]

    async def _request(self, method, path, operation, payload=None):
        self.calls.append((operation, path, copy.deepcopy(payload)))
        if operation in self.failures:
            raise self.failures[operation]

        resource_id = path.rsplit("/", 1)[-1]
        if operation == "create_tool":
            self._next_id += 1
            tool_id = f"ext-{self._next_id}"
            self.tools[tool_id] = {**copy.deepcopy(payload), "id": tool_id}
            return copy.deepcopy(self.tools[tool_id])
        if operation == "update_tool":
            if resource_id not in self.tools:
                raise ExternalPlatformFailed("Tool not found", status_code=404)
            self.tools[resource_id].update(copy.deepcopy(payload))
            return copy.deepcopy(self.tools[resource_id])
        if operation == "delete_tool":
            if resource_id not in self.tools:
                raise ExternalPlatformFailed("Tool not found", status_code=404)
            del self.tools[resource_id]
            return None
        if operation == "get_assistant":
            if resource_id not in self.assistants:
                raise ExternalPlatformFailed("Assistant not found", status_code=404)
            return copy.deepcopy(self.assistants[resource_id])
        if operation == "update_assistant":
            if resource_id not in self.assistants:
                raise ExternalPlatformFailed("Assistant not found", status_code=404)
            self.assistants[resource_id]["model"] = copy.deepcopy(payload["model"])
            return copy.deepcopy(self.assistants[resource_id])
        raise AssertionError(f"Unexpected platform operation {operation}")


class FakeSmsSender:
    """Records sends; recipients in failures raise MessagingProviderFailed."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.failures = set()

    async def send(self, credentials, from_number, to_number, body):
        if to_number in self.failures:
            raise MessagingProviderFailed(f"SMS to {to_number} failed: undeliverable", recipient=to_number)
        self.sent.append({"from": from_number, "to": to_number, "body": body, "credentials": credentials})
        return SmsSendResult(id=f"SM{len(self.sent)}", status="queued")


def make_tool(**overrides) -> Tool:
    values = {
        "id": "tool-1",
        "organization_id": ORG_ID,
        "type": "automation_action",
        "name": "lookup_contact",
        "label": "Lookup Contact",
        "description": "Look up the caller in the CRM",
        "function_schema": {"name": "lookup_contact", "description": "", "parameters": {"type": "object", "properties": {}, "required": []}},
        "static_config": {"params": {}},
        "config_metadata": {},
        "external_tool_id": None,
        "execute_on_call_start": False,
        "attach_to_agent": True,
    }
    values.update(overrides)
    return Tool(**values)


@pytest.fixture
def store():
    return FakeToolStore()


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def sms_sender():
    return FakeSmsSender()


@pytest.fixture
def action_client():
    client = MagicMock()
    client.run_action = AsyncMock(
        return_value=ActionRunResult(success=True, return_value={"contact": {"id": "c-1"}}, exports={"$summary": "Found 1"}, logs=[])
    )
    return client


@pytest.fixture
def manager(store, platform):
    return ToolLifecycleManager(store, platform, base_url=BASE_URL)


@pytest.fixture
def engine(store, action_client, sms_sender):
    return ToolExecutionEngine(store, action_client, sms_sender, audit_logger=None)
