"""API tests for tool management, agent tools, and execution callbacks."""

import pytest
from fastapi.testclient import TestClient

from callhub.api.dependencies import (
    get_execution_engine,
    get_lifecycle_manager,
    get_on_call_start_orchestrator,
    get_tool_store,
    get_vapi_client,
)
from callhub.api.routers.tool_execution import extract_call_parameters
from callhub.infra.error_handler import ExternalPlatformFailed
from callhub.main import app
from callhub.services.on_call_start import OnCallStartReport
from tests.conftest import ORG_ID, OTHER_ORG_ID, make_tool

HEADERS = {"X-Organization-ID": ORG_ID, "X-User-ID": "user-1"}

ACTION_CONFIG = {
    "type": "automation_action",
    "label": "Lookup Contact",
    "description": "Find the caller in the CRM",
    "parameters": [
        {"name": "email", "description": "Contact email", "required": True},
        {"name": "limit", "type": "number", "mode": "fixed", "value": 5},
    ],
    "action": {"app": "hubspot", "app_name": "HubSpot", "action_key": "hubspot-search-crm", "action_name": "Search CRM"},
}


class RecordingOrchestrator:
    """Stands in for OnCallStartOrchestrator; records background runs."""

    def __init__(self):
        self.runs = []

    async def run(self, agent_id, call_id, caller_number, called_number, control_url):
        self.runs.append({
            "agent_id": agent_id,
            "call_id": call_id,
            "caller_number": caller_number,
            "called_number": called_number,
            "control_url": control_url,
        })
        return OnCallStartReport(call_id=call_id, agent_id=agent_id)


@pytest.fixture
def orchestrator():
    return RecordingOrchestrator()


@pytest.fixture
def client(store, platform, manager, engine, orchestrator):
    app.dependency_overrides[get_tool_store] = lambda: store
    app.dependency_overrides[get_vapi_client] = lambda: platform
    app.dependency_overrides[get_lifecycle_manager] = lambda: manager
    app.dependency_overrides[get_execution_engine] = lambda: engine
    app.dependency_overrides[get_on_call_start_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestToolsAPI:
    """Test organization-scoped tool management."""

    def test_create_tool(self, client, platform):
        response = client.post(f"/organizations/{ORG_ID}/tools", json=ACTION_CONFIG, headers=HEADERS)

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "lookup_contact"
        assert data["external_tool_id"] == "ext-1"
        assert data["type_label"] == "HubSpot - Search CRM"
        assert data["async"] is False
        assert data["static_config"] == {"params": {"limit": 5}}
        assert "ext-1" in platform.tools

    def test_requires_organization_header(self, client):
        response = client.get(f"/organizations/{ORG_ID}/tools")
        assert response.status_code == 401

    def test_other_organization_forbidden(self, client):
        response = client.get(f"/organizations/{OTHER_ORG_ID}/tools", headers=HEADERS)
        assert response.status_code == 403

    def test_invalid_config(self, client):
        response = client.post(
            f"/organizations/{ORG_ID}/tools",
            json={"type": "sms", "label": "Text"},
            headers=HEADERS,
        )

        assert response.status_code == 400
        data = response.json()
        assert data["error_type"] == "ValidationFailed"
        assert "sms tools require a sender" in data["errors"]

    def test_platform_failure(self, client, platform, store):
        platform.failures["create_tool"] = ExternalPlatformFailed("Platform create_tool failed with status 503", status_code=503)

        response = client.post(f"/organizations/{ORG_ID}/tools", json=ACTION_CONFIG, headers=HEADERS)

        assert response.status_code == 502
        assert response.json()["error_type"] == "ExternalCreateFailed"
        assert response.json()["retryable"] is True
        assert store.tools == {}

    def test_get_list_update_delete(self, client, store):
        created = client.post(f"/organizations/{ORG_ID}/tools", json=ACTION_CONFIG, headers=HEADERS).json()
        tool_url = f"/organizations/{ORG_ID}/tools/{created['id']}"

        assert client.get(tool_url, headers=HEADERS).json()["id"] == created["id"]
        listing = client.get(f"/organizations/{ORG_ID}/tools", headers=HEADERS).json()
        assert listing["count"] == 1

        response = client.patch(tool_url, json={**ACTION_CONFIG, "description": "Search contacts"}, headers=HEADERS)
        assert response.status_code == 200
        assert response.json()["description"] == "Search contacts"

        assert client.delete(tool_url, headers=HEADERS).status_code == 204
        assert client.get(tool_url, headers=HEADERS).status_code == 404

    def test_tool_of_other_organization(self, client, store):
        store.add_tool(make_tool(id="foreign", organization_id=OTHER_ORG_ID))

        response = client.get(f"/organizations/{ORG_ID}/tools/foreign", headers=HEADERS)

        assert response.status_code == 403

    def test_llm_prompt(self, client):
        created = client.post(f"/organizations/{ORG_ID}/tools", json=ACTION_CONFIG, headers=HEADERS).json()

        response = client.get(f"/organizations/{ORG_ID}/tools/{created['id']}/llm-prompt", headers=HEADERS)

        prompt = response.json()["prompt"]
        assert prompt.startswith("# Tool: lookup_contact")
        assert "- **email** (string) (required): Contact email" in prompt
        assert "limit" not in prompt


class TestAgentToolsAPI:
    """Test attach, detach, and listing."""

    def test_attach_list_detach(self, client, store, platform):
        store.add_agent("agent-1", assistant_id="asst-1")
        platform.add_assistant("asst-1", ["ext-unmanaged"])
        created = client.post(f"/organizations/{ORG_ID}/tools", json=ACTION_CONFIG, headers=HEADERS).json()
        base = f"/organizations/{ORG_ID}/agents/agent-1/tools"

        response = client.post(f"{base}/attach", json={"tool_id": created["id"]}, headers=HEADERS)
        assert response.status_code == 200
        assert response.json() == {"agent_id": "agent-1", "tool_id": created["id"], "mode": "platform", "changed": True}

        again = client.post(f"{base}/attach", json={"tool_id": created["id"]}, headers=HEADERS)
        assert again.status_code == 409
        assert again.json()["error_type"] == "AlreadyAttached"

        listing = client.get(base, headers=HEADERS).json()
        assert [item["tool"]["id"] for item in listing["items"]] == [created["id"]]
        assert listing["items"][0]["mode"] == "platform"
        assert listing["unmanaged_external_tool_ids"] == ["ext-unmanaged"]

        response = client.post(f"{base}/detach", json={"tool_id": created["id"]}, headers=HEADERS)
        assert response.json()["changed"] is True
        assert platform.assistant_tool_ids("asst-1") == ["ext-unmanaged"]

    def test_attach_unknown_agent(self, client):
        created = client.post(f"/organizations/{ORG_ID}/tools", json=ACTION_CONFIG, headers=HEADERS).json()

        response = client.post(
            f"/organizations/{ORG_ID}/agents/missing/tools/attach",
            json={"tool_id": created["id"]},
            headers=HEADERS,
        )

        assert response.status_code == 404

    def test_attach_requires_tool_id(self, client):
        response = client.post(f"/organizations/{ORG_ID}/agents/agent-1/tools/attach", json={}, headers=HEADERS)
        assert response.status_code == 422


class TestToolExecutionAPI:
    """Test the voice platform callbacks."""

    def test_execute_nested_parameters(self, client, store, action_client):
        store.add_tool(make_tool(config_metadata={"action": {"action_key": "hubspot-search-crm"}}))

        response = client.post(
            "/api/tools/tool-1/execute",
            json={
                "parameters": {"email": "jane@example.com", "_dummy": ""},
                "metadata": {"callerPhoneNumber": "+15551234567", "calledPhoneNumber": "+15559876543"},
            },
        )

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["result"] == {"contact": {"id": "c-1"}}
        assert action_client.run_action.call_args[0][2] == {"email": "jane@example.com"}

    def test_execute_unknown_tool(self, client):
        response = client.post("/api/tools/missing/execute", json={})

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Tool not found"}

    def test_execute_failure(self, client, store):
        store.add_tool(make_tool(type="knowledge_query"))

        response = client.post("/api/tools/tool-1/execute", json={"query": "hours"})

        assert response.status_code == 500
        assert response.json()["error"] == "Tool type 'knowledge_query' not yet implemented"

    def test_execute_invalid_json(self, client):
        response = client.post(
            "/api/tools/tool-1/execute",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400

    def test_execute_start_tools(self, client, orchestrator):
        body = {
            "agentId": "agent-1",
            "callerNumber": "+15551234567",
            "calledNumber": "+15559876543",
            "controlUrl": "https://calls.example.com/control",
        }

        response = client.post("/api/calls/call-1/execute-start-tools", json=body)

        assert response.status_code == 202
        assert response.json() == {"success": True, "callRecordId": "call-1"}
        assert orchestrator.runs == [{
            "agent_id": "agent-1",
            "call_id": "call-1",
            "caller_number": "+15551234567",
            "called_number": "+15559876543",
            "control_url": "https://calls.example.com/control",
        }]

    def test_execute_start_tools_missing_fields(self, client, orchestrator):
        response = client.post("/api/calls/call-1/execute-start-tools", json={"agentId": "agent-1"})

        assert response.status_code == 400
        assert "callerNumber" in response.json()["detail"]
        assert orchestrator.runs == []


class TestExtractCallParameters:
    def test_flat_body(self):
        body = {"email": "a@example.com", "_dummy": "", "metadata": {"callerPhoneNumber": "+1"}}
        assert extract_call_parameters(body) == {"email": "a@example.com"}

    def test_nested_body(self):
        assert extract_call_parameters({"parameters": {"q": "x"}, "other": 1}) == {"q": "x"}


class TestHealthAPI:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["service"] == "callhub-tools"

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
