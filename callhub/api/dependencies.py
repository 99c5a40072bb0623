"""Process-wide clients and services for the routers.

Each provider builds its object once. Tests replace them through
app.dependency_overrides.
"""

from functools import lru_cache

from fastapi import Depends

from callhub.adapters.call_control import CallControlClient
from callhub.adapters.pipedream_client import PipedreamClient
from callhub.adapters.twilio_sms import TwilioSmsSender
from callhub.adapters.vapi_client import VapiClient
from callhub.services.on_call_start import OnCallStartOrchestrator
from callhub.services.tool_execution_engine import ToolExecutionEngine
from callhub.services.tool_lifecycle import ToolLifecycleManager
from callhub.services.tool_store import ToolStore


@lru_cache()
def get_tool_store() -> ToolStore:
    return ToolStore()


@lru_cache()
def get_vapi_client() -> VapiClient:
    return VapiClient()


@lru_cache()
def get_pipedream_client() -> PipedreamClient:
    return PipedreamClient()


@lru_cache()
def get_sms_sender() -> TwilioSmsSender:
    return TwilioSmsSender()


@lru_cache()
def get_call_control_client() -> CallControlClient:
    return CallControlClient()


def get_lifecycle_manager(
    store: ToolStore = Depends(get_tool_store),
    platform: VapiClient = Depends(get_vapi_client),
) -> ToolLifecycleManager:
    return ToolLifecycleManager(store, platform)


def get_execution_engine(
    store: ToolStore = Depends(get_tool_store),
    action_client: PipedreamClient = Depends(get_pipedream_client),
    sms_sender: TwilioSmsSender = Depends(get_sms_sender),
) -> ToolExecutionEngine:
    return ToolExecutionEngine(store, action_client, sms_sender)


def get_on_call_start_orchestrator(
    store: ToolStore = Depends(get_tool_store),
    platform: VapiClient = Depends(get_vapi_client),
    engine: ToolExecutionEngine = Depends(get_execution_engine),
    call_control: CallControlClient = Depends(get_call_control_client),
) -> OnCallStartOrchestrator:
    return OnCallStartOrchestrator(store, platform, engine, call_control)
