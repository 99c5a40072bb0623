"""Voice-agent platform (Vapi) client for tools and assistant tool lists."""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import httpx

from callhub.infra.config import config
from callhub.infra.error_handler import wrap_platform_error
from callhub.infra.metrics import platform_requests_total, platform_request_duration

logger = logging.getLogger(__name__)


class VapiClient:
    """
    Thin REST client for the voice-agent platform.

    Every request is a single bounded call; failures surface as
    ExternalPlatformFailed carrying the HTTP status (404 included) so callers
    decide whether "already gone" counts as success.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key or config.VAPI_API_KEY
        self.base_url = (base_url or config.VAPI_BASE_URL).rstrip("/")
        self.timeout = timeout or config.PLATFORM_TIMEOUT_SECONDS

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        url = f"{self.base_url}{path}"
        start_time = time.time()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(method, url, headers=self._headers(), json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            error = wrap_platform_error(e, operation)
            platform_requests_total.labels(operation=operation, status=str(error.status_code or "error")).inc()
            logger.warning(
                f"Platform {operation} failed: {error.message}",
                extra={"operation": operation, "status_code": error.status_code},
            )
            raise error from e
        finally:
            platform_request_duration.labels(operation=operation).observe(time.time() - start_time)

        platform_requests_total.labels(operation=operation, status=str(response.status_code)).inc()
        if not response.content:
            return None
        return response.json()

    # Tools

    async def create_tool(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Create a tool. Returns the platform's tool object (with "id")."""
        return await self._request("POST", "/tool", "create_tool", payload)

    async def update_tool(self, tool_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Update a tool in place. The payload must not carry "type"."""
        return await self._request("PATCH", f"/tool/{tool_id}", "update_tool", payload)

    async def delete_tool(self, tool_id: str) -> None:
        await self._request("DELETE", f"/tool/{tool_id}", "delete_tool")

    # Assistants

    async def get_assistant(self, assistant_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/assistant/{assistant_id}", "get_assistant") or {}

    async def update_assistant(self, assistant_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PATCH", f"/assistant/{assistant_id}", "update_assistant", payload)

    async def get_assistant_tool_ids(self, assistant_id: str) -> List[str]:
        assistant = await self.get_assistant(assistant_id)
        return _tool_ids_of(assistant)

    async def modify_assistant_tool_ids(
        self,
        assistant_id: str,
        modify: Callable[[List[str]], List[str]],
    ) -> List[str]:
        """
        Read-modify-write an assistant's tool-id list.

        The platform has no compare-and-swap, so the read and the write are
        kept back to back and the write is skipped when nothing changed.

        Args:
            assistant_id: Assistant id on the platform
            modify: Function from the current list to the new list

        Returns:
            The tool-id list now on the assistant
        """
        assistant = await self.get_assistant(assistant_id)
        current = _tool_ids_of(assistant)
        updated = modify(list(current))
        if updated == current:
            return current

        # Model settings are replaced wholesale by the platform; keep the rest
        model = dict(assistant.get("model") or {})
        model["toolIds"] = updated
        await self.update_assistant(assistant_id, {"model": model})
        return updated


def _tool_ids_of(assistant: Dict[str, Any]) -> List[str]:
    model = assistant.get("model") or {}
    return list(model.get("toolIds") or [])
