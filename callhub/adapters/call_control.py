"""Live-call control: push context into an in-progress conversation."""

import logging
from typing import Optional

import httpx

from callhub.infra.config import config

logger = logging.getLogger(__name__)


class CallControlClient:
    """Posts messages to a call's control URL."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout or config.CALL_CONTROL_TIMEOUT_SECONDS

    async def inject_system_context(self, control_url: str, content: str) -> None:
        """
        Add a system message to a live call without triggering a reply.

        Raises:
            httpx.HTTPError: If the control endpoint rejects or times out
        """
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                control_url,
                json={
                    "type": "add-message",
                    "message": {"role": "system", "content": content},
                    "triggerResponseEnabled": False,
                },
            )
            response.raise_for_status()

        logger.debug("Injected system context", extra={"content_length": len(content)})
