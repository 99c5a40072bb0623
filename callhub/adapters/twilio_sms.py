"""SMS sending through Twilio using per-number credentials."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from callhub.infra.config import config
from callhub.infra.error_handler import MessagingProviderFailed

logger = logging.getLogger(__name__)


@dataclass
class SmsSendResult:
    id: str
    status: str


class TwilioSmsSender:
    """Sends one SMS per call. The Twilio SDK is blocking, so it runs in a worker thread."""

    def __init__(self, timeout: Optional[float] = None, client_factory: Callable[..., Any] = Client):
        self.timeout = timeout or config.SMS_TIMEOUT_SECONDS
        self._client_factory = client_factory

    async def send(
        self,
        credentials: Dict[str, Any],
        from_number: str,
        to_number: str,
        body: str,
    ) -> SmsSendResult:
        """
        Send a message from an organization number.

        Args:
            credentials: {"accountSid", "authToken"} of the sending number
            from_number: Sending number (E.164)
            to_number: Recipient number (E.164)
            body: Message text

        Returns:
            SmsSendResult with the provider message id and status

        Raises:
            MessagingProviderFailed: On provider error or timeout
        """
        account_sid = credentials.get("accountSid")
        auth_token = credentials.get("authToken")
        if not account_sid or not auth_token:
            raise MessagingProviderFailed("Sending number has no credentials", recipient=to_number)

        def _send():
            client = self._client_factory(account_sid, auth_token)
            return client.messages.create(body=body, from_=from_number, to=to_number)

        try:
            message = await asyncio.wait_for(asyncio.to_thread(_send), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise MessagingProviderFailed(
                f"SMS to {to_number} timed out after {self.timeout}s", recipient=to_number
            ) from e
        except TwilioException as e:
            raise MessagingProviderFailed(f"SMS to {to_number} failed: {e}", recipient=to_number) from e

        logger.info(
            "SMS sent",
            extra={"to": to_number, "from": from_number, "sid": message.sid, "status": message.status},
        )
        return SmsSendResult(id=message.sid, status=str(message.status))
