"""Automation-action provider (Pipedream Connect) client."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from callhub.infra.config import config
from callhub.infra.error_handler import ActionProviderFailed

logger = logging.getLogger(__name__)

# Refresh the access token this many seconds before it expires
TOKEN_EXPIRY_MARGIN_SECONDS = 60


@dataclass
class ActionRunResult:
    """Outcome of one action invocation."""
    success: bool
    return_value: Any = None
    exports: Dict[str, Any] = field(default_factory=dict)
    logs: List[Any] = field(default_factory=list)


class PipedreamClient:
    """Runs pre-built integration actions on behalf of an organization."""

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        project_id: Optional[str] = None,
        environment: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.client_id = client_id or config.PIPEDREAM_CLIENT_ID
        self.client_secret = client_secret or config.PIPEDREAM_CLIENT_SECRET
        self.project_id = project_id or config.PIPEDREAM_PROJECT_ID
        self.environment = environment or config.PIPEDREAM_ENVIRONMENT
        self.base_url = (base_url or config.PIPEDREAM_BASE_URL).rstrip("/")
        self.timeout = timeout or config.ACTION_TIMEOUT_SECONDS
        self._access_token: Optional[str] = None
        self._token_expires_at: float = 0.0
        self._token_lock = asyncio.Lock()

    async def _get_access_token(self) -> str:
        """Fetch (or reuse) an OAuth client-credentials token."""
        async with self._token_lock:
            if self._access_token and time.time() < self._token_expires_at:
                return self._access_token

            if not self.client_id or not self.client_secret:
                raise ActionProviderFailed("Action provider credentials are not configured")

            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(
                        f"{self.base_url}/oauth/token",
                        json={
                            "grant_type": "client_credentials",
                            "client_id": self.client_id,
                            "client_secret": self.client_secret,
                        },
                    )
                    response.raise_for_status()
                    data = response.json()
            except httpx.HTTPStatusError as e:
                raise ActionProviderFailed(
                    f"Token request failed with status {e.response.status_code}",
                    status_code=e.response.status_code,
                ) from e
            except httpx.HTTPError as e:
                raise ActionProviderFailed(f"Token request failed: {e}") from e
            except ValueError as e:
                raise ActionProviderFailed("Token response was not valid JSON") from e

            if not isinstance(data, dict) or not data.get("access_token"):
                raise ActionProviderFailed("Token response did not include an access token")

            self._access_token = data["access_token"]
            expires_in = float(data.get("expires_in", 3600))
            self._token_expires_at = time.time() + max(expires_in - TOKEN_EXPIRY_MARGIN_SECONDS, 0)
            return self._access_token

    async def run_action(
        self,
        external_user_id: str,
        action_key: str,
        configured_props: Dict[str, Any],
    ) -> ActionRunResult:
        """
        Invoke an action with fully resolved props.

        Args:
            external_user_id: Owner of the connected accounts (the organization id)
            action_key: Provider action key, e.g. 'hubspot-search-crm'
            configured_props: Merged parameters including any auth binding

        Returns:
            ActionRunResult with the action's return value, exports, and logs

        Raises:
            ActionProviderFailed: On any transport, status, or provider error
        """
        if not self.project_id:
            raise ActionProviderFailed("Action provider project is not configured")

        token = await self._get_access_token()
        url = f"{self.base_url}/connect/{self.project_id}/actions/run"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    url,
                    headers={
                        "Authorization": f"Bearer {token}",
                        "Content-Type": "application/json",
                        "X-PD-Environment": self.environment,
                    },
                    json={
                        "id": action_key,
                        "external_user_id": external_user_id,
                        "configured_props": configured_props,
                    },
                )
                response.raise_for_status()
                data = response.json() or {}
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            if status_code == 401:
                # Force a fresh token next time
                self._access_token = None
            raise ActionProviderFailed(
                f"Action {action_key} failed with status {status_code}",
                status_code=status_code,
            ) from e
        except httpx.HTTPError as e:
            raise ActionProviderFailed(f"Action {action_key} request failed: {e}") from e
        except ValueError as e:
            raise ActionProviderFailed(f"Action {action_key} returned a non-JSON response") from e

        if not isinstance(data, dict):
            raise ActionProviderFailed(f"Action {action_key} returned an unexpected response")

        logs = data.get("os") or []
        errors = [entry for entry in logs if isinstance(entry, dict) and entry.get("k") == "error"]
        if errors:
            logger.warning(
                f"Action {action_key} reported errors",
                extra={"action_key": action_key, "errors": errors},
            )
            raise ActionProviderFailed(f"Action {action_key} reported an error: {errors[0].get('err', errors[0])}")

        return ActionRunResult(
            success=True,
            return_value=data.get("ret"),
            exports=data.get("exports") or {},
            logs=logs,
        )
