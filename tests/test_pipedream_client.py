"""Unit tests for the automation-action provider client."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from callhub.adapters.pipedream_client import PipedreamClient
from callhub.infra.error_handler import ActionProviderFailed


def mock_response(json_data, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = json_data
    response.raise_for_status = MagicMock()
    return response


def token_response():
    return mock_response({"access_token": "pd-token", "expires_in": 3600})


class TestPipedreamClient:
    """Test action invocation and token handling."""

    @pytest.fixture
    def client(self):
        return PipedreamClient(
            client_id="client",
            client_secret="secret",
            project_id="proj_1",
            environment="development",
            base_url="https://pd.test/v1",
            timeout=10,
        )

    def _mock_client(self, mock_client_class, *responses):
        mock_client = AsyncMock()
        mock_client.post = AsyncMock(side_effect=list(responses))
        mock_client.__aenter__ = AsyncMock(return_value=mock_client)
        mock_client.__aexit__ = AsyncMock(return_value=None)
        mock_client_class.return_value = mock_client
        return mock_client

    @pytest.mark.asyncio
    async def test_run_action_success(self, client):
        run = mock_response({"ret": {"id": "c-1"}, "exports": {"$summary": "ok"}, "os": [{"k": "log", "msg": "hi"}]})
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = self._mock_client(mock_client_class, token_response(), run)

            result = await client.run_action("org-1", "hubspot-search-crm", {"email": "a@example.com"})

            assert result.success
            assert result.return_value == {"id": "c-1"}
            assert result.exports == {"$summary": "ok"}
            assert result.logs == [{"k": "log", "msg": "hi"}]

            token_call, run_call = mock_client.post.call_args_list
            assert token_call[0][0] == "https://pd.test/v1/oauth/token"
            assert run_call[0][0] == "https://pd.test/v1/connect/proj_1/actions/run"
            assert run_call[1]["headers"]["Authorization"] == "Bearer pd-token"
            assert run_call[1]["headers"]["X-PD-Environment"] == "development"
            assert run_call[1]["json"] == {
                "id": "hubspot-search-crm",
                "external_user_id": "org-1",
                "configured_props": {"email": "a@example.com"},
            }

    @pytest.mark.asyncio
    async def test_token_is_reused(self, client):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = self._mock_client(
                mock_client_class, token_response(), mock_response({"ret": 1}), mock_response({"ret": 2})
            )

            await client.run_action("org-1", "a", {})
            await client.run_action("org-1", "a", {})

            assert mock_client.post.call_count == 3

    @pytest.mark.asyncio
    async def test_error_log_entry_raises(self, client):
        run = mock_response({"ret": None, "os": [{"k": "error", "err": {"message": "Invalid email"}}]})
        with patch("httpx.AsyncClient") as mock_client_class:
            self._mock_client(mock_client_class, token_response(), run)

            with pytest.raises(ActionProviderFailed) as exc_info:
                await client.run_action("org-1", "hubspot-search-crm", {})

            assert "Invalid email" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unauthorized_clears_token(self, client):
        request = httpx.Request("POST", "https://pd.test/v1/connect/proj_1/actions/run")
        run = mock_response({}, status_code=401)
        run.raise_for_status.side_effect = httpx.HTTPStatusError(
            "401", request=request, response=httpx.Response(401, request=request)
        )
        with patch("httpx.AsyncClient") as mock_client_class:
            self._mock_client(mock_client_class, token_response(), run)

            with pytest.raises(ActionProviderFailed) as exc_info:
                await client.run_action("org-1", "a", {})

            assert exc_info.value.status_code == 401
            assert client._access_token is None

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        client = PipedreamClient(project_id="proj_1", base_url="https://pd.test/v1")
        client.client_id = None

        with patch("httpx.AsyncClient") as mock_client_class:
            with pytest.raises(ActionProviderFailed) as exc_info:
                await client.run_action("org-1", "a", {})

            assert "credentials" in exc_info.value.message
            mock_client_class.assert_not_called()

    @pytest.mark.asyncio
    async def test_run_timeout(self, client):
        request = httpx.Request("POST", "https://pd.test/v1/connect/proj_1/actions/run")
        with patch("httpx.AsyncClient") as mock_client_class:
            self._mock_client(mock_client_class, token_response(), httpx.ReadTimeout("timed out", request=request))

            with pytest.raises(ActionProviderFailed) as exc_info:
                await client.run_action("org-1", "hubspot-search-crm", {})

            assert "request failed" in exc_info.value.message
            assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_token_transport_error(self, client):
        request = httpx.Request("POST", "https://pd.test/v1/oauth/token")
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = self._mock_client(mock_client_class, httpx.ConnectError("refused", request=request))

            with pytest.raises(ActionProviderFailed) as exc_info:
                await client.run_action("org-1", "a", {})

            assert "Token request failed" in exc_info.value.message
            assert mock_client.post.call_count == 1
            assert client._access_token is None

    @pytest.mark.asyncio
    async def test_non_json_body(self, client):
        run = mock_response(None)
        run.json.side_effect = ValueError("Expecting value")
        with patch("httpx.AsyncClient") as mock_client_class:
            self._mock_client(mock_client_class, token_response(), run)

            with pytest.raises(ActionProviderFailed) as exc_info:
                await client.run_action("org-1", "hubspot-search-crm", {})

            assert "non-JSON" in exc_info.value.message
