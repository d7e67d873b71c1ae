"""Tests for CredentialBroker."""

import asyncio
import base64
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest

from databricks_driver.auth.credentials import Credential, CredentialBroker
from databricks_driver.exceptions import AuthExchangeError, ConfigurationError
from databricks_driver.models import TokenResponse

HOST = "dbc-123.cloud.databricks.com"


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def token_response(access_token: str = "access123", expires_in: int = 3600) -> Mock:
    response = Mock()
    response.is_success = True
    response.status_code = 200
    response.json.return_value = {"access_token": access_token, "expires_in": expires_in}
    return response


class TestCredential:
    """Test cases for Credential."""

    def test_not_expired_before_expiry(self):
        assert Credential(token="t", expires_at=100.0).is_expired(99.9) is False

    def test_expired_at_expiry(self):
        assert Credential(token="t", expires_at=100.0).is_expired(100.0) is True


class TestCredentialBrokerConstruction:
    """Credential mode checks happen at construction."""

    def test_oauth_mode(self):
        broker = CredentialBroker(HOST, client_id="id", client_secret="secret")
        assert broker.uses_oauth is True

    def test_password_mode(self):
        broker = CredentialBroker(HOST, password="dapi123")
        assert broker.uses_oauth is False

    @pytest.mark.asyncio
    async def test_empty_client_id_is_password_mode(self):
        broker = CredentialBroker(HOST, client_id="", password="dapi123")

        assert broker.uses_oauth is False
        assert await broker.get_auth_header() == "Bearer dapi123"

    def test_client_id_without_secret(self):
        with pytest.raises(ConfigurationError, match="No OAuth Client Secret provided"):
            CredentialBroker(HOST, client_id="id")

    def test_secret_without_client_id(self):
        with pytest.raises(ConfigurationError, match="No OAuth Client ID provided"):
            CredentialBroker(HOST, client_secret="secret")

    def test_both_modes(self):
        with pytest.raises(ConfigurationError, match="mutually exclusive"):
            CredentialBroker(HOST, client_id="id", client_secret="secret", password="dapi123")

    def test_no_credentials(self):
        with pytest.raises(ConfigurationError, match="No credentials provided"):
            CredentialBroker(HOST)


class TestCredentialBroker:
    """Test cases for token exchange and caching."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def broker(self, clock):
        return CredentialBroker(HOST, client_id="client123", client_secret="secret123", clock=clock)

    @pytest.mark.asyncio
    async def test_exchange_request_shape(self, broker):
        """Test the exchange posts Basic auth and the client-credentials form body."""
        with patch.object(broker.http_client, "post", return_value=token_response()) as mock_post:
            token = await broker.get_valid_token()

        assert token == "access123"
        mock_post.assert_called_once()
        call_args = mock_post.call_args
        assert call_args[0][0] == f"https://{HOST}/oidc/v1/token"
        expected_basic = base64.b64encode(b"client123:secret123").decode()
        assert call_args[1]["headers"]["Authorization"] == f"Basic {expected_basic}"
        assert call_args[1]["data"] == {"grant_type": "client_credentials", "scope": "all-apis"}

    @pytest.mark.asyncio
    async def test_token_reused_until_skewed_expiry(self, broker, clock):
        """A 3600s token from T is reused at T+3000 and refreshed once by T+3541."""
        responses = [token_response("first"), token_response("second")]
        with patch.object(broker.http_client, "post", side_effect=responses) as mock_post:
            assert await broker.get_valid_token() == "first"

            clock.now += 3000
            assert await broker.get_valid_token() == "first"
            assert mock_post.call_count == 1

            clock.now += 539
            assert await broker.get_valid_token() == "first"
            assert mock_post.call_count == 1

            clock.now += 2
            assert await broker.get_valid_token() == "second"
            assert await broker.get_valid_token() == "second"
            assert mock_post.call_count == 2

    @pytest.mark.asyncio
    async def test_non_success_raises(self, broker):
        """Test a non-2xx exchange raises AuthExchangeError."""
        response = Mock()
        response.is_success = False
        response.status_code = 401
        response.text = '{"error": "invalid_client"}'

        with (
            patch.object(broker.http_client, "post", return_value=response),
            pytest.raises(AuthExchangeError, match="401") as exc_info,
        ):
            await broker.get_valid_token()

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_malformed_payload_raises(self, broker):
        """Test a payload without access_token raises AuthExchangeError."""
        response = token_response()
        response.json.return_value = {"token_type": "Bearer"}

        with (
            patch.object(broker.http_client, "post", return_value=response),
            pytest.raises(AuthExchangeError, match="Malformed token response"),
        ):
            await broker.get_valid_token()

    @pytest.mark.asyncio
    async def test_transport_error_raises(self, broker):
        with (
            patch.object(broker.http_client, "post", side_effect=httpx.ConnectError("refused")),
            pytest.raises(AuthExchangeError, match="refused"),
        ):
            await broker.get_valid_token()

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_previous_credential(self, broker, clock):
        """Test that a failed refresh leaves the cached credential untouched."""
        failure = Mock()
        failure.is_success = False
        failure.status_code = 503
        failure.text = "unavailable"

        with patch.object(broker.http_client, "post", side_effect=[token_response("first"), failure]):
            await broker.get_valid_token()
            cached = broker._credential

            clock.now += 4000
            with pytest.raises(AuthExchangeError):
                await broker.get_valid_token()

        assert broker._credential is cached
        assert broker._credential.token == "first"

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_exchange(self, broker):
        """Test that concurrent callers during refresh wait for a single exchange."""
        calls = 0

        async def slow_exchange():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return TokenResponse(access_token="shared", expires_in=3600)

        with patch.object(broker, "_exchange_client_credentials", side_effect=slow_exchange):
            tokens = await asyncio.gather(*(broker.get_valid_token() for _ in range(5)))

        assert tokens == ["shared"] * 5
        assert calls == 1

    @pytest.mark.asyncio
    async def test_get_valid_token_requires_oauth(self):
        broker = CredentialBroker(HOST, password="dapi123")
        with pytest.raises(ConfigurationError, match="not configured"):
            await broker.get_valid_token()


class TestAuthHeader:
    """Test cases for the per-call auth scheme."""

    @pytest.mark.asyncio
    async def test_password_as_bearer(self):
        broker = CredentialBroker(HOST, password="dapi123")
        assert await broker.get_auth_header() == "Bearer dapi123"
        assert await broker.get_sql_password() == "dapi123"

    @pytest.mark.asyncio
    async def test_oauth_bearer(self):
        broker = CredentialBroker(HOST, client_id="id", client_secret="secret")
        with patch.object(broker, "get_valid_token", new=AsyncMock(return_value="oauth-token")):
            assert await broker.get_auth_header() == "Bearer oauth-token"
            assert await broker.get_sql_password() == "oauth-token"

    @pytest.mark.asyncio
    async def test_close_only_owned_client(self):
        shared = Mock()
        shared.aclose = AsyncMock()
        broker = CredentialBroker(HOST, password="dapi123", http_client=shared)

        await broker.close()

        shared.aclose.assert_not_called()
