"""
Bearer credential management for Databricks REST and SQL access.

The broker handles:
- Choosing the auth scheme: OAuth machine-to-machine or a personal access token
- OAuth client-credentials exchange against the workspace OIDC endpoint
- Caching the access token and refreshing it 60 seconds before it expires
"""

import asyncio
import base64
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx
from pydantic import ValidationError

from databricks_driver.exceptions import AuthExchangeError, ConfigurationError
from databricks_driver.models import TOKEN_EXPIRY_SKEW_SECONDS, TokenResponse
from databricks_driver.utils.logging import get_logger

logger = get_logger(__name__)

TOKEN_SCOPE = "all-apis"


@dataclass(frozen=True)
class Credential:
    """An access token and the epoch second it must be refreshed at."""

    token: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class CredentialBroker:
    """Owns a single cached OAuth access token for one workspace host.

    Exactly one credential mode must be configured: an OAuth client id and secret,
    or a password (personal access token).
    """

    def __init__(
        self,
        host: str,
        client_id: str | None = None,
        client_secret: str | None = None,
        password: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ):
        if client_id and not client_secret:
            raise ConfigurationError("Invalid credentials: No OAuth Client Secret provided")
        if client_secret and not client_id:
            raise ConfigurationError("Invalid credentials: No OAuth Client ID provided")
        if client_id and password:
            raise ConfigurationError(
                "Invalid credentials: OAuth client credentials and a token are mutually exclusive"
            )
        if not client_id and not password:
            raise ConfigurationError("No credentials provided")

        self.host = host
        self._client_id = client_id
        self._client_secret = client_secret
        self._password = password
        self._clock = clock
        self._credential: Credential | None = None
        self._lock = asyncio.Lock()
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=30.0)

    @property
    def uses_oauth(self) -> bool:
        return bool(self._client_id)

    @property
    def token_url(self) -> str:
        return f"https://{self.host}/oidc/v1/token"

    async def _exchange_client_credentials(self) -> TokenResponse:
        """Exchange the client id and secret for an access token."""
        credentials_b64 = base64.b64encode(
            f"{self._client_id}:{self._client_secret}".encode()
        ).decode()
        headers = {
            "Authorization": f"Basic {credentials_b64}",
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }
        data = {"grant_type": "client_credentials", "scope": TOKEN_SCOPE}

        try:
            response = await self.http_client.post(self.token_url, headers=headers, data=data)
        except httpx.HTTPError as exc:
            raise AuthExchangeError(f"Failed to get access token: {exc}") from exc

        if not response.is_success:
            raise AuthExchangeError(
                f"Failed to get access token: {response.status_code} {response.text}",
                status_code=response.status_code,
            )

        try:
            return TokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise AuthExchangeError(
                f"Malformed token response: {exc}", status_code=response.status_code
            ) from exc

    async def get_valid_token(self) -> str:
        """
        Get a valid OAuth access token, exchanging client credentials if necessary.

        Concurrent callers wait on the same refresh rather than each running one.

        Raises:
            ConfigurationError: If the broker is not configured for OAuth
            AuthExchangeError: If the exchange fails. The previously cached token is kept.
        """
        if not self.uses_oauth:
            raise ConfigurationError("OAuth client credentials are not configured")

        credential = self._credential
        if credential is not None and not credential.is_expired(self._clock()):
            return credential.token

        async with self._lock:
            # Another caller may have refreshed while we waited
            credential = self._credential
            if credential is not None and not credential.is_expired(self._clock()):
                return credential.token

            logger.info(
                "Exchanging OAuth client credentials for access token",
                host=self.host,
                expired_at=credential.expires_at if credential else None,
            )
            token_response = await self._exchange_client_credentials()
            new_credential = Credential(
                token=token_response.access_token,
                expires_at=self._clock()
                + token_response.expires_in
                - TOKEN_EXPIRY_SKEW_SECONDS,
            )
            self._credential = new_credential

            logger.info(
                "Access token refreshed successfully",
                host=self.host,
                new_expiry=new_credential.expires_at,
            )
            return new_credential.token

    async def get_auth_header(self) -> str:
        """Authorization header value for REST calls.

        OAuth mode presents the cached access token, password mode presents the
        password as a bearer token.
        """
        if self.uses_oauth:
            return f"Bearer {await self.get_valid_token()}"
        return f"Bearer {self._password}"

    async def get_sql_password(self) -> str:
        """Secret to hand to the SQL connection as its access token."""
        if self.uses_oauth:
            return await self.get_valid_token()
        return self._password or ""

    async def close(self) -> None:
        """Close the HTTP client if the broker created it."""
        if self._owns_http_client:
            await self.http_client.aclose()
