"""Access tokens for the Dynamics 365 Web API."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Protocol

import httpx

from .errors import D365ConfigurationError

logger = logging.getLogger(__name__)

AZURE_TOKEN_URL = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"

# Refresh this many seconds before the token actually expires
EXPIRY_MARGIN_SECONDS = 60


class TokenProvider(Protocol):
    async def get_access_token(self) -> str | None: ...


class TokenError(D365ConfigurationError):
    """Token endpoint was unreachable or rejected the request."""

    def __init__(self, message: str, error_code: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.error_code = error_code
        self.details = details or {}


class StaticTokenProvider:
    """Returns a fixed token. Useful for scripts and tests."""

    def __init__(self, token: str | None):
        self._token = token

    async def get_access_token(self) -> str | None:
        return self._token


@dataclass
class CachedToken:
    access_token: str
    expires_at: float

    @property
    def is_fresh(self) -> bool:
        return time.monotonic() < self.expires_at - EXPIRY_MARGIN_SECONDS


class ClientCredentialsTokenProvider:
    """Azure AD client-credentials grant for the CRM's ``/.default`` scope.

    Returns ``None`` when tenant, client id or secret is missing so the
    caller can treat it as a configuration error.

    Usage:
        provider = ClientCredentialsTokenProvider(
            tenant_id="...", client_id="...", client_secret="...",
            resource_url="https://org.crm.dynamics.com",
        )
        token = await provider.get_access_token()
    """

    def __init__(
        self,
        tenant_id: str | None,
        client_id: str | None,
        client_secret: str | None,
        resource_url: str | None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.resource_url = (resource_url or "").rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._cached: CachedToken | None = None
        self._lock = asyncio.Lock()

    @property
    def configured(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret and self.resource_url)

    @property
    def scope(self) -> str:
        return f"{self.resource_url}/.default"

    async def get_access_token(self) -> str | None:
        if not self.configured:
            logger.error("D365 client credentials are incomplete; no access token available")
            return None

        if self._cached and self._cached.is_fresh:
            return self._cached.access_token

        async with self._lock:
            if self._cached and self._cached.is_fresh:
                return self._cached.access_token
            self._cached = await self._request_token()
            return self._cached.access_token

    async def _request_token(self) -> CachedToken:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(
                    AZURE_TOKEN_URL.format(tenant_id=self.tenant_id),
                    data={
                        "grant_type": "client_credentials",
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "scope": self.scope,
                    },
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
            except httpx.TransportError as e:
                raise TokenError(
                    f"Token request failed ({type(e).__name__})",
                    error_code="token_endpoint_unreachable",
                ) from e

            if response.status_code != 200:
                try:
                    error_data = response.json() if response.content else {}
                except ValueError:
                    error_data = {"raw_response": response.text[:500]}
                if not isinstance(error_data, dict):
                    error_data = {"raw_response": str(error_data)[:500]}
                raise TokenError(
                    f"Token request failed: {response.status_code}",
                    error_code=error_data.get("error", "token_request_failed"),
                    details={k: v for k, v in error_data.items() if k != "access_token"},
                )

            try:
                data = response.json()
            except ValueError as e:
                raise TokenError("Token response is not JSON", error_code="invalid_response") from e

        if not isinstance(data, dict):
            raise TokenError("Token response is not an object", error_code="invalid_response")
        try:
            access_token = data["access_token"]
        except KeyError as e:
            raise TokenError(
                f"Invalid token response: missing {e}",
                error_code="invalid_response",
                details={"response_keys": list(data.keys())},
            )
        expires_in = int(data.get("expires_in", 3600))
        logger.info("Acquired D365 access token, expires in %ss", expires_in)
        return CachedToken(access_token, time.monotonic() + expires_in)
