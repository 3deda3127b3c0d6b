"""Async Dynamics 365 Web API client with retry and structured errors."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..audit import AuditLogger
from ..odata.expressions import (
    ODataExpressionError,
    build_query_string,
    format_guid,
    validate_field_name,
)
from ..tenancy.initiatives import is_guid
from .auth import TokenProvider
from .errors import (
    D365ConfigurationError,
    D365Error,
    D365ResponseError,
    D365TransportError,
    RetryExhaustedError,
    format_error_for_logging,
    parse_error,
)
from .retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "v9.2"

D365_HEADERS = {
    "OData-MaxVersion": "4.0",
    "OData-Version": "4.0",
    "Accept": "application/json",
    "Content-Type": "application/json; charset=utf-8",
    "Prefer": 'odata.include-annotations="*"',
}


class _NoContent:
    """Marker returned for 204 and empty success responses."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_CONTENT"


NO_CONTENT = _NoContent()


class D365Client:
    """Dynamics 365 Web API client.

    Usage:
        async with D365Client(url, provider) as client:
            page = await client.query("tc_everychildleads", {"$top": 10})
            lead = await client.get("tc_everychildleads", lead_id)
    """

    def __init__(
        self,
        base_url: str | None,
        token_provider: TokenProvider,
        *,
        api_version: str = DEFAULT_API_VERSION,
        policy: RetryPolicy | None = None,
        timeout: float = 30.0,
        audit: AuditLogger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not base_url:
            raise D365ConfigurationError("D365 URL is not configured")

        self.base_url = base_url.rstrip("/")
        self.api_url = f"{self.base_url}/api/data/{api_version}/"
        self.token_provider = token_provider
        self.policy = policy or RetryPolicy()
        self.audit = audit or AuditLogger()

        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            headers=D365_HEADERS,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()

    def _redact_url(self, url: str) -> str:
        return url.replace(self.base_url, "[D365_URL]")

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return NO_CONTENT
        if "application/json" in response.headers.get("content-type", ""):
            try:
                return response.json()
            except ValueError as exc:
                raise D365ResponseError(f"Malformed JSON in {response.status_code} response") from exc
        return response.text

    async def execute(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
        *,
        deadline: float | None = None,
        user_id: str | None = None,
        resource: str | None = None,
    ) -> Any:
        """Send one logical request, retrying transient failures.

        Args:
            method: GET, POST, PATCH or DELETE
            path: Path relative to the API root, e.g. ``tc_everychildleads(<id>)``
            params: OData query params, encoded with ``build_query_string``
            deadline: ``time.monotonic()`` value after which no attempt may run

        Returns:
            Parsed JSON, response text, or ``NO_CONTENT``.

        Raises:
            D365ConfigurationError: No access token could be obtained
            D365Error: Non-retryable upstream failure or undecodable body
            RetryExhaustedError: Retries or deadline used up
        """
        entity = resource or path.split("(", 1)[0]
        try:
            token = await self.token_provider.get_access_token()
            if not token:
                raise D365ConfigurationError("Unable to authenticate with D365: no access token")
        except D365ConfigurationError as exc:
            logger.error("D365 %s %s: %s", method, entity, exc.message)
            self.audit.query_failed(
                user_id,
                entity,
                "Unable to authenticate with D365",
                exc.code,
                filter=(params or {}).get("$filter"),
            )
            raise

        query = build_query_string(params or {})
        url = f"{path}?{query}" if query else path
        request_headers = {"Authorization": f"Bearer {token}", **(headers or {})}
        loggable_url = self._redact_url(self.api_url + url)

        async def attempt() -> Any:
            try:
                response = await self._client.request(
                    method=method, url=url, json=json, headers=request_headers
                )
            except httpx.TimeoutException as exc:
                raise D365TransportError(
                    f"Request timed out: {method} {loggable_url}", timed_out=True
                ) from exc
            except httpx.TransportError as exc:
                raise D365TransportError(
                    f"Network error ({type(exc).__name__}): {method} {loggable_url}"
                ) from exc

            if response.is_success:
                return self._decode(response)

            raise D365Error(
                parse_error(
                    response.status_code,
                    response.content,
                    response.reason_phrase,
                    self.policy.retryable_status_codes,
                )
            )

        def on_retry(attempt_no: int, delay: float, exc: BaseException) -> None:
            logger.warning(
                "D365 %s %s failed on attempt %d, retrying in %.2fs: %s",
                method, loggable_url, attempt_no, delay, exc,
            )

        logger.debug("D365 %s %s", method, loggable_url)
        try:
            return await with_retry(attempt, self.policy, deadline=deadline, on_retry=on_retry)
        except RetryExhaustedError as exc:
            parsed = exc.parsed
            logger.error(
                "D365 %s %s gave up after %d attempts (%.2fs delay): %s",
                method, loggable_url, exc.attempts, exc.total_delay,
                format_error_for_logging(parsed) if parsed else exc.message,
            )
            self.audit.query_failed(
                user_id,
                entity,
                parsed.safe_message if parsed else "Retries exhausted",
                parsed.error_code if parsed else None,
                attempts=exc.attempts,
                totalDelay=exc.total_delay,
                deadlineExceeded=exc.deadline_exceeded,
                filter=(params or {}).get("$filter"),
            )
            raise
        except D365Error as exc:
            # Single-record 404s are routine
            if exc.status_code != 404:
                logger.error("%s (%s %s)", format_error_for_logging(exc.parsed), method, loggable_url)
                self.audit.query_failed(
                    user_id,
                    entity,
                    exc.parsed.safe_message,
                    exc.parsed.error_code,
                    statusCode=exc.status_code,
                    filter=(params or {}).get("$filter"),
                )
            raise

    async def query(self, entity_set: str, params: dict[str, Any] | None = None, **kwargs) -> dict:
        """GET a collection. Returns ``{"value": [...], "@odata.count": ..., ...}``."""
        validate_field_name(entity_set)
        result = await self.execute("GET", entity_set, params, **kwargs)
        return result if isinstance(result, dict) else {"value": []}

    async def get(
        self, entity_set: str, record_id: str, params: dict[str, Any] | None = None, **kwargs
    ) -> dict | None:
        """GET one record by id. ``None`` when it does not exist."""
        try:
            result = await self.execute("GET", self._record_path(entity_set, record_id), params, **kwargs)
        except D365Error as exc:
            if exc.status_code == 404:
                return None
            raise
        return result if isinstance(result, dict) else None

    async def create(self, entity_set: str, data: dict[str, Any], **kwargs) -> Any:
        validate_field_name(entity_set)
        return await self.execute("POST", entity_set, json=data, **kwargs)

    async def update(self, entity_set: str, record_id: str, data: dict[str, Any], **kwargs) -> Any:
        return await self.execute("PATCH", self._record_path(entity_set, record_id), json=data, **kwargs)

    async def delete(self, entity_set: str, record_id: str, **kwargs) -> Any:
        return await self.execute("DELETE", self._record_path(entity_set, record_id), **kwargs)

    @staticmethod
    def _record_path(entity_set: str, record_id: str) -> str:
        validate_field_name(entity_set)
        guid = format_guid(record_id)
        if not is_guid(guid):
            raise ODataExpressionError(f"Record id is not a GUID: {record_id!r}")
        return f"{entity_set}({guid})"
