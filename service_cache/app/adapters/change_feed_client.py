"""
HTTP client for the upstream change feed.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from shared.circuit_breaker import CircuitBreaker
from shared.errors import ChangeFeedError, MalformedChangeRecordError
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_on_exception
from ..invalidation.records import ChangeRecord


class HttpChangeFeedClient:
    """Lists upstream changes via ``GET {base_url}/updates?since=<epoch seconds>``."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        *,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.timeout = timeout
        self.logger = get_logger("cache.change_feed_client")
        self._client = client

        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=3,
            recovery_timeout=300.0,
            name="change_feed"
        )
        self.retry_config = retry_config or RetryConfig(
            max_attempts=3,
            base_delay=0.5,
            max_delay=5.0,
            exponential_base=2.0,
            jitter=True
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def list_changes(self, since: datetime) -> List[ChangeRecord]:
        """Fetch and normalise every change reported since ``since``."""
        params = {"since": int(since.timestamp())}

        @retry_on_exception((httpx.TransportError,), config=self.retry_config)
        async def _request() -> httpx.Response:
            url = f"{self.base_url}/updates"
            if self._client is not None:
                return await self._client.get(url, params=params, headers=self._headers())
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.get(url, params=params, headers=self._headers())

        try:
            response = await self.circuit_breaker.call(_request)
        except RetryError as exc:
            self.logger.error("Change feed unreachable", error=str(exc.last_exception), params=params)
            raise ChangeFeedError(str(exc.last_exception), details={"params": params, "attempts": exc.attempts})
        except Exception as exc:
            self.logger.error("Change feed request error", error=str(exc), params=params)
            raise ChangeFeedError(str(exc), details={"params": params})

        if response.status_code != 200:
            details: Dict[str, Any] = {"status_code": response.status_code, "body": response.text[:500]}
            if response.status_code == 401:
                details["hint"] = "authentication may need refresh"
            self.logger.error("Change feed request failed", **details)
            raise ChangeFeedError(f"Unexpected status {response.status_code}", details=details)

        try:
            body = response.json()
        except ValueError as exc:
            raise ChangeFeedError("Change feed returned invalid JSON", details={"error": str(exc)})

        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, list):
            self.logger.warning("Change feed response has no data array", params=params)
            raise ChangeFeedError("Invalid change feed response format", details={"params": params})

        return self._parse(data)

    def _parse(self, data: List[Any]) -> List[ChangeRecord]:
        records = []
        for raw in data:
            try:
                records.append(ChangeRecord.from_raw(raw))
            except MalformedChangeRecordError as exc:
                self.logger.warning("Skipping malformed change record", raw=exc.details.get("record"))
        self.logger.info("Change feed records received", count=len(records), skipped=len(data) - len(records))
        return records
