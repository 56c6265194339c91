"""
Unit tests for the HTTP change-feed client.
"""

from datetime import datetime, timezone

import httpx
import pytest

from service_cache.app.adapters.change_feed_client import HttpChangeFeedClient
from service_cache.app.invalidation.records import RecordKind
from shared.circuit_breaker import CircuitBreaker
from shared.errors import ChangeFeedError
from shared.retry import RetryConfig


SINCE = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _client(handler, token="feed-token", breaker=None):
    return HttpChangeFeedClient(
        "https://feed.example.com/v4/",
        token,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        circuit_breaker=breaker,
        retry_config=RetryConfig(max_attempts=2, base_delay=0, jitter=False),
    )


class TestHttpChangeFeedClient:
    """Test cases for HttpChangeFeedClient."""

    @pytest.mark.asyncio
    async def test_list_changes_request_and_parsing(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": [
                {"recordType": "series", "recordId": 81189},
                {"recordType": "episode", "recordId": 1, "seriesId": 81189},
            ]})

        records = await _client(handler).list_changes(SINCE)

        request = seen[0]
        assert request.url.path == "/v4/updates"
        assert request.url.params["since"] == str(int(SINCE.timestamp()))
        assert request.headers["Authorization"] == "Bearer feed-token"
        assert [record.kind for record in records] == [RecordKind.SERIES, RecordKind.EPISODE]
        assert records[1].parent_id == "81189"

    @pytest.mark.asyncio
    async def test_no_token_sends_no_authorization(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": []})

        assert await _client(handler, token=None).list_changes(SINCE) == []
        assert "Authorization" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_non_object_records_are_skipped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": ["junk", {"recordType": "movie", "recordId": 603}]})

        records = await _client(handler).list_changes(SINCE)

        assert len(records) == 1
        assert records[0].record_id == "603"

    @pytest.mark.asyncio
    async def test_unauthorized_raises_with_hint(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, text="token expired")

        with pytest.raises(ChangeFeedError) as exc_info:
            await _client(handler).list_changes(SINCE)

        assert exc_info.value.details["status_code"] == 401
        assert "hint" in exc_info.value.details

    @pytest.mark.asyncio
    async def test_missing_data_array_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"links": {}})

        with pytest.raises(ChangeFeedError):
            await _client(handler).list_changes(SINCE)

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>")

        with pytest.raises(ChangeFeedError):
            await _client(handler).list_changes(SINCE)

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried_then_raised(self):
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ChangeFeedError) as exc_info:
            await _client(handler).list_changes(SINCE)

        assert attempts == 2
        assert exc_info.value.details["attempts"] == 2

    @pytest.mark.asyncio
    async def test_transient_failure_recovers(self):
        responses = [httpx.ConnectError("reset"), httpx.Response(200, json={"data": []})]

        def handler(request: httpx.Request) -> httpx.Response:
            item = responses.pop(0)
            if isinstance(item, Exception):
                raise item
            return item

        assert await _client(handler).list_changes(SINCE) == []

    @pytest.mark.asyncio
    async def test_open_breaker_fails_fast(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            raise httpx.ConnectError("down", request=request)

        client = _client(handler, breaker=CircuitBreaker(failure_threshold=1, recovery_timeout=300.0, name="feed"))

        with pytest.raises(ChangeFeedError):
            await client.list_changes(SINCE)
        with pytest.raises(ChangeFeedError):
            await client.list_changes(SINCE)

        assert calls == 2
