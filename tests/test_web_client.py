"""Tests for the HMS-Mirror web service client and session poller."""

import json
from datetime import date
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from src.context import IntegrationMode
from src.hms_mirror import ConfigReadError
from src.web_client import (
    AttemptKind,
    HmsMirrorWebClient,
    MigrationSession,
    SessionPoller,
    WebServiceError,
    attempt_web,
)


BASE_URL = "http://hms.test/hms-mirror"


def _client(handler) -> HmsMirrorWebClient:
    return HmsMirrorWebClient(BASE_URL, timeout=5.0, transport=httpx.MockTransport(handler))


def _session(state: str, session_id: str = "s1", **extra) -> MigrationSession:
    return MigrationSession.model_validate({"sessionId": session_id, "state": state, **extra})


class TestHmsMirrorWebClient:
    @pytest.mark.asyncio
    async def test_health_ok(self):
        seen = []

        def handler(request):
            seen.append(request.url.path)
            return httpx.Response(200, json={"status": "UP"})

        async with _client(handler) as client:
            assert await client.health() is True
        assert seen == ["/hms-mirror/api/health"]

    @pytest.mark.asyncio
    async def test_non_2xx_raises(self):
        async with _client(lambda request: httpx.Response(503)) as client:
            with pytest.raises(WebServiceError) as exc_info:
                await client.health()
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(WebServiceError, match="connection refused"):
                await client.list_reports(None, 20)

    @pytest.mark.asyncio
    async def test_validate_config_posts_config(self):
        captured = {}

        def handler(request):
            captured["method"] = request.method
            captured["path"] = request.url.path
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"valid": True})

        async with _client(handler) as client:
            result = await client.validate_config({"dataStrategy": "SQL"})

        assert result == {"valid": True}
        assert captured == {
            "method": "POST",
            "path": "/hms-mirror/api/config/validate",
            "body": {"dataStrategy": "SQL"},
        }

    @pytest.mark.asyncio
    async def test_yaml_dates_sent_as_strings(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"sessionId": "s1", "state": "RUNNING"})

        async with _client(handler) as client:
            await client.validate_config({"created": date(2024, 1, 1)})
            await client.start_migration({"created": date(2024, 1, 1)}, True)

        assert bodies == [
            {"created": "2024-01-01"},
            {"config": {"created": "2024-01-01"}, "async": True},
        ]

    @pytest.mark.asyncio
    async def test_start_migration(self):
        def handler(request):
            assert request.url.path == "/hms-mirror/api/migration/start"
            assert json.loads(request.content) == {"config": {"a": 1}, "async": True}
            return httpx.Response(200, json={"sessionId": "s1", "state": "RUNNING"})

        async with _client(handler) as client:
            session = await client.start_migration({"a": 1}, True)

        assert session.session_id == "s1"
        assert session.is_running

    @pytest.mark.asyncio
    async def test_start_migration_bad_payload(self):
        async with _client(lambda request: httpx.Response(200, json={"oops": 1})) as client:
            with pytest.raises(WebServiceError, match="Unexpected migration session"):
                await client.start_migration({}, False)

    @pytest.mark.asyncio
    async def test_status_and_sessions_paths(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(200, json={"sessionId": "abc", "state": "COMPLETED"})

        async with _client(handler) as client:
            session = await client.migration_status("abc")
            await client.active_sessions()

        assert session.completed
        assert paths == [
            "/hms-mirror/api/migration/status/abc",
            "/hms-mirror/api/migration/sessions/active",
        ]

    @pytest.mark.asyncio
    async def test_report_query_parameters(self):
        queries = []

        def handler(request):
            queries.append((request.url.path, dict(request.url.params)))
            return httpx.Response(200, json={})

        async with _client(handler) as client:
            await client.list_reports("sales", 5)
            await client.report_details("2024/run1")
            await client.table_details("2024/run1", "orders", "LEFT")

        assert queries == [
            ("/hms-mirror/api/reports", {"limit": "5", "database": "sales"}),
            ("/hms-mirror/api/reports/details", {"path": "2024/run1"}),
            (
                "/hms-mirror/api/reports/table-details",
                {"path": "2024/run1", "table": "orders", "environment": "LEFT"},
            ),
        ]


class TestSessionPoller:
    @pytest.mark.asyncio
    async def test_polls_until_terminal(self):
        client = Mock()
        client.migration_status = AsyncMock(
            side_effect=[_session("RUNNING"), _session("RUNNING"), _session("COMPLETED", reportPath="/r/1")]
        )
        sleep = AsyncMock()

        final = await SessionPoller(client, sleep=sleep).wait(_session("RUNNING"))

        assert final.state == "COMPLETED"
        assert final.report_path == "/r/1"
        assert client.migration_status.await_count == 3
        assert sleep.await_count == 3
        sleep.assert_awaited_with(2.0)
        client.migration_status.assert_awaited_with("s1")

    @pytest.mark.asyncio
    async def test_terminal_session_not_polled(self):
        client = Mock()
        client.migration_status = AsyncMock()
        sleep = AsyncMock()

        final = await SessionPoller(client, sleep=sleep).wait(_session("FAILED"))

        assert final.state == "FAILED"
        client.migration_status.assert_not_awaited()
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_status_error_propagates(self):
        client = Mock()
        client.migration_status = AsyncMock(side_effect=WebServiceError("timeout"))

        with pytest.raises(WebServiceError):
            await SessionPoller(client, sleep=AsyncMock()).wait(_session("RUNNING"))


class TestAttemptWeb:
    @pytest.mark.asyncio
    async def test_ok(self):
        attempt = await attempt_web(IntegrationMode.HYBRID, AsyncMock(return_value={"x": 1}))
        assert attempt.kind == AttemptKind.OK
        assert attempt.value == {"x": 1}

    @pytest.mark.asyncio
    async def test_hybrid_failure_needs_fallback(self):
        error = WebServiceError("down")
        attempt = await attempt_web(IntegrationMode.HYBRID, AsyncMock(side_effect=error))
        assert attempt.kind == AttemptKind.NEEDS_FALLBACK
        assert attempt.error is error

    @pytest.mark.asyncio
    async def test_web_only_failure_is_fatal(self):
        error = WebServiceError("down")
        attempt = await attempt_web(IntegrationMode.WEB_ONLY, AsyncMock(side_effect=error))
        assert attempt.kind == AttemptKind.FATAL
        assert attempt.error is error

    @pytest.mark.asyncio
    async def test_config_read_failure_also_falls_back(self):
        attempt = await attempt_web(
            IntegrationMode.HYBRID, AsyncMock(side_effect=ConfigReadError("bad yaml"))
        )
        assert attempt.kind == AttemptKind.NEEDS_FALLBACK
