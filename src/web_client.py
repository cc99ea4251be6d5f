"""
HMS-Mirror web service client.

This module wraps the HMS-Mirror REST endpoints consumed by the MCP server,
polls migration sessions to completion, and turns a web call into a tagged
WebAttempt so the dispatcher can decide on fallback without catching
exceptions itself.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .context import IntegrationMode
from .hms_mirror import HmsMirrorError


logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 2.0


class WebServiceError(HmsMirrorError):
    """The web service could not be reached or answered with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _encode(body: Any) -> bytes:
    """JSON request body; YAML dates and other scalars are sent as strings."""
    return json.dumps(body, default=str).encode("utf-8")


class SessionState(str, Enum):
    """Lifecycle states reported for a migration session."""

    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class MigrationSession(BaseModel):
    """A migration session as reported by the web service."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    session_id: str = Field(..., alias="sessionId")
    state: str
    report_path: Optional[str] = Field(None, alias="reportPath")
    summary: Optional[Any] = None
    errors: Optional[Any] = None
    status: Optional[Any] = None

    @property
    def is_running(self) -> bool:
        return self.state == SessionState.RUNNING.value

    @property
    def completed(self) -> bool:
        return self.state == SessionState.COMPLETED.value


class HmsMirrorWebClient:
    """Thin async client for the HMS-Mirror web service."""

    def __init__(
        self,
        base_url: str,
        timeout: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Service root, e.g. ``http://localhost:8080/hms-mirror``
            timeout: Request timeout in seconds, shared by all requests
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> "HmsMirrorWebClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise WebServiceError(f"{method} {path} failed: {e}") from e

        if response.is_error:
            raise WebServiceError(
                f"{method} {path} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return response

    async def _json(self, method: str, path: str, **kwargs) -> Any:
        response = await self._request(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise WebServiceError(f"{method} {path} returned invalid JSON: {e}") from e

    async def health(self) -> bool:
        """Return True when ``/api/health`` answers with HTTP 200."""
        response = await self._request("GET", "/api/health")
        return response.status_code == 200

    async def health_details(self) -> Any:
        return await self._json("GET", "/api/health")

    async def validate_config(self, config: Any) -> Any:
        return await self._json("POST", "/api/config/validate", content=_encode(config))

    async def start_migration(self, config: Any, run_async: bool) -> MigrationSession:
        """Start a migration and return the session created by the service."""
        data = await self._json(
            "POST",
            "/api/migration/start",
            content=_encode({"config": config, "async": run_async}),
        )
        return self._session(data)

    async def migration_status(self, session_id: str) -> MigrationSession:
        data = await self._json("GET", f"/api/migration/status/{session_id}")
        return self._session(data)

    async def migration_status_raw(self, session_id: str) -> Any:
        return await self._json("GET", f"/api/migration/status/{session_id}")

    async def active_sessions(self) -> Any:
        return await self._json("GET", "/api/migration/sessions/active")

    async def list_reports(self, database: Optional[str], limit: int) -> Any:
        params: Dict[str, Any] = {"limit": limit}
        if database:
            params["database"] = database
        return await self._json("GET", "/api/reports", params=params)

    async def report_details(self, report_path: str) -> Any:
        return await self._json(
            "GET", "/api/reports/details", params={"path": report_path}
        )

    async def table_details(
        self, report_path: str, table_name: str, environment: str
    ) -> Any:
        return await self._json(
            "GET",
            "/api/reports/table-details",
            params={"path": report_path, "table": table_name, "environment": environment},
        )

    @staticmethod
    def _session(data: Any) -> MigrationSession:
        try:
            return MigrationSession.model_validate(data)
        except ValidationError as e:
            raise WebServiceError(f"Unexpected migration session payload: {e}") from e


class SessionPoller:
    """Polls a running migration session until it reaches a terminal state.

    Queries are strictly sequential with a fixed delay between them. There
    is no upper bound on the number of queries.
    """

    def __init__(
        self,
        client: HmsMirrorWebClient,
        interval: float = POLL_INTERVAL_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.interval = interval
        self._sleep = sleep

    async def wait(self, session: MigrationSession) -> MigrationSession:
        """
        Wait for a session to leave the RUNNING state.

        Args:
            session: Session returned by the start call

        Returns:
            The first non-RUNNING session reported by the service
        """
        polls = 0
        while session.is_running:
            await self._sleep(self.interval)
            session = await self.client.migration_status(session.session_id)
            polls += 1
            logger.debug(f"Session {session.session_id} state after poll {polls}: {session.state}")

        logger.info(f"Session {session.session_id} finished with state {session.state}")
        return session


class AttemptKind(str, Enum):
    OK = "ok"
    NEEDS_FALLBACK = "needs_fallback"
    FATAL = "fatal"


@dataclass(frozen=True)
class WebAttempt:
    """Tagged result of trying an operation against the web service."""

    kind: AttemptKind
    value: Any = None
    error: Optional[BaseException] = None


async def attempt_web(mode: IntegrationMode, call: Callable[[], Awaitable[Any]]) -> WebAttempt:
    """
    Run a web realization and classify its result.

    Args:
        mode: Integration mode; WEB_ONLY makes failures fatal
        call: Zero-argument coroutine factory performing the web request(s)

    Returns:
        OK with the call's value, NEEDS_FALLBACK in HYBRID mode on failure,
        or FATAL with the error in WEB_ONLY mode
    """
    try:
        value = await call()
    except HmsMirrorError as e:
        if mode == IntegrationMode.WEB_ONLY:
            logger.error(f"Web service call failed in web-only mode: {e}")
            return WebAttempt(kind=AttemptKind.FATAL, error=e)
        logger.warning(f"Web service call failed, falling back to CLI: {e}")
        return WebAttempt(kind=AttemptKind.NEEDS_FALLBACK, error=e)
    return WebAttempt(kind=AttemptKind.OK, value=value)
