"""
Operation dispatcher for the HMS-Mirror MCP server.

Every tool call becomes a DispatchRequest. The dispatcher looks the
operation up in a static table and applies one of three routing policies:

- FALLBACK: try the web service when it is usable, fall back to the CLI or
  local filesystem in hybrid mode, surface the failure in web-only mode.
- WEB_REQUIRED: the operation exists only on the web service; in CLI mode,
  or when the startup health check found it unavailable, answer "backend
  unavailable" without any network call.
- LOCAL_ONLY: the operation exists only locally and ignores the mode.

Exactly one transport executes the operation for any request.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Type

from pydantic import BaseModel

from .context import IntegrationContext
from .extraction import ANALYSIS_RULES, MIGRATION_RULES, normalize_output
from .hms_mirror import CommandBuilder, HmsMirrorError, SubprocessExecutor
from . import local_backend
from .prerequisites import check_prerequisites
from .validators import (
    AnalyzeTablesParams,
    DistcpScriptParams,
    GetReportParams,
    ListReportsParams,
    MigrationStatusParams,
    NoParams,
    RunMigrationParams,
    TableDetailsParams,
    ValidateConfigParams,
)
from .web_client import (
    AttemptKind,
    HmsMirrorWebClient,
    SessionPoller,
    WebServiceError,
    attempt_web,
)


logger = logging.getLogger(__name__)

# Captured CLI output returned to the caller is cut to this many characters
OUTPUT_PREVIEW_CHARS = 5000

BACKEND_UNAVAILABLE_MESSAGE = (
    "Web service not available. This operation requires HMS-Mirror web service."
)


class UnknownOperationError(HmsMirrorError):
    """The requested operation is not implemented by this server."""

    pass


class TransportSource(str, Enum):
    WEB = "web"
    CLI = "cli"


class Policy(str, Enum):
    FALLBACK = "fallback"
    WEB_REQUIRED = "web_required"
    LOCAL_ONLY = "local_only"


@dataclass(frozen=True)
class DispatchRequest:
    """One inbound tool call."""

    operation: str
    parameters: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(
            self, "parameters", MappingProxyType(dict(self.parameters or {}))
        )


@dataclass(frozen=True)
class TransportOutcome:
    """Normalized result of a dispatch.

    ``source`` is None when no transport was attempted (backend unavailable).
    ``raw_text`` is only set for CLI-sourced outcomes.
    """

    source: Optional[TransportSource]
    success: bool
    payload: Any
    raw_text: Optional[str] = None
    diagnostic: Optional[str] = None


def _web(payload: Any, success: bool = True) -> TransportOutcome:
    return TransportOutcome(source=TransportSource.WEB, success=success, payload=payload)


def _local(payload: Any, success: bool = True, raw_text: Optional[str] = None,
           diagnostic: Optional[str] = None) -> TransportOutcome:
    return TransportOutcome(
        source=TransportSource.CLI,
        success=success,
        payload=payload,
        raw_text=raw_text,
        diagnostic=diagnostic,
    )


def _local_error(message: str) -> TransportOutcome:
    return _local({"error": message}, success=False, diagnostic=message)


Handler = Callable[[Any, Any], Awaitable[TransportOutcome]]


@dataclass(frozen=True)
class Operation:
    """A tool and the realizations available for it."""

    name: str
    policy: Policy
    params_model: Type[BaseModel]
    web: Optional[Handler] = None
    local: Optional[Handler] = None


class Dispatcher:
    """Routes operations to the web service or the local CLI and filesystem."""

    def __init__(
        self,
        context: IntegrationContext,
        client: HmsMirrorWebClient,
        executor: Optional[SubprocessExecutor] = None,
        builder: Optional[CommandBuilder] = None,
        poller: Optional[SessionPoller] = None,
    ):
        self.context = context
        self.client = client
        settings = context.settings
        self.executor = executor or SubprocessExecutor(settings.home)
        self.builder = builder or CommandBuilder(str(settings.binary_path))
        self.poller = poller or SessionPoller(client)

    async def dispatch(self, request: DispatchRequest) -> TransportOutcome:
        """
        Execute one operation under its routing policy.

        Args:
            request: Operation name and raw parameters

        Returns:
            TransportOutcome from exactly one transport

        Raises:
            UnknownOperationError: If the operation name is not known
            pydantic.ValidationError: If the parameters are invalid
            HmsMirrorError: If a web call fails in web-only mode
        """
        operation = OPERATIONS.get(request.operation)
        if operation is None:
            raise UnknownOperationError(f"Unknown tool: {request.operation}")

        params = operation.params_model.model_validate(dict(request.parameters))
        logger.debug(f"Dispatching {operation.name} under {operation.policy.value} policy")

        if operation.policy == Policy.FALLBACK:
            return await self._with_fallback(operation, params)
        if operation.policy == Policy.WEB_REQUIRED:
            return await self._web_required(operation, params)
        return await operation.local(self, params)

    async def _with_fallback(self, operation: Operation, params: Any) -> TransportOutcome:
        if self.context.use_web:
            attempt = await attempt_web(
                self.context.mode, lambda: operation.web(self, params)
            )
            if attempt.kind == AttemptKind.OK:
                return attempt.value
            if attempt.kind == AttemptKind.FATAL:
                raise attempt.error
            logger.info(f"{operation.name}: using local fallback")

        return await operation.local(self, params)

    async def _web_required(self, operation: Operation, params: Any) -> TransportOutcome:
        if not self.context.use_web:
            return TransportOutcome(
                source=None,
                success=False,
                payload={"error": BACKEND_UNAVAILABLE_MESSAGE},
                diagnostic=BACKEND_UNAVAILABLE_MESSAGE,
            )

        try:
            return await operation.web(self, params)
        except WebServiceError as e:
            logger.error(f"{operation.name} failed: {e}")
            message = f"Failed to {operation.name.replace('_', ' ')}: {e}"
            return TransportOutcome(
                source=TransportSource.WEB,
                success=False,
                payload={"error": message},
                diagnostic=message,
            )

    # Web realizations

    async def _web_validate_config(self, params: ValidateConfigParams) -> TransportOutcome:
        config = local_backend.load_config(params.config_path, params.config_content)
        return _web(await self.client.validate_config(config))

    async def _web_run_migration(self, params: RunMigrationParams) -> TransportOutcome:
        config = local_backend.load_config(params.config_path)
        if not isinstance(config, dict):
            config = {}
        if params.database:
            config["databases"] = [params.database]
        if params.strategy:
            config["dataStrategy"] = params.strategy.value
        if params.dry_run is not None:
            config["dryRun"] = params.dry_run

        session = await self.client.start_migration(config, params.run_async)
        logger.info(f"Migration session {session.session_id} started ({session.state})")

        if params.run_async:
            return _web(
                {
                    "success": True,
                    "sessionId": session.session_id,
                    "message": "Migration started asynchronously",
                    "status": session.status if session.status is not None else session.state,
                }
            )

        # Once a remote session exists, polling errors stay on the web transport
        try:
            session = await self.poller.wait(session)
        except WebServiceError as e:
            message = f"Lost track of migration session {session.session_id}: {e}"
            logger.error(message)
            return TransportOutcome(
                source=TransportSource.WEB,
                success=False,
                payload={"success": False, "sessionId": session.session_id, "error": message},
                diagnostic=message,
            )

        return _web(
            {
                "success": session.completed,
                "sessionId": session.session_id,
                "reportPath": session.report_path,
                "summary": session.summary,
                "errors": session.errors,
            },
            success=session.completed,
        )

    async def _web_list_reports(self, params: ListReportsParams) -> TransportOutcome:
        return _web(await self.client.list_reports(params.database, params.limit))

    async def _web_get_report(self, params: GetReportParams) -> TransportOutcome:
        return _web(await self.client.report_details(params.report_path))

    async def _web_get_table_details(self, params: TableDetailsParams) -> TransportOutcome:
        return _web(
            await self.client.table_details(
                params.report_path, params.table_name, params.environment.value
            )
        )

    async def _web_migration_status(self, params: MigrationStatusParams) -> TransportOutcome:
        return _web(await self.client.migration_status_raw(params.session_id))

    async def _web_active_sessions(self, params: NoParams) -> TransportOutcome:
        return _web(await self.client.active_sessions())

    # Local and CLI realizations

    async def _local_validate_config(self, params: ValidateConfigParams) -> TransportOutcome:
        try:
            config = local_backend.load_config(params.config_path, params.config_content)
        except HmsMirrorError as e:
            message = f"Failed to parse configuration: {e}"
            return _local({"valid": False, "error": message}, success=False, diagnostic=message)

        result = local_backend.validate_config(config)
        return _local(result, success=result["valid"])

    async def _cli_run_migration(self, params: RunMigrationParams) -> TransportOutcome:
        command = self.builder.build_migration_command(params)
        result = await self.executor.run(command)

        payload: Dict[str, Any] = {
            "success": result.success,
            "exitCode": result.return_code,
            "reportPath": None,
        }
        payload.update(normalize_output(result.stdout, MIGRATION_RULES))
        payload["output"] = result.stdout[:OUTPUT_PREVIEW_CHARS]
        payload["errors"] = result.stderr
        if not result.success:
            payload["error"] = result.error_message

        return _local(
            payload,
            success=result.success,
            raw_text=result.stdout,
            diagnostic=result.error_message,
        )

    async def _local_list_reports(self, params: ListReportsParams) -> TransportOutcome:
        try:
            payload = local_backend.list_reports(
                self.context.settings.reports_dir, params.database, params.limit
            )
        except OSError as e:
            return _local_error(f"Failed to list reports: {e}")
        return _local(payload)

    async def _local_get_report(self, params: GetReportParams) -> TransportOutcome:
        try:
            report = local_backend.load_report(
                self.context.settings.reports_dir, params.report_path
            )
        except (HmsMirrorError, OSError) as e:
            return _local_error(f"Failed to load report: {e}")
        return _local(report)

    async def _local_get_table_details(self, params: TableDetailsParams) -> TransportOutcome:
        try:
            details = local_backend.load_table_details(
                self.context.settings.reports_dir,
                params.report_path,
                params.table_name,
                params.environment.value,
            )
        except (HmsMirrorError, OSError) as e:
            return _local_error(f"Failed to load table details: {e}")
        return _local(details)

    async def _cli_analyze_tables(self, params: AnalyzeTablesParams) -> TransportOutcome:
        command = self.builder.build_analysis_command(params)
        result = await self.executor.run(command)

        if result.return_code != 0:
            message = f"Analysis failed: {result.error_message}"
            return _local(
                {"error": message, "stderr": result.stderr},
                success=False,
                raw_text=result.stdout,
                diagnostic=message,
            )

        tables = normalize_output(result.stdout, ANALYSIS_RULES).get("tables", [])
        recommendations = []
        if any(t["type"] == "ACID" for t in tables):
            recommendations.append(
                "ACID tables detected - consider using HYBRID or SQL strategy"
            )
        if any(t["type"] == "EXTERNAL" for t in tables):
            recommendations.append(
                "External tables can use LINKED strategy for faster migration"
            )

        return _local(
            {
                "database": params.database,
                "tables": tables,
                "recommendations": recommendations,
            },
            success=result.success,
            raw_text=result.stdout,
            diagnostic=result.error_message,
        )

    async def _local_distcp_script(self, params: DistcpScriptParams) -> TransportOutcome:
        try:
            payload = local_backend.generate_distcp_script(
                self.context.settings.reports_dir,
                params.report_path,
                params.environment.value,
            )
        except (HmsMirrorError, OSError) as e:
            return _local_error(f"Error generating distcp script: {e}")
        return _local(payload)

    async def _local_check_prerequisites(self, params: NoParams) -> TransportOutcome:
        checks = await check_prerequisites(self.context, self.builder, self.executor)
        return _local(checks, success=checks["allChecksPassed"])


OPERATIONS: Dict[str, Operation] = {
    op.name: op
    for op in (
        Operation("validate_config", Policy.FALLBACK, ValidateConfigParams,
                  web=Dispatcher._web_validate_config, local=Dispatcher._local_validate_config),
        Operation("run_migration", Policy.FALLBACK, RunMigrationParams,
                  web=Dispatcher._web_run_migration, local=Dispatcher._cli_run_migration),
        Operation("list_reports", Policy.FALLBACK, ListReportsParams,
                  web=Dispatcher._web_list_reports, local=Dispatcher._local_list_reports),
        Operation("get_report", Policy.FALLBACK, GetReportParams,
                  web=Dispatcher._web_get_report, local=Dispatcher._local_get_report),
        Operation("get_table_details", Policy.FALLBACK, TableDetailsParams,
                  web=Dispatcher._web_get_table_details, local=Dispatcher._local_get_table_details),
        Operation("get_migration_status", Policy.WEB_REQUIRED, MigrationStatusParams,
                  web=Dispatcher._web_migration_status),
        Operation("list_active_sessions", Policy.WEB_REQUIRED, NoParams,
                  web=Dispatcher._web_active_sessions),
        Operation("analyze_tables", Policy.LOCAL_ONLY, AnalyzeTablesParams,
                  local=Dispatcher._cli_analyze_tables),
        Operation("generate_distcp_script", Policy.LOCAL_ONLY, DistcpScriptParams,
                  local=Dispatcher._local_distcp_script),
        Operation("check_prerequisites", Policy.LOCAL_ONLY, NoParams,
                  local=Dispatcher._local_check_prerequisites),
    )
}

