#!/usr/bin/env python3
"""
HMS-Mirror MCP Server

A Model Context Protocol (MCP) server that exposes HMS-Mirror functionality
for Hive metastore migrations. Each operation is served by the HMS-Mirror
web service, by the local hms-mirror CLI and report directories, or by
whichever of the two is usable, depending on HMS_MIRROR_INTEGRATION_MODE.

This server provides ten tools:
1. validate_config - Validate an HMS-Mirror configuration
2. run_migration - Run a migration (synchronously or asynchronously)
3. list_reports - List migration reports
4. get_report - Get the details of one report
5. get_table_details - Get the details of one table in a report
6. analyze_tables - Analyze the tables of a database for migration readiness
7. generate_distcp_script - Build a distcp shell script from a report's plan
8. check_prerequisites - Check the local HMS-Mirror installation
9. get_migration_status - Get the status of a migration session (web service only)
10. list_active_sessions - List active migration sessions (web service only)
"""

import os
import sys
import logging
import asyncio
from pathlib import Path
from typing import Any, Dict, Optional

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

try:
    from dotenv import load_dotenv
    from mcp.server import Server
    from mcp.server.lowlevel.helper_types import ReadResourceContents
    from mcp.shared.exceptions import McpError
    from mcp.types import (
        INTERNAL_ERROR,
        INVALID_REQUEST,
        METHOD_NOT_FOUND,
        ErrorData,
        GetPromptResult,
        Prompt,
        PromptArgument,
        PromptMessage,
        Resource,
        TextContent,
        Tool,
    )
    from pydantic import ValidationError
except ImportError as e:
    print(f"Error: Required package not found: {e}", file=sys.stderr)
    print("Please run: pip install -e .", file=sys.stderr)
    sys.exit(1)

from src.context import Settings, build_context
from src.dispatcher import DispatchRequest, Dispatcher, UnknownOperationError
from src.hms_mirror import HmsMirrorError
from src import local_backend
from src.resources import RESOURCES, ResourceCatalog, UnknownResourceError, to_json
from src.validators import DataStrategy, Environment
from src.web_client import HmsMirrorWebClient


# Load environment variables
load_dotenv()

# Configure logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)
logger = logging.getLogger(__name__)

SERVER_NAME = "hms-mirror-mcp"
SERVER_VERSION = "2.0.0"

# Initialize MCP server
app = Server(SERVER_NAME, version=SERVER_VERSION)

# Set once at startup by _run()
dispatcher: Optional[Dispatcher] = None
catalog: Optional[ResourceCatalog] = None


_ENVIRONMENT_SCHEMA = {
    "type": "string",
    "description": "Environment (LEFT or RIGHT)",
    "enum": [e.value for e in Environment],
}


@app.list_tools()
async def list_tools() -> list[Tool]:
    """List all available MCP tools."""
    return [
        Tool(
            name="validate_config",
            description="Validate an HMS-Mirror configuration file",
            inputSchema={
                "type": "object",
                "properties": {
                    "configPath": {
                        "type": "string",
                        "description": "Path to the configuration file to validate",
                    },
                    "configContent": {
                        "type": "string",
                        "description": "Configuration content as YAML string (alternative to configPath)",
                    },
                },
            },
        ),
        Tool(
            name="run_migration",
            description="Execute a migration using HMS-Mirror",
            inputSchema={
                "type": "object",
                "properties": {
                    "configPath": {
                        "type": "string",
                        "description": "Path to the configuration file",
                    },
                    "database": {
                        "type": "string",
                        "description": "Database to migrate (optional, migrates all if not specified)",
                    },
                    "dryRun": {
                        "type": "boolean",
                        "default": False,
                        "description": "Perform a dry run without executing changes",
                    },
                    "strategy": {
                        "type": "string",
                        "enum": [s.value for s in DataStrategy],
                        "description": "Migration strategy to use",
                    },
                    "async": {
                        "type": "boolean",
                        "default": False,
                        "description": "Run migration asynchronously (web service only)",
                    },
                },
                "required": ["configPath"],
            },
        ),
        Tool(
            name="list_reports",
            description="List available migration reports",
            inputSchema={
                "type": "object",
                "properties": {
                    "database": {
                        "type": "string",
                        "description": "Filter reports by database name (optional)",
                    },
                    "limit": {
                        "type": "integer",
                        "default": 20,
                        "description": "Maximum number of reports to return",
                    },
                },
            },
        ),
        Tool(
            name="get_report",
            description="Get details of a specific migration report",
            inputSchema={
                "type": "object",
                "properties": {
                    "reportPath": {
                        "type": "string",
                        "description": "Path to the report directory",
                    },
                },
                "required": ["reportPath"],
            },
        ),
        Tool(
            name="get_table_details",
            description="Get detailed information about a specific table in a report",
            inputSchema={
                "type": "object",
                "properties": {
                    "reportPath": {
                        "type": "string",
                        "description": "Path to the report directory",
                    },
                    "tableName": {
                        "type": "string",
                        "description": "Name of the table",
                    },
                    "environment": _ENVIRONMENT_SCHEMA,
                },
                "required": ["reportPath", "tableName", "environment"],
            },
        ),
        Tool(
            name="analyze_tables",
            description="Analyze tables in a database for migration readiness",
            inputSchema={
                "type": "object",
                "properties": {
                    "configPath": {
                        "type": "string",
                        "description": "Path to the configuration file",
                    },
                    "database": {
                        "type": "string",
                        "description": "Database to analyze",
                    },
                },
                "required": ["configPath", "database"],
            },
        ),
        Tool(
            name="generate_distcp_script",
            description="Generate distcp commands for data migration",
            inputSchema={
                "type": "object",
                "properties": {
                    "reportPath": {
                        "type": "string",
                        "description": "Path to the report directory containing distcp plans",
                    },
                    "environment": _ENVIRONMENT_SCHEMA,
                },
                "required": ["reportPath", "environment"],
            },
        ),
        Tool(
            name="check_prerequisites",
            description="Check if HMS-Mirror prerequisites are met",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="get_migration_status",
            description="Get the status of an ongoing or completed migration (web service only)",
            inputSchema={
                "type": "object",
                "properties": {
                    "sessionId": {
                        "type": "string",
                        "description": "Migration session ID",
                    },
                },
                "required": ["sessionId"],
            },
        ),
        Tool(
            name="list_active_sessions",
            description="List active migration sessions (web service only)",
            inputSchema={"type": "object", "properties": {}},
        ),
    ]


def _require_dispatcher() -> Dispatcher:
    if dispatcher is None:
        raise McpError(ErrorData(code=INTERNAL_ERROR, message="Server not initialized"))
    return dispatcher


@app.call_tool()
async def call_tool(name: str, arguments: Any) -> list[TextContent]:
    """Handle tool calls."""
    active = _require_dispatcher()

    try:
        outcome = await active.dispatch(DispatchRequest(name, arguments or {}))

    except UnknownOperationError as e:
        raise McpError(ErrorData(code=METHOD_NOT_FOUND, message=str(e))) from e

    except ValidationError as e:
        details = []
        for error in e.errors():
            field = " -> ".join(str(x) for x in error["loc"]) or "arguments"
            details.append(f"{field}: {error['msg']}")
        return [
            TextContent(
                type="text",
                text=to_json({"error": "Invalid parameters", "details": details}),
            )
        ]

    except HmsMirrorError as e:
        logger.exception(f"Error handling tool '{name}': {e}")
        raise McpError(
            ErrorData(code=INTERNAL_ERROR, message=f"Tool execution failed: {e}")
        ) from e

    if not outcome.success and outcome.diagnostic:
        logger.warning(f"Tool '{name}' did not succeed: {outcome.diagnostic}")

    return [TextContent(type="text", text=to_json(outcome.payload))]


@app.list_resources()
async def list_resources() -> list[Resource]:
    """List the static HMS-Mirror resources."""
    return [
        Resource(
            uri=info.uri,
            name=info.name,
            description=info.description,
            mimeType=info.mime_type,
        )
        for info in RESOURCES
    ]


@app.read_resource()
async def read_resource(uri: Any) -> list[ReadResourceContents]:
    """Handle resource reads."""
    _require_dispatcher()
    uri_text = str(uri).rstrip("/")

    try:
        content = await catalog.read(uri_text)
    except UnknownResourceError as e:
        raise McpError(ErrorData(code=INVALID_REQUEST, message=str(e))) from e
    except HmsMirrorError as e:
        logger.exception(f"Error reading resource '{uri_text}': {e}")
        raise McpError(
            ErrorData(code=INTERNAL_ERROR, message=f"Resource read failed: {e}")
        ) from e

    return [ReadResourceContents(content=content.text, mime_type=content.mime_type)]


@app.list_prompts()
async def list_prompts() -> list[Prompt]:
    """List the prompt templates."""
    return [
        Prompt(
            name="migration_plan",
            description="Generate a migration plan for a database",
            arguments=[
                PromptArgument(name="database", description="Database name to migrate", required=True),
                PromptArgument(name="strategy", description="Migration strategy to use", required=False),
            ],
        ),
        Prompt(
            name="troubleshoot",
            description="Troubleshoot a failed migration",
            arguments=[
                PromptArgument(
                    name="reportPath",
                    description="Path to the failed migration report",
                    required=True,
                ),
            ],
        ),
        Prompt(
            name="optimize_config",
            description="Optimize a configuration for better performance",
            arguments=[
                PromptArgument(name="configPath", description="Path to the configuration file", required=True),
                PromptArgument(
                    name="targetThroughput",
                    description="Target throughput (tables/hour)",
                    required=False,
                ),
            ],
        ),
    ]


@app.get_prompt()
async def get_prompt(name: str, arguments: Optional[Dict[str, str]]) -> GetPromptResult:
    """Render a prompt template."""
    active = _require_dispatcher()
    args = arguments or {}

    try:
        if name == "migration_plan":
            return build_migration_plan_prompt(_required(args, "database"), args.get("strategy"))
        if name == "troubleshoot":
            report = local_backend.load_report(
                active.context.settings.reports_dir, _required(args, "reportPath")
            )
            return build_troubleshoot_prompt(report)
        if name == "optimize_config":
            config_text = Path(_required(args, "configPath")).read_text(encoding="utf-8")
            return build_optimize_config_prompt(config_text, args.get("targetThroughput"))
    except (HmsMirrorError, OSError) as e:
        raise McpError(ErrorData(code=INVALID_REQUEST, message=str(e))) from e

    raise McpError(ErrorData(code=INVALID_REQUEST, message=f"Unknown prompt: {name}"))


def _required(args: Dict[str, str], key: str) -> str:
    value = (args.get(key) or "").strip()
    if not value:
        raise McpError(ErrorData(code=INVALID_REQUEST, message=f"Missing required argument: {key}"))
    return value


def _user_prompt(description: str, text: str) -> GetPromptResult:
    return GetPromptResult(
        description=description,
        messages=[PromptMessage(role="user", content=TextContent(type="text", text=text))],
    )


def build_migration_plan_prompt(database: str, strategy: Optional[str]) -> GetPromptResult:
    """Build the migration_plan prompt."""
    strategy = strategy or DataStrategy.HYBRID.value
    return _user_prompt(
        f"Migration plan for database {database}",
        (
            f'Create a migration plan for the database "{database}" using the {strategy} strategy. Include:\n'
            "1. Pre-migration checklist\n"
            "2. Table analysis and categorization\n"
            "3. Recommended strategy per table type\n"
            "4. Data validation steps\n"
            "5. Rollback procedures"
        ),
    )


def build_troubleshoot_prompt(report: Dict[str, Any]) -> GetPromptResult:
    """Build the troubleshoot prompt around a loaded report."""
    return _user_prompt(
        "Troubleshooting guide for migration report",
        (
            "Analyze this failed migration and provide troubleshooting steps:\n\n"
            f"{to_json(report)}"
        ),
    )


def build_optimize_config_prompt(config_text: str, target_throughput: Optional[str]) -> GetPromptResult:
    """Build the optimize_config prompt."""
    try:
        throughput = int(target_throughput) if target_throughput else 100
    except ValueError:
        throughput = 100
    return _user_prompt(
        "Configuration optimization recommendations",
        (
            f"Optimize this HMS-Mirror configuration for {throughput} tables/hour throughput:\n\n"
            f"{config_text}\n\n"
            "Provide specific recommendations for connection pooling, parallelism, "
            "and strategy selection."
        ),
    )


async def _run():
    """Async server startup logic."""
    global dispatcher, catalog

    settings = Settings.from_env()
    logger.info("Starting HMS-Mirror MCP Server...")
    logger.info(f"HMS-Mirror home: {settings.home}")
    logger.info(f"HMS-Mirror binary: {settings.binary_path}")
    logger.info(f"Web service URL: {settings.service_url}")

    from mcp.server.stdio import stdio_server

    async with HmsMirrorWebClient(settings.service_url, settings.service_timeout) as client:
        context = await build_context(settings, client)
        dispatcher = Dispatcher(context, client)
        catalog = ResourceCatalog(dispatcher)
        logger.info(f"Integration mode: {context.mode.value}")
        logger.info(f"Web service available: {context.web_available}")

        async with stdio_server() as (read_stream, write_stream):
            await app.run(read_stream, write_stream, app.create_initialization_options())


def main():
    """Entry point for the MCP server (console script)."""
    asyncio.run(_run())


if __name__ == "__main__":
    main()
