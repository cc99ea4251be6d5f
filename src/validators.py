"""
Input validation for HMS-Mirror MCP Server.

This module provides Pydantic models and enums for validating the
arguments of every HMS-Mirror tool.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class DataStrategy(str, Enum):
    """HMS-Mirror data strategies."""

    SCHEMA_ONLY = "SCHEMA_ONLY"
    LINKED = "LINKED"
    SQL = "SQL"
    EXPORT_IMPORT = "EXPORT_IMPORT"
    HYBRID = "HYBRID"
    STORAGE_MIGRATION = "STORAGE_MIGRATION"
    COMMON = "COMMON"


class Environment(str, Enum):
    """Cluster side of a migration."""

    LEFT = "LEFT"
    RIGHT = "RIGHT"


class ToolParams(BaseModel):
    """Base for tool arguments: camelCase on the wire, snake_case in code."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class ValidateConfigParams(ToolParams):
    config_path: Optional[str] = Field(
        None, alias="configPath", description="Path to the configuration file"
    )
    config_content: Optional[str] = Field(
        None, alias="configContent", description="Configuration content as YAML"
    )

    @model_validator(mode="after")
    def validate_source(self):
        """Require either a path or inline content."""
        if not self.config_path and not self.config_content:
            raise ValueError("Either configPath or configContent must be provided.")
        return self


class RunMigrationParams(ToolParams):
    config_path: str = Field(
        ..., alias="configPath", description="Path to the configuration file"
    )
    database: Optional[str] = Field(None, description="Database to migrate")
    dry_run: Optional[bool] = Field(
        None, alias="dryRun", description="Perform a dry run without changes"
    )
    strategy: Optional[DataStrategy] = Field(
        None, description="Data strategy override"
    )
    run_async: bool = Field(
        False, alias="async", description="Return immediately (web service only)"
    )


class ListReportsParams(ToolParams):
    database: Optional[str] = Field(None, description="Filter by database name")
    limit: int = Field(20, ge=1, description="Maximum number of reports")


class GetReportParams(ToolParams):
    report_path: str = Field(
        ..., alias="reportPath", description="Report directory, relative to reports dir"
    )


class TableDetailsParams(ToolParams):
    report_path: str = Field(..., alias="reportPath")
    table_name: str = Field(..., alias="tableName", min_length=1)
    environment: Environment


class AnalyzeTablesParams(ToolParams):
    config_path: str = Field(..., alias="configPath")
    database: str = Field(..., min_length=1)


class DistcpScriptParams(ToolParams):
    report_path: str = Field(..., alias="reportPath")
    environment: Environment


class MigrationStatusParams(ToolParams):
    session_id: str = Field(..., alias="sessionId", min_length=1)


class NoParams(ToolParams):
    """Tools that take no arguments."""
