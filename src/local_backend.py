"""
Local filesystem realizations of HMS-Mirror operations.

These functions read configurations and reports straight from the
HMS-Mirror home directory. They are used when the web service is not
available, not wanted, or does not offer the operation at all.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .hms_mirror import ConfigReadError, HmsMirrorError


logger = logging.getLogger(__name__)

RUN_STATUS_FILE = "run-status.yaml"
SESSION_CONFIG_FILE = "session-config.yaml"
MAX_REPORT_DEPTH = 5


class ReportNotFoundError(HmsMirrorError):
    """A report, table file or distcp plan does not exist under the reports directory."""

    pass


def load_config(
    config_path: Optional[str] = None, config_content: Optional[str] = None
) -> Any:
    """
    Load a YAML configuration from inline content or a file.

    Args:
        config_path: Path to a YAML configuration file
        config_content: YAML text; takes precedence over config_path

    Returns:
        Parsed configuration

    Raises:
        ConfigReadError: If the content cannot be read or parsed
    """
    if config_content is not None:
        source = "inline configuration"
        text = config_content
    elif config_path:
        source = config_path
        try:
            text = Path(config_path).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigReadError(f"Cannot read {config_path}: {e}") from e
    else:
        raise ConfigReadError("No configuration path or content provided")

    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigReadError(f"Invalid YAML in {source}: {e}") from e


def validate_config(config: Any) -> Dict[str, Any]:
    """
    Run the basic structural checks on a parsed configuration.

    Args:
        config: Parsed configuration

    Returns:
        Dict with ``valid``, ``errors``, ``warnings`` and a config summary
    """
    if not isinstance(config, dict):
        return {
            "valid": False,
            "errors": ["Configuration must be a YAML mapping"],
            "warnings": [],
        }

    errors: List[str] = []
    warnings: List[str] = []
    clusters = config.get("clusters") or {}
    left = clusters.get("LEFT") or {}
    right = clusters.get("RIGHT") or {}

    if not left:
        errors.append("Missing LEFT cluster configuration")
    if not right:
        errors.append("Missing RIGHT cluster configuration")
    if not config.get("dataStrategy"):
        warnings.append("No data strategy specified, will use default")

    for side, cluster in (("LEFT", left), ("RIGHT", right)):
        hive_server2 = cluster.get("hiveServer2") if isinstance(cluster, dict) else None
        if isinstance(hive_server2, dict) and not hive_server2.get("uri"):
            errors.append(f"{side} cluster HiveServer2 URI is missing")

    return {
        "valid": not errors,
        "errors": errors,
        "warnings": warnings,
        "config": {
            "dataStrategy": config.get("dataStrategy"),
            "leftCluster": left.get("environment") if isinstance(left, dict) else None,
            "rightCluster": right.get("environment") if isinstance(right, dict) else None,
            "databases": config.get("databases") or [],
        },
    }


def resolve_within(base_dir: Path, relative_path: str) -> Path:
    """
    Resolve a relative path, refusing anything that escapes ``base_dir``.

    Raises:
        ReportNotFoundError: If the path escapes the base directory
    """
    root = Path(base_dir).resolve()
    candidate = (root / relative_path).resolve()
    if candidate != root and root not in candidate.parents:
        raise ReportNotFoundError(f"Path is outside {root}: {relative_path}")
    return candidate


def _read_yaml(path: Path) -> Any:
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f)


def _sort_key(report: Dict[str, Any]) -> str:
    timestamp = report.get("timestamp")
    if isinstance(timestamp, datetime):
        return timestamp.isoformat()
    return str(timestamp or "")


def list_reports(
    reports_dir: Path, database: Optional[str] = None, limit: int = 20
) -> Dict[str, Any]:
    """
    List migration reports found under the reports directory.

    A report is any directory (up to five levels deep) holding a
    ``run-status.yaml``. Unreadable status files are skipped.

    Args:
        reports_dir: HMS-Mirror reports directory
        database: Only keep reports that include this database
        limit: Maximum number of reports returned

    Returns:
        Dict with ``count`` and ``reports`` (newest first)
    """
    root = Path(reports_dir)
    reports = []

    if root.is_dir():
        for status_path in root.rglob(RUN_STATUS_FILE):
            relative_dir = status_path.parent.relative_to(root)
            if len(relative_dir.parts) >= MAX_REPORT_DEPTH:
                continue

            try:
                status = _read_yaml(status_path)
            except (OSError, yaml.YAMLError) as e:
                logger.debug(f"Skipping unreadable report status {status_path}: {e}")
                continue
            if not isinstance(status, dict):
                continue

            databases = status.get("databases") or []
            if database and database not in databases:
                continue

            reports.append(
                {
                    "path": relative_dir.as_posix(),
                    "timestamp": status.get("timestamp"),
                    "databases": databases,
                    "status": status.get("status"),
                    "totalTables": status.get("totalTables"),
                    "successfulTables": status.get("successfulTables"),
                }
            )
    else:
        logger.warning(f"Reports directory not found: {root}")

    reports.sort(key=_sort_key, reverse=True)
    reports = reports[:limit]
    return {"count": len(reports), "reports": reports}


def load_report(reports_dir: Path, report_path: str) -> Dict[str, Any]:
    """
    Load a report directory: run status, session config and file inventory.

    Raises:
        ReportNotFoundError: If the directory does not exist
    """
    full_path = resolve_within(reports_dir, report_path)
    if not full_path.is_dir():
        raise ReportNotFoundError(f"Report not found: {report_path}")

    report: Dict[str, Any] = {"path": report_path, "files": []}

    for key, filename in (("status", RUN_STATUS_FILE), ("config", SESSION_CONFIG_FILE)):
        file_path = full_path / filename
        if not file_path.is_file():
            continue
        try:
            report[key] = _read_yaml(file_path)
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Could not read {file_path}: {e}")

    files = sorted(p.name for p in full_path.iterdir())
    report["files"] = files
    report["sqlFiles"] = sum(1 for f in files if f.endswith(".sql"))
    report["hasLeftDistcpPlan"] = any("LEFT_distcp_plans.yaml" in f for f in files)
    report["hasRightDistcpPlan"] = any("RIGHT_distcp_plans.yaml" in f for f in files)
    return report


def load_table_details(
    reports_dir: Path, report_path: str, table_name: str, environment: str
) -> Any:
    """
    Read the per-table YAML file ``<table>.<environment>.yaml`` of a report.

    Raises:
        ReportNotFoundError: If the table file does not exist
        ConfigReadError: If the file is not valid YAML
    """
    report_dir = resolve_within(reports_dir, report_path)
    table_file = resolve_within(report_dir, f"{table_name}.{environment}.yaml")
    if not table_file.is_file():
        raise ReportNotFoundError(
            f"Table details not found: {table_name} ({environment}) in {report_path}"
        )
    try:
        return _read_yaml(table_file)
    except yaml.YAMLError as e:
        raise ConfigReadError(f"Invalid YAML in {table_file}: {e}") from e


def build_distcp_commands(plan: Any) -> List[str]:
    """
    Turn a distcp plan into ``hadoop distcp`` command lines.

    The plan maps a database to a mapping of target location to the list
    of source locations copied into it.
    """
    commands = []
    if not isinstance(plan, dict):
        return commands

    for targets in plan.values():
        if not isinstance(targets, dict):
            continue
        for target, sources in targets.items():
            for source in sources or []:
                commands.append(
                    f'hadoop distcp -pb -update -skipcrccheck "{source}" "{target}"'
                )
    return commands


def generate_distcp_script(
    reports_dir: Path, report_path: str, environment: str
) -> Dict[str, Any]:
    """
    Generate a bash script running the distcp plan of one environment.

    Raises:
        ReportNotFoundError: If the report holds no plan for the environment
    """
    report_dir = resolve_within(reports_dir, report_path)
    plan_files = sorted(report_dir.glob(f"*_{environment}_distcp_plans.yaml"))
    if not plan_files:
        raise ReportNotFoundError(f"No distcp plan found for {environment} environment")

    plan_file = plan_files[0]
    try:
        plan = _read_yaml(plan_file)
    except yaml.YAMLError as e:
        raise ConfigReadError(f"Invalid YAML in {plan_file}: {e}") from e

    commands = build_distcp_commands(plan)
    lines = [
        "#!/bin/bash",
        "# HMS-Mirror DistCp Script",
        f"# Generated from: {report_path}",
        f"# Environment: {environment}",
        f"# Date: {datetime.now().isoformat()}",
        "",
        "set -e",
        "",
        'echo "Starting distcp operations..."',
        "",
        *commands,
        "",
        'echo "Distcp operations completed successfully"',
        "",
    ]

    return {
        "reportPath": report_path,
        "environment": environment,
        "planFile": plan_file.name,
        "commandCount": len(commands),
        "script": "\n".join(lines),
    }


def list_configurations(configs_dir: Path) -> List[Dict[str, Any]]:
    """Summarize every ``*.yaml`` configuration in the configs directory."""
    root = Path(configs_dir)
    configs = []
    if not root.is_dir():
        logger.warning(f"Configs directory not found: {root}")
        return configs

    for config_file in sorted(root.glob("*.yaml")):
        try:
            config = _read_yaml(config_file)
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Could not read configuration {config_file}: {e}")
            continue
        config = config if isinstance(config, dict) else {}
        clusters = config.get("clusters") or {}
        configs.append(
            {
                "name": config_file.name,
                "dataStrategy": config.get("dataStrategy"),
                "leftCluster": (clusters.get("LEFT") or {}).get("environment"),
                "rightCluster": (clusters.get("RIGHT") or {}).get("environment"),
            }
        )
    return configs


def read_configuration(configs_dir: Path, name: str) -> str:
    """
    Return the raw text of a configuration file.

    Raises:
        ConfigReadError: If the file is missing or outside the configs directory
    """
    try:
        config_path = resolve_within(configs_dir, name)
    except ReportNotFoundError as e:
        raise ConfigReadError(f"Configuration not found: {name}") from e
    try:
        return config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigReadError(f"Configuration not found: {name}") from e
