"""
HMS-Mirror command builder and executor.

This module builds hms-mirror command lines as argument vectors and runs
them as subprocesses, capturing their output for later normalization.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .validators import AnalyzeTablesParams, RunMigrationParams


logger = logging.getLogger(__name__)

# Per-stream ceiling on captured output
MAX_OUTPUT_BYTES = 10 * 1024 * 1024

# Marker the hms-mirror binary writes to stderr on failure
ERROR_MARKER = "ERROR"

_READ_CHUNK = 64 * 1024


class HmsMirrorError(Exception):
    """Base exception for HMS-Mirror operations."""

    pass


class ConfigReadError(HmsMirrorError):
    """A configuration file or inline configuration could not be read or parsed."""

    pass


class CommandBuilder:
    """Builds hms-mirror argument vectors from validated parameters."""

    def __init__(self, binary_path: str):
        """
        Initialize the command builder.

        Args:
            binary_path: Path to the hms-mirror launcher script
        """
        self.binary_path = Path(binary_path)

    def binary_available(self) -> bool:
        """Whether the binary exists and is executable."""
        return self.binary_path.is_file() and os.access(self.binary_path, os.X_OK)

    def build_migration_command(self, params: RunMigrationParams) -> List[str]:
        """
        Build the command for a migration run.

        Args:
            params: Validated run_migration parameters

        Returns:
            Command as list of strings (suitable for subprocess)
        """
        cmd = [str(self.binary_path), "-cfg", params.config_path]

        if params.database:
            cmd.extend(["-db", params.database])
        if params.dry_run:
            cmd.append("-dr")
        if params.strategy:
            cmd.extend(["-ds", params.strategy.value])

        return cmd

    def build_analysis_command(self, params: AnalyzeTablesParams) -> List[str]:
        """Build a dry-run, read-only command used for table analysis."""
        return [
            str(self.binary_path),
            "-cfg",
            params.config_path,
            "-db",
            params.database,
            "-dr",
            "-ro",
        ]


def format_command_display(command: Sequence[str]) -> str:
    """
    Format an argument vector for logs and payloads.

    Args:
        command: Command list

    Returns:
        Command string with empty or space-containing tokens quoted
    """
    formatted_parts = []
    for token in command:
        if not token or " " in token:
            formatted_parts.append(f'"{token}"')
        else:
            formatted_parts.append(token)
    return " ".join(formatted_parts)


@dataclass(frozen=True)
class SubprocessResult:
    """Captured outcome of one hms-mirror invocation."""

    argv: Tuple[str, ...]
    return_code: Optional[int]
    stdout: str
    stderr: str
    overflow: bool = False
    duration: float = 0.0

    @property
    def success(self) -> bool:
        """Zero exit, no error marker on stderr, and output within the ceiling."""
        return (
            self.return_code == 0
            and ERROR_MARKER not in self.stderr
            and not self.overflow
        )

    @property
    def error_message(self) -> Optional[str]:
        """Short description of why the run failed, or None on success."""
        if self.return_code is None:
            return f"Failed to start process: {self.stderr}"
        if self.overflow:
            return f"Output exceeded {MAX_OUTPUT_BYTES} bytes; process terminated"
        if self.return_code != 0:
            return f"Command failed with exit code {self.return_code}"
        if ERROR_MARKER in self.stderr:
            return "Command reported errors on stderr"
        return None


class SubprocessExecutor:
    """Runs commands in a fixed working directory.

    Process failures are never raised; they are returned as a
    SubprocessResult whose ``success`` is False. No timeout is applied.
    """

    def __init__(self, working_dir: Path, max_output_bytes: int = MAX_OUTPUT_BYTES):
        self.working_dir = Path(working_dir)
        self.max_output_bytes = max_output_bytes

    async def run(
        self, command: Sequence[str], cwd: Optional[Path] = None
    ) -> SubprocessResult:
        """
        Execute a command and capture its output.

        Args:
            command: Argument vector; ``command[0]`` is the executable
            cwd: Working directory override (defaults to the executor's)

        Returns:
            SubprocessResult with decoded stdout and stderr
        """
        argv = tuple(command)
        start_time = time.monotonic()
        logger.info(f"Executing command: {format_command_display(argv)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(cwd or self.working_dir),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"Failed to start {argv[0]}: {e}")
            return SubprocessResult(argv=argv, return_code=None, stdout="", stderr=str(e))

        (stdout, stdout_overflow), (stderr, stderr_overflow) = await asyncio.gather(
            self._read_capped(process.stdout, process),
            self._read_capped(process.stderr, process),
        )
        return_code = await process.wait()
        duration = time.monotonic() - start_time

        overflow = stdout_overflow or stderr_overflow
        if overflow:
            logger.warning(
                f"Output of {argv[0]} exceeded {self.max_output_bytes} bytes; process killed"
            )
        logger.info(f"Command completed in {duration:.2f}s with return code {return_code}")

        return SubprocessResult(
            argv=argv,
            return_code=return_code,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            overflow=overflow,
            duration=duration,
        )

    async def _read_capped(self, stream, process) -> Tuple[bytes, bool]:
        """Read a stream to EOF, killing the process once it passes the ceiling."""
        chunks: List[bytes] = []
        size = 0
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                return b"".join(chunks), False
            remaining = self.max_output_bytes - size
            if len(chunk) > remaining:
                chunks.append(chunk[:remaining])
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                return b"".join(chunks), True
            chunks.append(chunk)
            size += len(chunk)


def get_strategies_info() -> Dict[str, Any]:
    """
    Describe the HMS-Mirror data strategies.

    Returns:
        Dictionary keyed by strategy name
    """
    return {
        "SCHEMA_ONLY": {
            "description": "Migrates only table schemas without data",
            "useCases": ["Testing", "Schema validation", "Structure migration"],
            "supportsACID": False,
            "requiresDistcp": False,
        },
        "LINKED": {
            "description": "Creates external tables pointing to original data locations",
            "useCases": ["Read-only access", "Quick migration", "No data copy"],
            "supportsACID": False,
            "requiresDistcp": False,
        },
        "SQL": {
            "description": "Uses SQL export/import for data transfer",
            "useCases": ["Small datasets", "ACID tables", "Schema changes"],
            "supportsACID": True,
            "requiresDistcp": False,
        },
        "EXPORT_IMPORT": {
            "description": "Uses Hive EXPORT/IMPORT commands",
            "useCases": ["Complete table migration", "Metadata preservation"],
            "supportsACID": True,
            "requiresDistcp": True,
        },
        "HYBRID": {
            "description": "Combines strategies based on table type",
            "useCases": ["Mixed workloads", "Optimized migration", "Large databases"],
            "supportsACID": True,
            "requiresDistcp": True,
        },
        "STORAGE_MIGRATION": {
            "description": "Migrates data between storage systems",
            "useCases": ["Storage upgrade", "Format conversion"],
            "supportsACID": False,
            "requiresDistcp": True,
        },
        "COMMON": {
            "description": "Shared storage migration strategy",
            "useCases": ["Shared filesystem", "In-place upgrade"],
            "supportsACID": True,
            "requiresDistcp": False,
        },
    }
