"""
Prerequisite checks for running HMS-Mirror locally.

This module detects the installed Java runtime version and verifies that
the hms-mirror binary and its working directories are in place.
"""

import logging
import re
from dataclasses import dataclass
from functools import total_ordering
from pathlib import Path
from typing import Any, Dict, Optional

from .context import IntegrationContext
from .extraction import JAVA_VERSION_RULES, normalize_output
from .hms_mirror import CommandBuilder, SubprocessExecutor


logger = logging.getLogger(__name__)

MIN_JAVA_MAJOR = 17


@total_ordering
@dataclass(frozen=True)
class JavaVersion:
    """Represents a Java runtime version, normalized to its feature release."""

    major: int
    minor: int = 0

    @classmethod
    def parse(cls, version_string: str) -> "JavaVersion":
        """Parse a version string like '17.0.2', '21' or legacy '1.8.0_292'.

        Args:
            version_string: Version string to parse

        Returns:
            JavaVersion instance

        Raises:
            ValueError: If the string cannot be parsed
        """
        match = re.search(r"(\d+)(?:\.(\d+))?", version_string.strip())
        if not match:
            raise ValueError(f"Cannot parse Java version from: {version_string!r}")
        first = int(match.group(1))
        second = int(match.group(2)) if match.group(2) else 0
        # Pre-9 runtimes report 1.<major>
        if first == 1 and second:
            return cls(major=second)
        return cls(major=first, minor=second)

    def __str__(self) -> str:
        return str(self.major)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, JavaVersion):
            return NotImplemented
        return self._tuple == other._tuple

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, JavaVersion):
            return NotImplemented
        return self._tuple < other._tuple

    def __hash__(self) -> int:
        return hash(self._tuple)

    @property
    def _tuple(self) -> tuple:
        return (self.major, self.minor)


async def detect_java_version(executor: SubprocessExecutor) -> Optional[JavaVersion]:
    """Run ``java -version`` and parse the reported version.

    ``java -version`` writes to stderr, so both streams are searched.

    Returns:
        JavaVersion if detected, None otherwise
    """
    result = await executor.run(["java", "-version"], cwd=Path.cwd())
    if result.return_code is None:
        logger.warning(f"Java runtime not found: {result.stderr}")
        return None

    extracted = normalize_output(result.stdout + result.stderr, JAVA_VERSION_RULES)
    if "version" not in extracted:
        logger.warning("Could not parse Java version from 'java -version' output")
        return None

    try:
        return JavaVersion.parse(extracted["version"])
    except ValueError as e:
        logger.warning(str(e))
        return None


async def check_prerequisites(
    context: IntegrationContext,
    builder: CommandBuilder,
    executor: SubprocessExecutor,
) -> Dict[str, Any]:
    """
    Check the local HMS-Mirror installation.

    Returns:
        Dict with one flag per check plus ``allChecksPassed``
    """
    settings = context.settings
    java_version = await detect_java_version(executor)
    java_ok = java_version is not None and java_version.major >= MIN_JAVA_MAJOR

    checks: Dict[str, Any] = {
        "hmsMirrorInstalled": builder.binary_available(),
        "javaVersion": str(java_version) if java_version else "",
        "javaVersionOk": java_ok,
        "configsDirectory": settings.configs_dir.is_dir(),
        "reportsDirectory": settings.reports_dir.is_dir(),
        "webServiceAvailable": context.web_available,
        "integrationMode": context.mode.value,
    }
    checks["allChecksPassed"] = (
        checks["hmsMirrorInstalled"]
        and java_ok
        and checks["configsDirectory"]
        and checks["reportsDirectory"]
    )
    return checks
