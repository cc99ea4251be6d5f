"""
Integration context for the HMS-Mirror MCP server.

This module resolves the integration mode from configuration, checks the
HMS-Mirror web service once at startup, and bundles both into an immutable
context that is handed to the dispatcher.
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional


logger = logging.getLogger(__name__)

DEFAULT_SERVICE_URL = "http://localhost:8080/hms-mirror"
DEFAULT_SERVICE_TIMEOUT_MS = 30000


class IntegrationMode(str, Enum):
    """How operations reach the HMS-Mirror engine."""

    CLI_ONLY = "cli"
    WEB_ONLY = "web"
    HYBRID = "hybrid"


def resolve_mode(value: Optional[str]) -> IntegrationMode:
    """Map the free-text mode setting to an IntegrationMode.

    ``cli`` and ``web`` are matched case-insensitively; anything else,
    including an unset value, selects HYBRID.
    """
    normalized = (value or "").strip().lower()
    if normalized == "cli":
        return IntegrationMode.CLI_ONLY
    if normalized == "web":
        return IntegrationMode.WEB_ONLY
    return IntegrationMode.HYBRID


@dataclass(frozen=True)
class Settings:
    """Server configuration read from the environment."""

    home: Path
    binary_path: Path
    reports_dir: Path
    configs_dir: Path
    service_url: str = DEFAULT_SERVICE_URL
    service_timeout_ms: int = DEFAULT_SERVICE_TIMEOUT_MS
    mode_setting: Optional[str] = None

    @property
    def service_timeout(self) -> float:
        """Request timeout in seconds."""
        return self.service_timeout_ms / 1000.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``)

        Returns:
            Settings instance
        """
        env = os.environ if environ is None else environ

        home_value = env.get("HMS_MIRROR_HOME")
        if home_value:
            home = Path(home_value)
        else:
            home = Path(env.get("HOME", "")) / ".hms-mirror"

        reports_value = env.get("HMS_MIRROR_REPORTS_DIR")
        configs_value = env.get("HMS_MIRROR_CONFIGS_DIR")

        timeout_value = env.get("HMS_MIRROR_SERVICE_TIMEOUT")
        timeout_ms = DEFAULT_SERVICE_TIMEOUT_MS
        if timeout_value:
            try:
                timeout_ms = int(timeout_value)
            except ValueError:
                logger.warning(
                    f"Invalid HMS_MIRROR_SERVICE_TIMEOUT {timeout_value!r}, "
                    f"using {DEFAULT_SERVICE_TIMEOUT_MS}ms"
                )

        return cls(
            home=home,
            binary_path=home / "bin" / "hms-mirror",
            reports_dir=Path(reports_value) if reports_value else home / "reports",
            configs_dir=Path(configs_value) if configs_value else home / "configs",
            service_url=env.get("HMS_MIRROR_SERVICE_URL") or DEFAULT_SERVICE_URL,
            service_timeout_ms=timeout_ms,
            mode_setting=env.get("HMS_MIRROR_INTEGRATION_MODE"),
        )


@dataclass(frozen=True)
class IntegrationContext:
    """Mode and web service availability, fixed for the process lifetime."""

    mode: IntegrationMode
    web_available: bool
    settings: Settings

    @property
    def use_web(self) -> bool:
        """Whether operations with a web realization should try it first."""
        return self.mode != IntegrationMode.CLI_ONLY and self.web_available


async def check_availability(mode: IntegrationMode, client) -> bool:
    """
    Check once whether the HMS-Mirror web service answers its health endpoint.

    Never raises: any failure is reported as unavailable.

    Args:
        mode: Resolved integration mode; CLI_ONLY skips the check entirely
        client: HmsMirrorWebClient used for the health request

    Returns:
        True only when the health endpoint returned HTTP 200
    """
    if mode == IntegrationMode.CLI_ONLY:
        return False

    try:
        available = await client.health()
    except Exception as e:
        logger.debug(f"Health check failed: {e}")
        available = False

    logger.info(f"HMS-Mirror web service available: {available}")
    if not available and mode == IntegrationMode.WEB_ONLY:
        logger.warning("Web service not available but integration mode is 'web'")
    return available


async def build_context(settings: Settings, client) -> IntegrationContext:
    """Resolve the mode, run the startup health check, and freeze the result."""
    mode = resolve_mode(settings.mode_setting)
    available = await check_availability(mode, client)
    return IntegrationContext(mode=mode, web_available=available, settings=settings)
