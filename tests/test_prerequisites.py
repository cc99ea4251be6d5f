"""Tests for Java detection and the prerequisite checks."""

from unittest.mock import AsyncMock, Mock

import pytest

from src.context import IntegrationContext, IntegrationMode, Settings
from src.hms_mirror import CommandBuilder, SubprocessResult
from src.prerequisites import (
    MIN_JAVA_MAJOR,
    JavaVersion,
    check_prerequisites,
    detect_java_version,
)


def _executor(stdout="", stderr="", return_code=0):
    executor = Mock()
    executor.run = AsyncMock(
        return_value=SubprocessResult(
            argv=("java", "-version"), return_code=return_code, stdout=stdout, stderr=stderr
        )
    )
    return executor


class TestJavaVersion:
    """Tests for JavaVersion dataclass."""

    def test_parse_modern_version(self):
        """Test parsing a 'major.minor.patch' string."""
        assert JavaVersion.parse("17.0.2") == JavaVersion(17, 0)

    def test_parse_bare_major(self):
        """Test parsing a single feature release number."""
        assert JavaVersion.parse("21") == JavaVersion(21)

    def test_parse_legacy_version(self):
        """Test that '1.8.0_292' is normalized to Java 8."""
        assert JavaVersion.parse("1.8.0_292") == JavaVersion(8)

    def test_parse_invalid_string(self):
        """Test that an unparseable string raises ValueError."""
        with pytest.raises(ValueError, match="Cannot parse"):
            JavaVersion.parse("unknown")

    def test_comparison(self):
        """Test ordering between versions."""
        assert JavaVersion(11) < JavaVersion(17)
        assert JavaVersion(17, 1) > JavaVersion(17, 0)
        assert JavaVersion(21) >= JavaVersion(MIN_JAVA_MAJOR)

    def test_str(self):
        """Test that str() reports the feature release."""
        assert str(JavaVersion(17, 0)) == "17"

    def test_hashable(self):
        """Test that equal versions hash the same."""
        assert len({JavaVersion(17), JavaVersion.parse("17.0")}) == 1


class TestDetectJavaVersion:
    """Tests for detect_java_version."""

    @pytest.mark.asyncio
    async def test_version_on_stderr(self):
        """Test detection from the stderr banner 'java -version' prints."""
        executor = _executor(stderr='openjdk version "17.0.2" 2022-01-18\nOpenJDK Runtime Environment\n')

        version = await detect_java_version(executor)

        assert version == JavaVersion(17)
        assert executor.run.await_args.args[0] == ["java", "-version"]

    @pytest.mark.asyncio
    async def test_legacy_banner(self):
        """Test detection of a Java 8 banner."""
        executor = _executor(stderr='java version "1.8.0_292"\n')
        assert await detect_java_version(executor) == JavaVersion(8)

    @pytest.mark.asyncio
    async def test_java_missing(self):
        """Test that a runtime that cannot start yields None."""
        executor = _executor(stderr="No such file or directory: 'java'", return_code=None)
        assert await detect_java_version(executor) is None

    @pytest.mark.asyncio
    async def test_unrecognized_output(self):
        """Test that output without a version banner yields None."""
        executor = _executor(stdout="hello")
        assert await detect_java_version(executor) is None


class TestCheckPrerequisites:
    """Tests for check_prerequisites."""

    @pytest.fixture
    def settings(self, tmp_path):
        return Settings.from_env({"HMS_MIRROR_HOME": str(tmp_path)})

    @pytest.mark.asyncio
    async def test_all_checks_pass(self, settings):
        """Test a complete installation."""
        settings.binary_path.parent.mkdir(parents=True)
        settings.binary_path.write_text("#!/bin/bash\n")
        settings.binary_path.chmod(0o755)
        settings.reports_dir.mkdir()
        settings.configs_dir.mkdir()
        context = IntegrationContext(IntegrationMode.CLI_ONLY, False, settings)

        checks = await check_prerequisites(
            context,
            CommandBuilder(str(settings.binary_path)),
            _executor(stderr='openjdk version "21.0.1"\n'),
        )

        assert checks == {
            "hmsMirrorInstalled": True,
            "javaVersion": "21",
            "javaVersionOk": True,
            "configsDirectory": True,
            "reportsDirectory": True,
            "webServiceAvailable": False,
            "integrationMode": "cli",
            "allChecksPassed": True,
        }

    @pytest.mark.asyncio
    async def test_old_java_fails(self, settings):
        """Test that Java older than 17 fails the check."""
        context = IntegrationContext(IntegrationMode.HYBRID, True, settings)

        checks = await check_prerequisites(
            context,
            CommandBuilder(str(settings.binary_path)),
            _executor(stderr='java version "1.8.0_292"\n'),
        )

        assert checks["javaVersion"] == "8"
        assert checks["javaVersionOk"] is False
        assert checks["hmsMirrorInstalled"] is False
        assert checks["webServiceAvailable"] is True
        assert checks["allChecksPassed"] is False

    @pytest.mark.asyncio
    async def test_missing_java(self, settings):
        """Test that a missing Java runtime reports an empty version."""
        context = IntegrationContext(IntegrationMode.HYBRID, False, settings)

        checks = await check_prerequisites(
            context,
            CommandBuilder(str(settings.binary_path)),
            _executor(stderr="not found", return_code=None),
        )

        assert checks["javaVersion"] == ""
        assert checks["javaVersionOk"] is False
