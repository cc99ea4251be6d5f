"""Tests for the hms:// resource catalog."""

import json
from unittest.mock import AsyncMock, Mock

import pytest
import yaml

from src.context import IntegrationContext, IntegrationMode, Settings
from src.dispatcher import Dispatcher
from src.resources import (
    JSON_MIME,
    RESOURCES,
    YAML_MIME,
    ResourceCatalog,
    UnknownResourceError,
    to_json,
)
from src.web_client import WebServiceError


@pytest.fixture
def settings(tmp_path):
    settings = Settings.from_env({"HMS_MIRROR_HOME": str(tmp_path)})
    settings.reports_dir.mkdir()
    settings.configs_dir.mkdir()
    return settings


@pytest.fixture
def client():
    client = Mock()
    client.list_reports = AsyncMock()
    client.health_details = AsyncMock(return_value={"status": "UP"})
    return client


def _catalog(settings, client, mode=IntegrationMode.CLI_ONLY, web_available=False):
    context = IntegrationContext(mode, web_available, settings)
    return ResourceCatalog(Dispatcher(context, client, executor=Mock()))


def test_static_resources():
    assert [r.uri for r in RESOURCES] == [
        "hms://configs",
        "hms://reports",
        "hms://strategies",
        "hms://service/status",
    ]


def test_to_json_handles_dates():
    from datetime import date

    assert json.loads(to_json({"day": date(2024, 1, 2)})) == {"day": "2024-01-02"}


class TestResourceCatalog:
    @pytest.mark.asyncio
    async def test_configs(self, settings, client):
        (settings.configs_dir / "prod.yaml").write_text(yaml.safe_dump({"dataStrategy": "SQL"}))

        content = await _catalog(settings, client).read("hms://configs")

        assert content.mime_type == JSON_MIME
        assert json.loads(content.text) == [
            {"name": "prod.yaml", "dataStrategy": "SQL", "leftCluster": None, "rightCluster": None}
        ]

    @pytest.mark.asyncio
    async def test_reports_local(self, settings, client):
        run_dir = settings.reports_dir / "run1"
        run_dir.mkdir()
        (run_dir / "run-status.yaml").write_text(
            yaml.safe_dump({"timestamp": "2024-01-01", "databases": ["sales"]})
        )

        content = await _catalog(settings, client).read("hms://reports")

        payload = json.loads(content.text)
        assert payload["count"] == 1
        assert payload["reports"][0]["path"] == "run1"
        client.list_reports.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reports_via_web_service(self, settings, client):
        client.list_reports.return_value = {"count": 0, "reports": []}

        await _catalog(settings, client, IntegrationMode.HYBRID, True).read("hms://reports")

        client.list_reports.assert_awaited_once_with(None, 50)

    @pytest.mark.asyncio
    async def test_strategies(self, settings, client):
        content = await _catalog(settings, client).read("hms://strategies")
        strategies = json.loads(content.text)
        assert len(strategies) == 7
        assert strategies["HYBRID"]["supportsACID"] is True

    @pytest.mark.asyncio
    async def test_service_status_without_web(self, settings, client):
        content = await _catalog(settings, client).read("hms://service/status")

        status = json.loads(content.text)
        assert status["webServiceAvailable"] is False
        assert status["integrationMode"] == "cli"
        assert status["hmsMirrorHome"] == str(settings.home)
        assert "serviceHealth" not in status
        client.health_details.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_service_status_with_web(self, settings, client):
        content = await _catalog(settings, client, IntegrationMode.HYBRID, True).read(
            "hms://service/status"
        )
        assert json.loads(content.text)["serviceHealth"] == {"status": "UP"}

    @pytest.mark.asyncio
    async def test_service_status_health_failure(self, settings, client):
        client.health_details.side_effect = WebServiceError("timeout")

        content = await _catalog(settings, client, IntegrationMode.HYBRID, True).read(
            "hms://service/status"
        )

        assert "serviceHealth" not in json.loads(content.text)

    @pytest.mark.asyncio
    async def test_single_config(self, settings, client):
        (settings.configs_dir / "prod.yaml").write_text("dataStrategy: SQL\n")

        content = await _catalog(settings, client).read("hms://config/prod.yaml")

        assert content.mime_type == YAML_MIME
        assert content.text == "dataStrategy: SQL\n"

    @pytest.mark.asyncio
    async def test_missing_config(self, settings, client):
        with pytest.raises(UnknownResourceError, match="Configuration not found"):
            await _catalog(settings, client).read("hms://config/missing.yaml")

    @pytest.mark.asyncio
    async def test_single_report(self, settings, client):
        run_dir = settings.reports_dir / "2024" / "run1"
        run_dir.mkdir(parents=True)
        (run_dir / "run-status.yaml").write_text("status: SUCCESS\n")

        content = await _catalog(settings, client).read("hms://report/2024/run1")

        report = json.loads(content.text)
        assert report["path"] == "2024/run1"
        assert report["status"] == {"status": "SUCCESS"}

    @pytest.mark.asyncio
    async def test_missing_report(self, settings, client):
        with pytest.raises(UnknownResourceError, match="Report not found: nope"):
            await _catalog(settings, client).read("hms://report/nope")

    @pytest.mark.asyncio
    async def test_unknown_uri(self, settings, client):
        with pytest.raises(UnknownResourceError, match="Unknown resource"):
            await _catalog(settings, client).read("hms://metrics")
