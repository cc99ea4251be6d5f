"""
MCP resources exposed by the HMS-Mirror server.

Resources are addressed with ``hms://`` URIs and always return a single
text body with its MIME type.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List

from .dispatcher import DispatchRequest, Dispatcher
from .hms_mirror import HmsMirrorError, get_strategies_info
from . import local_backend
from .web_client import WebServiceError


logger = logging.getLogger(__name__)

JSON_MIME = "application/json"
YAML_MIME = "text/yaml"

CONFIG_PREFIX = "hms://config/"
REPORT_PREFIX = "hms://report/"


class UnknownResourceError(HmsMirrorError):
    """The requested URI does not name a resource, or the resource does not exist."""

    pass


@dataclass(frozen=True)
class ResourceInfo:
    uri: str
    name: str
    description: str
    mime_type: str = JSON_MIME


@dataclass(frozen=True)
class ResourceContent:
    uri: str
    mime_type: str
    text: str


RESOURCES: List[ResourceInfo] = [
    ResourceInfo("hms://configs", "HMS-Mirror Configurations",
                 "List of available configuration files"),
    ResourceInfo("hms://reports", "Migration Reports", "List of migration reports"),
    ResourceInfo("hms://strategies", "Migration Strategies",
                 "Available migration strategies and their descriptions"),
    ResourceInfo("hms://service/status", "Service Status",
                 "Current status of HMS-Mirror service"),
]


def to_json(payload: Any) -> str:
    """Serialize a payload the way every tool and resource returns it."""
    return json.dumps(payload, indent=2, default=str)


class ResourceCatalog:
    """Reads ``hms://`` resources."""

    def __init__(self, dispatcher: Dispatcher):
        self.dispatcher = dispatcher
        self.context = dispatcher.context

    async def read(self, uri: str) -> ResourceContent:
        """
        Read a resource by URI.

        Raises:
            UnknownResourceError: If the URI is not recognized or the
                named config/report cannot be read
        """
        if uri == "hms://configs":
            configs = local_backend.list_configurations(self.context.settings.configs_dir)
            return ResourceContent(uri, JSON_MIME, to_json(configs))

        if uri == "hms://reports":
            outcome = await self.dispatcher.dispatch(
                DispatchRequest("list_reports", {"limit": 50})
            )
            return ResourceContent(uri, JSON_MIME, to_json(outcome.payload))

        if uri == "hms://strategies":
            return ResourceContent(uri, JSON_MIME, to_json(get_strategies_info()))

        if uri == "hms://service/status":
            return ResourceContent(uri, JSON_MIME, to_json(await self._service_status()))

        if uri.startswith(CONFIG_PREFIX):
            name = uri[len(CONFIG_PREFIX):]
            try:
                text = local_backend.read_configuration(self.context.settings.configs_dir, name)
            except HmsMirrorError as e:
                raise UnknownResourceError(str(e)) from e
            return ResourceContent(uri, YAML_MIME, text)

        if uri.startswith(REPORT_PREFIX):
            report_path = uri[len(REPORT_PREFIX):]
            try:
                report = local_backend.load_report(self.context.settings.reports_dir, report_path)
            except (HmsMirrorError, OSError) as e:
                raise UnknownResourceError(f"Report not found: {report_path}") from e
            return ResourceContent(uri, JSON_MIME, to_json(report))

        raise UnknownResourceError(f"Unknown resource: {uri}")

    async def _service_status(self) -> Dict[str, Any]:
        settings = self.context.settings
        status: Dict[str, Any] = {
            "webServiceAvailable": self.context.web_available,
            "webServiceUrl": settings.service_url,
            "integrationMode": self.context.mode.value,
            "hmsMirrorHome": str(settings.home),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        if self.context.web_available:
            try:
                status["serviceHealth"] = await self.dispatcher.client.health_details()
            except WebServiceError as e:
                logger.warning(f"Could not fetch service health: {e}")

        return status
