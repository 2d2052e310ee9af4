"""Tool catalog: every tool advertised by every discovered service."""

from __future__ import annotations

from typing import Any

import structlog
from pydantic import ValidationError

from ..models.schemas import ExternalToolDescriptor

logger = structlog.get_logger(__name__)


class ToolCatalog:
    """Stores external tool descriptors tagged with their owning service."""

    def __init__(self) -> None:
        self._tools: list[ExternalToolDescriptor] = []

    # ------------------------------------------------------------------
    # Population
    # ------------------------------------------------------------------

    def add(self, service: str, raw_tools: list[Any]) -> int:
        """Tag each item in *raw_tools* with *service* and store it.

        Items that are not objects or lack a name are skipped. Returns the
        number of tools accepted.
        """
        accepted = 0
        for item in raw_tools:
            if not isinstance(item, dict):
                logger.warning("Skipping non-object tool item", service=service)
                continue
            try:
                tool = ExternalToolDescriptor.model_validate({**item, "service": service})
            except ValidationError as e:
                logger.warning("Skipping invalid tool item", service=service, error=str(e))
                continue
            self._tools.append(tool)
            accepted += 1

        logger.info("Service tools added", service=service, tool_count=accepted)
        return accepted

    def replace_service(self, service: str, raw_tools: list[Any]) -> int:
        """Drop every tool owned by *service*, then add *raw_tools*."""
        self._tools = [t for t in self._tools if t.service != service]
        return self.add(service, raw_tools)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def tools(self) -> list[ExternalToolDescriptor]:
        return list(self._tools)

    @property
    def tool_count(self) -> int:
        return len(self._tools)

    def find(self, tool_name: str, service: str | None = None) -> ExternalToolDescriptor | None:
        for tool in self._tools:
            if tool.name == tool_name and (service is None or tool.service == service):
                return tool
        return None

    def get_services(self) -> dict[str, int]:
        """Return {service_name: tool_count}."""
        counts: dict[str, int] = {}
        for tool in self._tools:
            counts[tool.service] = counts.get(tool.service, 0) + 1
        return dict(sorted(counts.items()))
