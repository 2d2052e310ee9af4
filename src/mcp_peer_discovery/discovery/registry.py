"""Service registry: the JSON descriptor file shared by peers on this host."""

from __future__ import annotations

import json
from pathlib import Path

import structlog
from pydantic import ValidationError

from ..errors import RegistryWriteError
from ..models.schemas import ServiceDescriptor

logger = structlog.get_logger(__name__)


class ServiceRegistry:
    """Reads and writes ``{"services": [...]}`` at *path*.

    Writes are last-writer-wins; there is no locking between processes.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def ensure_directory(self) -> None:
        """Create the containing directory if it does not exist yet."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(
                "Could not create services directory",
                directory=str(self.path.parent),
                error=str(e),
            )

    def load(self) -> list[ServiceDescriptor]:
        """Return every valid descriptor in the file.

        A missing, unreadable or malformed file yields an empty list.
        Individual entries that fail validation are skipped.
        """
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Registry unreadable", path=str(self.path), error=str(e))
            return []

        entries = raw.get("services") if isinstance(raw, dict) else None
        if not isinstance(entries, list):
            logger.warning("Registry has no services list", path=str(self.path))
            return []

        services: list[ServiceDescriptor] = []
        for entry in entries:
            try:
                services.append(ServiceDescriptor.model_validate(entry))
            except ValidationError as e:
                logger.warning("Skipping invalid registry entry", error=str(e))
        logger.info("Registry loaded", path=str(self.path), count=len(services))
        return services

    def upsert(self, descriptor: ServiceDescriptor) -> list[ServiceDescriptor]:
        """Replace the entry named ``descriptor.name`` or append it, then save."""
        services = self.load()
        for index, existing in enumerate(services):
            if existing.name == descriptor.name:
                services[index] = descriptor
                break
        else:
            services.append(descriptor)

        self.save(services)
        logger.info("Service registered", name=descriptor.name, path=str(self.path))
        return services

    def save(self, services: list[ServiceDescriptor]) -> None:
        payload = {"services": [s.to_json() for s in services]}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as e:
            raise RegistryWriteError(f"Failed to write registry {self.path}: {e}")
