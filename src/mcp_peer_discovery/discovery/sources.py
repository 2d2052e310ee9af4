"""Discovery sources and the aggregator that merges their candidates."""

from __future__ import annotations

import asyncio
import json
import os
import re
import shlex
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Iterable

import psutil
import structlog
from pydantic import ValidationError

from ..errors import SourceUnavailable
from ..models.schemas import ServiceDescriptor, StaticConfig
from .registry import ServiceRegistry

logger = structlog.get_logger(__name__)

# Command-line tokens that mark a process as an MCP server
SERVER_MARKERS: tuple[str, ...] = ("mcp-server", "mcp_server")

INTERPRETER_RE = re.compile(r"^(node|nodejs|deno|bun|python(\d+(\.\d+)*)?)$")


# ----------------------------------------------------------------------
# Static config file
# ----------------------------------------------------------------------


def load_static_config(paths: Iterable[Path]) -> StaticConfig | None:
    """Return the first candidate in *paths* that parses, or None.

    Missing files are skipped silently; unparsable ones are logged and the
    next candidate is tried. Invalid ``externalServices`` entries are dropped.
    """
    for path in paths:
        path = Path(path)
        if not path.is_file():
            continue
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Config file unreadable", path=str(path), error=str(e))
            continue
        if not isinstance(raw, dict):
            logger.warning("Config file is not a JSON object", path=str(path))
            continue

        entries = raw.get("externalServices") or []
        if not isinstance(entries, list):
            logger.warning("externalServices is not a list", path=str(path))
            entries = []
        services: list[ServiceDescriptor] = []
        for entry in entries:
            try:
                services.append(ServiceDescriptor.model_validate(entry))
            except ValidationError as e:
                logger.warning("Skipping invalid config service", error=str(e))

        logger.info("Config file loaded", path=str(path), services=len(services))
        extra = {k: v for k, v in raw.items() if k != "externalServices"}
        return StaticConfig(externalServices=services, **extra)
    return None


# ----------------------------------------------------------------------
# Process table parsing
# ----------------------------------------------------------------------


def descriptor_from_cmdline(cmdline: list[str]) -> ServiceDescriptor | None:
    """Build a stdio descriptor from a process command line, if it is a server."""
    if not cmdline:
        return None
    joined = " ".join(cmdline)
    if not any(marker in joined for marker in SERVER_MARKERS):
        return None

    executable = cmdline[0]
    if INTERPRETER_RE.match(os.path.basename(executable)):
        args = cmdline[1:]
        if "-m" in args and args.index("-m") + 1 < len(args):
            module = args[args.index("-m") + 1]
            command = shlex.join([executable, "-m", module])
            name = module.rsplit(".", 1)[-1]
        else:
            script = next((a for a in args if not a.startswith("-")), None)
            if script is None:
                return None
            command = shlex.join([executable, script])
            name = Path(script).stem
    else:
        command = shlex.quote(executable)
        name = Path(executable).stem

    if not name:
        return None
    return ServiceDescriptor(
        name=name,
        description=f"MCP service discovered in process list: {name}",
        endpoint=f"stdio://{command}",
        transport="stdio",
    )


# ----------------------------------------------------------------------
# Sources
# ----------------------------------------------------------------------


class DiscoverySource(ABC):
    """One independent place service descriptors can come from."""

    name = "source"

    @abstractmethod
    async def discover(self) -> list[ServiceDescriptor]:
        """Return the candidates this source currently knows about."""


class RegistrySource(DiscoverySource):
    name = "registry"

    def __init__(self, registry: ServiceRegistry):
        self.registry = registry

    async def discover(self) -> list[ServiceDescriptor]:
        return self.registry.load()


class ProcessTableSource(DiscoverySource):
    """Scans running processes for MCP server command lines."""

    name = "process_table"

    def __init__(self, process_iter: Callable[..., Iterable[Any]] | None = None):
        self._process_iter = process_iter or psutil.process_iter

    async def discover(self) -> list[ServiceDescriptor]:
        return await asyncio.to_thread(self.scan)

    def scan(self) -> list[ServiceDescriptor]:
        own_pid = os.getpid()
        try:
            processes = list(self._process_iter(["pid", "cmdline"]))
        except (psutil.Error, OSError) as e:
            raise SourceUnavailable(f"Process table unavailable: {e}")

        found: list[ServiceDescriptor] = []
        for proc in processes:
            try:
                info = proc.info
                if info.get("pid") == own_pid:
                    continue
                descriptor = descriptor_from_cmdline(list(info.get("cmdline") or []))
            except (psutil.Error, TypeError, ValueError, ValidationError):
                continue
            if descriptor is not None:
                found.append(descriptor)
        logger.info("Process table scanned", candidates=len(found))
        return found


class ConfigFileSource(DiscoverySource):
    name = "config_file"

    def __init__(self, paths: Iterable[Path]):
        self.paths = list(paths)

    async def discover(self) -> list[ServiceDescriptor]:
        config = load_static_config(self.paths)
        if config is None:
            return []
        return list(config.external_services)


# ----------------------------------------------------------------------
# Aggregation
# ----------------------------------------------------------------------


class DiscoveryAggregator:
    """Runs every source in turn and concatenates their candidates.

    A failing source is logged and contributes nothing. Duplicate names
    across sources are kept; lookups take the first match.
    """

    def __init__(self, sources: list[DiscoverySource]):
        self.sources = sources

    async def discover(self) -> list[ServiceDescriptor]:
        candidates: list[ServiceDescriptor] = []
        for source in self.sources:
            try:
                found = await source.discover()
            except Exception as e:
                logger.warning("Discovery source failed", source=source.name, error=str(e))
                continue
            logger.info("Discovery source finished", source=source.name, count=len(found))
            candidates.extend(found)
        logger.info("Discovery complete", service_count=len(candidates))
        return candidates
