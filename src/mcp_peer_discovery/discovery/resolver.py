"""Alias table mapping caller-supplied identifiers to canonical service names."""

from __future__ import annotations

from typing import Iterable

import structlog

from ..models.schemas import ServiceDescriptor

logger = structlog.get_logger(__name__)

SERVICE_SUFFIX = "mcp"

# Well-known peers and the names people usually call them by.
BUILTIN_ALIASES: dict[str, list[str]] = {
    "sequentialthinking-mcp": ["sequentialthinking", "sequential-thinking", "thinking"],
    "filesystem-mcp": ["filesystem", "fs"],
    "github-mcp": ["github", "gh"],
    "playwright-mcp": ["playwright", "pw", "browser"],
    "mcp-assistant-server": ["assistant", "mcp-assistant"],
}


class NameResolver:
    """Many-to-one alias resolution with identity fallback.

    Later registrations overwrite keys they share with earlier ones but never
    remove keys pointing at other canonical names.
    """

    def __init__(self, services: Iterable[ServiceDescriptor] = ()):
        self._table: dict[str, str] = {}
        self.rebuild(services)

    # ------------------------------------------------------------------
    # Population
    # ------------------------------------------------------------------

    def rebuild(self, services: Iterable[ServiceDescriptor] = ()) -> None:
        """Reset to the built-in table, then register every service in order."""
        self._table.clear()
        for canonical, aliases in BUILTIN_ALIASES.items():
            self._table[canonical] = canonical
            for alias in aliases:
                self._table[alias] = canonical
        for service in services:
            self.register(service)
        logger.debug("Alias table rebuilt", size=len(self._table))

    def register(self, service: ServiceDescriptor) -> None:
        name = service.name
        if not name:
            return
        self._table[name] = name

        for short in self.derived_names(name):
            self._table[short] = name

        for alias in service.aliases or []:
            if isinstance(alias, str) and alias.strip():
                self._table[alias.strip()] = name

    @staticmethod
    def derived_names(name: str) -> list[str]:
        """Short forms of a ``*-mcp`` name.

        ``filesystem-mcp`` gives ``filesystem``; ``brave-search-mcp`` gives
        ``brave-search`` and ``brave``.
        """
        suffix = f"-{SERVICE_SUFFIX}"
        if not name.endswith(suffix) or name == suffix:
            return []
        derived = [name[: -len(suffix)]]
        parts = name.split("-")
        if len(parts) >= 3 and parts[-1] == SERVICE_SUFFIX:
            derived.append(parts[0])
        return derived

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def resolve(self, identifier: str) -> str:
        return self._table.get(identifier, identifier)

    def canonical_names(self) -> list[str]:
        return list(dict.fromkeys(self._table.values()))

    def as_dict(self) -> dict[str, str]:
        return dict(self._table)

    def __contains__(self, identifier: str) -> bool:
        return identifier in self._table

    def __len__(self) -> int:
        return len(self._table)
