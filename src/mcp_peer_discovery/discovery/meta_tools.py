"""MCP tools that expose peer discovery to this server's clients."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from mcp.types import Tool

if TYPE_CHECKING:
    from ..service import DiscoveryService

# ─── Tool definitions ────────────────────────────────────────────────

META_TOOL_DEFINITIONS: list[Tool] = [
    Tool(
        name="discover_mcp_tools",
        description=(
            "List the tools offered by other MCP services found on this host. "
            "Set refresh to re-run discovery first."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "refresh": {
                    "type": "boolean",
                    "description": "Re-run service discovery before listing",
                    "default": False,
                },
            },
        },
    ),
    Tool(
        name="call_external_tool",
        description=(
            "Call a tool on another MCP service. The service may be given by "
            "its full name or a known alias (e.g. 'fs' for filesystem-mcp)."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "toolName": {
                    "type": "string",
                    "description": "Name of the tool on the external service",
                },
                "serviceName": {
                    "type": "string",
                    "description": "Service name or alias",
                },
                "params": {
                    "type": "object",
                    "description": "Arguments passed to the tool",
                },
            },
            "required": ["toolName", "serviceName"],
        },
    ),
    Tool(
        name="list_services",
        description="Show discovered services, their transports and the alias table.",
        inputSchema={"type": "object", "properties": {}},
    ),
]

META_TOOL_NAMES: set[str] = {t.name for t in META_TOOL_DEFINITIONS}


class MetaTools:
    """Handles the discovery tools."""

    def __init__(self, discovery: DiscoveryService):
        self._discovery = discovery

    @staticmethod
    def get_tools() -> list[Tool]:
        return list(META_TOOL_DEFINITIONS)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        """Dispatch a meta tool call. Returns a text string."""
        if name == "discover_mcp_tools":
            return await self._discover(arguments)
        if name == "call_external_tool":
            return await self._call_external(arguments)
        if name == "list_services":
            return self._list_services()
        raise ValueError(f"Unknown meta tool: {name}")

    # ─── Handlers ──────────────────────────────────────────────────

    async def _discover(self, arguments: dict[str, Any]) -> str:
        if arguments.get("refresh"):
            await self._discovery.initialize()
        tools = [t.to_json() for t in self._discovery.get_available_tools()]
        return json.dumps({"externalTools": tools, "count": len(tools)}, indent=2)

    async def _call_external(self, arguments: dict[str, Any]) -> str:
        tool_name = arguments.get("toolName")
        service_name = arguments.get("serviceName")
        if not tool_name or not service_name:
            raise ValueError("toolName and serviceName are required")
        result = await self._discovery.call_external_tool(
            tool_name, service_name, arguments.get("params") or {}
        )
        return json.dumps(result, indent=2, default=str)

    def _list_services(self) -> str:
        services = [s.to_json() for s in self._discovery.services]
        return json.dumps({
            "services": services,
            "aliases": self._discovery.resolver.as_dict(),
            "tool_counts": self._discovery.catalog.get_services(),
        }, indent=2)
