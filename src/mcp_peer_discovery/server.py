"""MCP server exposing peer discovery over stdio."""

import asyncio
import logging
import sys
from typing import Any, Dict, Optional

import structlog
from mcp import types
from mcp.server import Server
from mcp.server.models import InitializationOptions
from mcp.server.stdio import stdio_server
from mcp.types import Tool

from . import __version__
from .client import DiscoveryConfig
from .discovery.meta_tools import META_TOOL_NAMES, MetaTools
from .errors import DiscoveryError, RegistryWriteError, ServiceNotFound
from .models.schemas import ServiceDescriptor
from .service import DiscoveryService

logger = structlog.get_logger(__name__)


class PeerDiscoveryMCPServer:
    """Serves the discovery meta tools to an MCP client."""

    def __init__(
        self,
        config: Optional[DiscoveryConfig] = None,
        discovery: Optional[DiscoveryService] = None,
    ):
        self.config = config or DiscoveryConfig()
        self.server = Server("mcp-peer-discovery")
        self.discovery = discovery or DiscoveryService(self.config)
        self.meta_tools = MetaTools(self.discovery)

        self._discovery_done = False

        self._register_handlers()

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def _discover_tools(self) -> int:
        """Run discovery once. Returns tool count."""
        try:
            count = await self.discovery.initialize()
        except Exception as e:
            logger.warning("Tool discovery failed", error=str(e))
            return 0
        self._discovery_done = True
        return count

    async def register_self(self) -> None:
        """Announce this process in the shared registry when configured to."""
        if not self.config.self_endpoint:
            return
        descriptor = ServiceDescriptor(
            name=self.config.self_name,
            description=self.config.self_description,
            endpoint=self.config.self_endpoint,
            transport=self.config.self_transport,
            aliases=self.config.self_aliases or None,
        )
        try:
            await self.discovery.register_local_service(descriptor)
        except RegistryWriteError as e:
            # startup continues without self-registration
            logger.error("Self registration failed", error=str(e))

    # ------------------------------------------------------------------
    # MCP handlers
    # ------------------------------------------------------------------

    def _register_handlers(self) -> None:
        @self.server.list_tools()
        async def list_tools() -> list[Tool]:
            if not self._discovery_done:
                await self._discover_tools()
            tools = self.meta_tools.get_tools()
            logger.info("list_tools", count=len(tools))
            return tools

        @self.server.call_tool()
        async def call_tool(name: str, arguments: Dict[str, Any]) -> list[types.TextContent]:
            return await self.handle_call(name, arguments)

    async def handle_call(self, name: str, arguments: Dict[str, Any]) -> list[types.TextContent]:
        try:
            logger.info("call_tool", tool=name)
            if name not in META_TOOL_NAMES:
                return [types.TextContent(type="text", text=f"Unknown tool: {name}")]

            if not self._discovery_done:
                await self._discover_tools()

            text = await self.meta_tools.call_tool(name, arguments or {})
            return [types.TextContent(type="text", text=text)]

        except ServiceNotFound as e:
            logger.warning("Service not found", service=e.name, tool=name)
            return [types.TextContent(
                type="text",
                text=f"{e}\n\nCheck the service name or make sure the service is running.",
            )]
        except DiscoveryError as e:
            logger.error("External tool error", error=str(e), tool=name)
            return [types.TextContent(type="text", text=f"External tool error: {e}")]
        except Exception as e:
            logger.error("Unexpected error", error=str(e), tool=name, exc_info=True)
            return [types.TextContent(type="text", text=f"Error: {e}")]

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self) -> None:
        logger.info("Starting MCP peer discovery server")
        await self.register_self()
        try:
            async with stdio_server() as (read_stream, write_stream):
                await self.server.run(
                    read_stream,
                    write_stream,
                    InitializationOptions(
                        server_name="mcp-peer-discovery",
                        server_version=__version__,
                        capabilities=types.ServerCapabilities(
                            tools=types.ToolsCapability(listChanged=False),
                        ),
                    ),
                )
        finally:
            await self.discovery.close()


# ------------------------------------------------------------------
# Entry points
# ------------------------------------------------------------------


def configure_logging(level: int = logging.INFO) -> None:
    # stdout carries the MCP stream
    logging.basicConfig(stream=sys.stderr, level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


async def async_main() -> None:
    configure_logging()

    try:
        server = PeerDiscoveryMCPServer()
        await server.run()
    except KeyboardInterrupt:
        logger.info("Server shutdown requested")
    except Exception as e:
        logger.error("Server error", error=str(e), exc_info=True)
        sys.exit(1)


def main() -> None:
    """Synchronous entry point for console script."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
