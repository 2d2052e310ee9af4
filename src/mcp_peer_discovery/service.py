"""DiscoveryService: find peer MCP services and call their tools."""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import structlog

from .client import DiscoveryConfig, HttpInvoker
from .discovery.registry import ServiceRegistry
from .discovery.resolver import NameResolver
from .discovery.sources import (
    ConfigFileSource,
    DiscoveryAggregator,
    DiscoverySource,
    ProcessTableSource,
    RegistrySource,
)
from .discovery.stdio_invoker import StdioEndpoint, StdioInvoker
from .discovery.tool_catalog import ToolCatalog
from .errors import DiscoveryError, ServiceNotFound, UnsupportedTransport
from .models.schemas import ExternalToolDescriptor, ServiceDescriptor, TransportKind

logger = structlog.get_logger(__name__)


class DiscoveryService:
    """Facade over discovery sources, the alias table and both invokers."""

    def __init__(
        self,
        config: Optional[DiscoveryConfig] = None,
        *,
        registry: Optional[ServiceRegistry] = None,
        resolver: Optional[NameResolver] = None,
        sources: Optional[list[DiscoverySource]] = None,
        http: Optional[HttpInvoker] = None,
        stdio: Optional[StdioInvoker] = None,
    ):
        self.config = config or DiscoveryConfig()
        self.registry = registry or ServiceRegistry(self.config.registry_path)
        self.resolver = resolver or NameResolver()
        self.http = http or HttpInvoker(timeout=self.config.http_timeout)
        self.stdio = stdio or StdioInvoker(
            handshake_timeout=self.config.stdio_handshake_timeout,
            response_timeout=self.config.stdio_response_timeout,
        )
        self.aggregator = DiscoveryAggregator(
            sources if sources is not None else self._default_sources()
        )
        self.catalog = ToolCatalog()
        self._services: list[ServiceDescriptor] = []

    def _default_sources(self) -> list[DiscoverySource]:
        sources: list[DiscoverySource] = [RegistrySource(self.registry)]
        if self.config.process_scan_enabled:
            sources.append(ProcessTableSource())
        sources.append(ConfigFileSource(self.config.config_paths))
        return sources

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        await self.http.aclose()

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def initialize(self) -> int:
        """Discover services, rebuild the alias table and the tool catalog.

        Returns the number of tools in the new catalog.
        """
        logger.info("Initializing discovery")
        self.registry.ensure_directory()

        services = await self.aggregator.discover()
        self._services = services
        self.resolver.rebuild(services)

        catalog = ToolCatalog()
        if self.config.parallel_tool_fetch:
            results = await asyncio.gather(
                *(self._fetch_tools(service) for service in services)
            )
        else:
            results = [await self._fetch_tools(service) for service in services]
        for service, tools in zip(services, results):
            if tools:
                catalog.add(service.name, tools)
        self.catalog = catalog

        logger.info(
            "Tool discovery complete",
            service_count=len(services),
            tool_count=catalog.tool_count,
        )
        return catalog.tool_count

    async def _fetch_tools(self, service: ServiceDescriptor) -> list[Any]:
        """Fetch the raw tool list of *service*; any failure yields []."""
        logger.info("Fetching service tools", service=service.name, transport=service.transport)
        try:
            kind = service.kind
            if kind is TransportKind.HTTP:
                return await self.http.list_tools(service.endpoint)
            if kind is TransportKind.STDIO:
                endpoint = StdioEndpoint.from_descriptor(service)
                return await self.stdio.list_tools(endpoint.command, cwd=endpoint.cwd)
            logger.info(
                "Transport not supported yet", service=service.name, transport=service.transport
            )
            return []
        except DiscoveryError as e:
            logger.warning("Fetching service tools failed", service=service.name, error=str(e))
            return []
        except Exception as e:
            logger.error(
                "Unexpected error fetching tools", service=service.name, error=str(e), exc_info=True
            )
            return []

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_available_tools(self) -> list[ExternalToolDescriptor]:
        return self.catalog.tools

    @property
    def services(self) -> list[ServiceDescriptor]:
        return list(self._services)

    def find_service(self, name: str) -> Optional[ServiceDescriptor]:
        """First descriptor named *name*, in discovery order."""
        for service in self._services:
            if service.name == name:
                return service
        return None

    def known_service_names(self) -> list[str]:
        names = self.resolver.canonical_names() + [s.name for s in self._services]
        return list(dict.fromkeys(names))

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    async def call_external_tool(
        self, tool_name: str, service_name: str, params: Optional[dict[str, Any]] = None
    ) -> Any:
        """Resolve *service_name* and invoke *tool_name* on it.

        Raises ServiceNotFound when nothing matches after resolution; every
        other failure is re-raised with the canonical service name attached.
        """
        canonical = self.resolver.resolve(service_name)
        if canonical != service_name:
            logger.info("Service name resolved", alias=service_name, service=canonical)
        logger.info("Calling external tool", tool=tool_name, service=canonical)

        service = self.find_service(canonical)
        if service is None:
            raise ServiceNotFound(canonical, self.known_service_names())
        if self.catalog.find(tool_name, service=canonical) is None:
            # the peer may still know the tool; the catalog can be stale
            logger.debug("Tool not in catalog", tool=tool_name, service=canonical)

        try:
            return await self._dispatch(service, tool_name, params or {})
        except DiscoveryError as e:
            e.service = canonical
            logger.error("External tool call failed", tool=tool_name, service=canonical, error=e.message)
            raise

    async def _dispatch(
        self, service: ServiceDescriptor, tool_name: str, params: dict[str, Any]
    ) -> Any:
        kind = service.kind
        if kind is TransportKind.HTTP:
            return await self.http.call_tool(service.endpoint, tool_name, params)
        if kind is TransportKind.STDIO:
            endpoint = StdioEndpoint.from_descriptor(service)
            return await self.stdio.call_tool(
                endpoint.command,
                tool_name,
                params,
                cwd=endpoint.cwd,
                response_timeout=self.config.stdio_call_timeout,
            )
        raise UnsupportedTransport(
            f"Transport '{service.transport}' is not supported; use an http or stdio service"
        )

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register_local_service(self, descriptor: ServiceDescriptor) -> None:
        """Persist *descriptor* and make it immediately usable in this process.

        Registry write failures propagate as RegistryWriteError.
        """
        logger.info("Registering local service", name=descriptor.name)
        self.registry.upsert(descriptor)

        for index, existing in enumerate(self._services):
            if existing.name == descriptor.name:
                self._services[index] = descriptor
                break
        else:
            self._services.append(descriptor)
        self.resolver.register(descriptor)

        if descriptor.kind is TransportKind.HTTP:
            tools = await self._fetch_tools(descriptor)
            self.catalog.replace_service(descriptor.name, tools)
