"""Discovery module: sources, alias resolution, tool catalog and invokers."""

from .registry import ServiceRegistry
from .resolver import NameResolver
from .sources import DiscoveryAggregator
from .stdio_invoker import StdioEndpoint, StdioInvoker
from .tool_catalog import ToolCatalog

__all__ = [
    "DiscoveryAggregator",
    "NameResolver",
    "ServiceRegistry",
    "StdioEndpoint",
    "StdioInvoker",
    "ToolCatalog",
]
