"""Discover peer MCP services and invoke their tools over HTTP or stdio."""

__version__ = "0.1.0"

from .client import DiscoveryConfig, HttpInvoker
from .errors import (
    DiscoveryError,
    ParseError,
    PeerProcessError,
    ProtocolTimeout,
    RegistryWriteError,
    ServiceNotFound,
    SourceUnavailable,
    TransportError,
    UnsupportedTransport,
)
from .models.schemas import ExternalToolDescriptor, ServiceDescriptor, TransportKind
from .service import DiscoveryService

__all__ = [
    "DiscoveryConfig",
    "DiscoveryError",
    "DiscoveryService",
    "ExternalToolDescriptor",
    "HttpInvoker",
    "ParseError",
    "PeerProcessError",
    "ProtocolTimeout",
    "RegistryWriteError",
    "ServiceDescriptor",
    "ServiceNotFound",
    "SourceUnavailable",
    "TransportError",
    "TransportKind",
    "UnsupportedTransport",
]
