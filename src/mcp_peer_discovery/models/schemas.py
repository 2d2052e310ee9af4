"""Pydantic models for service descriptors, tools and the JSON files they live in."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class TransportKind(str, Enum):
    """Invocation strategies. Anything without an invoker is UNSUPPORTED."""

    HTTP = "http"
    STDIO = "stdio"
    UNSUPPORTED = "unsupported"


class ServiceDescriptor(BaseModel):
    """A peer process or endpoint that exposes tools."""

    name: str = Field(description="Canonical service name")
    description: str = Field(default="", description="Human readable summary")
    endpoint: str = Field(
        default="", description="URL for http, launch command for stdio"
    )
    transport: str = Field(default="stdio", description="http, stdio or socket")
    aliases: Optional[list[str]] = Field(
        default=None, description="Alternate identifiers for this service"
    )

    model_config = ConfigDict(extra="ignore")

    @property
    def kind(self) -> TransportKind:
        if self.transport == TransportKind.HTTP.value:
            return TransportKind.HTTP
        if self.transport == TransportKind.STDIO.value:
            return TransportKind.STDIO
        return TransportKind.UNSUPPORTED

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ExternalToolDescriptor(BaseModel):
    """A tool advertised by a peer, tagged with its owning service name."""

    name: str
    description: Optional[str] = ""
    service: str
    # opaque; a JSON Schema may also be a bare boolean
    inputSchema: Any = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")

    def to_json(self) -> dict[str, Any]:
        return self.model_dump()


class StaticConfig(BaseModel):
    """Optional static configuration file (``mcp-config.json``)."""

    external_services: list[ServiceDescriptor] = Field(
        default_factory=list, alias="externalServices"
    )

    model_config = ConfigDict(extra="allow", populate_by_name=True)
