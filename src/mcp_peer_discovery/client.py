"""Configuration and HTTP invoker for peer MCP services."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import httpx
import structlog
from pydantic import Field
from pydantic_settings import BaseSettings

from .errors import ParseError, TransportError

logger = structlog.get_logger(__name__)


def _default_config_paths() -> list[Path]:
    return [
        Path.cwd() / "mcp-config.json",
        Path.home() / ".mcp" / "config.json",
    ]


class DiscoveryConfig(BaseSettings):
    """Configuration for peer discovery and invocation."""

    services_directory: Path = Field(
        default_factory=lambda: Path.home() / ".mcp" / "services",
        description="Directory holding the shared service registry",
    )
    registry_filename: str = Field(
        default="registry.json", description="Registry file name"
    )
    config_paths: list[Path] = Field(
        default_factory=_default_config_paths,
        description="Static config candidates, first readable one wins",
    )
    http_timeout: float = Field(default=30.0, description="HTTP timeout in seconds")
    stdio_handshake_timeout: float = Field(
        default=5.0, description="Seconds to wait for a peer's initialized signal"
    )
    stdio_response_timeout: float = Field(
        default=5.0, description="Seconds to wait for a list_tools response"
    )
    stdio_call_timeout: float = Field(
        default=30.0, description="Seconds to wait for a call_tool response"
    )
    process_scan_enabled: bool = Field(
        default=True, description="Scan the process table for MCP servers"
    )
    parallel_tool_fetch: bool = Field(
        default=False, description="Fetch tool lists from all services concurrently"
    )

    self_name: str = Field(default="mcp-peer-discovery")
    self_description: str = Field(default="MCP peer discovery server")
    self_endpoint: Optional[str] = Field(
        default=None, description="Register this process under this endpoint"
    )
    self_transport: str = Field(default="http")
    self_aliases: list[str] = Field(default_factory=lambda: ["discovery"])

    model_config = {"env_prefix": "MCP_DISCOVERY_", "case_sensitive": False}

    @property
    def registry_path(self) -> Path:
        return self.services_directory / self.registry_filename


class HttpInvoker:
    """Posts ``{method, params}`` requests to a peer's HTTP endpoint."""

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout
        self.client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def _ensure_client(self):
        if not self.client:
            self.client = httpx.AsyncClient(timeout=self.timeout)

    async def aclose(self) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None

    # ------------------------------------------------------------------
    # Core request
    # ------------------------------------------------------------------

    async def _request(
        self, endpoint: str, method: str, params: Optional[Dict[str, Any]] = None
    ) -> Any:
        """Send one request to *endpoint* and return the decoded JSON body."""
        await self._ensure_client()

        try:
            response = await self.client.post(
                endpoint, json={"method": method, "params": params or {}}
            )
        except httpx.RequestError as e:
            logger.error("Request error", error=str(e), endpoint=endpoint)
            raise TransportError(f"Request failed: {e}")

        logger.info(
            "Peer request",
            method=method,
            endpoint=endpoint,
            status_code=response.status_code,
        )

        if response.status_code >= 400:
            error_msg = f"Peer request failed: {response.status_code}"
            try:
                error_detail = response.json()
                if isinstance(error_detail, dict) and "error" in error_detail:
                    error_msg += f" - {error_detail['error']}"
                else:
                    error_msg += f" - {response.text}"
            except ValueError:
                error_msg += f" - {response.text}"
            raise TransportError(error_msg, response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise ParseError(
                f"Invalid JSON in response from {endpoint}: {e}",
                response.status_code,
            )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def list_tools(self, endpoint: str) -> list[Dict[str, Any]]:
        data = await self._request(endpoint, "list_tools")
        if not isinstance(data, dict) or not isinstance(data.get("tools"), list):
            raise ParseError(f"Response from {endpoint} carries no tools list")
        return data["tools"]

    async def call_tool(
        self, endpoint: str, tool_name: str, arguments: Dict[str, Any]
    ) -> Any:
        """Invoke *tool_name* and return the peer's response body verbatim."""
        return await self._request(
            endpoint,
            "call_tool",
            {"name": tool_name, "arguments": arguments},
        )
