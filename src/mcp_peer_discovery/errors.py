"""Exception hierarchy for peer discovery and invocation."""

from __future__ import annotations

from typing import Optional


class DiscoveryError(Exception):
    """Base exception for discovery and invocation errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        service: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.service = service

    def __str__(self) -> str:
        if self.service:
            return f"{self.service}: {self.message}"
        return self.message


class SourceUnavailable(DiscoveryError):
    """A discovery source could not be read."""


class ServiceNotFound(DiscoveryError):
    """No descriptor matches the resolved service name."""

    def __init__(self, name: str, known_services: list[str]):
        known = "\n".join(f"- {s}" for s in known_services) or "- (none)"
        super().__init__(
            f"MCP service not found: {name}\n\nAvailable services:\n{known}"
        )
        self.name = name
        self.known_services = known_services


class TransportError(DiscoveryError):
    """Network or process-spawn failure."""


class UnsupportedTransport(TransportError):
    """The descriptor names a transport with no invoker."""


class PeerProcessError(TransportError):
    """A stdio peer exited with a nonzero status."""

    def __init__(self, returncode: int, stderr: str = "", stdout: str = ""):
        detail = stderr.strip() or stdout.strip() or "no output"
        super().__init__(f"Process exited with code {returncode}: {detail}")
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout


class ProtocolTimeout(DiscoveryError):
    """A stdio conversation exceeded one of its time bounds."""

    def __init__(self, message: str, phase: str):
        super().__init__(message)
        self.phase = phase


class ParseError(DiscoveryError):
    """Malformed structured message or file content."""


class RegistryWriteError(DiscoveryError):
    """The registry file could not be written."""
