"""Shared fixtures for tests."""

import json
import shlex
import sys
import time
from pathlib import Path

import psutil
import pytest

from mcp_peer_discovery.client import DiscoveryConfig

FIXTURES_DIR = Path(__file__).parent / "fixtures"
PEERS_DIR = FIXTURES_DIR / "peers"


@pytest.fixture
def peer_command():
    """Build a shell command that runs one of the fixture peers."""

    def _build(script: str, *args: str) -> str:
        parts = [sys.executable, str(PEERS_DIR / script), *args]
        return "exec " + shlex.join(parts)

    return _build


@pytest.fixture
def static_config() -> dict:
    """Load the static config fixture."""
    with open(FIXTURES_DIR / "mcp-config.json") as f:
        return json.load(f)


@pytest.fixture
def discovery_config(tmp_path) -> DiscoveryConfig:
    """Config rooted in tmp_path with the process scan disabled."""
    return DiscoveryConfig(
        services_directory=tmp_path / "services",
        config_paths=[tmp_path / "mcp-config.json"],
        process_scan_enabled=False,
        stdio_handshake_timeout=5.0,
        stdio_response_timeout=5.0,
        stdio_call_timeout=5.0,
    )


def wait_until_gone(pid: int, grace: float = 2.0) -> bool:
    """True once *pid* has exited (zombies count as exited)."""
    deadline = time.monotonic() + grace
    while time.monotonic() < deadline:
        try:
            if psutil.Process(pid).status() == psutil.STATUS_ZOMBIE:
                return True
        except psutil.NoSuchProcess:
            return True
        time.sleep(0.05)
    return False


@pytest.fixture
def process_gone():
    return wait_until_gone
