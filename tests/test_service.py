"""Tests for the DiscoveryService facade."""

import json

import pytest

from mcp_peer_discovery.errors import (
    RegistryWriteError,
    ServiceNotFound,
    TransportError,
    UnsupportedTransport,
)
from mcp_peer_discovery.models.schemas import ServiceDescriptor
from mcp_peer_discovery.service import DiscoveryService

FS_ENDPOINT = "http://localhost:4100"
LIST_TOOLS = {"method": "list_tools", "params": {}}


def _write_registry(config, services):
    config.services_directory.mkdir(parents=True, exist_ok=True)
    config.registry_path.write_text(json.dumps({"services": services}))


def _write_static_config(config, services):
    config.config_paths[0].write_text(json.dumps({"externalServices": services}))


@pytest.fixture
def fs_registry(discovery_config):
    _write_registry(
        discovery_config,
        [{
            "name": "filesystem-mcp",
            "description": "Files",
            "transport": "http",
            "endpoint": FS_ENDPOINT,
        }],
    )
    return discovery_config


@pytest.fixture
def echo_service(peer_command):
    return {
        "name": "echo-tools-mcp",
        "description": "Echo over stdio",
        "transport": "stdio",
        "endpoint": f"stdio://{peer_command('echo_peer.py')}",
        "aliases": ["echo"],
    }


class TestCallExternalTool:
    async def test_alias_resolves_to_http_service(self, fs_registry, httpx_mock):
        httpx_mock.add_response(
            url=FS_ENDPOINT,
            method="POST",
            match_json=LIST_TOOLS,
            json={"tools": [{"name": "read_file", "description": "Read a file"}]},
        )
        httpx_mock.add_response(
            url=FS_ENDPOINT,
            method="POST",
            match_json={
                "method": "call_tool",
                "params": {"name": "read_file", "arguments": {"path": "a.txt"}},
            },
            json={"content": [{"type": "text", "text": "hello"}]},
        )

        async with DiscoveryService(fs_registry) as discovery:
            await discovery.initialize()
            result = await discovery.call_external_tool("read_file", "fs", {"path": "a.txt"})

        assert result == {"content": [{"type": "text", "text": "hello"}]}

    async def test_stdio_service_by_declared_alias(self, discovery_config, echo_service):
        _write_static_config(discovery_config, [echo_service])
        async with DiscoveryService(discovery_config) as discovery:
            await discovery.initialize()
            result = await discovery.call_external_tool("echo", "echo", {"text": "hi"})
        assert result == {"content": [{"type": "text", "text": "hi"}]}

    async def test_service_not_found_lists_known_names(self, discovery_config):
        async with DiscoveryService(discovery_config) as discovery:
            await discovery.initialize()
            with pytest.raises(ServiceNotFound) as exc_info:
                await discovery.call_external_tool("read_file", "fs", {})
        err = exc_info.value
        assert err.name == "filesystem-mcp"
        assert "filesystem-mcp" in err.known_services
        assert "- github-mcp" in str(err)

    async def test_failure_decorated_with_service(self, fs_registry, httpx_mock):
        httpx_mock.add_response(
            url=FS_ENDPOINT, method="POST", match_json=LIST_TOOLS, json={"tools": []}
        )
        httpx_mock.add_response(url=FS_ENDPOINT, method="POST", status_code=503, text="down")

        async with DiscoveryService(fs_registry) as discovery:
            await discovery.initialize()
            with pytest.raises(TransportError) as exc_info:
                await discovery.call_external_tool("read_file", "filesystem", {})
        assert exc_info.value.service == "filesystem-mcp"
        assert exc_info.value.status_code == 503
        assert str(exc_info.value).startswith("filesystem-mcp: ")

    async def test_unsupported_transport(self, discovery_config):
        _write_static_config(
            discovery_config,
            [{"name": "sock-mcp", "transport": "socket", "endpoint": "/tmp/sock"}],
        )
        async with DiscoveryService(discovery_config) as discovery:
            await discovery.initialize()
            assert discovery.get_available_tools() == []
            with pytest.raises(UnsupportedTransport):
                await discovery.call_external_tool("anything", "sock", {})

    async def test_first_registered_wins(self, discovery_config, httpx_mock):
        _write_registry(
            discovery_config,
            [{"name": "dup", "transport": "http", "endpoint": "http://first.local"}],
        )
        _write_static_config(
            discovery_config,
            [{"name": "dup", "transport": "socket", "endpoint": "http://second.local"}],
        )
        httpx_mock.add_response(
            url="http://first.local", method="POST", match_json=LIST_TOOLS, json={"tools": []}
        )
        httpx_mock.add_response(
            url="http://first.local", method="POST", json={"content": ["first"]}
        )
        async with DiscoveryService(discovery_config) as discovery:
            await discovery.initialize()
            assert len(discovery.services) == 2
            assert await discovery.call_external_tool("t", "dup") == {"content": ["first"]}


class TestInitialize:
    async def test_failing_service_does_not_abort_catalog(
        self, discovery_config, echo_service, httpx_mock
    ):
        _write_static_config(
            discovery_config,
            [
                {"name": "broken-mcp", "transport": "http", "endpoint": "http://broken.local"},
                {"name": "sock-mcp", "transport": "socket", "endpoint": "/tmp/sock"},
                echo_service,
            ],
        )
        httpx_mock.add_response(url="http://broken.local", method="POST", status_code=500)

        async with DiscoveryService(discovery_config) as discovery:
            count = await discovery.initialize()

        assert count == 2
        assert {(t.service, t.name) for t in discovery.get_available_tools()} == {
            ("echo-tools-mcp", "echo"),
            ("echo-tools-mcp", "upper"),
        }

    async def test_parallel_fetch_keeps_discovery_order(self, discovery_config, peer_command):
        discovery_config.parallel_tool_fetch = True
        _write_static_config(
            discovery_config,
            [
                {"name": "one", "transport": "stdio",
                 "endpoint": f"stdio://{peer_command('echo_peer.py')}"},
                {"name": "two", "transport": "stdio",
                 "endpoint": f"stdio://{peer_command('eager_peer.py')}"},
                {"name": "three", "transport": "stdio",
                 "endpoint": f"stdio://{peer_command('crash_peer.py')}"},
            ],
        )
        async with DiscoveryService(discovery_config) as discovery:
            await discovery.initialize()
        assert [(t.service, t.name) for t in discovery.get_available_tools()] == [
            ("one", "echo"),
            ("one", "upper"),
            ("two", "ping"),
        ]

    async def test_refresh_rebuilds_catalog(self, discovery_config, echo_service):
        _write_static_config(discovery_config, [echo_service])
        async with DiscoveryService(discovery_config) as discovery:
            await discovery.initialize()
            await discovery.initialize()
            assert discovery.catalog.tool_count == 2
            assert len(discovery.services) == 1

    async def test_creates_services_directory(self, discovery_config):
        async with DiscoveryService(discovery_config) as discovery:
            await discovery.initialize()
        assert discovery_config.services_directory.is_dir()

    async def test_config_aliases_feed_resolver(self, discovery_config, static_config):
        discovery_config.config_paths[0].write_text(json.dumps(static_config))
        discovery = DiscoveryService(discovery_config)
        assert discovery.resolver.resolve("search") == "search"

        discovery.http.list_tools = _raise_transport
        discovery.stdio.list_tools = _raise_transport
        await discovery.initialize()
        assert discovery.resolver.resolve("search") == "brave-search-mcp"
        assert discovery.resolver.resolve("brave") == "brave-search-mcp"
        assert discovery.resolver.resolve("weather") == "weather-mcp"
        await discovery.close()


async def _raise_transport(*args, **kwargs):
    raise TransportError("unreachable")


class TestRegisterLocalService:
    async def test_register_persists_and_fetches_tools(self, discovery_config, httpx_mock):
        httpx_mock.add_response(
            url="http://localhost:3000",
            method="POST",
            json={"tools": [{"name": "analyze_task"}, {"name": "recommend_tools"}]},
        )
        httpx_mock.add_response(
            url="http://localhost:3000",
            method="POST",
            json={"tools": [{"name": "analyze_task"}]},
        )
        descriptor = ServiceDescriptor(
            name="mcp-assistant-server",
            description="Assistant",
            endpoint="http://localhost:3000",
            transport="http",
            aliases=["helper"],
        )

        async with DiscoveryService(discovery_config) as discovery:
            await discovery.register_local_service(descriptor)
            await discovery.register_local_service(descriptor)

            assert discovery.registry.load() == [descriptor]
            assert discovery.services == [descriptor]
            assert discovery.resolver.resolve("helper") == "mcp-assistant-server"
            assert [t.name for t in discovery.get_available_tools()] == ["analyze_task"]

    async def test_stdio_registration_does_not_fetch(self, discovery_config):
        descriptor = ServiceDescriptor(
            name="local-stdio", endpoint="stdio://does-not-exist", transport="stdio"
        )
        async with DiscoveryService(discovery_config) as discovery:
            await discovery.register_local_service(descriptor)
            assert discovery.get_available_tools() == []
            assert discovery.find_service("local-stdio") == descriptor

    async def test_write_failure_propagates(self, tmp_path, discovery_config):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        discovery_config.services_directory = blocker
        descriptor = ServiceDescriptor(name="x", endpoint="stdio://x", transport="stdio")
        async with DiscoveryService(discovery_config) as discovery:
            with pytest.raises(RegistryWriteError):
                await discovery.register_local_service(descriptor)
            assert discovery.services == []
