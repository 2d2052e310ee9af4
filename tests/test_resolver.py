"""Tests for discovery.resolver."""

import pytest

from mcp_peer_discovery.discovery.resolver import BUILTIN_ALIASES, NameResolver
from mcp_peer_discovery.models.schemas import ServiceDescriptor


def _svc(name: str, aliases=None) -> ServiceDescriptor:
    return ServiceDescriptor(name=name, transport="http", aliases=aliases)


class TestBuiltins:
    @pytest.mark.parametrize(
        "alias,expected",
        [
            ("fs", "filesystem-mcp"),
            ("filesystem", "filesystem-mcp"),
            ("gh", "github-mcp"),
            ("thinking", "sequentialthinking-mcp"),
            ("browser", "playwright-mcp"),
            ("assistant", "mcp-assistant-server"),
            ("filesystem-mcp", "filesystem-mcp"),
        ],
    )
    def test_builtin_alias(self, alias, expected):
        assert NameResolver().resolve(alias) == expected

    def test_unknown_identifier_returned_unchanged(self):
        assert NameResolver().resolve("no-such-service") == "no-such-service"


class TestDerivedNames:
    def test_two_segment_name(self):
        assert NameResolver.derived_names("weather-mcp") == ["weather"]

    def test_three_segment_name(self):
        assert NameResolver.derived_names("brave-search-mcp") == ["brave-search", "brave"]

    def test_suffix_not_last(self):
        assert NameResolver.derived_names("mcp-assistant-server") == []

    def test_bare_suffix(self):
        assert NameResolver.derived_names("-mcp") == []

    def test_registration_adds_derived_names(self):
        resolver = NameResolver([_svc("brave-search-mcp")])
        assert resolver.resolve("brave-search") == "brave-search-mcp"
        assert resolver.resolve("brave") == "brave-search-mcp"
        assert resolver.resolve("brave-search-mcp") == "brave-search-mcp"


class TestDeclaredAliases:
    def test_aliases_are_trimmed_and_blank_ignored(self):
        resolver = NameResolver([_svc("brave-search-mcp", [" search ", "", "   "])])
        assert resolver.resolve("search") == "brave-search-mcp"
        assert "" not in resolver
        assert " search " not in resolver

    def test_later_registration_overwrites_shared_key(self):
        resolver = NameResolver([_svc("local-files", ["fs"])])
        assert resolver.resolve("fs") == "local-files"
        # other aliases of the builtin survive
        assert resolver.resolve("filesystem") == "filesystem-mcp"

    def test_register_keeps_existing_entries(self):
        resolver = NameResolver([_svc("a-mcp", ["first"])])
        resolver.register(_svc("b-mcp", ["second"]))
        assert resolver.resolve("first") == "a-mcp"
        assert resolver.resolve("second") == "b-mcp"

    def test_rebuild_drops_previous_registrations(self):
        resolver = NameResolver([_svc("a-mcp", ["first"])])
        resolver.rebuild([])
        assert resolver.resolve("first") == "first"
        assert len(resolver) == len(BUILTIN_ALIASES) + sum(
            len(a) for a in BUILTIN_ALIASES.values()
        )


class TestCanonicalNames:
    def test_unique_in_registration_order(self):
        resolver = NameResolver([_svc("weather-mcp", ["w"])])
        names = resolver.canonical_names()
        assert names[: len(BUILTIN_ALIASES)] == list(BUILTIN_ALIASES)
        assert names[-1] == "weather-mcp"
        assert len(names) == len(set(names))
