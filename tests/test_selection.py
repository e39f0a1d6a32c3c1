"""Tests for tool selection."""

import pytest

from mcp_conductor.config import AgentMapping, DispatchSettings, SelectionFallback
from mcp_conductor.dispatch.selection import select_tools, task_keywords
from mcp_conductor.mcp.registry import CapabilityRegistry, Tool


def tool(server: str, name: str, description: str) -> Tool:
    return Tool(server_name=server, name=name, description=description)


@pytest.fixture
def registry():
    registry = CapabilityRegistry()
    registry.replace(
        "filesystem",
        [
            tool("filesystem", "read_file", "Read the contents of a file"),
            tool("filesystem", "write_file", "Write content to a file"),
        ],
        [],
    )
    registry.replace(
        "sqlite",
        [tool("sqlite", "query", "Run a SQL query against the database")],
        [],
    )
    registry.replace(
        "brave-search",
        [tool("brave-search", "web_search", "Search the web for information")],
        [],
    )
    return registry


def names(tools):
    return [t.full_name for t in tools]


class TestTaskKeywords:
    def test_drops_short_tokens_and_stop_words(self):
        assert task_keywords("Write the README for a new CLI, and save it") == [
            "write",
            "readme",
            "cli",
            "save",
        ]


class TestSelectTools:
    """Tests for select_tools()."""

    def test_keyword_routes(self, registry):
        """'file' routes to filesystem and 'search' to brave-search."""
        # Act
        selected = select_tools("claude", "search for a file", registry)

        # Assert
        assert names(selected)[:2] == ["filesystem.read_file", "brave-search.web_search"]

    def test_route_picks_best_tool_of_server(self, registry):
        selected = select_tools("claude", "write the project file", registry)

        assert names(selected)[0] == "filesystem.write_file"

    def test_keyword_heuristics_without_routes(self, registry):
        # Arrange
        settings = DispatchSettings(keyword_routes={})

        # Act
        selected = select_tools("claude", "database query report", registry, settings=settings)

        # Assert
        assert names(selected) == ["sqlite.query"]

    def test_role_preference_narrows_candidates(self, registry):
        # Arrange
        mappings = {"gpt": AgentMapping(preferred_servers=["brave-search"])}

        # Act
        selected = select_tools("gpt", "read a file and search the web", registry, mappings)

        # Assert
        assert names(selected) == ["brave-search.web_search"]

    def test_specialty_matches_description(self, registry):
        mappings = {"analyst": AgentMapping(preferredTools=[], specialties=["SQL"])}

        selected = select_tools("analyst", "look at something", registry, mappings)

        assert names(selected) == ["sqlite.query"]

    def test_capped_at_max_tools(self, registry):
        settings = DispatchSettings(max_tools=2)

        selected = select_tools("claude", "search the file data and write content", registry, settings=settings)

        assert len(selected) == 2

    def test_no_duplicates(self, registry):
        selected = select_tools("claude", "file file read file", registry)

        assert len(names(selected)) == len(set(names(selected)))

    def test_first_tool_fallback(self, registry):
        """A task that matches nothing still gets exactly one tool."""
        selected = select_tools("claude", "zzz qqq", registry)

        assert names(selected) == ["filesystem.read_file"]

    def test_none_fallback(self, registry):
        settings = DispatchSettings(fallback=SelectionFallback.NONE)

        selected = select_tools("claude", "zzz qqq", registry, settings=settings)

        assert selected == []

    def test_empty_registry(self):
        assert select_tools("claude", "search for a file", CapabilityRegistry()) == []

    def test_selected_tools_come_from_registry(self, registry):
        selected = select_tools("claude", "search data in a file", registry)

        assert all(t in registry.tools() for t in selected)
