"""Tests for capability discovery."""

from unittest.mock import AsyncMock, MagicMock

import pytest
import mcp.types as types

from mcp_conductor.errors import RemoteError, RequestTimeout
from mcp_conductor.mcp.discovery import discover
from mcp_conductor.mcp.registry import CapabilityRegistry


def tools_page(*names, next_cursor=None) -> types.ListToolsResult:
    return types.ListToolsResult(
        tools=[types.Tool(name=name, description=f"{name} tool", inputSchema={"type": "object"}) for name in names],
        nextCursor=next_cursor,
    )


def resources_page(*uris) -> types.ListResourcesResult:
    return types.ListResourcesResult(
        resources=[types.Resource(uri=uri, name=uri.rsplit("/", 1)[-1]) for uri in uris]
    )


@pytest.fixture
def session():
    session = MagicMock()
    session.fetch_tools = AsyncMock(return_value=tools_page("read_file", "write_file"))
    session.fetch_resources = AsyncMock(return_value=resources_page("files://root/index"))
    return session


class TestDiscover:
    """Tests for discover()."""

    @pytest.mark.asyncio
    async def test_lists_tools_and_resources(self, session):
        # Act
        result = await discover(session, "files")

        # Assert
        assert [tool.full_name for tool in result.tools] == ["files.read_file", "files.write_file"]
        assert [resource.uri for resource in result.resources] == ["files://root/index"]
        assert all(resource.server_name == "files" for resource in result.resources)

    @pytest.mark.asyncio
    async def test_follows_pagination(self, session):
        # Arrange
        session.fetch_tools = AsyncMock(
            side_effect=[tools_page("a", next_cursor="page-2"), tools_page("b")]
        )

        # Act
        result = await discover(session, "files")

        # Assert
        assert [tool.name for tool in result.tools] == ["a", "b"]
        session.fetch_tools.assert_any_await("page-2")

    @pytest.mark.asyncio
    async def test_failed_category_degrades_to_empty(self, session):
        """A failure listing resources must not cost the tools."""
        # Arrange
        session.fetch_resources = AsyncMock(side_effect=RemoteError("Method not found", code=-32601))

        # Act
        result = await discover(session, "files")

        # Assert
        assert len(result.tools) == 2
        assert result.resources == []

    @pytest.mark.asyncio
    async def test_never_raises(self, session):
        session.fetch_tools = AsyncMock(side_effect=RequestTimeout("tools/list", 1))
        session.fetch_resources = AsyncMock(side_effect=RuntimeError("garbled"))

        result = await discover(session, "files")

        assert result.tools == []
        assert result.resources == []

    @pytest.mark.asyncio
    async def test_skips_categories_not_advertised(self, session):
        # Arrange
        capabilities = types.ServerCapabilities(tools=types.ToolsCapability())

        # Act
        result = await discover(session, "files", capabilities)

        # Assert
        assert len(result.tools) == 2
        assert result.resources == []
        session.fetch_resources.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rediscovery_replaces_entries(self, session):
        """Running discovery twice leaves exactly one copy of each tool."""
        # Arrange
        registry = CapabilityRegistry()

        # Act
        for _ in range(2):
            result = await discover(session, "files")
            registry.replace("files", result.tools, result.resources)

        # Assert
        assert [tool.name for tool in registry.tools()] == ["read_file", "write_file"]
        assert len(registry.resources()) == 1
