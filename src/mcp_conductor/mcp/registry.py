"""
Capability registry: the per-server index of discovered tools and resources.
"""

from typing import Any, Dict, Iterable, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
import mcp.types as types

from mcp_conductor.utils.logging import get_logger

logger = get_logger(__name__)

SEP = "."


class Tool(BaseModel):
    """A tool offered by one server."""

    model_config = ConfigDict(frozen=True)

    server_name: str
    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(default_factory=dict)

    @property
    def full_name(self) -> str:
        return f"{self.server_name}{SEP}{self.name}"

    @classmethod
    def from_mcp(cls, server_name: str, tool: types.Tool) -> "Tool":
        return cls(
            server_name=server_name,
            name=tool.name,
            description=tool.description or "",
            input_schema=tool.inputSchema or {},
        )


class Resource(BaseModel):
    """A readable resource offered by one server."""

    model_config = ConfigDict(frozen=True)

    server_name: str
    uri: str
    name: str = ""
    description: str = ""
    mime_type: Optional[str] = None

    @classmethod
    def from_mcp(cls, server_name: str, resource: types.Resource) -> "Resource":
        return cls(
            server_name=server_name,
            uri=str(resource.uri),
            name=resource.name or "",
            description=resource.description or "",
            mime_type=resource.mimeType,
        )


class _ServerEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    tools: Tuple[Tool, ...] = ()
    resources: Tuple[Resource, ...] = ()


class CapabilityRegistry:
    """
    Maps server name to the tools and resources that server offers.

    Each server's slot is replaced wholesale on (re)discovery and removed when
    its connection leaves the connected state. Readers always get tuples, so
    nothing outside the registry can mutate it.
    """

    def __init__(self):
        self._entries: Dict[str, _ServerEntry] = {}

    def replace(
        self, server_name: str, tools: Iterable[Tool], resources: Iterable[Resource]
    ) -> None:
        """Replace everything known about ``server_name``."""
        entry = _ServerEntry(tools=tuple(tools), resources=tuple(resources))
        self._entries[server_name] = entry
        logger.debug(
            f"{server_name}: Registry updated",
            data={"tools": len(entry.tools), "resources": len(entry.resources)},
        )

    def remove(self, server_name: str) -> None:
        if self._entries.pop(server_name, None) is not None:
            logger.debug(f"{server_name}: Removed from registry")

    def __contains__(self, server_name: str) -> bool:
        return server_name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def servers(self) -> Tuple[str, ...]:
        return tuple(self._entries)

    def tools(self, server_name: Optional[str] = None) -> Tuple[Tool, ...]:
        """All tools, or only those of ``server_name``."""
        if server_name is not None:
            entry = self._entries.get(server_name)
            return entry.tools if entry else ()
        return tuple(tool for entry in self._entries.values() for tool in entry.tools)

    def resources(self, server_name: Optional[str] = None) -> Tuple[Resource, ...]:
        """All resources, or only those of ``server_name``."""
        if server_name is not None:
            entry = self._entries.get(server_name)
            return entry.resources if entry else ()
        return tuple(
            resource for entry in self._entries.values() for resource in entry.resources
        )

    def get_tool(self, server_name: str, tool_name: str) -> Optional[Tool]:
        for tool in self.tools(server_name):
            if tool.name == tool_name:
                return tool
        return None

    def find_tool(self, name: str) -> Optional[Tool]:
        """
        Look up a tool by its full ``server.tool`` name, or by bare tool name.

        Server names may themselves contain the separator, so every split
        point is tried from the right.
        """
        if SEP in name:
            parts = name.split(SEP)
            for i in range(len(parts) - 1, 0, -1):
                server_name = SEP.join(parts[:i])
                if server_name in self._entries:
                    tool = self.get_tool(server_name, SEP.join(parts[i:]))
                    if tool is not None:
                        return tool

        for tool in self.tools():
            if tool.name == name:
                return tool
        return None

    def counts(self, server_name: str) -> Tuple[int, int]:
        """(tool count, resource count) for ``server_name``."""
        entry = self._entries.get(server_name)
        if entry is None:
            return 0, 0
        return len(entry.tools), len(entry.resources)
