"""
Capability discovery for one connected server.
"""

from typing import Awaitable, Callable, List, Optional, TypeVar

from pydantic import BaseModel, Field
import mcp.types as types

from mcp_conductor.errors import DiscoveryError
from mcp_conductor.mcp.client_session import ConductorClientSession
from mcp_conductor.mcp.registry import Resource, Tool
from mcp_conductor.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Guards against servers that keep handing out cursors.
MAX_PAGES = 100


class DiscoveryResult(BaseModel):
    """What one server offers."""

    tools: List[Tool] = Field(default_factory=list)
    resources: List[Resource] = Field(default_factory=list)


async def discover(
    session: ConductorClientSession,
    server_name: str,
    capabilities: Optional[types.ServerCapabilities] = None,
) -> DiscoveryResult:
    """
    List the tools and resources of a connected server.

    Each category is listed independently. A failure in one degrades only that
    category to an empty list, so this never raises for protocol failures.

    Args:
        session: The connected session.
        server_name: Owning server name stamped on every descriptor.
        capabilities: Capabilities advertised at initialization. Categories the
            server did not advertise are skipped.
    """
    tools: List[Tool] = []
    resources: List[Resource] = []

    if capabilities is None or capabilities.tools is not None:
        tools = await _list_category(
            server_name,
            "tools",
            session.fetch_tools,
            lambda result: [Tool.from_mcp(server_name, t) for t in result.tools],
        )
    else:
        logger.debug(f"{server_name}: Server does not advertise tools")

    if capabilities is None or capabilities.resources is not None:
        resources = await _list_category(
            server_name,
            "resources",
            session.fetch_resources,
            lambda result: [Resource.from_mcp(server_name, r) for r in result.resources],
        )
    else:
        logger.debug(f"{server_name}: Server does not advertise resources")

    logger.info(f"{server_name}: {len(tools)} tools, {len(resources)} resources available")
    return DiscoveryResult(tools=tools, resources=resources)


async def _list_category(
    server_name: str,
    category: str,
    fetch: Callable[[Optional[str]], Awaitable[types.PaginatedResult]],
    convert: Callable[[types.PaginatedResult], List[T]],
) -> List[T]:
    items: List[T] = []
    cursor: Optional[str] = None
    try:
        for _ in range(MAX_PAGES):
            result = await fetch(cursor)
            items.extend(convert(result))
            cursor = result.nextCursor
            if not cursor:
                break
    except Exception as exc:
        error = DiscoveryError(f"Could not list {category}: {exc}")
        logger.warning(f"{server_name}: {error}")
        return []
    return items
