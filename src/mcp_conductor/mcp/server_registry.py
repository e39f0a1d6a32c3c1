"""
Server registry for the configured MCP server descriptors and their init hooks.
"""

from typing import Awaitable, Callable, Dict, Iterable, Optional, Tuple, Union

from mcp_conductor.config import ServerDescriptor, Settings
from mcp_conductor.errors import UnknownServer
from mcp_conductor.mcp.client_session import ConductorClientSession
from mcp_conductor.utils.logging import get_logger

logger = get_logger(__name__)

InitHookCallable = Callable[
    [ConductorClientSession, ServerDescriptor], Union[None, Awaitable[None]]
]
"""
A callback invoked after a server finishes its initialize handshake.

Args:
    session: The client session for the server connection.
    descriptor: The descriptor the server was launched from.

An exception raised by the hook fails that server's connection only.
"""


class ServerRegistry:
    """
    Holds the immutable set of server descriptors loaded from configuration.

    The ServerRegistry is the connection manager's source of truth for which
    servers exist and how to reach them.
    """

    def __init__(self, descriptors: Iterable[ServerDescriptor]):
        """
        Args:
            descriptors: Server descriptors. Names must be unique.
        """
        self._descriptors: Dict[str, ServerDescriptor] = {}
        for descriptor in descriptors:
            if not descriptor.name:
                raise ValueError("Server descriptors must be named")
            if descriptor.name in self._descriptors:
                raise ValueError(f"Duplicate server name: {descriptor.name}")
            self._descriptors[descriptor.name] = descriptor
        self.init_hooks: Dict[str, InitHookCallable] = {}

    @classmethod
    def from_settings(cls, config: Settings) -> "ServerRegistry":
        return cls(config.mcp.servers.values())

    def descriptors(self) -> Tuple[ServerDescriptor, ...]:
        return tuple(self._descriptors.values())

    def names(self) -> Tuple[str, ...]:
        return tuple(self._descriptors)

    def get(self, server_name: str) -> ServerDescriptor:
        descriptor = self._descriptors.get(server_name)
        if descriptor is None:
            raise UnknownServer(server_name)
        return descriptor

    def __contains__(self, server_name: str) -> bool:
        return server_name in self._descriptors

    def register_init_hook(self, server_name: str, hook: InitHookCallable) -> None:
        """
        Register an initialization hook for a specific server.

        Args:
            server_name: The name of the server.
            hook: The initialization function to register.
        """
        if server_name not in self._descriptors:
            raise UnknownServer(server_name)

        self.init_hooks[server_name] = hook

    def init_hook_for(self, server_name: str) -> Optional[InitHookCallable]:
        return self.init_hooks.get(server_name)
