"""In-process MCP servers connected over memory streams."""

from contextlib import asynccontextmanager
from typing import Callable, Dict, Optional

import anyio
from mcp.shared.memory import create_client_server_memory_streams

from mcp_conductor.config import ServerDescriptor
from mcp_conductor.errors import LaunchError
from mcp_conductor.mcp.client_session import ConductorClientSession
from mcp_conductor.server import HandlerRegistry


class InMemoryServers:
    """
    A transport factory that serves HandlerRegistry instances in-process.

    Server names without a registry fail to launch, like a missing binary.
    ``crash(name)`` stops a running server, like a process exiting.
    """

    def __init__(self, registries: Optional[Dict[str, HandlerRegistry]] = None):
        self.registries: Dict[str, HandlerRegistry] = dict(registries or {})
        self.opened = []
        self._scopes: Dict[str, anyio.CancelScope] = {}

    def crash(self, name: str) -> None:
        self._scopes[name].cancel()

    @asynccontextmanager
    async def __call__(self, descriptor: ServerDescriptor, on_close: Optional[Callable[[], None]] = None):
        registry = self.registries.get(descriptor.name)
        if registry is None:
            raise LaunchError(f"Failed to start server '{descriptor.name}': [Errno 2] No such file or directory")

        server = registry.build_server()
        self.opened.append(descriptor.name)

        async with create_client_server_memory_streams() as (client_streams, server_streams):
            async with anyio.create_task_group() as tg:

                async def serve():
                    try:
                        with anyio.CancelScope() as scope:
                            self._scopes[descriptor.name] = scope
                            await server.run(
                                server_streams[0],
                                server_streams[1],
                                server.create_initialization_options(),
                                raise_exceptions=False,
                            )
                    finally:
                        if on_close is not None:
                            on_close()

                tg.start_soon(serve)
                try:
                    yield client_streams
                finally:
                    tg.cancel_scope.cancel()


def echo_registry(name: str = "alpha") -> HandlerRegistry:
    registry = HandlerRegistry(name)

    @registry.tool()
    def echo(text: str) -> str:
        """Echo the text back"""
        return text

    @registry.tool()
    async def fail(reason: str = "boom") -> str:
        """Always fails"""
        raise RuntimeError(reason)

    @registry.tool()
    async def slow(seconds: float = 5.0) -> str:
        """Sleep before answering"""
        await anyio.sleep(seconds)
        return "done"

    @registry.resource(f"{name}://notes/today", name="Notes", mime_type="application/json")
    def notes():
        return {"notes": ["first"]}

    return registry


def descriptor(name: str, **kwargs) -> ServerDescriptor:
    return ServerDescriptor(name=name, command=f"{name}-server", **kwargs)



@asynccontextmanager
async def connected_session(registry: HandlerRegistry, **kwargs):
    """A ConductorClientSession initialized against ``registry`` served in-process."""
    server = registry.build_server()
    async with create_client_server_memory_streams() as (client_streams, server_streams):
        async with anyio.create_task_group() as tg:

            async def serve():
                await server.run(
                    server_streams[0],
                    server_streams[1],
                    server.create_initialization_options(),
                    raise_exceptions=False,
                )

            tg.start_soon(serve)
            try:
                async with ConductorClientSession(
                    client_streams[0], client_streams[1], server_name=registry.name, **kwargs
                ) as session:
                    await session.initialize()
                    yield session
            finally:
                tg.cancel_scope.cancel()
