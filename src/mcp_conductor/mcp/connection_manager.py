"""
Manages the lifecycle of multiple MCP server connections.
"""

import enum
import inspect
from datetime import datetime, timezone
from typing import (
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    TYPE_CHECKING,
)

import anyio
from anyio import Event, create_task_group, Lock
from anyio.abc import TaskGroup
from pydantic import BaseModel, Field, RootModel
import mcp.types as types

from mcp_conductor.config import ServerDescriptor
from mcp_conductor.errors import HandshakeError, UnknownServer
from mcp_conductor.mcp.channel import ChannelFactory, open_channel
from mcp_conductor.mcp.client_session import (
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ConductorClientSession,
)
from mcp_conductor.mcp.discovery import discover
from mcp_conductor.mcp.registry import CapabilityRegistry
from mcp_conductor.utils.logging import get_logger

if TYPE_CHECKING:
    from mcp_conductor.mcp.server_registry import InitHookCallable, ServerRegistry

logger = get_logger(__name__)


class ConnectionState(str, enum.Enum):
    """Lifecycle state of one server connection."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"
    DISCONNECTED = "disconnected"

    def __str__(self) -> str:
        return self.value


class ProviderAvailability(str, enum.Enum):
    """How much of the configured provider set is usable. Resolved once after connecting."""

    AVAILABLE = "available"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"

    def __str__(self) -> str:
        return self.value


class ConnectionStatus(BaseModel):
    """Read-only view of one connection."""

    name: str
    state: ConnectionState
    connected_at: Optional[datetime] = None
    tool_count: int = 0
    resource_count: int = 0
    tools: List[str] = Field(default_factory=list)
    resources: List[str] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED


class StatusSnapshot(RootModel[Dict[str, ConnectionStatus]]):
    """Server name to ConnectionStatus, taken at one point in time."""

    def __getitem__(self, name: str) -> ConnectionStatus:
        return self.root[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self.root)

    def __len__(self) -> int:
        return len(self.root)

    def __contains__(self, name: object) -> bool:
        return name in self.root

    def items(self):
        return self.root.items()

    @property
    def connected_count(self) -> int:
        return sum(1 for status in self.root.values() if status.connected)

    @property
    def total_count(self) -> int:
        return len(self.root)


class ServerConnection:
    """
    Represents a long-lived MCP server connection.

    Includes:
    - The ConductorClientSession to the server
    - The transport streams (via stdio/sse)
    - The connection state, mutated only by its lifecycle task
    """

    def __init__(
        self,
        descriptor: ServerDescriptor,
        transport_factory: ChannelFactory,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        init_hook: Optional["InitHookCallable"] = None,
    ):
        self.server_name = descriptor.name
        self.descriptor = descriptor
        self.state = ConnectionState.IDLE
        self.connected_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.session: ConductorClientSession | None = None
        self.server_capabilities: Optional[types.ServerCapabilities] = None
        self._transport_factory = transport_factory
        self._request_timeout_seconds = request_timeout_seconds
        self._init_hook = init_hook
        self._started = False
        self._shutdown_requested = False

        # Signal that the connection attempt has settled (connected or failed)
        self._initialized_event = Event()

        # Signal that the lifecycle task should exit
        self._stop_event = Event()

        # Signal that the lifecycle task has exited and the channel is released
        self._closed_event = Event()

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED and self.session is not None

    def request_shutdown(self) -> None:
        """
        Request the server to shut down. Signals the server lifecycle task to exit.
        """
        self._shutdown_requested = True
        self._stop_event.set()

    def channel_closed(self) -> None:
        """Called by the channel when the server side goes away."""
        if not self._shutdown_requested:
            self._stop_event.set()

    async def wait_for_initialized(self) -> None:
        await self._initialized_event.wait()

    async def close(self) -> None:
        """Shut the connection down and wait until the channel is released. Idempotent."""
        if not self._started:
            self._shutdown_requested = True
            if self.state == ConnectionState.IDLE:
                self.state = ConnectionState.DISCONNECTED
            self._closed_event.set()
            return

        self.request_shutdown()
        await self._closed_event.wait()

    def open_transport(self):
        return self._transport_factory(self.descriptor, self.channel_closed)

    def create_session(self, read_stream, send_stream) -> ConductorClientSession:
        """
        Create a new session instance for this server connection.
        """
        self.session = ConductorClientSession(
            read_stream,
            send_stream,
            server_name=self.server_name,
            request_timeout_seconds=(
                self._request_timeout_seconds
                if self.descriptor.read_timeout_seconds is None
                else self.descriptor.read_timeout_seconds
            ),
            max_retries=self.descriptor.max_retries,
            retry_backoff_seconds=self.descriptor.retry_backoff_seconds,
        )
        return self.session

    async def initialize_session(self) -> None:
        """
        Run the initialize handshake, bounded by the descriptor's connect timeout.
        """
        timeout = self.descriptor.connect_timeout_seconds
        try:
            with anyio.fail_after(timeout):
                result = await self.session.initialize()
        except TimeoutError as exc:
            raise HandshakeError(
                f"{self.server_name}: Handshake timed out after {timeout:g}s"
            ) from exc
        except Exception as exc:
            raise HandshakeError(f"{self.server_name}: Handshake failed: {exc}") from exc

        self.server_capabilities = result.capabilities

        # If there's an init hook, run it
        if self._init_hook:
            logger.info(f"{self.server_name}: Executing init hook.")
            outcome = self._init_hook(self.session, self.descriptor)
            if inspect.isawaitable(outcome):
                await outcome


def _describe(exc: BaseException) -> str:
    """Readable message for an exception, looking through single-member exception groups."""
    while isinstance(exc, BaseExceptionGroup) and len(exc.exceptions) == 1:
        exc = exc.exceptions[0]
    return str(exc) or type(exc).__name__


async def _server_lifecycle_task(
    server_conn: ServerConnection, on_exit: Callable[[ServerConnection], None]
) -> None:
    """
    Manage the lifecycle of a single server connection.
    Runs inside the ConnectionManager's shared TaskGroup and never raises,
    so one server's failure cannot disturb the others.
    """
    server_name = server_conn.server_name
    server_conn._started = True
    if server_conn._shutdown_requested:
        server_conn.state = ConnectionState.DISCONNECTED
        server_conn._initialized_event.set()
        server_conn._closed_event.set()
        return

    server_conn.state = ConnectionState.CONNECTING
    try:
        async with server_conn.open_transport() as (read_stream, write_stream):
            server_conn.create_session(read_stream, write_stream)

            async with server_conn.session:
                await server_conn.initialize_session()

                server_conn.state = ConnectionState.CONNECTED
                server_conn.connected_at = datetime.now(timezone.utc)
                server_conn._initialized_event.set()
                logger.info(f"{server_name}: Up and running with a persistent connection!")

                # Wait until we're asked to shut down or the server goes away
                await server_conn._stop_event.wait()

        if server_conn.state == ConnectionState.CONNECTED and not server_conn._shutdown_requested:
            server_conn.last_error = "Channel closed by server"
            logger.warning(f"{server_name}: Channel closed by server")

    except Exception as exc:
        message = _describe(exc)
        if server_conn.state == ConnectionState.CONNECTED:
            if not server_conn._shutdown_requested:
                server_conn.last_error = message
                logger.error(f"{server_name}: Connection lost: {message}", exc_info=True)
            else:
                logger.debug(f"{server_name}: Error during shutdown: {message}")
        else:
            server_conn.state = ConnectionState.FAILED
            server_conn.last_error = message
            logger.error(f"{server_name}: Failed to connect: {message}")

    finally:
        if server_conn.state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            server_conn.state = (
                ConnectionState.DISCONNECTED
                if server_conn.connected_at is not None
                else ConnectionState.FAILED
            )
            if server_conn.state == ConnectionState.FAILED and not server_conn.last_error:
                server_conn.last_error = "Connection attempt cancelled"
        server_conn.session = None
        on_exit(server_conn)
        # Make sure nobody waiting on this connection hangs
        server_conn._initialized_event.set()
        server_conn._closed_event.set()


class ConnectionManager:
    """
    Manages the lifecycle of multiple MCP server connections.

    Owns every ServerConnection and the CapabilityRegistry. Must be entered as
    an async context manager (and exited from the same task), since it runs
    each connection inside its own task group.
    """

    def __init__(
        self,
        server_registry: "ServerRegistry",
        capabilities: Optional[CapabilityRegistry] = None,
        transport_factory: ChannelFactory = open_channel,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ):
        self.server_registry = server_registry
        self._capabilities = capabilities or CapabilityRegistry()
        self._transport_factory = transport_factory
        self._request_timeout_seconds = request_timeout_seconds
        self._connections: Dict[str, ServerConnection] = {}
        self._lock = Lock()
        self._tg: TaskGroup | None = None

    @property
    def registry(self) -> CapabilityRegistry:
        return self._capabilities

    async def __aenter__(self):
        # We create a task group to manage all server lifecycle tasks
        self._tg = create_task_group()
        await self._tg.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        logger.debug("ConnectionManager: shutting down all server tasks...")
        if self._tg:
            try:
                await self.disconnect_all()
            finally:
                tg, self._tg = self._tg, None
                try:
                    await tg.__aexit__(exc_type, exc_val, exc_tb)
                except Exception as e:
                    logger.error(f"Error during task group exit: {e}")

    def _require_running(self) -> TaskGroup:
        if not self._tg:
            raise RuntimeError(
                "ConnectionManager must be used inside an async context (i.e. 'async with' or after __aenter__)."
            )
        return self._tg

    async def launch_server(self, server_name: str) -> ServerConnection:
        """
        Start connecting to a server and return its ServerConnection without
        waiting for the attempt to settle.

        A server that already has a live or pending connection is returned as is;
        a failed or disconnected one gets a fresh attempt.
        """
        tg = self._require_running()
        descriptor = self.server_registry.get(server_name)

        async with self._lock:
            existing = self._connections.get(server_name)
            if existing and existing.state in (
                ConnectionState.CONNECTING,
                ConnectionState.CONNECTED,
            ):
                return existing

            server_conn = ServerConnection(
                descriptor=descriptor,
                transport_factory=self._transport_factory,
                request_timeout_seconds=self._request_timeout_seconds,
                init_hook=self.server_registry.init_hook_for(server_name),
            )
            self._connections[server_name] = server_conn
            server_conn.state = ConnectionState.CONNECTING
            server_conn._started = True
            tg.start_soon(_server_lifecycle_task, server_conn, self._on_connection_exit)

        logger.info(f"{server_name}: Connecting...")
        return server_conn

    async def connect_all(self, server_names: Optional[Iterable[str]] = None) -> StatusSnapshot:
        """
        Connect to every configured server (or the given subset), each in isolation,
        then run discovery on every server that connected.

        Connection failures are recorded in the returned status, never raised.
        """
        self._require_running()
        names = list(server_names) if server_names is not None else list(self.server_registry.names())
        for name in names:
            self.server_registry.get(name)

        logger.info(f"Connecting to {len(names)} MCP servers...")
        connections = [await self.launch_server(name) for name in names]

        async with create_task_group() as tg:
            for server_conn in connections:
                tg.start_soon(server_conn.wait_for_initialized)

        connected = [conn for conn in connections if conn.is_connected]
        async with create_task_group() as tg:
            for server_conn in connected:
                tg.start_soon(self._discover, server_conn)

        snapshot = self.status()
        logger.info(f"Connected to {snapshot.connected_count}/{len(names)} MCP servers")
        return snapshot

    async def _discover(self, server_conn: ServerConnection) -> None:
        session = server_conn.session
        if session is None:
            return
        result = await discover(session, server_conn.server_name, server_conn.server_capabilities)
        # The connection may have gone away while we were listing
        if server_conn.is_connected:
            self._capabilities.replace(server_conn.server_name, result.tools, result.resources)

    async def refresh(self, server_name: Optional[str] = None) -> StatusSnapshot:
        """Re-run discovery, replacing previous entries, for one or all connected servers."""
        if server_name is not None:
            targets = [self._get_connection(server_name)]
        else:
            targets = [conn for conn in self._connections.values() if conn.is_connected]

        async with create_task_group() as tg:
            for server_conn in targets:
                tg.start_soon(self._discover, server_conn)
        return self.status()

    def _on_connection_exit(self, server_conn: ServerConnection) -> None:
        # Only drop the registry slot if it still belongs to this connection
        if self._connections.get(server_conn.server_name) is server_conn:
            self._capabilities.remove(server_conn.server_name)

    def _get_connection(self, server_name: str) -> ServerConnection:
        server_conn = self._connections.get(server_name)
        if server_conn is None or not server_conn.is_connected:
            raise UnknownServer(server_name)
        return server_conn

    def get_session(self, server_name: str) -> ConductorClientSession:
        """The live session for ``server_name``. Raises UnknownServer otherwise."""
        return self._get_connection(server_name).session

    async def call_tool(
        self,
        server_name: str,
        tool_name: str,
        arguments: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> types.CallToolResult:
        session = self.get_session(server_name)
        logger.info(
            "Requesting tool call",
            data={"server_name": server_name, "tool_name": tool_name},
        )
        return await session.invoke_tool(tool_name, arguments, timeout=timeout)

    async def read_resource(
        self, server_name: str, uri: str, timeout: Optional[float] = None
    ) -> types.ReadResourceResult:
        session = self.get_session(server_name)
        logger.info(f"Reading resource {uri} from {server_name}")
        return await session.fetch_resource(uri, timeout=timeout)

    def connection_status(self, server_name: str) -> ConnectionStatus:
        server_conn = self._connections.get(server_name)
        if server_conn is None:
            self.server_registry.get(server_name)
            return ConnectionStatus(name=server_name, state=ConnectionState.IDLE)

        tools = self._capabilities.tools(server_name)
        resources = self._capabilities.resources(server_name)
        return ConnectionStatus(
            name=server_name,
            state=server_conn.state,
            connected_at=server_conn.connected_at,
            tool_count=len(tools),
            resource_count=len(resources),
            tools=[tool.name for tool in tools],
            resources=[resource.name or resource.uri for resource in resources],
            error=server_conn.last_error,
        )

    def status(self) -> StatusSnapshot:
        """Snapshot of every configured server's connection status."""
        return StatusSnapshot(
            {name: self.connection_status(name) for name in self.server_registry.names()}
        )

    def availability(self) -> ProviderAvailability:
        snapshot = self.status()
        if snapshot.connected_count == 0:
            return ProviderAvailability.UNAVAILABLE
        if snapshot.connected_count == snapshot.total_count:
            return ProviderAvailability.AVAILABLE
        return ProviderAvailability.DEGRADED

    async def disconnect_server(self, server_name: str) -> None:
        """
        Disconnect a specific server if it's running under this connection manager.
        """
        async with self._lock:
            server_conn = self._connections.get(server_name)
        if server_conn is None:
            logger.info(f"{server_name}: No persistent connection found. Skipping server shutdown")
            return

        logger.info(f"{server_name}: Disconnecting persistent connection to server...")
        await server_conn.close()

    async def disconnect_all(self) -> None:
        """
        Disconnect all servers. Best effort: individual failures are logged and skipped.
        """
        logger.info("Disconnecting all persistent server connections...")
        async with self._lock:
            connections = list(self._connections.values())

        async def close_one(server_conn: ServerConnection) -> None:
            try:
                await server_conn.close()
            except Exception as e:
                logger.error(f"{server_conn.server_name}: Error during disconnect: {e}")

        async with create_task_group() as tg:
            for server_conn in connections:
                tg.start_soon(close_one, server_conn)

        logger.info("All persistent server connections closed.")
