"""
Main application class for mcp-conductor.
"""

import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Mapping, Optional

import mcp.types as types

from mcp_conductor.config.settings import Settings, load_config
from mcp_conductor.dispatch import DispatchReport, Dispatcher, ToolInvocation
from mcp_conductor.mcp.channel import ChannelFactory, open_channel
from mcp_conductor.mcp.connection_manager import (
    ConnectionManager,
    ProviderAvailability,
    StatusSnapshot,
)
from mcp_conductor.mcp.server_registry import InitHookCallable, ServerRegistry
from mcp_conductor.utils.logging import configure_from_settings, get_logger


class ConductorApp:
    """
    Host application that connects to every configured MCP server and
    dispatches (role, task) pairs onto their tools.

    Example usage:
        app = ConductorApp("pm-bot", config_path="mcp_conductor.config.yaml")

        async with app.run() as running_app:
            print(running_app.status().connected_count)
            report = await running_app.execute("claude", "create project for a todo app")
    """

    def __init__(
        self,
        name: str = "conductor_app",
        config_path: Optional[str] = None,
        settings: Optional[Settings] = None,
        transport_factory: ChannelFactory = open_channel,
    ):
        """
        Args:
            name: Name of the application.
            config_path: Path to configuration file (if not provided, looks for mcp_conductor.config.yaml).
            settings: Application configuration object (if provided, takes precedence over config_path).
            transport_factory: Opens the channel to each server; stdio/sse by default.
        """
        self.name = name
        self._config_path = config_path
        self._settings = settings
        self._transport_factory = transport_factory
        self._init_hooks: Dict[str, InitHookCallable] = {}

        self._logger = None
        self._manager: Optional[ConnectionManager] = None
        self._dispatcher: Optional[Dispatcher] = None
        self._initialized = False
        self._session_id = None

    @property
    def config(self) -> Settings:
        if self._settings is None:
            raise RuntimeError("ConductorApp not initialized. Use async with app.run().")
        return self._settings

    @property
    def connections(self) -> ConnectionManager:
        if self._manager is None:
            raise RuntimeError("ConductorApp not initialized. Use async with app.run().")
        return self._manager

    @property
    def dispatcher(self) -> Dispatcher:
        if self._dispatcher is None:
            raise RuntimeError("ConductorApp not initialized. Use async with app.run().")
        return self._dispatcher

    @property
    def availability(self) -> ProviderAvailability:
        return self.dispatcher.availability

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def logger(self):
        if self._logger is None:
            self._logger = get_logger(f"mcp_conductor.{self.name}")
        return self._logger

    def register_init_hook(self, server_name: str, hook: InitHookCallable) -> None:
        """
        Run ``hook(session, descriptor)`` right after ``server_name`` completes
        its handshake. Must be called before ``run()``.
        """
        if self._initialized:
            raise RuntimeError("Init hooks must be registered before the app starts")
        self._init_hooks[server_name] = hook

    async def initialize(self):
        """Load config, connect to every server and build the dispatcher."""
        if self._initialized:
            return

        if not self._session_id:
            self._session_id = str(uuid.uuid4())

        if self._settings is None:
            self._settings = load_config(self._config_path)
        configure_from_settings(self._settings.logging)

        server_registry = ServerRegistry.from_settings(self._settings)
        for server_name, hook in self._init_hooks.items():
            server_registry.register_init_hook(server_name, hook)

        manager = ConnectionManager(
            server_registry,
            transport_factory=self._transport_factory,
            request_timeout_seconds=self._settings.mcp.request_timeout_seconds,
        )
        await manager.__aenter__()
        self._manager = manager
        self._initialized = True

        snapshot = await manager.connect_all()
        availability = manager.availability()
        if availability == ProviderAvailability.UNAVAILABLE and snapshot.total_count:
            self.logger.warning("No MCP server connected; running in basic mode")

        self._dispatcher = Dispatcher(
            manager,
            mappings=self._settings.agents,
            settings=self._settings.dispatch,
            availability=availability,
        )
        self.logger.info(
            f"ConductorApp initialized - app_name: {self.name}, session_id: {self._session_id}, "
            f"availability: {availability}"
        )

    async def cleanup(self):
        """Disconnect every server."""
        if not self._initialized:
            return

        self.logger.info(f"ConductorApp cleaning up - app_name: {self.name}, session_id: {self._session_id}")
        manager, self._manager = self._manager, None
        self._dispatcher = None
        self._initialized = False
        await manager.__aexit__(None, None, None)

    @asynccontextmanager
    async def run(self):
        """
        Run the application as an async context manager.

        Yields:
            The initialized application instance.
        """
        try:
            await self.initialize()
            yield self
        finally:
            await self.cleanup()

    def status(self) -> StatusSnapshot:
        return self.connections.status()

    async def refresh(self, server_name: Optional[str] = None) -> StatusSnapshot:
        return await self.connections.refresh(server_name)

    async def dispatch(
        self, role: str, task: str, context: Optional[Mapping[str, Any]] = None
    ) -> List[ToolInvocation]:
        return await self.dispatcher.dispatch(role, task, context)

    async def execute(
        self, role: str, task: str, context: Optional[Mapping[str, Any]] = None
    ) -> DispatchReport:
        return await self.dispatcher.execute(role, task, context)

    async def read_resource(
        self, server_name: str, uri: str, timeout: Optional[float] = None
    ) -> types.ReadResourceResult:
        return await self.connections.read_resource(server_name, uri, timeout=timeout)
