"""Tests for ConnectionManager lifecycle, isolation and dispatch plumbing."""

from contextlib import asynccontextmanager
from unittest.mock import MagicMock

import anyio
import pytest
from mcp.shared.memory import create_client_server_memory_streams

from mcp_conductor.errors import UnknownServer
from mcp_conductor.mcp.connection_manager import (
    ConnectionManager,
    ConnectionState,
    ProviderAvailability,
)
from mcp_conductor.mcp.server_registry import ServerRegistry
from tests.helpers import descriptor


def make_manager(servers, *names, **descriptor_kwargs) -> ConnectionManager:
    registry = ServerRegistry([descriptor(name, **descriptor_kwargs) for name in names])
    return ConnectionManager(registry, transport_factory=servers)


async def wait_for_state(manager, name, state, timeout=2.0):
    with anyio.fail_after(timeout):
        while manager.connection_status(name).state != state:
            await anyio.sleep(0.01)


@asynccontextmanager
async def silent_channel(descriptor, on_close=None):
    """A channel whose server never answers."""
    async with create_client_server_memory_streams() as (client_streams, _):
        yield client_streams


class TestConnectAll:
    """Tests for connect_all()."""

    @pytest.mark.asyncio
    async def test_one_failure_does_not_affect_others(self, servers):
        """alpha connects while beta's executable is missing."""
        async with make_manager(servers, "alpha", "beta") as manager:
            # Act
            snapshot = await manager.connect_all()

            # Assert
            assert snapshot["alpha"].state == ConnectionState.CONNECTED
            assert snapshot["alpha"].connected_at is not None
            assert snapshot["beta"].state == ConnectionState.FAILED
            assert "No such file" in snapshot["beta"].error
            assert snapshot.connected_count == 1
            assert snapshot.total_count == 2
            assert manager.registry.servers() == ("alpha",)

    @pytest.mark.asyncio
    async def test_discovery_populates_status_and_registry(self, servers):
        async with make_manager(servers, "alpha") as manager:
            snapshot = await manager.connect_all()

            status = snapshot["alpha"]
            assert status.tools == ["echo", "fail", "slow"]
            assert status.tool_count == 3
            assert status.resource_count == 1
            assert manager.registry.find_tool("alpha.echo") is not None

    @pytest.mark.asyncio
    async def test_availability(self, servers):
        async with make_manager(servers, "alpha", "beta") as manager:
            await manager.connect_all()
            assert manager.availability() == ProviderAvailability.DEGRADED

        async with make_manager(servers, "beta") as manager:
            await manager.connect_all()
            assert manager.availability() == ProviderAvailability.UNAVAILABLE

        async with make_manager(servers, "alpha") as manager:
            await manager.connect_all()
            assert manager.availability() == ProviderAvailability.AVAILABLE

    @pytest.mark.asyncio
    async def test_unattempted_server_is_idle(self, servers):
        async with make_manager(servers, "alpha", "beta") as manager:
            snapshot = await manager.connect_all(["alpha"])

            assert snapshot["beta"].state == ConnectionState.IDLE
            assert snapshot["beta"].error is None

    @pytest.mark.asyncio
    async def test_unknown_server_name_raises(self, servers):
        async with make_manager(servers, "alpha") as manager:
            with pytest.raises(UnknownServer):
                await manager.connect_all(["gamma"])

    @pytest.mark.asyncio
    async def test_handshake_timeout_fails_connection(self):
        # Arrange
        registry = ServerRegistry([descriptor("mute", connect_timeout_seconds=0.2)])

        # Act
        async with ConnectionManager(registry, transport_factory=silent_channel) as manager:
            snapshot = await manager.connect_all()

        # Assert
        assert snapshot["mute"].state == ConnectionState.FAILED
        assert "timed out" in snapshot["mute"].error

    @pytest.mark.asyncio
    async def test_requires_async_context(self, servers):
        manager = make_manager(servers, "alpha")

        with pytest.raises(RuntimeError):
            await manager.connect_all()


class TestCalls:
    """Tests for routing calls through live sessions."""

    @pytest.mark.asyncio
    async def test_call_tool(self, servers):
        async with make_manager(servers, "alpha") as manager:
            await manager.connect_all()

            result = await manager.call_tool("alpha", "echo", {"text": "ping"})

            assert result.content[0].text == "ping"

    @pytest.mark.asyncio
    async def test_read_resource(self, servers):
        async with make_manager(servers, "alpha") as manager:
            await manager.connect_all()

            result = await manager.read_resource("alpha", "alpha://notes/today")

            assert '"first"' in result.contents[0].text

    @pytest.mark.asyncio
    async def test_get_session_for_failed_server_raises(self, servers):
        async with make_manager(servers, "alpha", "beta") as manager:
            await manager.connect_all()

            with pytest.raises(UnknownServer):
                manager.get_session("beta")
            with pytest.raises(UnknownServer):
                await manager.call_tool("beta", "echo", {"text": "x"})

    @pytest.mark.asyncio
    async def test_refresh_replaces_entries(self, servers):
        async with make_manager(servers, "alpha") as manager:
            await manager.connect_all()

            # Arrange
            servers.registries["alpha"].add_tool(lambda: "pong", name="pong")

            # Act
            snapshot = await manager.refresh("alpha")

            # Assert
            assert snapshot["alpha"].tools == ["echo", "fail", "slow", "pong"]
            assert len(manager.registry.tools("alpha")) == 4


class TestDisconnect:
    """Tests for teardown and remote closure."""

    @pytest.mark.asyncio
    async def test_disconnect_server(self, servers):
        async with make_manager(servers, "alpha") as manager:
            await manager.connect_all()

            # Act
            await manager.disconnect_server("alpha")
            await manager.disconnect_server("alpha")

            # Assert
            status = manager.connection_status("alpha")
            assert status.state == ConnectionState.DISCONNECTED
            assert status.error is None
            assert "alpha" not in manager.registry
            with pytest.raises(UnknownServer):
                manager.get_session("alpha")

    @pytest.mark.asyncio
    async def test_disconnect_all_is_best_effort(self, servers):
        async with make_manager(servers, "alpha", "beta") as manager:
            await manager.connect_all()

            await manager.disconnect_all()

            snapshot = manager.status()
            assert snapshot["alpha"].state == ConnectionState.DISCONNECTED
            assert snapshot["beta"].state == ConnectionState.FAILED
            assert len(manager.registry) == 0

    @pytest.mark.asyncio
    async def test_remote_closure(self, servers):
        """A server going away moves it to disconnected and drops its registry entry."""
        async with make_manager(servers, "alpha") as manager:
            await manager.connect_all()

            # Act
            servers.crash("alpha")
            await wait_for_state(manager, "alpha", ConnectionState.DISCONNECTED)

            # Assert
            status = manager.connection_status("alpha")
            assert status.error == "Channel closed by server"
            assert "alpha" not in manager.registry

    @pytest.mark.asyncio
    async def test_reconnect_after_disconnect(self, servers):
        async with make_manager(servers, "alpha") as manager:
            await manager.connect_all()
            await manager.disconnect_server("alpha")

            snapshot = await manager.connect_all()

            assert snapshot["alpha"].state == ConnectionState.CONNECTED
            assert servers.opened == ["alpha", "alpha"]


class TestInitHooks:
    """Tests for per-server init hooks."""

    @pytest.mark.asyncio
    async def test_hook_runs_after_handshake(self, servers):
        # Arrange
        hook = MagicMock(return_value=None)
        manager = make_manager(servers, "alpha")
        manager.server_registry.register_init_hook("alpha", hook)

        # Act
        async with manager:
            snapshot = await manager.connect_all()

        # Assert
        assert snapshot["alpha"].state == ConnectionState.CONNECTED
        hook.assert_called_once()
        session, hook_descriptor = hook.call_args.args
        assert hook_descriptor.name == "alpha"
        assert session.server_name == "alpha"

    @pytest.mark.asyncio
    async def test_async_hook_is_awaited(self, servers):
        calls = []

        async def hook(session, descriptor):
            result = await session.send("ping")
            calls.append(result)

        manager = make_manager(servers, "alpha")
        manager.server_registry.register_init_hook("alpha", hook)

        async with manager:
            await manager.connect_all()

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_failing_hook_fails_only_its_connection(self, servers):
        # Arrange
        servers.registries["gamma"] = servers.registries["alpha"]

        def hook(session, descriptor):
            raise RuntimeError("seed data missing")

        manager = make_manager(servers, "alpha", "gamma")
        manager.server_registry.register_init_hook("gamma", hook)

        # Act
        async with manager:
            snapshot = await manager.connect_all()

        # Assert
        assert snapshot["alpha"].state == ConnectionState.CONNECTED
        assert snapshot["gamma"].state == ConnectionState.FAILED
        assert "seed data missing" in snapshot["gamma"].error

    def test_hook_for_unknown_server_raises(self, servers):
        manager = make_manager(servers, "alpha")

        with pytest.raises(UnknownServer):
            manager.server_registry.register_init_hook("gamma", MagicMock())
