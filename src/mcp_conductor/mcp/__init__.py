"""
MCP connectivity for mcp-conductor.

This module provides the components for connecting to MCP servers, managing
their connection lifecycle, and keeping a registry of the tools and resources
each one offers.
"""

from .server_registry import ServerRegistry, InitHookCallable
from .connection_manager import (
    ConnectionManager,
    ConnectionState,
    ConnectionStatus,
    ProviderAvailability,
    ServerConnection,
    StatusSnapshot,
)
from .client_session import ConductorClientSession
from .channel import open_channel, stdio_channel
from .discovery import DiscoveryResult, discover
from .registry import CapabilityRegistry, Resource, Tool

__all__ = [
    "ServerRegistry",
    "InitHookCallable",
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    "ProviderAvailability",
    "ServerConnection",
    "StatusSnapshot",
    "ConductorClientSession",
    "open_channel",
    "stdio_channel",
    "DiscoveryResult",
    "discover",
    "CapabilityRegistry",
    "Resource",
    "Tool",
]
