"""
mcp-conductor - connect to many MCP servers and dispatch tasks onto their tools.
"""

__version__ = "0.1.0"

# MCP connectivity
from mcp_conductor.mcp.server_registry import ServerRegistry
from mcp_conductor.mcp.connection_manager import (
    ConnectionManager,
    ConnectionState,
    ProviderAvailability,
)
from mcp_conductor.mcp.client_session import ConductorClientSession
from mcp_conductor.mcp.registry import CapabilityRegistry, Resource, Tool

# Dispatch
from mcp_conductor.dispatch import DispatchReport, Dispatcher, ToolInvocation

# Provider side
from mcp_conductor.server import HandlerRegistry

# Configuration
from mcp_conductor.config import load_config, Settings

from mcp_conductor.app import ConductorApp

__all__ = [
    "ConductorApp",
    "ServerRegistry",
    "ConnectionManager",
    "ConnectionState",
    "ProviderAvailability",
    "ConductorClientSession",
    "CapabilityRegistry",
    "Tool",
    "Resource",
    "Dispatcher",
    "DispatchReport",
    "ToolInvocation",
    "HandlerRegistry",
    "load_config",
    "Settings",
]
