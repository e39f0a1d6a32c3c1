"""
Configuration management for the MCP Conductor framework.
"""

from .settings import (
    Settings,
    MCPSettings,
    ServerDescriptor,
    AgentMapping,
    DispatchSettings,
    LoggingSettings,
    SelectionFallback,
    load_config,
)

__all__ = [
    "Settings",
    "MCPSettings",
    "ServerDescriptor",
    "AgentMapping",
    "DispatchSettings",
    "LoggingSettings",
    "SelectionFallback",
    "load_config",
]
