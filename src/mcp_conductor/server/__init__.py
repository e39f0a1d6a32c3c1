"""
Provider-side components: serve tools and resources to MCP clients.
"""

from .handler_registry import HandlerRegistry, RegisteredResource, RegisteredTool

__all__ = [
    "HandlerRegistry",
    "RegisteredResource",
    "RegisteredTool",
]
