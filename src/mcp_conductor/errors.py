"""
Error taxonomy for the MCP Conductor framework.

Connection-level errors are turned into status data by the connection manager,
call-level errors are turned into failed invocations by the dispatcher. Only
configuration errors are allowed to escape startup.
"""

from typing import Any, Optional

from mcp.shared.exceptions import McpError
from mcp.types import ErrorData

# JSON-RPC code the MCP SDK uses when the transport goes away under a pending request.
CONNECTION_CLOSED = -32000

# MCP-defined code for "resource not found".
RESOURCE_NOT_FOUND = -32002


class ConductorError(Exception):
    """Base class for all framework errors."""

    error_type = "error"


class ConfigError(ConductorError):
    """The configuration could not be parsed or validated."""

    error_type = "config_error"


class LaunchError(ConductorError):
    """A server process could not be started or attached to."""

    error_type = "launch_error"


class HandshakeError(ConductorError):
    """The initialize handshake with a server failed."""

    error_type = "handshake_error"


class RequestTimeout(ConductorError):
    """A request was not answered in time."""

    error_type = "timeout"

    def __init__(self, method: str, timeout: float):
        super().__init__(f"Request '{method}' timed out after {timeout:g}s")
        self.method = method
        self.timeout = timeout


class RemoteError(ConductorError):
    """The server answered with a well-formed error response."""

    error_type = "remote_error"

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data


class ChannelClosed(ConductorError):
    """The channel to the server ended unexpectedly."""

    error_type = "channel_closed"


class UnknownServer(ConductorError):
    """No live connection or registry entry exists for the server."""

    error_type = "unknown_server"

    def __init__(self, server_name: str):
        super().__init__(f"No connection to server: {server_name}")
        self.server_name = server_name


class InvocationError(ConductorError):
    """A tool call failed."""

    error_type = "invocation_error"


class DiscoveryError(ConductorError):
    """Listing a capability category failed. Never propagated, only logged."""

    error_type = "discovery_error"


class UnknownTool(ConductorError):
    """A provider was asked for a tool it does not offer."""

    error_type = "unknown_tool"

    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class UnknownResource(McpError):
    """
    A provider was asked for a resource URI it does not offer.

    Raised as an McpError so the low-level server turns it into a
    well-formed JSON-RPC error response instead of a transport fault.
    """

    error_type = "unknown_resource"

    def __init__(self, uri: str):
        super().__init__(
            ErrorData(
                code=RESOURCE_NOT_FOUND,
                message=f"Resource not found: {uri}",
                data={"uri": uri},
            )
        )
        self.uri = uri


def error_type_of(exc: BaseException) -> str:
    """Stable error_type string for any exception."""
    return getattr(exc, "error_type", None) or type(exc).__name__
