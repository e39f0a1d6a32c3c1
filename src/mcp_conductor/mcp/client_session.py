"""
Custom client session for the MCP Conductor framework.

This extends the base MCP client session, which already correlates responses
to requests by id, with bounded request timeouts, an optional bounded retry
and translation of protocol failures into the framework's error taxonomy.
"""

from typing import Any, Dict, Optional

import anyio
from mcp import ClientSession
from mcp.shared.exceptions import McpError
from mcp.shared.session import ReceiveNotificationT
import mcp.types as types

from mcp_conductor.errors import (
    CONNECTION_CLOSED,
    ChannelClosed,
    RemoteError,
    RequestTimeout,
)
from mcp_conductor.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0

_RESULT_TYPES = {
    "ping": types.EmptyResult,
    "tools/list": types.ListToolsResult,
    "resources/list": types.ListResourcesResult,
    "tools/call": types.CallToolResult,
    "resources/read": types.ReadResourceResult,
}


class ConductorClientSession(ClientSession):
    """
    Client session for MCP Conductor connections to MCP servers.

    Supports:
    - Enhanced logging
    - Per-request timeouts that leave the session usable
    - Bounded retry with exponential backoff for timeouts and closed channels
    """

    def __init__(
        self,
        *args,
        server_name: Optional[str] = None,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        max_retries: int = 0,
        retry_backoff_seconds: float = 0.5,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.server_name = server_name
        self.request_timeout_seconds = request_timeout_seconds
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds

    async def send_request(self, request, result_type, *args, **kwargs):
        logger.debug(f"{self.server_name}: send_request: request=", data=request.model_dump())
        try:
            result = await super().send_request(request, result_type, *args, **kwargs)
            logger.debug(f"{self.server_name}: send_request: response=", data=result.model_dump())
            return result
        except Exception as e:
            logger.error(f"{self.server_name}: send_request failed: {e}")
            raise

    async def _received_notification(self, notification: ReceiveNotificationT) -> None:
        logger.info(
            f"{self.server_name}: _received_notification: notification=",
            data=notification.model_dump(),
        )
        return await super()._received_notification(notification)

    async def send(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> types.Result:
        """
        Issue one correlated request and wait for its response.

        Args:
            method: The MCP method, e.g. "tools/list" or "tools/call".
            params: Request parameters.
            timeout: Seconds to wait for the response. Defaults to the session timeout.

        Returns:
            The typed result model for the method.

        Raises:
            RequestTimeout: No response in time (after any retries).
            RemoteError: The server answered with an error.
            ChannelClosed: The channel ended (after any retries).
            ValueError: The method is unsupported or the params are invalid.
        """
        result_type = _RESULT_TYPES.get(method)
        if result_type is None:
            raise ValueError(f"Unsupported method: {method}")

        payload: Dict[str, Any] = {"method": method}
        if params is not None:
            payload["params"] = params
        request = types.ClientRequest.model_validate(payload)

        if timeout is None:
            timeout = self.request_timeout_seconds
        attempt = 0
        while True:
            try:
                return await self._send_once(method, request, result_type, timeout)
            except (RequestTimeout, ChannelClosed) as exc:
                if attempt >= self.max_retries:
                    raise
                delay = self.retry_backoff_seconds * (2 ** attempt)
                attempt += 1
                logger.warning(
                    f"{self.server_name}: {method} failed ({exc}); "
                    f"retry {attempt}/{self.max_retries} in {delay:g}s"
                )
                await anyio.sleep(delay)

    async def _send_once(self, method, request, result_type, timeout):
        try:
            with anyio.fail_after(timeout):
                return await self.send_request(request, result_type)
        except TimeoutError as exc:
            raise RequestTimeout(method, timeout) from exc
        except McpError as exc:
            if exc.error.code == CONNECTION_CLOSED:
                raise ChannelClosed(
                    f"{self.server_name}: Connection closed during '{method}'"
                ) from exc
            raise RemoteError(
                exc.error.message, code=exc.error.code, data=exc.error.data
            ) from exc
        except (anyio.ClosedResourceError, anyio.BrokenResourceError, anyio.EndOfStream) as exc:
            raise ChannelClosed(
                f"{self.server_name}: Channel closed during '{method}'"
            ) from exc

    async def fetch_tools(self, cursor: Optional[str] = None) -> types.ListToolsResult:
        return await self.send("tools/list", {"cursor": cursor} if cursor else None)

    async def fetch_resources(self, cursor: Optional[str] = None) -> types.ListResourcesResult:
        return await self.send("resources/list", {"cursor": cursor} if cursor else None)

    async def invoke_tool(
        self,
        name: str,
        arguments: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> types.CallToolResult:
        return await self.send(
            "tools/call", {"name": name, "arguments": arguments or {}}, timeout=timeout
        )

    async def fetch_resource(
        self, uri: str, timeout: Optional[float] = None
    ) -> types.ReadResourceResult:
        return await self.send("resources/read", {"uri": uri}, timeout=timeout)
