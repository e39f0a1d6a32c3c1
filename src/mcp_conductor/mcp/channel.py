"""
Channels: the duplex message streams to one MCP server.

A channel owns the server process (or the remote endpoint connection) and
guarantees it is released on every exit path.
"""

import subprocess
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable, Optional, Tuple

import anyio
import mcp.types as types
from anyio.abc import Process
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from anyio.streams.text import TextReceiveStream
from mcp.client.sse import sse_client
from mcp.client.stdio import get_default_environment
from mcp.shared.message import SessionMessage

from mcp_conductor.config import ServerDescriptor
from mcp_conductor.errors import LaunchError
from mcp_conductor.utils.logging import get_logger

logger = get_logger(__name__)

ENCODING = "utf-8"
PROCESS_EXIT_GRACE_SECONDS = 2.0

ReadStream = MemoryObjectReceiveStream[SessionMessage | Exception]
WriteStream = MemoryObjectSendStream[SessionMessage]

ChannelFactory = Callable[
    [ServerDescriptor, Optional[Callable[[], None]]],
    "AsyncGenerator[Tuple[ReadStream, WriteStream], None]",
]


@asynccontextmanager
async def open_channel(
    descriptor: ServerDescriptor,
    on_close: Optional[Callable[[], None]] = None,
) -> AsyncGenerator[Tuple[ReadStream, WriteStream], None]:
    """
    Open a channel to the server described by ``descriptor``.

    Args:
        descriptor: How to launch or reach the server.
        on_close: Called once when the server side of the channel ends.

    Yields:
        A tuple of (read_stream, write_stream) for the client session.

    Raises:
        LaunchError: If the server cannot be started or the transport is unsupported.
    """
    if descriptor.transport == "stdio":
        async with stdio_channel(descriptor, on_close=on_close) as streams:
            yield streams
    elif descriptor.transport == "sse":
        async with sse_client(descriptor.url) as streams:
            yield streams
    else:
        raise LaunchError(f"Unsupported transport: {descriptor.transport}")


@asynccontextmanager
async def stdio_channel(
    descriptor: ServerDescriptor,
    on_close: Optional[Callable[[], None]] = None,
) -> AsyncGenerator[Tuple[ReadStream, WriteStream], None]:
    """
    Launch a server process and speak newline-delimited JSON-RPC over its stdio.

    The server's stderr is routed through our logger.
    """
    server_name = descriptor.name or descriptor.command
    env = {**get_default_environment(), **descriptor.env}

    try:
        process = await anyio.open_process(
            [descriptor.command, *descriptor.args],
            env=env,
            stderr=subprocess.PIPE,
        )
    except OSError as exc:
        raise LaunchError(
            f"{server_name}: Failed to start '{descriptor.command}': {exc}"
        ) from exc

    logger.debug(f"{server_name}: Started process '{descriptor.command}' with PID: {process.pid}")

    read_stream_writer, read_stream = anyio.create_memory_object_stream[
        SessionMessage | Exception
    ](0)
    write_stream, write_stream_reader = anyio.create_memory_object_stream[
        SessionMessage
    ](0)

    async def stdout_reader():
        assert process.stdout, "Opened process is missing stdout"
        try:
            async with read_stream_writer:
                buffer = ""
                async for chunk in TextReceiveStream(
                    process.stdout,
                    encoding=ENCODING,
                    errors=descriptor.encoding_error_handler,
                ):
                    lines = (buffer + chunk).split("\n")
                    buffer = lines.pop()

                    for line in lines:
                        if not line.strip():
                            continue
                        try:
                            message = types.JSONRPCMessage.model_validate_json(line)
                        except Exception as exc:
                            logger.warning(f"{server_name}: Malformed message from server: {line!r}")
                            await read_stream_writer.send(exc)
                            continue

                        await read_stream_writer.send(SessionMessage(message))
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            logger.debug(f"{server_name}: Stdout stream closed")
        except UnicodeDecodeError as exc:
            logger.error(f"{server_name}: Undecodable output from server: {exc}")
        finally:
            logger.debug(f"{server_name}: Server output ended")
            if on_close is not None:
                on_close()

    async def stderr_reader():
        assert process.stderr, "Opened process is missing stderr"
        try:
            async for chunk in TextReceiveStream(
                process.stderr, encoding=ENCODING, errors="replace"
            ):
                for stderr_line in chunk.splitlines():
                    if not stderr_line.strip():
                        continue
                    if "[ERROR]" in stderr_line or "Error" in stderr_line:
                        logger.error(f"{server_name} STDERR: {stderr_line}")
                    else:
                        logger.debug(f"{server_name} STDERR: {stderr_line}")
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            logger.debug(f"{server_name}: Stderr stream closed")
        except Exception as exc:
            logger.error(f"{server_name}: Error in stderr reader: {exc}")

    async def stdin_writer():
        assert process.stdin, "Opened process is missing stdin"
        try:
            async with write_stream_reader:
                async for session_message in write_stream_reader:
                    json = session_message.message.model_dump_json(
                        by_alias=True, exclude_none=True
                    )
                    await process.stdin.send((json + "\n").encode(ENCODING))
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            logger.debug(f"{server_name}: Stdin stream closed")

    try:
        async with anyio.create_task_group() as tg:
            tg.start_soon(stdout_reader)
            tg.start_soon(stderr_reader)
            tg.start_soon(stdin_writer)
            try:
                yield read_stream, write_stream
            finally:
                tg.cancel_scope.cancel()
    finally:
        with anyio.CancelScope(shield=True):
            await read_stream.aclose()
            await write_stream.aclose()
            await _terminate(process, server_name)


async def _terminate(process: Process, server_name: str) -> None:
    """Close stdin, give the server a grace period, then terminate and kill."""
    if process.stdin is not None:
        try:
            await process.stdin.aclose()
        except (anyio.ClosedResourceError, anyio.BrokenResourceError, OSError):
            pass

    with anyio.move_on_after(PROCESS_EXIT_GRACE_SECONDS):
        await process.wait()

    if process.returncode is None:
        logger.debug(f"{server_name}: Terminating process {process.pid}")
        try:
            process.terminate()
        except ProcessLookupError:
            pass
        with anyio.move_on_after(PROCESS_EXIT_GRACE_SECONDS):
            await process.wait()

    if process.returncode is None:
        logger.warning(f"{server_name}: Killing unresponsive process {process.pid}")
        try:
            process.kill()
        except ProcessLookupError:
            pass

    await process.aclose()
    logger.debug(f"{server_name}: Process exited with code {process.returncode}")
