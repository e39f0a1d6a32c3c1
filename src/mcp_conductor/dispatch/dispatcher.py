"""
The dispatcher turns a (role, task) pair into tool calls and collects their outcomes.
"""

import time
from typing import Any, Dict, List, Mapping, Optional, TYPE_CHECKING

import anyio
from pydantic import BaseModel, Field
import mcp.types as types

from mcp_conductor.config import AgentMapping, DispatchSettings
from mcp_conductor.dispatch.arguments import build_args
from mcp_conductor.dispatch.selection import select_tools
from mcp_conductor.errors import (
    ConductorError,
    InvocationError,
    UnknownServer,
    error_type_of,
)
from mcp_conductor.mcp.connection_manager import ProviderAvailability
from mcp_conductor.mcp.registry import Tool
from mcp_conductor.utils.logging import get_logger

if TYPE_CHECKING:
    from mcp_conductor.mcp.connection_manager import ConnectionManager

logger = get_logger(__name__)


class ToolInvocation(BaseModel):
    """The outcome of one tool call."""

    tool: str
    server: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    success: bool
    result: Optional[List[Dict[str, Any]]] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    duration_ms: Optional[int] = None


class DispatchReport(BaseModel):
    """Every invocation made for one task, with a summary."""

    role: str
    task: str
    invocations: List[ToolInvocation] = Field(default_factory=list)

    @property
    def tools_used(self) -> int:
        return len(self.invocations)

    @property
    def succeeded(self) -> int:
        return sum(1 for invocation in self.invocations if invocation.success)

    @property
    def failed(self) -> int:
        return self.tools_used - self.succeeded

    @property
    def summary(self) -> str:
        return (
            f"{self.role} completed task using {self.tools_used} MCP tools "
            f"({self.succeeded} succeeded, {self.failed} failed)"
        )


def _text_of(result: types.CallToolResult) -> str:
    return "\n".join(
        block.text for block in result.content if isinstance(block, types.TextContent)
    )


class Dispatcher:
    """
    Selects tools for a role and task, calls them, and reports each outcome.

    ``dispatch`` never raises for call failures: every selected tool yields
    exactly one ToolInvocation, failed or not.
    """

    def __init__(
        self,
        connections: "ConnectionManager",
        mappings: Optional[Mapping[str, AgentMapping]] = None,
        settings: Optional[DispatchSettings] = None,
        availability: ProviderAvailability = ProviderAvailability.AVAILABLE,
        call_timeout_seconds: Optional[float] = None,
    ):
        """
        Args:
            connections: Source of the capability registry and of live sessions.
            mappings: Role to preferred servers and specialties.
            settings: Selection and dispatch settings.
            availability: Resolved once after connecting; UNAVAILABLE disables dispatch.
            call_timeout_seconds: Per-call timeout; None uses each session's default.
        """
        self.connections = connections
        self.mappings = dict(mappings or {})
        self.settings = settings or DispatchSettings()
        self.availability = availability
        self.call_timeout_seconds = call_timeout_seconds

    def select_tools(self, role: str, task: str) -> List[Tool]:
        return select_tools(
            role, task, self.connections.registry, self.mappings, self.settings
        )

    async def dispatch(
        self, role: str, task: str, context: Optional[Mapping[str, Any]] = None
    ) -> List[ToolInvocation]:
        """
        Run every tool selected for ``role`` and ``task``.

        Returns:
            One ToolInvocation per selected tool, in selection order.
        """
        if self.availability == ProviderAvailability.UNAVAILABLE:
            logger.warning(f"MCP unavailable; no tools dispatched for {role}")
            return []

        logger.info(f"Executing task for {role}: {task}")
        tools = self.select_tools(role, task)
        logger.info(f"Selected {len(tools)} tools for {role}")

        if not self.settings.parallel:
            return [await self._invoke(tool, task, context) for tool in tools]

        outcomes: List[Optional[ToolInvocation]] = [None] * len(tools)

        async def run(index: int, tool: Tool) -> None:
            outcomes[index] = await self._invoke(tool, task, context)

        async with anyio.create_task_group() as tg:
            for index, tool in enumerate(tools):
                tg.start_soon(run, index, tool)
        return outcomes

    async def execute(
        self, role: str, task: str, context: Optional[Mapping[str, Any]] = None
    ) -> DispatchReport:
        invocations = await self.dispatch(role, task, context)
        report = DispatchReport(role=role, task=task, invocations=invocations)
        logger.info(report.summary)
        return report

    async def _invoke(
        self, tool: Tool, task: str, context: Optional[Mapping[str, Any]]
    ) -> ToolInvocation:
        started = time.perf_counter()
        arguments: Dict[str, Any] = {}

        def outcome(**fields) -> ToolInvocation:
            return ToolInvocation(
                tool=tool.full_name,
                server=tool.server_name,
                name=tool.name,
                arguments=arguments,
                duration_ms=int((time.perf_counter() - started) * 1000),
                **fields,
            )

        try:
            arguments = build_args(task, tool, context)
            if tool.server_name not in self.connections.registry:
                raise UnknownServer(tool.server_name)
            result = await self.connections.call_tool(
                tool.server_name, tool.name, arguments, timeout=self.call_timeout_seconds
            )
        except Exception as exc:
            if not isinstance(exc, ConductorError):
                exc = InvocationError(f"Failed to call tool '{tool.name}' on server '{tool.server_name}': {exc}")
            logger.error(f"Tool {tool.full_name} failed: {exc}")
            return outcome(success=False, error=str(exc), error_type=error_type_of(exc))

        content = [block.model_dump(exclude_none=True) for block in result.content]
        if result.isError:
            message = _text_of(result) or f"Tool '{tool.full_name}' reported an error"
            logger.warning(f"Tool {tool.full_name} reported an error: {message}")
            return outcome(success=False, result=content, error=message, error_type="tool_error")

        logger.info(f"Tool {tool.full_name} executed successfully")
        return outcome(success=True, result=content)
