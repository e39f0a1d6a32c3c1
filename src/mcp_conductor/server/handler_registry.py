"""
Provider-side handler registry.

Holds the tools and resources an MCP server offers and answers the four
capability requests for them. Lookup misses and handler failures are always
turned into well-formed responses, never into transport faults.
"""

import base64
import inspect
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type

from mcp.server.lowlevel.server import Server
from mcp.server.stdio import stdio_server
from mcp.shared.exceptions import McpError
import mcp.types as types
from pydantic import AnyUrl, BaseModel, TypeAdapter, ValidationError, create_model

from mcp_conductor.errors import UnknownResource, UnknownTool
from mcp_conductor.utils.logging import get_logger

logger = get_logger(__name__)

_URI = TypeAdapter(AnyUrl)


@dataclass
class RegisteredTool:
    name: str
    description: str
    input_schema: Dict[str, Any]
    handler: Callable[..., Any]
    arguments_model: Optional[Type[BaseModel]] = None

    def to_mcp(self) -> types.Tool:
        return types.Tool(
            name=self.name, description=self.description, inputSchema=self.input_schema
        )


@dataclass
class RegisteredResource:
    uri: str
    name: str
    description: str
    mime_type: str
    handler: Callable[[], Any]

    def to_mcp(self) -> types.Resource:
        return types.Resource(
            uri=self.uri,
            name=self.name,
            description=self.description,
            mimeType=self.mime_type,
        )


def _arguments_model(func: Callable[..., Any], model_name: str) -> Type[BaseModel]:
    """Build a pydantic model from a handler's signature."""
    fields: Dict[str, Any] = {}
    for param in inspect.signature(func).parameters.values():
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        annotation = Any if param.annotation is inspect.Parameter.empty else param.annotation
        default = ... if param.default is inspect.Parameter.empty else param.default
        fields[param.name] = (annotation, default)
    return create_model(model_name, **fields)


def _normalize_uri(uri: str) -> str:
    """The URI as it appears in listings, so reads match what was discovered."""
    return str(_URI.validate_python(uri))


def _describe(func: Callable[..., Any]) -> str:
    doc = inspect.getdoc(func) or ""
    return doc.split("\n\n", 1)[0].strip()


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _to_content(value: Any) -> List[types.TextContent | types.ImageContent | types.EmbeddedResource]:
    if value is None:
        return []
    if isinstance(value, (types.TextContent, types.ImageContent, types.EmbeddedResource)):
        return [value]
    if isinstance(value, (list, tuple)) and value and all(
        isinstance(v, (types.TextContent, types.ImageContent, types.EmbeddedResource))
        for v in value
    ):
        return list(value)
    if isinstance(value, str):
        text = value
    elif isinstance(value, BaseModel):
        text = value.model_dump_json(indent=2)
    elif isinstance(value, (dict, list, tuple, int, float, bool)):
        text = json.dumps(value, indent=2, default=str)
    else:
        text = str(value)
    return [types.TextContent(type="text", text=text)]


def _error_result(message: str) -> types.CallToolResult:
    return types.CallToolResult(
        isError=True, content=[types.TextContent(type="text", text=message)]
    )


class HandlerRegistry:
    """
    The authoritative list of tools and resources a provider offers.

    Example:
        registry = HandlerRegistry("search-server")

        @registry.tool()
        async def search(query: str) -> str:
            \"\"\"Search for information.\"\"\"
            ...

        @registry.resource("search://history", name="History", mime_type="application/json")
        def history():
            return {"queries": []}

        anyio.run(registry.run_stdio)
    """

    def __init__(self, name: str):
        self.name = name
        self._tools: Dict[str, RegisteredTool] = {}
        self._resources: Dict[str, RegisteredResource] = {}

    def add_tool(
        self,
        handler: Callable[..., Any],
        name: Optional[str] = None,
        description: Optional[str] = None,
        input_schema: Optional[Dict[str, Any]] = None,
    ) -> RegisteredTool:
        """
        Register a tool. Without an explicit input_schema, the schema and
        argument validation are derived from the handler's signature.
        """
        tool_name = name or handler.__name__
        arguments_model = None
        if input_schema is None:
            arguments_model = _arguments_model(handler, f"{tool_name}Arguments")
            input_schema = arguments_model.model_json_schema()
            input_schema.pop("title", None)

        registered = RegisteredTool(
            name=tool_name,
            description=description if description is not None else _describe(handler),
            input_schema=input_schema,
            handler=handler,
            arguments_model=arguments_model,
        )
        self._tools[tool_name] = registered
        logger.debug(f"{self.name}: Registered tool {tool_name}")
        return registered

    def tool(
        self,
        name: Optional[str] = None,
        description: Optional[str] = None,
        input_schema: Optional[Dict[str, Any]] = None,
    ):
        """Decorator form of add_tool."""

        def decorator(handler: Callable[..., Any]) -> Callable[..., Any]:
            self.add_tool(handler, name=name, description=description, input_schema=input_schema)
            return handler

        return decorator

    def add_resource(
        self,
        handler: Callable[[], Any],
        uri: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        mime_type: str = "text/plain",
    ) -> RegisteredResource:
        uri = _normalize_uri(uri)
        registered = RegisteredResource(
            uri=uri,
            name=name or handler.__name__,
            description=description if description is not None else _describe(handler),
            mime_type=mime_type,
            handler=handler,
        )
        self._resources[uri] = registered
        logger.debug(f"{self.name}: Registered resource {uri}")
        return registered

    def resource(
        self,
        uri: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        mime_type: str = "text/plain",
    ):
        """Decorator form of add_resource."""

        def decorator(handler: Callable[[], Any]) -> Callable[[], Any]:
            self.add_resource(
                handler, uri, name=name, description=description, mime_type=mime_type
            )
            return handler

        return decorator

    def list_tools(self) -> List[types.Tool]:
        return [registered.to_mcp() for registered in self._tools.values()]

    def list_resources(self) -> List[types.Resource]:
        return [registered.to_mcp() for registered in self._resources.values()]

    async def call_tool(
        self, name: str, arguments: Optional[Dict[str, Any]] = None
    ) -> types.CallToolResult:
        """
        Run a tool and wrap its outcome.

        Unknown tools, invalid arguments and handler exceptions all come back
        as ``isError=True`` results.
        """
        registered = self._tools.get(name)
        if registered is None:
            error = UnknownTool(name)
            logger.warning(f"{self.name}: {error}")
            return _error_result(str(error))

        arguments = arguments or {}
        try:
            if registered.arguments_model is not None:
                validated = registered.arguments_model.model_validate(arguments)
                kwargs = {field: getattr(validated, field) for field in type(validated).model_fields}
            else:
                kwargs = arguments
            value = await _maybe_await(registered.handler(**kwargs))
        except ValidationError as exc:
            return _error_result(f"Invalid arguments for {name}: {exc}")
        except Exception as exc:
            logger.error(f"{self.name}: Error executing {name}: {exc}", exc_info=True)
            return _error_result(f"Error executing {name}: {exc}")

        if isinstance(value, types.CallToolResult):
            return value
        return types.CallToolResult(content=_to_content(value), isError=False)

    async def read_resource(self, uri: str) -> types.ReadResourceResult:
        """
        Read a resource.

        Raises:
            UnknownResource: The URI is not registered.
            McpError: The handler failed (INTERNAL_ERROR).
        """
        try:
            registered = self._resources.get(_normalize_uri(uri))
        except ValidationError:
            registered = None
        if registered is None:
            raise UnknownResource(uri)
        uri = registered.uri

        try:
            value = await _maybe_await(registered.handler())
        except Exception as exc:
            logger.error(f"{self.name}: Error reading {uri}: {exc}", exc_info=True)
            raise McpError(
                types.ErrorData(
                    code=types.INTERNAL_ERROR, message=f"Error reading {uri}: {exc}"
                )
            ) from exc

        if isinstance(value, types.ReadResourceResult):
            return value
        if isinstance(value, bytes):
            contents = types.BlobResourceContents(
                uri=uri, mimeType=registered.mime_type, blob=base64.b64encode(value).decode()
            )
        else:
            text = value if isinstance(value, str) else json.dumps(value, indent=2, default=str)
            contents = types.TextResourceContents(uri=uri, mimeType=registered.mime_type, text=text)
        return types.ReadResourceResult(contents=[contents])

    def build_server(self) -> Server:
        """A low-level MCP server whose capability requests delegate to this registry."""
        server = Server(self.name)

        async def handle_list_tools(_: types.ListToolsRequest) -> types.ServerResult:
            return types.ServerResult(types.ListToolsResult(tools=self.list_tools()))

        async def handle_list_resources(_: types.ListResourcesRequest) -> types.ServerResult:
            return types.ServerResult(types.ListResourcesResult(resources=self.list_resources()))

        async def handle_call_tool(req: types.CallToolRequest) -> types.ServerResult:
            return types.ServerResult(
                await self.call_tool(req.params.name, req.params.arguments)
            )

        async def handle_read_resource(req: types.ReadResourceRequest) -> types.ServerResult:
            return types.ServerResult(await self.read_resource(str(req.params.uri)))

        server.request_handlers[types.ListToolsRequest] = handle_list_tools
        server.request_handlers[types.ListResourcesRequest] = handle_list_resources
        server.request_handlers[types.CallToolRequest] = handle_call_tool
        server.request_handlers[types.ReadResourceRequest] = handle_read_resource
        return server

    async def run_stdio(self) -> None:
        """Serve this registry over stdio until stdin closes."""
        server = self.build_server()
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
