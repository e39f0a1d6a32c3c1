"""
Best-effort argument building for tool calls.
"""

import re
from typing import Any, Dict, Mapping, Optional

from mcp_conductor.mcp.registry import Tool

# Context keys that may supply a schema property, beyond the property's own name.
ARGUMENT_ALIASES: Dict[str, tuple] = {
    "path": ("file_path", "filePath", "filepath", "directory"),
    "query": ("search_query", "searchQuery", "sql"),
    "content": ("text", "body"),
    "description": ("project_description",),
    "url": ("uri", "link"),
}

# Per-tool fallbacks for properties the context leaves unset. "{task}" is
# replaced by the task text.
TOOL_DEFAULTS: Dict[str, Dict[str, str]] = {
    "write_file": {"path": "./test-file.txt", "content": "Generated by PM Bot: {task}"},
    "read_file": {"path": "./README.md"},
}

# Free-text properties that fall back to the task itself when required.
TASK_TEXT_PROPERTIES = frozenset(
    {"query", "task", "description", "prompt", "text", "content", "message", "topic"}
)

_MISSING = object()


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _lookup(context: Mapping[str, Any], prop: str) -> Any:
    for key in (prop, _snake(prop), _camel(prop), *ARGUMENT_ALIASES.get(prop, ())):
        if key in context and context[key] is not None:
            return context[key]
    return _MISSING


def _accepts_text(prop_schema: Mapping[str, Any]) -> bool:
    declared = prop_schema.get("type")
    if declared is None:
        return True
    if isinstance(declared, list):
        return "string" in declared
    return declared == "string"


def build_args(
    task: str, tool: Tool, context: Optional[Mapping[str, Any]] = None
) -> Dict[str, Any]:
    """
    Derive call arguments for ``tool`` from free-form context.

    Each property declared in the tool's input schema is looked up in the
    context by name (and its snake/camel variants and aliases), then in
    ``TOOL_DEFAULTS`` for well-known tools. Required free-text properties
    that are still unfilled get the task text.
    ``context["arguments"]`` may map a tool's full or bare name to explicit
    arguments, which win over anything derived. Tools that declare no
    properties get an empty payload.
    """
    context = context or {}
    schema = tool.input_schema or {}
    properties = schema.get("properties") or {}
    required = set(schema.get("required") or [])
    defaults = TOOL_DEFAULTS.get(tool.name, {})

    args: Dict[str, Any] = {}
    for prop, prop_schema in properties.items():
        value = _lookup(context, prop)
        if value is _MISSING and prop in defaults:
            value = defaults[prop].replace("{task}", task)
        if (
            value is _MISSING
            and prop in required
            and prop in TASK_TEXT_PROPERTIES
            and _accepts_text(prop_schema or {})
        ):
            value = task
        if value is not _MISSING:
            args[prop] = value

    overrides = context.get("arguments") or {}
    explicit = overrides.get(tool.full_name, overrides.get(tool.name))
    if explicit:
        args.update(explicit)

    return args
