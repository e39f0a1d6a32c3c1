"""
Tool selection for a (role, task) pair.
"""

import re
from typing import Iterable, List, Mapping, Optional

from mcp_conductor.config import AgentMapping, DispatchSettings, SelectionFallback
from mcp_conductor.mcp.registry import CapabilityRegistry, Tool
from mcp_conductor.utils.logging import get_logger

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")

STOP_WORDS = frozenset(
    {
        "the", "and", "for", "with", "from", "into", "onto", "that", "this", "these",
        "those", "then", "than", "are", "was", "were", "will", "can", "should", "would",
        "please", "about", "some", "all", "any", "our", "your", "their", "its", "new",
        "use", "using", "make", "get", "set", "have", "has",
    }
)


def task_keywords(task: str) -> List[str]:
    """Distinct lowercase keywords of a task, in order of first appearance."""
    seen = []
    for token in _TOKEN_RE.findall(task.lower()):
        if len(token) >= 3 and token not in STOP_WORDS and token not in seen:
            seen.append(token)
    return seen


def score_tool(tool: Tool, keywords: Iterable[str]) -> int:
    """How many task keywords occur in the tool's name or description."""
    haystack = f"{tool.name.replace('_', ' ')} {tool.description}".lower()
    return sum(1 for keyword in keywords if keyword in haystack)


def candidate_tools(
    role: str, registry: CapabilityRegistry, mappings: Mapping[str, AgentMapping]
) -> List[Tool]:
    """
    Tools a role may use: those on its preferred servers or whose description
    mentions one of its specialties. A role without a mapping may use every tool.
    """
    tools = list(registry.tools())
    mapping = mappings.get(role)
    if mapping is None:
        return tools

    preferred = set(mapping.preferred_servers)
    specialties = [specialty.lower() for specialty in mapping.specialties]
    return [
        tool
        for tool in tools
        if tool.server_name in preferred
        or any(specialty in tool.description.lower() for specialty in specialties)
    ]


def select_tools(
    role: str,
    task: str,
    registry: CapabilityRegistry,
    mappings: Optional[Mapping[str, AgentMapping]] = None,
    settings: Optional[DispatchSettings] = None,
) -> List[Tool]:
    """
    Pick the tools to call for a task.

    Role preferences narrow the candidates first. Keyword routes then pick the
    best tool of each server whose trigger words appear in the task, and any
    other candidate whose name or description matches task keywords follows,
    best match first. The result is capped at ``settings.max_tools``.

    With the FIRST_TOOL fallback, a task that matches nothing still gets one
    tool when the registry is not empty.
    """
    settings = settings or DispatchSettings()
    candidates = candidate_tools(role, registry, mappings or {})
    keywords = task_keywords(task)
    task_lower = task.lower()

    selected: List[Tool] = []

    for server_name, triggers in settings.keyword_routes.items():
        if not any(trigger.lower() in task_lower for trigger in triggers):
            continue
        server_tools = [tool for tool in candidates if tool.server_name == server_name]
        if server_tools:
            best = max(server_tools, key=lambda tool: score_tool(tool, keywords))
            if best not in selected:
                selected.append(best)

    scored = [(score_tool(tool, keywords), index, tool) for index, tool in enumerate(candidates)]
    for score, _, tool in sorted(scored, key=lambda item: (-item[0], item[1])):
        if score <= 0:
            break
        if tool not in selected:
            selected.append(tool)

    selected = selected[: settings.max_tools]

    if not selected and settings.fallback == SelectionFallback.FIRST_TOOL:
        pool = candidates or list(registry.tools())
        if pool:
            logger.debug(f"No tool matched '{task}' for {role}; falling back to {pool[0].full_name}")
            selected = [pool[0]]

    return selected
