from .arguments import build_args
from .dispatcher import DispatchReport, Dispatcher, ToolInvocation
from .selection import select_tools, task_keywords

__all__ = [
    "DispatchReport",
    "Dispatcher",
    "ToolInvocation",
    "build_args",
    "select_tools",
    "task_keywords",
]
