"""FastMCP server for the deploy tools.

Tools register themselves with ``@register_tool``. The summary line and the
``Args:`` block of each docstring become the description the MCP client sees;
the long ``Returns:``/``Example:`` sections stay in the code only.
"""
import inspect
import logging
from typing import Callable, Dict, NamedTuple, Tuple

from mcp.server.fastmcp import FastMCP

logger = logging.getLogger(__name__)

_ARGS_HEADERS = ("args:", "parameters:")
_OTHER_HEADERS = ("returns:", "raises:", "example:", "examples:")


class ToolEntry(NamedTuple):
    function: Callable[..., str]
    summary: str
    args: Dict[str, str]


def parse_docstring(func) -> Tuple[str, Dict[str, str]]:
    """Return the summary line and ``{arg: description}`` from a Google-style docstring."""
    docstring = inspect.getdoc(func)
    if not docstring:
        return "No description available.", {}

    lines = docstring.strip().splitlines()
    summary = lines[0].strip()
    args: Dict[str, str] = {}
    in_args = False
    for raw in lines[1:]:
        line = raw.strip()
        header = line.lower()
        if header in _ARGS_HEADERS or header in _OTHER_HEADERS:
            in_args = header in _ARGS_HEADERS
            continue
        if in_args and ":" in line:
            name, desc = line.split(":", 1)
            # "files (Dict[str, str])" -> "files"
            args[name.split("(")[0].strip()] = desc.strip()
    return summary, args


def tool_description(summary: str, args: Dict[str, str]) -> str:
    if not args:
        return summary
    arg_lines = "\n".join(f"- {name}: {desc}" for name, desc in args.items())
    return f"{summary}\n\nArguments:\n{arg_lines}"


mcp_server = FastMCP(name="salesforce-deploy-server")

tool_registry: Dict[str, ToolEntry] = {}


def register_tool(func):
    """Expose ``func`` as an MCP tool and record it in ``tool_registry``."""
    name = func.__name__
    summary, args = parse_docstring(func)
    tool_registry[name] = ToolEntry(func, summary, args)
    mcp_server.tool(name=name, description=tool_description(summary, args))(func)
    logger.info(f"✅ Registered tool: '{name}'")
    return func


__all__ = ['mcp_server', 'register_tool', 'tool_registry', 'tool_description']
