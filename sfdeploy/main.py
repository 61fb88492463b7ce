# sfdeploy/main.py
import sys
import logging

from sfdeploy.config import get_settings
from sfdeploy.mcp.server import mcp_server, tool_registry

# IMPORTANT: importing the tools package runs every @register_tool.
import sfdeploy.mcp.tools  # noqa: F401


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    settings = get_settings()
    logging.basicConfig(stream=sys.stderr, level=settings.log_level.upper())
    if "--mcp-stdio" in argv:
        logging.info("MCP starting (stdio)")
        for name, entry in tool_registry.items():
            logging.info("Tool %s: %s", name, entry.summary)
        mcp_server.run(transport="stdio")
        return 0
    print("usage: python -m sfdeploy.main --mcp-stdio", file=sys.stderr)
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
