import importlib
import logging
import pkgutil

logger = logging.getLogger(__name__)

# Import every module in this directory so that functions decorated with
# @register_tool are added to the mcp_server instance.
logger.info("Discovering and loading deploy tools")
for _, name, _ in pkgutil.iter_modules(__path__):
    importlib.import_module(f".{name}", __package__)
    logger.info("Loaded tools from: %s.py", name)
