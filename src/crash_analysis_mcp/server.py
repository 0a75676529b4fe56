"""MCP server entry point (FastMCP over stdio)."""

import logging
from typing import Optional

from mcp.server.fastmcp import FastMCP

from crash_analysis_mcp.config.server import ServerConfig, get_config, set_config
from crash_analysis_mcp.tools import register_tools

logger = logging.getLogger(__name__)


def create_server(config: Optional[ServerConfig] = None) -> FastMCP:
    """Create the FastMCP server with all enabled tools registered.

    Args:
        config: Server configuration; defaults to the global configuration
    """
    if config is None:
        config = get_config()
    else:
        set_config(config)

    mcp = FastMCP(name=config.server_name)
    registered = register_tools(mcp, config)
    logger.info(
        "Created %s %s with tools: %s",
        config.server_name,
        config.server_version,
        ", ".join(registered) or "(none)",
    )
    return mcp


def main() -> None:
    """Run the server over stdio."""
    config = ServerConfig.from_env()
    config.setup_logging()
    server = create_server(config)
    server.run(transport="stdio")


if __name__ == "__main__":
    main()
