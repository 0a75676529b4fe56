"""MCP tools exposed by the crash-analysis server.

Tools:
    report  – table of contents and bounded section queries over a report file
    analyze – AI root-cause analysis through the client's sampling capability
"""

import logging
from typing import Callable, Dict

from mcp.server.fastmcp import FastMCP

from crash_analysis_mcp.config.server import ServerConfig
from crash_analysis_mcp.tools.analyze import register_analyze_tool
from crash_analysis_mcp.tools.report import register_report_tool

logger = logging.getLogger(__name__)

TOOL_REGISTRARS: Dict[str, Callable[[FastMCP, ServerConfig], None]] = {
    "report": register_report_tool,
    "analyze": register_analyze_tool,
}


def register_tools(mcp: FastMCP, config: ServerConfig) -> list[str]:
    """Register every tool not listed in ``config.disabled_tools``.

    Returns:
        Names of the registered tools.
    """
    disabled = {name.strip().lower() for name in config.disabled_tools}
    registered: list[str] = []
    for name, register in TOOL_REGISTRARS.items():
        if name in disabled:
            logger.info("Tool '%s' disabled by configuration", name)
            continue
        register(mcp, config)
        registered.append(name)
    return registered


__all__ = ["TOOL_REGISTRARS", "register_tools"]
