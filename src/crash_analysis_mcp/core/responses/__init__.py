"""Standard response envelope for MCP tool operations."""

from crash_analysis_mcp.core.responses.builders import error_response, success_response
from crash_analysis_mcp.core.responses.types import ErrorCode, ErrorType, ToolResponse

__all__ = [
    "ErrorCode",
    "ErrorType",
    "ToolResponse",
    "error_response",
    "success_response",
]
