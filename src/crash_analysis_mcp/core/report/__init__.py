"""Bounded section query and pagination engine over structured dump reports."""

from crash_analysis_mcp.core.report.document import ReportDocument, load_report
from crash_analysis_mcp.core.report.index import build_index
from crash_analysis_mcp.core.report.section_query import (
    QueryLimits,
    ReportWhere,
    get_section,
    serialize_section_response,
)

__all__ = [
    "QueryLimits",
    "ReportDocument",
    "ReportWhere",
    "build_index",
    "get_section",
    "load_report",
    "serialize_section_response",
]
