"""Report index: a compact table of contents for incremental exploration."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from crash_analysis_mcp.core.report.document import DocumentLike, as_root

logger = logging.getLogger(__name__)

# Nested entries listed per top-level analysis section.
_MAX_NESTED_ENTRIES = 25
_MAX_SUMMARY_MESSAGES = 10

_SECTION_DESCRIPTIONS: dict[str, str] = {
    "metadata": "Dump and report metadata (dump id, debugger type, generation time).",
    "analysis.summary": "Crash type, severity, thread/module/assembly counts, warnings and errors.",
    "analysis.exception": "Exception type, message, HResult, inner exceptions and analysis.",
    "analysis.environment": "Platform, runtime, process arguments and crash info.",
    "analysis.threads": "Thread overview: summary, faulting thread, thread pool, all threads.",
    "analysis.threads.summary": "Thread counts and state summary.",
    "analysis.threads.faultingThread": "The faulting thread with its call stack.",
    "analysis.threads.all": "All threads with call stacks; page with limit/cursor or filter with where.",
    "analysis.threads.threadPool": "Thread pool configuration and utilization.",
    "analysis.threads.deadlock": "Deadlock detection results.",
    "analysis.assemblies": "Loaded managed assemblies.",
    "analysis.assemblies.items": "Assembly list; filter with where (e.g. name) and project with select.",
    "analysis.modules": "Native modules loaded in the process.",
    "analysis.security": "Security findings (vulnerable packages, unsafe patterns).",
    "analysis.synchronization": "Locks, waits and contention indicators.",
    "analysis.memory": "Heap statistics, large objects and memory pressure indicators.",
    "analysis.watches": "Watch expression results.",
    "analysis.symbols": "Symbol resolution status.",
    "analysis.timeline": "Thread activity timeline.",
    "analysis.signature": "Crash signature used for grouping similar dumps.",
    "analysis.aiAnalysis": "Previous AI analysis results, if any.",
}

_HOW_TO_EXPAND = [
    'report_get(path="analysis.exception") returns one section.',
    'report_get(path="analysis.threads.all", limit=25) pages an array; pass page.nextCursor as cursor for the next page.',
    'report_get(path="analysis.threads.all[0:5]") returns a bounded slice without a cursor.',
    'report_get(path="analysis.threads.all[1].callStack") drills into one element.',
    'report_get(path="analysis.assemblies.items", where={"field": "name", "equals": "System.Private.CoreLib"}, '
    'select=["name", "assemblyVersion"]) filters and projects array elements.',
    'report_get(path="analysis.environment", pageKind="object", limit=20) pages object properties.',
    'MCP: report(action="get", report_path=..., path="analysis.threads.all", limit=25, cursor=...) '
    "is the equivalent tool call for MCP clients.",
    "If a response is too_large, follow error.suggestedPaths or reduce limit.",
]


def _kind(value: Any) -> str:
    if isinstance(value, Mapping):
        return "object"
    if isinstance(value, list):
        return "array"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if value is None:
        return "null"
    return "string"


def _describe(path: str, value: Any) -> str:
    curated = _SECTION_DESCRIPTIONS.get(path)
    if curated:
        return curated
    kind = _kind(value)
    if kind == "object":
        return f"Object with {len(value)} properties."
    if kind == "array":
        return f"Array with {len(value)} items."
    return f"{kind.capitalize()} value."


def _toc_entry(path: str, value: Any) -> dict[str, Any]:
    entry: dict[str, Any] = {"path": path, "kind": _kind(value), "description": _describe(path, value)}
    if isinstance(value, list):
        entry["count"] = len(value)
        entry["pageable"] = True
    elif isinstance(value, Mapping):
        entry["count"] = len(value)
    return entry


def _bounded_messages(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value[:_MAX_SUMMARY_MESSAGES]]


def _summary_digest(analysis: Mapping[str, Any]) -> dict[str, Any]:
    summary = analysis.get("summary")
    summary = summary if isinstance(summary, Mapping) else {}
    exception = analysis.get("exception")
    exception = exception if isinstance(exception, Mapping) else {}
    digest = {
        "crashType": summary.get("crashType"),
        "exceptionType": exception.get("type"),
        "severity": summary.get("severity"),
        "threadCount": summary.get("threadCount"),
        "moduleCount": summary.get("moduleCount"),
        "assemblyCount": summary.get("assemblyCount"),
        "warnings": _bounded_messages(summary.get("warnings")),
        "errors": _bounded_messages(summary.get("errors")),
    }
    return {key: value for key, value in digest.items() if value not in (None, [])}


def build_index(document: DocumentLike) -> dict[str, Any]:
    """Build a table of contents for *document*.

    Lists ``metadata``, every ``analysis.<section>`` and one more level of
    nesting, flagging arrays (pageable) and objects (pageable with
    ``pageKind="object"``) so a caller knows how to expand each entry.

    Args:
        document: Report snapshot.

    Returns:
        ``{"metadata", "summary", "toc", "howToExpand"}``.
    """
    root = as_root(document)
    metadata = root.get("metadata")
    analysis = root.get("analysis")

    toc: list[dict[str, Any]] = []
    if metadata is not None:
        toc.append(_toc_entry("metadata", metadata))

    if isinstance(analysis, Mapping):
        for key, section in analysis.items():
            section_path = f"analysis.{key}"
            toc.append(_toc_entry(section_path, section))
            if isinstance(section, Mapping):
                for nested_key in list(section.keys())[:_MAX_NESTED_ENTRIES]:
                    nested_path = f"{section_path}.{nested_key}"
                    toc.append(_toc_entry(nested_path, section[nested_key]))
    else:
        logger.debug("Report has no analysis object; index lists metadata only")

    scalar_metadata = {}
    if isinstance(metadata, Mapping):
        scalar_metadata = {
            key: value for key, value in metadata.items() if not isinstance(value, (Mapping, list))
        }

    return {
        "metadata": scalar_metadata,
        "summary": _summary_digest(analysis if isinstance(analysis, Mapping) else {}),
        "toc": toc,
        "howToExpand": list(_HOW_TO_EXPAND),
    }
