"""Section path parsing and resolution.

A section path is a dot-separated list of segments, each an identifier
optionally suffixed with ``[n]`` (single element) or ``[a:b]`` (bounded
slice), rooted at ``analysis`` or ``metadata``::

    analysis.threads.all[1].id
    analysis.assemblies.items[0:10]
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from crash_analysis_mcp.core.errors.report import SectionQueryError
from crash_analysis_mcp.core.report.document import REPORT_ROOTS

INVALID_PATH = "invalid_path"

_SEGMENT_RE = re.compile(
    r"^(?P<name>[^\[\]]+?)(?:\[(?P<index>\d+)\]|\[(?P<start>\d*):(?P<stop>\d*)\])?$"
)

# Sibling paths suggested when a property is missing.
_MAX_SIBLING_SUGGESTIONS = 20


@dataclass(frozen=True)
class PathSegment:
    """One parsed path segment."""

    raw: str
    name: str
    index: Optional[int] = None
    slice_start: Optional[int] = None
    slice_stop: Optional[int] = None
    is_slice: bool = False


@dataclass(frozen=True)
class ResolvedSection:
    """Result of resolving a path against a document.

    Attributes:
        value: The resolved node.
        is_slice: True when the final segment was an ``[a:b]`` slice.
        is_indexed: True when the final segment was an ``[n]`` index.
    """

    value: Any
    is_slice: bool = False
    is_indexed: bool = False


def parse_section_path(path: str, *, max_path_chars: int, max_slice_items: int) -> list[PathSegment]:
    """Parse and validate a section path.

    Raises:
        SectionQueryError: ``invalid_path`` for unrooted, oversized, or malformed paths.
    """
    if not path:
        raise SectionQueryError(INVALID_PATH, "Path is required.", suggested_paths=list(REPORT_ROOTS))
    if len(path) > max_path_chars:
        raise SectionQueryError(INVALID_PATH, f"Path exceeds maximum length ({max_path_chars}).")

    raw_segments = path.split(".")
    segments: list[PathSegment] = []
    for position, raw in enumerate(raw_segments):
        if not raw:
            raise SectionQueryError(INVALID_PATH, "Path contains an empty segment.")
        match = _SEGMENT_RE.match(raw)
        if match is None:
            raise SectionQueryError(
                INVALID_PATH,
                f"Segment '{raw}' has malformed index or slice bounds. Use limit/cursor paging instead.",
            )

        name = match.group("name")
        if match.group("index") is not None:
            segments.append(PathSegment(raw=raw, name=name, index=int(match.group("index"))))
            continue

        if match.group("start") is not None or match.group("stop") is not None:
            if position != len(raw_segments) - 1:
                raise SectionQueryError(
                    INVALID_PATH,
                    f"Slice '{raw}' is only supported on the final path segment.",
                )
            start = int(match.group("start")) if match.group("start") else 0
            stop = int(match.group("stop")) if match.group("stop") else None
            if stop is not None and stop < start:
                raise SectionQueryError(
                    INVALID_PATH,
                    f"Segment '{raw}' has malformed index or slice bounds. Use limit/cursor paging instead.",
                )
            if stop is not None and stop - start > max_slice_items:
                raise SectionQueryError(
                    INVALID_PATH,
                    f"Slice '{raw}' exceeds the maximum of {max_slice_items} items. Use limit/cursor paging instead.",
                )
            segments.append(
                PathSegment(raw=raw, name=name, slice_start=start, slice_stop=stop, is_slice=True)
            )
            continue

        segments.append(PathSegment(raw=raw, name=name))

    if segments[0].name not in REPORT_ROOTS:
        raise SectionQueryError(
            INVALID_PATH,
            "Path must start with 'analysis' or 'metadata'.",
            suggested_paths=[f"analysis.{path}", "analysis", "metadata"],
        )
    return segments


def _lookup_property(node: Mapping[str, Any], name: str) -> tuple[bool, Any]:
    if name in node:
        return True, node[name]
    lowered = name.lower()
    for key, value in node.items():
        if isinstance(key, str) and key.lower() == lowered:
            return True, value
    return False, None


def child_paths(base: str, node: Any, limit: int = _MAX_SIBLING_SUGGESTIONS) -> list[str]:
    """Return up to *limit* child property paths of *node* under *base*."""
    if not isinstance(node, Mapping):
        return []
    return [f"{base}.{key}" for key in list(node.keys())[:limit]]


def resolve_section(
    root: Mapping[str, Any],
    segments: list[PathSegment],
    *,
    max_slice_items: int,
) -> ResolvedSection:
    """Resolve parsed segments against *root*.

    Raises:
        SectionQueryError: ``invalid_path`` naming the failing segment.
    """
    node: Any = root
    walked: list[str] = []
    is_slice = False
    is_indexed = False

    for segment in segments:
        if not isinstance(node, Mapping):
            raise SectionQueryError(
                INVALID_PATH,
                f"Segment '{segment.name}' cannot be resolved because the current node is not an object.",
            )
        found, child = _lookup_property(node, segment.name)
        if not found:
            parent = ".".join(walked)
            raise SectionQueryError(
                INVALID_PATH,
                f"Property '{segment.name}' not found.",
                suggested_paths=child_paths(parent, node) if parent else list(REPORT_ROOTS),
            )
        walked.append(segment.raw)
        node = child
        is_slice = False
        is_indexed = False

        if segment.index is not None:
            if not isinstance(node, list):
                raise SectionQueryError(
                    INVALID_PATH,
                    f"Segment '{segment.raw}' cannot be indexed because '{segment.name}' is not an array.",
                )
            if segment.index >= len(node):
                raise SectionQueryError(
                    INVALID_PATH,
                    f"Index {segment.index} is out of range for '{segment.name}' (length {len(node)}).",
                )
            node = node[segment.index]
            is_indexed = True
        elif segment.is_slice:
            if not isinstance(node, list):
                raise SectionQueryError(
                    INVALID_PATH,
                    f"Segment '{segment.raw}' cannot be sliced because '{segment.name}' is not an array.",
                )
            start = segment.slice_start or 0
            stop = segment.slice_stop if segment.slice_stop is not None else len(node)
            if stop - start > max_slice_items:
                raise SectionQueryError(
                    INVALID_PATH,
                    f"Slice '{segment.raw}' exceeds the maximum of {max_slice_items} items. "
                    "Use limit/cursor paging instead.",
                )
            node = node[start:stop]
            is_slice = True

    return ResolvedSection(value=node, is_slice=is_slice, is_indexed=is_indexed)
