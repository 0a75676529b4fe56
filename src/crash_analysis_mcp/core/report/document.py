"""Immutable report document wrapper and loader."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Union

from crash_analysis_mcp.core.errors.report import ReportLoadError

logger = logging.getLogger(__name__)

REPORT_ROOTS = ("analysis", "metadata")


@dataclass(frozen=True)
class ReportDocument:
    """Parsed diagnostic report rooted at ``metadata`` and ``analysis``.

    The query engine treats ``root`` as a read-only snapshot; nothing in this
    package mutates it.
    """

    root: Mapping[str, Any]

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ReportDocument":
        if not isinstance(data, Mapping):
            raise ReportLoadError("Report must be a JSON object.")
        return cls(root=MappingProxyType(dict(data)))

    @classmethod
    def from_json(cls, text: str) -> "ReportDocument":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ReportLoadError(f"Report is not valid JSON: {exc}") from exc
        return cls.from_mapping(data)

    @property
    def analysis(self) -> Mapping[str, Any]:
        value = self.root.get("analysis")
        return value if isinstance(value, Mapping) else {}

    @property
    def metadata(self) -> Mapping[str, Any]:
        value = self.root.get("metadata")
        return value if isinstance(value, Mapping) else {}

    def to_dict(self) -> dict[str, Any]:
        """Return a plain (mutable) deep copy of the report."""
        return json.loads(json.dumps(dict(self.root)))


DocumentLike = Union[ReportDocument, Mapping[str, Any]]


def as_root(document: DocumentLike) -> Mapping[str, Any]:
    """Return the root mapping of a document or plain mapping."""
    if isinstance(document, ReportDocument):
        return document.root
    return document


def load_report(path: Union[str, Path]) -> ReportDocument:
    """Load a report JSON file from disk.

    Args:
        path: Path to a ``report.json`` file.

    Returns:
        The parsed ``ReportDocument``.

    Raises:
        ReportLoadError: If the file is missing, unreadable, or not a JSON object.
    """
    report_path = Path(path)
    try:
        text = report_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ReportLoadError(f"Cannot read report '{report_path}': {exc}", path=str(report_path)) from exc

    try:
        document = ReportDocument.from_json(text)
    except ReportLoadError as exc:
        exc.path = str(report_path)
        raise

    if not any(root in document.root for root in REPORT_ROOTS):
        logger.warning("Report %s has neither 'analysis' nor 'metadata' sections", report_path)
    return document
