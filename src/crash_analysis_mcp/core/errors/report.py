"""Report loading and query error classes."""

from __future__ import annotations

from typing import Optional


class ReportLoadError(Exception):
    """Raised when a report file cannot be read or is not a JSON object.

    Attributes:
        path: Report path that failed to load (if any).
    """

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class SectionQueryError(Exception):
    """Internal signal used by the section query engine.

    Never escapes ``get_section``; it is converted into an ``error`` object
    in the response payload.

    Attributes:
        code: Query error code (``invalid_path``, ``invalid_cursor``, ...).
        suggested_paths: Optional narrower paths to try instead.
    """

    def __init__(
        self,
        code: str,
        message: str,
        suggested_paths: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggested_paths = suggested_paths or []
