"""Debugger backend contract used by the evidence tools.

The backend is an exclusive, single-threaded resource: each evidence tool
call holds the session only for the duration of that call.
"""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from crash_analysis_mcp.core.errors.analysis import BackendUnavailableError, ValidationFailedError

logger = logging.getLogger(__name__)

# Host shell escapes, also when chained after ';', '&' or '|'.
_UNSAFE_COMMAND_RE = re.compile(
    r"(^|[;&|]\s*)\.shell\b"
    r"|(^|[;&|]\s*)platform\s+shell\b"
    r"|(^|[;&|]\s*)(command\s+script|script)\b",
    re.IGNORECASE,
)


def ensure_safe_command(command: str) -> str:
    """Validate a model-requested debugger command.

    Returns:
        The command with leading whitespace removed.

    Raises:
        ValidationFailedError: Multi-line commands or shell escapes.
    """
    trimmed = command.lstrip()
    if "\n" in trimmed or "\r" in trimmed:
        raise ValidationFailedError(
            "Multi-line debugger commands are not allowed in AI analysis.",
            tool_name="exec",
        )
    if _UNSAFE_COMMAND_RE.search(trimmed):
        raise ValidationFailedError("Blocked unsafe debugger command.", tool_name="exec")
    return trimmed


class DebuggerBackend(ABC):
    """Executes raw debugger commands and object inspection for a dump session.

    Example:
        >>> async with backend.session():
        ...     output = await backend.execute_command("clrstack")
    """

    name: str = "debugger"

    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def session(self) -> AsyncIterator["DebuggerBackend"]:
        """Hold the backend exclusively for one tool call."""
        async with self._lock:
            yield self

    @abstractmethod
    async def execute_command(self, command: str) -> str:
        """Run a single-line debugger command and return its output."""

    async def inspect_object(self, address: int, max_depth: int = 3) -> Optional[dict[str, Any]]:
        """Inspect a managed object.

        Returns:
            Object graph as a JSON-compatible dict, or None if the address
            does not resolve to an object.

        Raises:
            BackendUnavailableError: If the backend cannot inspect objects.
        """
        raise BackendUnavailableError(
            "Object inspection is not available; use exec with SOS (dumpobj / dumpvc) instead.",
            capability="inspect",
        )


class ReportOnlyBackend(DebuggerBackend):
    """Backend for runs over a saved report with no live debugger attached."""

    name = "report-only"

    async def execute_command(self, command: str) -> str:
        raise BackendUnavailableError(
            "No debugger session is attached; use report_get and get_thread_stack instead.",
            capability="exec",
        )
