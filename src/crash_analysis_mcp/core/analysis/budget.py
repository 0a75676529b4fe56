"""Per-phase budget and loop guard.

Counters are monotonic. Once a limit is reached the phase finalizes with the
best state available instead of iterating further.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from crash_analysis_mcp.core.errors.analysis import BudgetExceededError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BudgetLimits:
    """Ceilings for one phase.

    Attributes:
        max_iterations: Model turns allowed in the phase
        max_tool_calls_total: Evidence tool calls allowed in the phase
        max_tool_calls_per_iteration: Evidence tool calls allowed per model turn
        max_consecutive_no_progress: No-progress turns tolerated in a row
    """

    max_iterations: int = 100
    max_tool_calls_total: int = 50
    max_tool_calls_per_iteration: int = 8
    max_consecutive_no_progress: int = 6

    def __post_init__(self) -> None:
        for name in (
            "max_iterations",
            "max_tool_calls_total",
            "max_tool_calls_per_iteration",
            "max_consecutive_no_progress",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1")


@dataclass
class BudgetState:
    """Counters for one phase."""

    iterations: int = 0
    tool_calls_total: int = 0
    tool_calls_this_iteration: int = 0
    consecutive_no_progress: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "iterations": self.iterations,
            "toolCallsTotal": self.tool_calls_total,
            "toolCallsThisIteration": self.tool_calls_this_iteration,
            "consecutiveNoProgress": self.consecutive_no_progress,
        }


class BudgetGuard:
    """Enforces ``BudgetLimits`` for one phase."""

    def __init__(self, limits: BudgetLimits, phase: str = "investigation") -> None:
        self.limits = limits
        self.phase = phase
        self.state = BudgetState()
        self._exhausted: Optional[str] = None

    @property
    def exhausted_reason(self) -> Optional[str]:
        """Name of the limit that ended the phase, if any."""
        return self._exhausted

    @property
    def no_progress_exhausted(self) -> bool:
        return self._exhausted == "max_consecutive_no_progress"

    def _exhaust(self, limit_name: str, limit: int, used: int) -> BudgetExceededError:
        if self._exhausted is None:
            self._exhausted = limit_name
            logger.warning("Phase %s budget exhausted: %s (%d/%d)", self.phase, limit_name, used, limit)
        return BudgetExceededError(limit_name, limit, used)

    def begin_iteration(self) -> int:
        """Start a model turn.

        Returns:
            The 1-based iteration number.

        Raises:
            BudgetExceededError: If the iteration, total-call, or no-progress
                budget is exhausted.
        """
        limits = self.limits
        state = self.state
        if self._exhausted is not None:
            raise BudgetExceededError(self._exhausted, 0, 0)
        if state.iterations >= limits.max_iterations:
            raise self._exhaust("max_iterations", limits.max_iterations, state.iterations)
        if state.tool_calls_total >= limits.max_tool_calls_total:
            raise self._exhaust("max_tool_calls_total", limits.max_tool_calls_total, state.tool_calls_total)
        if state.consecutive_no_progress >= limits.max_consecutive_no_progress:
            raise self._exhaust(
                "max_consecutive_no_progress",
                limits.max_consecutive_no_progress,
                state.consecutive_no_progress,
            )
        state.iterations += 1
        state.tool_calls_this_iteration = 0
        return state.iterations

    def charge_tool_call(self) -> None:
        """Charge one evidence tool call before it executes.

        The check and the charge happen together; a rejected call is not counted.

        Raises:
            BudgetExceededError: If the per-iteration or total limit would be exceeded.
        """
        limits = self.limits
        state = self.state
        if state.tool_calls_this_iteration >= limits.max_tool_calls_per_iteration:
            raise BudgetExceededError(
                "max_tool_calls_per_iteration",
                limits.max_tool_calls_per_iteration,
                state.tool_calls_this_iteration,
            )
        if state.tool_calls_total >= limits.max_tool_calls_total:
            raise BudgetExceededError("max_tool_calls_total", limits.max_tool_calls_total, state.tool_calls_total)
        state.tool_calls_this_iteration += 1
        state.tool_calls_total += 1

    def end_iteration(self, progress: bool) -> None:
        """Record whether the finished turn made progress."""
        if progress:
            self.state.consecutive_no_progress = 0
        else:
            self.state.consecutive_no_progress += 1
            logger.debug(
                "Phase %s iteration %d made no progress (%d in a row)",
                self.phase,
                self.state.iterations,
                self.state.consecutive_no_progress,
            )
