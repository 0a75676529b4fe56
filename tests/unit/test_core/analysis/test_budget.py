"""Tests for the per-phase budget guard."""

from __future__ import annotations

import pytest

from crash_analysis_mcp.core.analysis.budget import BudgetGuard, BudgetLimits
from crash_analysis_mcp.core.errors import BudgetExceededError


def _guard(**overrides):
    limits = {
        "max_iterations": 3,
        "max_tool_calls_total": 4,
        "max_tool_calls_per_iteration": 2,
        "max_consecutive_no_progress": 2,
    }
    limits.update(overrides)
    return BudgetGuard(BudgetLimits(**limits), phase="test")


class TestBudgetLimits:
    """Tests for BudgetLimits validation."""

    @pytest.mark.parametrize(
        "field",
        ["max_iterations", "max_tool_calls_total", "max_tool_calls_per_iteration", "max_consecutive_no_progress"],
    )
    def test_rejects_non_positive(self, field):
        """Should reject limits below 1."""
        with pytest.raises(ValueError, match=field):
            BudgetLimits(**{field: 0})


class TestBudgetGuard:
    """Tests for BudgetGuard."""

    def test_iterations_are_one_based(self):
        """Should number iterations from 1."""
        guard = _guard()
        assert guard.begin_iteration() == 1
        guard.end_iteration(progress=True)
        assert guard.begin_iteration() == 2

    def test_iteration_budget(self):
        """Should refuse to start an iteration past max_iterations."""
        guard = _guard(max_consecutive_no_progress=10)
        for _ in range(3):
            guard.begin_iteration()
            guard.end_iteration(progress=True)
        with pytest.raises(BudgetExceededError) as exc_info:
            guard.begin_iteration()
        assert exc_info.value.limit_name == "max_iterations"
        assert guard.exhausted_reason == "max_iterations"

    def test_exhaustion_is_sticky(self):
        """Should keep refusing once exhausted."""
        guard = _guard(max_iterations=1)
        guard.begin_iteration()
        guard.end_iteration(progress=True)
        for _ in range(2):
            with pytest.raises(BudgetExceededError):
                guard.begin_iteration()
        assert guard.state.iterations == 1

    def test_per_iteration_tool_calls(self):
        """Should refuse tool calls past the per-iteration limit without charging them."""
        guard = _guard()
        guard.begin_iteration()
        guard.charge_tool_call()
        guard.charge_tool_call()
        with pytest.raises(BudgetExceededError) as exc_info:
            guard.charge_tool_call()
        assert exc_info.value.limit_name == "max_tool_calls_per_iteration"
        assert guard.state.tool_calls_total == 2

    def test_per_iteration_counter_resets(self):
        """Should reset the per-iteration counter at each iteration."""
        guard = _guard()
        guard.begin_iteration()
        guard.charge_tool_call()
        guard.charge_tool_call()
        guard.end_iteration(progress=True)
        guard.begin_iteration()
        guard.charge_tool_call()
        assert guard.state.tool_calls_this_iteration == 1
        assert guard.state.tool_calls_total == 3

    def test_total_tool_calls(self):
        """Should stop the phase once the total tool budget is spent."""
        guard = _guard(max_iterations=10)
        for _ in range(2):
            guard.begin_iteration()
            guard.charge_tool_call()
            guard.charge_tool_call()
            guard.end_iteration(progress=True)
        with pytest.raises(BudgetExceededError) as exc_info:
            guard.begin_iteration()
        assert exc_info.value.limit_name == "max_tool_calls_total"

    def test_no_progress_guard(self):
        """Should stop after consecutive no-progress iterations."""
        guard = _guard(max_iterations=10)
        guard.begin_iteration()
        guard.end_iteration(progress=False)
        guard.begin_iteration()
        guard.end_iteration(progress=False)
        with pytest.raises(BudgetExceededError):
            guard.begin_iteration()
        assert guard.no_progress_exhausted

    def test_progress_resets_no_progress_counter(self):
        """Should reset the no-progress streak on progress."""
        guard = _guard(max_iterations=10)
        guard.begin_iteration()
        guard.end_iteration(progress=False)
        guard.begin_iteration()
        guard.end_iteration(progress=True)
        assert guard.state.consecutive_no_progress == 0
        guard.begin_iteration()

    def test_state_to_dict(self):
        """Should expose camelCase counters."""
        guard = _guard()
        guard.begin_iteration()
        guard.charge_tool_call()
        assert guard.state.to_dict() == {
            "iterations": 1,
            "toolCallsTotal": 1,
            "toolCallsThisIteration": 1,
            "consecutiveNoProgress": 0,
        }
