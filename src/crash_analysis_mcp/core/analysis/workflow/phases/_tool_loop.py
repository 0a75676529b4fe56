"""Bounded tool-calling loop shared by every model-driven phase.

One iteration is one model turn: the controller checks cancellation,
charges the iteration against the phase budget, optionally runs a
checkpoint turn, sends the conversation through the compatibility layer,
and dispatches the requested tool calls one at a time. The loop ends when
a completion tool is accepted or the budget guard refuses another turn.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from crash_analysis_mcp.core.analysis.budget import BudgetGuard
from crash_analysis_mcp.core.analysis.checkpoints import transcript_chars
from crash_analysis_mcp.core.analysis.compatibility import CompatibleTransport, MessageBuilder
from crash_analysis_mcp.core.analysis.dispatcher import CHECKPOINT_TOOLS, PHASE_TOOLS, ToolDispatcher
from crash_analysis_mcp.core.analysis.models.checkpoint import Checkpoint
from crash_analysis_mcp.core.analysis.models.state import AnalysisPhase, AnalysisRunState
from crash_analysis_mcp.core.analysis.models.tool_calls import build_tool_definitions
from crash_analysis_mcp.core.analysis.prompts import CHECKPOINT_REQUEST, NO_TOOL_CALL_NUDGE
from crash_analysis_mcp.core.analysis.transport import (
    ChatMessage,
    ChatRole,
    SamplingRequest,
    SamplingResponse,
    ToolChoice,
    ToolResult,
)
from crash_analysis_mcp.core.errors.analysis import (
    BudgetExceededError,
    EmptySamplingResponseError,
    RunCancelledError,
    TransportRejectedError,
)

if TYPE_CHECKING:
    from crash_analysis_mcp.config.analysis import AnalysisConfig

logger = logging.getLogger(__name__)


@dataclass
class RunResources:
    """Collaborators owned by one run.

    Attributes:
        dispatcher: Tool dispatcher bound to the run's ledger and registry.
        transport: Compatibility wrapper around the sampling transport.
        deadline: ``time.monotonic()`` value after which the run is cancelled.
    """

    dispatcher: ToolDispatcher
    transport: CompatibleTransport
    deadline: Optional[float] = None

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()


@dataclass
class LoopOutcome:
    """How a phase loop ended.

    Attributes:
        payload: Accepted completion payload, if the model finished the phase.
        exhausted_reason: Budget limit that stopped the loop, if any.
        iterations: Model turns taken.
    """

    payload: Any = None
    exhausted_reason: Optional[str] = None
    iterations: int = 0

    @property
    def completed(self) -> bool:
        return self.payload is not None


class ToolLoopMixin:
    """Runs the bounded model/tool conversation. Mixed into CrashAnalysisWorkflow.

    At runtime, ``self`` is a CrashAnalysisWorkflow instance providing
    _resources(), _check_cancellation() and _write_audit_event().
    """

    config: AnalysisConfig

    # Stubs for Pyright; canonical signatures live in _protocols.py
    if TYPE_CHECKING:

        def _resources(self, state: AnalysisRunState) -> RunResources: ...
        def _check_cancellation(self, state: AnalysisRunState) -> None: ...
        def _write_audit_event(
            self,
            state: Optional[AnalysisRunState],
            event_type: str,
            data: Optional[dict[str, Any]] = ...,
            level: str = ...,
        ) -> None: ...

    async def _run_model_loop(
        self,
        state: AnalysisRunState,
        *,
        phase: AnalysisPhase,
        system_prompt: str,
        opening: str,
        budget: BudgetGuard,
        allow_checkpoints: bool = False,
    ) -> LoopOutcome:
        """Run one phase's tool-calling loop until completion or budget exhaustion.

        Args:
            state: Run state.
            phase: Phase whose tools are advertised.
            system_prompt: Phase instructions.
            opening: Opening user message, re-sent ahead of the transcript.
            budget: Budget guard for the phase.
            allow_checkpoints: Request periodic checkpoints and prune the transcript.

        Returns:
            LoopOutcome describing how the loop ended.

        Raises:
            RunCancelledError: Cancellation or timeout observed.
            EmptySamplingResponseError: The transport returned nothing.
            TransportRejectedError: The transport failed and no workaround applied.
        """
        resources: RunResources = self._resources(state)
        dispatcher = resources.dispatcher
        checkpoints = state.checkpoints
        tools = PHASE_TOOLS[phase]
        definitions = build_tool_definitions(list(tools))
        transcript: list[ChatMessage] = []

        def rebuild() -> list[ChatMessage]:
            return checkpoints.build_messages(opening, transcript)

        while True:
            self._check_cancellation(state)
            try:
                iteration = budget.begin_iteration()
            except BudgetExceededError as exc:
                logger.warning(
                    "Phase %s of analysis %s stopped: %s",
                    phase.value,
                    state.id,
                    exc,
                )
                self._write_audit_event(
                    state,
                    "budget_exhausted",
                    data={"phase": phase.value, **budget.state.to_dict(), "limit": exc.limit_name},
                    level="warning",
                )
                return LoopOutcome(exhausted_reason=exc.limit_name, iterations=budget.state.iterations)

            if phase == AnalysisPhase.INVESTIGATION:
                state.iteration = iteration

            if allow_checkpoints and checkpoints.is_due(iteration, transcript_chars(transcript)):
                await self._run_checkpoint_turn(state, system_prompt, opening, transcript, iteration, budget)
                transcript.clear()

            request = SamplingRequest(
                system_prompt=system_prompt,
                messages=rebuild(),
                tools=definitions,
                tool_choice=ToolChoice.auto(),
                max_tokens=self.config.max_tokens,
            )
            response = await self._sample(state, request, rebuild)
            logger.info(
                "Analysis %s %s iteration %d: %d tool call(s)",
                state.id,
                phase.value,
                iteration,
                len(response.tool_calls),
            )
            transcript.append(response.to_message())

            if not response.tool_calls:
                state.last_turn_had_tool_calls = False
                transcript.append(ChatMessage(role=ChatRole.USER, content=NO_TOOL_CALL_NUDGE))
                budget.end_iteration(progress=False)
                continue

            state.last_turn_had_tool_calls = True
            results: list[ToolResult] = []
            progress = False
            completion: Any = None
            for call in response.tool_calls:
                self._check_cancellation(state)
                if completion is not None:
                    results.append(
                        ToolResult(
                            tool_call_id=call.id,
                            content="Ignored: the phase was already completed by an earlier call.",
                            is_error=True,
                        )
                    )
                    continue

                outcome = await dispatcher.dispatch(
                    call,
                    phase=phase,
                    allowed_tools=tools,
                    budget=budget,
                    iteration=iteration,
                )
                self._write_audit_event(
                    state,
                    "tool_dispatch",
                    data={
                        "tool": call.name,
                        "is_error": outcome.is_error,
                        "duplicate": outcome.duplicate,
                        "progress": outcome.progress,
                        "evidence_id": outcome.evidence_id,
                        "budget_exceeded": outcome.budget_exceeded,
                        "output": outcome.content,
                    },
                    level="warning" if outcome.is_error else "info",
                )
                results.append(outcome.to_result())
                progress = progress or outcome.progress
                if outcome.completed:
                    completion = outcome.payload
                elif isinstance(outcome.payload, Checkpoint):
                    self._record_checkpoint(state, outcome.payload)

            transcript.append(ChatMessage(role=ChatRole.TOOL, tool_results=results))
            budget.end_iteration(progress)

            if completion is not None:
                return LoopOutcome(payload=completion, iterations=iteration)

    async def _run_checkpoint_turn(
        self,
        state: AnalysisRunState,
        system_prompt: str,
        opening: str,
        transcript: list[ChatMessage],
        iteration: int,
        budget: BudgetGuard,
    ) -> Checkpoint:
        """Force a ``checkpoint_complete`` turn; synthesize one if the model does not comply."""
        resources: RunResources = self._resources(state)
        checkpoints = state.checkpoints
        turn = [*transcript, ChatMessage(role=ChatRole.USER, content=CHECKPOINT_REQUEST)]

        def rebuild() -> list[ChatMessage]:
            return checkpoints.build_messages(opening, turn)

        request = SamplingRequest(
            system_prompt=system_prompt,
            messages=rebuild(),
            tools=build_tool_definitions(list(CHECKPOINT_TOOLS)),
            tool_choice=ToolChoice.tool(CHECKPOINT_TOOLS[0]),
            max_tokens=self.config.max_tokens,
        )
        logger.info("Requesting checkpoint for analysis %s at iteration %d", state.id, iteration)
        response = await self._sample(state, request, rebuild)

        checkpoint: Optional[Checkpoint] = None
        for call in response.tool_calls:
            if call.name not in CHECKPOINT_TOOLS:
                continue
            outcome = await resources.dispatcher.dispatch(
                call,
                phase=state.phase,
                allowed_tools=CHECKPOINT_TOOLS,
                budget=budget,
                iteration=iteration,
            )
            if isinstance(outcome.payload, Checkpoint):
                checkpoint = outcome.payload
                break
            logger.warning("Rejected checkpoint for analysis %s: %s", state.id, outcome.content)

        if checkpoint is None:
            checkpoint = checkpoints.synthesize(
                iteration,
                state.ledger,
                state.hypotheses,
                resources.dispatcher.signatures,
            )
        self._record_checkpoint(state, checkpoint)
        return checkpoint

    def _record_checkpoint(self, state: AnalysisRunState, checkpoint: Checkpoint) -> None:
        state.metadata["checkpoints"] = len(state.checkpoints.history)
        self._write_audit_event(
            state,
            "checkpoint_accepted",
            data={
                "checkpoint_iteration": checkpoint.iteration,
                "synthesized": checkpoint.synthesized,
                "facts": len(checkpoint.facts),
                "evidence_ids": len(checkpoint.evidence_snapshot_ids),
                "checkpoint_only": state.checkpoints.checkpoint_only,
            },
        )

    async def _sample(
        self,
        state: AnalysisRunState,
        request: SamplingRequest,
        rebuild: MessageBuilder,
    ) -> SamplingResponse:
        """Send one request through the compatibility layer, bounded by the run deadline."""
        resources: RunResources = self._resources(state)
        transport = resources.transport
        remaining = resources.remaining()
        call = transport.create_message(request, rebuild_messages=rebuild)
        try:
            if remaining is None:
                response = await call
            else:
                response = await asyncio.wait_for(call, timeout=max(remaining, 0.0))
        except asyncio.TimeoutError as exc:
            state.mark_cancelled("timeout")
            raise RunCancelledError("timeout") from exc
        except (TransportRejectedError, RunCancelledError):
            raise
        except Exception as exc:
            logger.warning("Sampling request failed for analysis %s: %s", state.id, exc)
            raise TransportRejectedError(
                f"Sampling request failed: {exc}",
                provider_id=transport.provider_id,
            ) from exc

        if response.is_empty:
            logger.warning("Empty sampling response for analysis %s", state.id)
            raise EmptySamplingResponseError(response.model or transport.model)
        state.model = response.model or transport.model or state.model
        if response.text and response.text.strip():
            state.last_assistant_text = response.text.strip()
        return response
