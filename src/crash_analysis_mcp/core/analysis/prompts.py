"""
Prompt templates for the analysis phases.

Each phase has a fixed system prompt and a builder for its opening user
message. The opening message is re-sent on every turn (the checkpoint
manager prepends it to the carried-forward transcript), so builders only
include bounded, deterministic content.
"""

from __future__ import annotations

import json
from typing import Any, Mapping, Optional

from crash_analysis_mcp.core.analysis._text import truncate

# Caps on embedded report content.
INDEX_PROMPT_MAX_CHARS = 30_000
SECTION_PROMPT_MAX_CHARS = 12_000

# =============================================================================
# Investigation
# =============================================================================

INVESTIGATION_SYSTEM_PROMPT = """You are an expert crash dump analyst. You have been given an index of a structured crash report and a ledger of baseline evidence.

Your task is to determine the ROOT CAUSE of the crash through systematic, evidence-driven investigation.

Tools:
- report_get: Read report sections by path (paged; use select/where to stay small)
- exec: Run a single-line debugger command (LLDB/WinDbg/SOS)
- inspect: Inspect a .NET object by address (when available)
- get_thread_stack: Get the full stack of one thread from the report
- analysis_hypothesis_register / analysis_hypothesis_score: Track competing hypotheses
- analysis_evidence_add: Annotate evidence items (tags, whyItMatters)
- checkpoint_complete: Summarize state when asked for a checkpoint
- analysis_complete: Submit the root cause when you are done

Evidence rules:
- Every evidence tool result is recorded automatically with an ID like [E12]. Cite these IDs.
- You cannot invent evidence. analysis_evidence_add only annotates existing IDs.
- Repeating an identical tool call returns the same evidence ID and counts as no progress.

SOS/.NET debugger command notes:
- If SOS is loaded, prefer SOS commands via: exec "sos <command> <args>".
- Do not guess flags. When unsure, run exec "sos help <command>" and use the documented arguments.
- If a command errors with "Unrecognized command or argument", adapt instead of retrying randomly.

Investigation approach:
1. Review the report index and baseline evidence
2. Identify the crashing thread and exception type
3. Register 2-4 competing hypotheses early, linked to evidence IDs
4. Gather evidence that distinguishes between hypotheses; update their confidence
5. Verify key claims (e.g. confirm a suspected MissingMethodException via SOS output)
6. Call analysis_complete with the root cause, citing evidence IDs

Be thorough but efficient. Don't run unnecessary commands."""

CHECKPOINT_REQUEST = """CHECKPOINT REQUIRED. Call checkpoint_complete now with:
- facts: confirmed facts, each citing evidence IDs
- hypotheses: current hypotheses with confidence
- evidenceIds: the evidence IDs that matter
- doNotRepeat: tool calls that must not be repeated
- nextSteps: prioritized next steps
Older conversation will be replaced by this checkpoint."""

NO_TOOL_CALL_NUDGE = (
    "No tool was called. Continue the investigation with tools, or call analysis_complete "
    "with your root cause and cited evidence IDs."
)


def build_investigation_opening(index: Mapping[str, Any], ledger_text: str) -> str:
    """Opening user message: report index plus the baseline evidence ledger."""
    index_json = truncate(json.dumps(index, indent=2, ensure_ascii=False, default=str), INDEX_PROMPT_MAX_CHARS)
    return (
        "Analyze this crash report.\n"
        "The report is too large to send whole; this is its index. Use report_get to read sections.\n\n"
        f"REPORT INDEX:\n{index_json}\n\n"
        f"EVIDENCE LEDGER (baseline):\n{ledger_text}"
    )


# =============================================================================
# Judge
# =============================================================================

JUDGE_SYSTEM_PROMPT = """You are the judge of a crash investigation.

Select the single best-supported hypothesis and reject every other active hypothesis.
Each rejection must cite at least one evidence ID (E<n>) that contradicts it.
You may run a few evidence tools to settle a close call.
Finish by calling analysis_judge_complete."""


def build_judge_opening(
    hypotheses_text: str,
    ledger_text: str,
    conclusion_text: Optional[str],
) -> str:
    parts = [f"HYPOTHESES:\n{hypotheses_text}", f"EVIDENCE LEDGER:\n{ledger_text}"]
    if conclusion_text:
        parts.append(f"INVESTIGATION CONCLUSION:\n{conclusion_text}")
    parts.append("Call analysis_judge_complete with your selection and the rejected alternatives.")
    return "\n\n".join(parts)


# =============================================================================
# Summary rewrite
# =============================================================================

SUMMARY_SYSTEM_PROMPT = """You write the human-facing summary of a crash report.

Rewrite the summary so an on-call engineer understands what crashed, why, and what to do next.
Base every statement on the root cause and evidence provided. Keep it under 200 words.
Finish by calling analysis_summary_rewrite_complete with description and recommendations."""


def build_summary_opening(
    root_cause: str,
    confidence: str,
    reasoning: Optional[str],
    original_summary: Any,
    ledger_text: str,
) -> str:
    summary_json = truncate(
        json.dumps(original_summary, indent=2, ensure_ascii=False, default=str), SECTION_PROMPT_MAX_CHARS
    )
    return (
        f"ROOT CAUSE ({confidence}): {root_cause}\n\n"
        f"REASONING:\n{reasoning or '(none)'}\n\n"
        f"CURRENT SUMMARY:\n{summary_json}\n\n"
        f"EVIDENCE LEDGER:\n{ledger_text}"
    )


# =============================================================================
# Thread narrative
# =============================================================================

THREAD_NARRATIVE_SYSTEM_PROMPT = """You describe what a process was doing when it crashed.

Using the thread information, write a short narrative of process activity:
what the faulting thread was doing, what other threads were busy with, and any
waits, locks or thread-pool pressure that matter. Keep it under 250 words.
Finish by calling analysis_thread_narrative_complete."""


def build_thread_narrative_opening(threads_section: Any, root_cause: str) -> str:
    threads_json = truncate(
        json.dumps(threads_section, indent=2, ensure_ascii=False, default=str), SECTION_PROMPT_MAX_CHARS
    )
    return f"ROOT CAUSE: {root_cause}\n\nTHREADS:\n{threads_json}"
