"""JSON envelope parsing for transports without native tool calls."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)

_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def _balanced_object(content: str, start: int) -> Optional[tuple[int, int]]:
    """Span of the JSON object opening at *start*, skipping braces inside strings."""
    depth = 0
    in_string = False
    escape = False
    for i, char in enumerate(content[start:], start):
        if escape:
            escape = False
            continue
        if char == "\\" and in_string:
            escape = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return start, i + 1
    return None


def extract_json(content: str) -> Optional[str]:
    """Extract the first JSON object from text that may contain prose or code fences.

    Args:
        content: Raw model output

    Returns:
        Extracted JSON string or None if not found
    """
    for match in _CODE_BLOCK_RE.findall(content):
        match = match.strip()
        if match.startswith("{"):
            return match

    brace_start = content.find("{")
    if brace_start == -1:
        return None
    span = _balanced_object(content, brace_start)
    return content[span[0] : span[1]] if span else None


def parse_tool_call_envelope(content: Optional[str]) -> tuple[Optional[str], list[dict[str, Any]]]:
    """Split model output into prose and ``{"tool_calls": [...]}`` entries.

    Each returned entry has ``name`` and ``arguments`` (a dict). Entries
    whose arguments arrive as a JSON string are decoded; malformed entries
    are skipped.

    Returns:
        ``(text_without_envelope, tool_calls)``. When no envelope is found
        the text is returned unchanged with an empty list.
    """
    if not content or not content.strip():
        return content, []

    raw = extract_json(content)
    if raw is None:
        return content, []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.debug("Model output contains unparseable JSON; treating as text")
        return content, []
    if not isinstance(data, dict) or not isinstance(data.get("tool_calls"), list):
        return content, []

    calls: list[dict[str, Any]] = []
    for entry in data["tool_calls"]:
        if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
            continue
        arguments = entry.get("arguments", entry.get("input", {}))
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments.strip() else {}
            except json.JSONDecodeError:
                pass
        calls.append({"name": entry["name"].strip(), "arguments": arguments if arguments is not None else {}})

    remainder = content.replace(raw, "", 1)
    remainder = _CODE_BLOCK_RE.sub(lambda m: "" if not m.group(1).strip() else m.group(0), remainder).strip()
    return remainder or None, calls
