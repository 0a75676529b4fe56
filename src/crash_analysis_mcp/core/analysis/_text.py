"""Small text helpers shared by the ledger, registry, and dispatcher."""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any, Iterable

ELLIPSIS = "…"

_WHITESPACE_RE = re.compile(r"\s+")


def truncate(text: str, max_chars: int) -> str:
    """Bound *text* to *max_chars*, marking truncation with an ellipsis."""
    if max_chars <= 0:
        return ""
    if len(text) <= max_chars:
        return text
    if max_chars == 1:
        return ELLIPSIS
    return text[: max_chars - 1] + ELLIPSIS


def truncate_head_tail(text: str, max_chars: int) -> str:
    """Keep the head and tail of *text* around a truncation marker."""
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    if max_chars < 128:
        return text[:max_chars]
    marker = f"\n... [truncated, total {len(text)} chars]\n"
    budget = max_chars - len(marker)
    if budget <= 0:
        return text[:max_chars]
    head = budget // 2
    tail = budget - head
    return text[:head] + marker + text[len(text) - tail :]


def normalize_key(text: str) -> str:
    """Lower-case and collapse whitespace for de-duplication keys."""
    return _WHITESPACE_RE.sub(" ", text.strip().lower())


def canonical_json(payload: Any) -> str:
    """Sorted-key, compact JSON text."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def canonical_digest(payload: Any, length: int = 16) -> str:
    """SHA-256 of canonical JSON, truncated to *length* hex chars."""
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()[:length]


def bounded_list(values: Iterable[str], max_items: int, max_chars: int) -> list[str]:
    """Strip, drop empties, truncate each item, and cap the list length."""
    result: list[str] = []
    for value in values:
        text = str(value).strip()
        if not text:
            continue
        result.append(truncate(text, max_chars))
        if len(result) >= max_items:
            break
    return result
