"""Opaque, self-describing page cursors for section queries.

A cursor is the base64url (unpadded) encoding of compact JSON
``{"path", "offset", "limit", "queryHash"}``. No server-side paging state is
kept; everything needed to resume lives in the token.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
from dataclasses import dataclass
from typing import Any, Optional, Sequence


@dataclass(frozen=True)
class PageCursor:
    """Decoded page cursor.

    Attributes:
        path: Normalized section path the cursor was issued for.
        offset: Index of the first item of the next page.
        limit: Page size used when the cursor was issued (if recorded).
        query_hash: Digest binding the cursor to one query shape; None for
            legacy cursors.
    """

    path: str
    offset: int
    limit: Optional[int] = None
    query_hash: Optional[str] = None


def compute_query_hash(
    path: str,
    select: Optional[Sequence[str]] = None,
    where: Optional[dict[str, Any]] = None,
) -> str:
    """Compute a stable digest of a query shape.

    Args:
        path: Normalized section path.
        select: Projected field names (order and duplicates are ignored).
        where: Filter as a plain dict (``field``, ``equals``, ``caseInsensitive``).

    Returns:
        First 16 hex characters of the SHA-256 digest.
    """
    shape = {
        "path": path,
        "select": sorted(set(select)) if select else None,
        "where": where or None,
    }
    canonical = json.dumps(shape, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def encode_cursor(cursor: PageCursor) -> str:
    """Encode a cursor as an unpadded base64url token."""
    payload: dict[str, Any] = {
        "path": cursor.path,
        "offset": cursor.offset,
    }
    if cursor.limit is not None:
        payload["limit"] = cursor.limit
    if cursor.query_hash is not None:
        payload["queryHash"] = cursor.query_hash
    raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(token: str) -> PageCursor:
    """Decode a cursor token.

    Accepts padded or unpadded base64url.

    Raises:
        ValueError: If the token is not a well-formed cursor.
    """
    text = token.strip()
    padded = text + "=" * (-len(text) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError) as exc:
        raise ValueError(f"Invalid cursor format: {exc}") from exc

    if not isinstance(data, dict):
        raise ValueError("Invalid cursor format: payload is not an object")

    path = data.get("path")
    offset = data.get("offset")
    limit = data.get("limit")
    query_hash = data.get("queryHash")

    if not isinstance(path, str) or not path:
        raise ValueError("Invalid cursor format: missing path")
    if not isinstance(offset, int) or isinstance(offset, bool):
        raise ValueError("Invalid cursor format: missing offset")
    if limit is not None and (not isinstance(limit, int) or isinstance(limit, bool)):
        raise ValueError("Invalid cursor format: limit must be an integer")
    if query_hash is not None and not isinstance(query_hash, str):
        raise ValueError("Invalid cursor format: queryHash must be a string")

    return PageCursor(path=path, offset=offset, limit=limit, query_hash=query_hash or None)
