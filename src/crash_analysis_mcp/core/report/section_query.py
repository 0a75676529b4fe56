"""Section query engine: bounded, cursor-paged reads over a report snapshot.

``get_section`` is a pure function of its inputs. Failures are returned as
``{"path", "error": {...}}`` payloads rather than raised, so a model calling
it as a tool can recover within the same turn. Every payload, including
errors, fits inside the caller's ``max_chars`` ceiling when serialized with
``serialize_section_response``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from crash_analysis_mcp.core.errors.report import SectionQueryError
from crash_analysis_mcp.core.report.cursor import (
    PageCursor,
    compute_query_hash,
    decode_cursor,
    encode_cursor,
)
from crash_analysis_mcp.core.report.document import DocumentLike, as_root
from crash_analysis_mcp.core.report.paths import (
    INVALID_PATH,
    child_paths,
    parse_section_path,
    resolve_section,
)

logger = logging.getLogger(__name__)

INVALID_CURSOR = "invalid_cursor"
INVALID_ARGUMENT = "invalid_argument"
TOO_LARGE = "too_large"

PAGE_KIND_ARRAY = "array"
PAGE_KIND_OBJECT = "object"

_MAX_SUGGESTED_PATHS = 20
_MAX_PREVIEW_CHARS = 500


@dataclass(frozen=True)
class QueryLimits:
    """Numeric bounds for section queries.

    Attributes:
        default_limit: Page size when neither the call nor the cursor sets one.
        max_limit: Upper clamp for page sizes.
        default_max_chars: Response ceiling when the caller passes none.
        min_max_chars: Lower clamp for caller-supplied ceilings.
        max_max_chars: Upper clamp for caller-supplied ceilings.
        max_path_chars: Longest accepted path.
        max_cursor_chars: Longest accepted cursor token.
        max_slice_items: Largest ``[a:b]`` slice.
    """

    default_limit: int = 50
    max_limit: int = 200
    default_max_chars: int = 20_000
    min_max_chars: int = 1_000
    max_max_chars: int = 2_000_000
    max_path_chars: int = 512
    max_cursor_chars: int = 4_096
    max_slice_items: int = 200

    def clamp_limit(self, value: Optional[int]) -> int:
        if value is None:
            return self.default_limit
        return max(1, min(self.max_limit, value))

    def clamp_max_chars(self, value: Optional[int]) -> int:
        if value is None:
            return self.default_max_chars
        return max(self.min_max_chars, min(self.max_max_chars, value))


DEFAULT_QUERY_LIMITS = QueryLimits()


class ReportWhere(BaseModel):
    """Exact-match filter applied to array elements before paging."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    field: str = Field(..., min_length=1, description="Element field name; dotted for nested fields")
    equals: Any = Field(..., description="Value to match")
    case_insensitive: bool = Field(True, alias="caseInsensitive", description="Case-insensitive comparison")

    @field_validator("field")
    @classmethod
    def _strip_field(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("field must not be blank")
        return v

    @field_validator("equals")
    @classmethod
    def _scalar_only(cls, v: Any) -> Any:
        if isinstance(v, (dict, list)):
            raise ValueError("equals must be a scalar")
        return v

    def shape(self) -> dict[str, Any]:
        return {"field": self.field, "equals": self.equals, "caseInsensitive": self.case_insensitive}


def serialize_section_response(payload: Mapping[str, Any]) -> str:
    """Serialize a section response exactly as it is measured against ``max_chars``."""
    return json.dumps(payload, indent=2, ensure_ascii=False)


def _scalar_text(value: Any) -> Optional[str]:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return json.dumps(value)
    if isinstance(value, str):
        return value
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _field_value(item: Any, field: str) -> tuple[bool, Any]:
    node = item
    for part in field.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return False, None
        node = node[part]
    return True, node


def _matches(item: Any, where: ReportWhere) -> bool:
    found, value = _field_value(item, where.field)
    if not found:
        return False
    if _is_number(value) and _is_number(where.equals):
        return value == where.equals
    actual = _scalar_text(value)
    expected = _scalar_text(where.equals)
    if actual is None or expected is None:
        return False
    if where.case_insensitive:
        return actual.casefold() == expected.casefold()
    return actual == expected


def _project(value: Any, select: Optional[Sequence[str]]) -> Any:
    if not select or not isinstance(value, Mapping):
        return value
    wanted = set(select)
    return {key: item for key, item in value.items() if key in wanted}


def _normalize_select(select: Optional[Sequence[str]]) -> Optional[list[str]]:
    if select is None:
        return None
    if isinstance(select, str):
        select = [select]
    normalized: list[str] = []
    for name in select:
        if not isinstance(name, str):
            raise SectionQueryError(INVALID_ARGUMENT, "select must be a list of field names.")
        name = name.strip()
        if name and name not in normalized:
            normalized.append(name)
    return normalized or None


def _normalize_where(where: Any) -> Optional[ReportWhere]:
    if where is None or isinstance(where, ReportWhere):
        return where
    if not isinstance(where, Mapping):
        raise SectionQueryError(INVALID_ARGUMENT, "where must be an object with 'field' and 'equals'.")
    try:
        return ReportWhere.model_validate(dict(where))
    except ValidationError as exc:
        errors = "; ".join(f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors())
        raise SectionQueryError(INVALID_ARGUMENT, f"Invalid where filter: {errors}") from exc


def _decode_and_check_cursor(
    token: str,
    *,
    path: str,
    query_hash: str,
    has_query_shape: bool,
    limits: QueryLimits,
) -> PageCursor:
    if len(token) > limits.max_cursor_chars:
        raise SectionQueryError(INVALID_CURSOR, f"Cursor exceeds maximum length ({limits.max_cursor_chars}).")
    try:
        cursor = decode_cursor(token)
    except ValueError as exc:
        logger.debug("Rejected cursor for %s: %s", path, exc)
        raise SectionQueryError(INVALID_CURSOR, "Cursor is not valid.") from exc

    if cursor.path != path:
        raise SectionQueryError(
            INVALID_CURSOR,
            f"Cursor path '{cursor.path}' does not match requested path '{path}'.",
        )
    if cursor.query_hash is None:
        if has_query_shape:
            raise SectionQueryError(
                INVALID_CURSOR,
                "Cursor does not match the current query (select/where changed).",
            )
    elif cursor.query_hash != query_hash:
        raise SectionQueryError(
            INVALID_CURSOR,
            "Cursor does not match the current query (select/where changed).",
        )
    return cursor


def _page_window(
    total: int,
    *,
    path: str,
    cursor_token: Optional[str],
    limit: Optional[int],
    query_hash: str,
    has_query_shape: bool,
    limits: QueryLimits,
) -> tuple[int, int, Optional[str]]:
    """Compute ``(offset, page_size, next_cursor)`` for a pageable target."""
    offset = 0
    cursor_limit: Optional[int] = None
    if cursor_token:
        cursor = _decode_and_check_cursor(
            cursor_token,
            path=path,
            query_hash=query_hash,
            has_query_shape=has_query_shape,
            limits=limits,
        )
        if cursor.offset < 0 or cursor.offset >= total:
            raise SectionQueryError(INVALID_CURSOR, "Cursor offset is out of range.")
        offset = cursor.offset
        cursor_limit = cursor.limit

    page_size = limits.clamp_limit(limit if limit is not None else cursor_limit)
    next_offset = offset + page_size
    next_cursor = None
    if next_offset < total:
        next_cursor = encode_cursor(
            PageCursor(path=path, offset=next_offset, limit=page_size, query_hash=query_hash)
        )
    return offset, page_size, next_cursor


def _page_response(path: str, items: Any, page_size: int, next_cursor: Optional[str]) -> dict[str, Any]:
    page: dict[str, Any] = {"items": items, "limit": page_size}
    if next_cursor:
        page["nextCursor"] = next_cursor
    return {"path": path, "page": page}


def _error_payload(path: str, code: str, message: str, **extra: Any) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message}
    error.update({key: value for key, value in extra.items() if value})
    return {"path": path, "error": error}


def _suggest_narrower_paths(path: str, value: Any) -> list[str]:
    suggestions: list[str] = []
    if isinstance(value, Mapping):
        suggestions.extend(child_paths(path, value, _MAX_SUGGESTED_PATHS))
    elif isinstance(value, list) and value:
        suggestions.append(f"{path}[0]")
        suggestions.extend(child_paths(f"{path}[0]", value[0], _MAX_SUGGESTED_PATHS - 1))
    if not suggestions:
        suggestions.append(path)
    return suggestions


def _too_large(path: str, value: Any, estimated_chars: int, max_chars: int) -> dict[str, Any]:
    message = f"Response exceeds maxChars ({max_chars}). Narrow the path or reduce limit."
    suggestions = _suggest_narrower_paths(path, value)
    preview_source = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    preview_chars = min(_MAX_PREVIEW_CHARS, max_chars // 4)

    # Shrink the error until it fits the ceiling itself.
    for keep_paths, keep_preview in ((len(suggestions), preview_chars), (5, preview_chars // 2), (1, 0)):
        preview = preview_source[:keep_preview] if keep_preview else None
        if preview is not None and len(preview_source) > keep_preview:
            preview += "…"
        payload = _error_payload(
            path,
            TOO_LARGE,
            message,
            estimatedChars=estimated_chars,
            suggestedPaths=suggestions[:keep_paths],
            preview=preview,
        )
        if len(serialize_section_response(payload)) <= max_chars:
            return payload
    return {"error": {"code": TOO_LARGE, "message": message}}


def _fit(payload: dict[str, Any], path: str, source_value: Any, max_chars: int) -> dict[str, Any]:
    estimated = len(serialize_section_response(payload))
    if estimated <= max_chars:
        return payload
    if "error" in payload:
        error = payload["error"]
        minimal = {"error": {"code": error.get("code"), "message": str(error.get("message", ""))[:256]}}
        return minimal
    logger.debug("Section %s exceeds maxChars (%d > %d)", path, estimated, max_chars)
    return _too_large(path, source_value, estimated, max_chars)


def get_section(
    document: DocumentLike,
    path: Optional[str],
    limit: Optional[int] = None,
    cursor: Optional[str] = None,
    max_chars: Optional[int] = None,
    page_kind: Optional[str] = None,
    select: Optional[Sequence[str]] = None,
    where: Optional[ReportWhere | Mapping[str, Any]] = None,
    *,
    limits: QueryLimits = DEFAULT_QUERY_LIMITS,
) -> dict[str, Any]:
    """Resolve *path* against *document* and return a bounded response payload.

    Arrays are paged by default; objects are paged only when ``page_kind`` is
    ``"object"`` (or a cursor for the object is supplied). ``where`` filters
    array elements before projection and before slicing to a page; ``select``
    projects objects down to the named fields.

    Args:
        document: Report snapshot (``ReportDocument`` or plain mapping).
        path: Dotted section path rooted at ``analysis`` or ``metadata``.
        limit: Page size (clamped to ``[1, limits.max_limit]``).
        cursor: Continuation token from a previous page's ``nextCursor``.
        max_chars: Serialized response ceiling (clamped).
        page_kind: ``"array"`` (default) or ``"object"``.
        select: Field names to keep per object.
        where: Exact-match filter for array targets.
        limits: Numeric bounds.

    Returns:
        A value, page, or error payload (see module docstring).
    """
    normalized_path = (path or "").strip()
    ceiling = limits.clamp_max_chars(max_chars)
    source_value: Any = None

    try:
        if page_kind is not None:
            page_kind = page_kind.strip().lower() or None
        if page_kind not in (None, PAGE_KIND_ARRAY, PAGE_KIND_OBJECT):
            raise SectionQueryError(INVALID_ARGUMENT, "pageKind must be 'array' or 'object'.")

        segments = parse_section_path(
            normalized_path,
            max_path_chars=limits.max_path_chars,
            max_slice_items=limits.max_slice_items,
        )
        resolved = resolve_section(as_root(document), segments, max_slice_items=limits.max_slice_items)
        fields = _normalize_select(select)
        where_filter = _normalize_where(where)
        target = resolved.value
        source_value = target
        has_query_shape = bool(fields) or where_filter is not None
        query_hash = compute_query_hash(
            normalized_path,
            fields,
            where_filter.shape() if where_filter else None,
        )

        if isinstance(target, list):
            items = [item for item in target if _matches(item, where_filter)] if where_filter else list(target)
            if resolved.is_slice:
                if cursor:
                    raise SectionQueryError(
                        INVALID_ARGUMENT,
                        "cursor is not supported with slice paths; page the whole array instead.",
                    )
                payload = {"path": normalized_path, "value": [_project(item, fields) for item in items]}
            else:
                offset, page_size, next_cursor = _page_window(
                    len(items),
                    path=normalized_path,
                    cursor_token=cursor,
                    limit=limit,
                    query_hash=query_hash,
                    has_query_shape=has_query_shape,
                    limits=limits,
                )
                window = [_project(item, fields) for item in items[offset : offset + page_size]]
                payload = _page_response(normalized_path, window, page_size, next_cursor)

        elif isinstance(target, Mapping):
            if where_filter is not None:
                raise SectionQueryError(INVALID_ARGUMENT, "where is only supported for array targets.")
            if page_kind == PAGE_KIND_OBJECT or cursor:
                properties = list(_project(target, fields).items())
                offset, page_size, next_cursor = _page_window(
                    len(properties),
                    path=normalized_path,
                    cursor_token=cursor,
                    limit=limit,
                    query_hash=query_hash,
                    has_query_shape=has_query_shape,
                    limits=limits,
                )
                window = dict(properties[offset : offset + page_size])
                payload = _page_response(normalized_path, window, page_size, next_cursor)
            else:
                payload = {"path": normalized_path, "value": _project(target, fields)}

        else:
            if where_filter is not None:
                raise SectionQueryError(INVALID_ARGUMENT, "where is only supported for array targets.")
            if fields:
                raise SectionQueryError(
                    INVALID_ARGUMENT,
                    "select is only supported for objects or arrays of objects.",
                )
            if cursor:
                raise SectionQueryError(INVALID_CURSOR, "Cursor is not valid for a scalar value.")
            payload = {"path": normalized_path, "value": target}

    except SectionQueryError as exc:
        payload = _error_payload(
            normalized_path[: limits.max_path_chars],
            exc.code,
            exc.message,
            suggestedPaths=exc.suggested_paths[:_MAX_SUGGESTED_PATHS],
        )

    return _fit(payload, normalized_path, source_value, ceiling)


def error_code_of(payload: Mapping[str, Any]) -> Optional[str]:
    """Return the error code of a section response, or None for success payloads."""
    error = payload.get("error")
    if isinstance(error, Mapping):
        return error.get("code")
    return None
