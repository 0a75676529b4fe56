"""Parsing and normalization helpers for configuration values."""

import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

_VALID_AUDIT_VERBOSITY = {"full", "minimal"}


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"true", "1", "yes", "on"}


def _parse_int(value: Any, name: str, default: int) -> int:
    """Parse an integer setting, falling back to *default* on bad input."""
    if isinstance(value, bool):
        logger.warning("Invalid integer for %s: %r. Using %d.", name, value, default)
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid integer for %s: %r. Using %d.", name, value, default)
        return default


def _parse_optional_float(value: Any, name: str) -> Optional[float]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        logger.warning("Invalid number for %s: %r. Ignoring.", name, value)
        return None
    return parsed if parsed > 0 else None


def _normalize_audit_verbosity(value: str) -> str:
    normalized = str(value).strip().lower()
    if normalized not in _VALID_AUDIT_VERBOSITY:
        logger.warning(
            "Invalid audit verbosity '%s'. Falling back to 'minimal'. Valid options: %s",
            value,
            ", ".join(sorted(_VALID_AUDIT_VERBOSITY)),
        )
        return "minimal"
    return normalized
