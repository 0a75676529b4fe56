"""On-disk cache of AI-enriched reports.

Layout under the cache root::

    <userId>/<dumpId>/ai-analysis/report.json              (latest, any model)
    <userId>/<dumpId>/ai-analysis/by-llm/<provider>/<model>/<effort>-<hash12>/report.json

Each ``report.json`` has a sibling ``report.meta.json``. Writes are atomic
(temp file + fsync + rename) under a per-dump file lock; a missing,
unreadable or mismatched meta file is a cache miss.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from filelock import FileLock
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

CACHE_SCHEMA_VERSION = 1
CACHE_DIRECTORY_NAME = "ai-analysis"
KEYED_DIRECTORY_NAME = "by-llm"
REPORT_FILE_NAME = "report.json"
METADATA_FILE_NAME = "report.meta.json"

# Lock acquisition timeout (seconds)
LOCK_ACQUISITION_TIMEOUT = 10

_INVALID_SEGMENT_CHARS = frozenset('<>:"/\\|?*')


def sanitize_id(item_id: str) -> str:
    """Sanitize an identifier to prevent path traversal.

    Args:
        item_id: Raw identifier

    Returns:
        Identifier holding only alphanumerics, hyphens, underscores and dots

    Raises:
        ValueError: If nothing usable remains
    """
    sanitized = "".join(c for c in (item_id or "").strip() if c.isalnum() or c in "-_.")
    if not sanitized or set(sanitized) == {"."}:
        raise ValueError(f"Invalid identifier: {item_id!r}")
    return sanitized


def sanitize_segment(value: Optional[str], max_length: int) -> str:
    """Make *value* safe as a single path segment, bounded to *max_length* chars."""
    if value is None or not value.strip():
        return "unknown"
    chars = ["_" if c in _INVALID_SEGMENT_CHARS or ord(c) < 32 else c for c in value.strip()]
    sanitized = "".join(chars)
    if sanitized in (".", ".."):
        sanitized = sanitized.replace(".", "_")
    return sanitized[:max_length] or "unknown"


def _stable_id(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class LlmCacheKey:
    """Model identity a cached analysis was produced with.

    Attributes:
        provider: Provider identity, lower-cased.
        model: Model name, case preserved.
        reasoning_effort: Reasoning effort label, ``default`` when unset.
    """

    provider: str
    model: str
    reasoning_effort: str = "default"

    @classmethod
    def create(
        cls,
        provider: Optional[str],
        model: Optional[str],
        reasoning_effort: Optional[str] = None,
    ) -> Optional["LlmCacheKey"]:
        """Normalize a key; returns None when provider or model is unknown."""
        if not provider or not provider.strip() or not model or not model.strip():
            return None
        effort = reasoning_effort.strip().lower() if reasoning_effort and reasoning_effort.strip() else "default"
        return cls(provider=provider.strip().lower(), model=model.strip(), reasoning_effort=effort)

    @property
    def digest(self) -> str:
        return _stable_id(f"{self.provider}|{self.model}|{self.reasoning_effort}")[:12]

    def relative_dir(self) -> Path:
        digest = self.digest
        model_segment = sanitize_segment(self.model, 100)
        if len(model_segment) >= 96:
            model_segment = f"{model_segment[:96]}-{digest}"
        return (
            Path(KEYED_DIRECTORY_NAME)
            / sanitize_segment(self.provider, 30)
            / model_segment
            / f"{sanitize_segment(self.reasoning_effort, 30)}-{digest}"
        )


class CacheMetadata(BaseModel):
    """Contents of ``report.meta.json``."""

    model_config = ConfigDict(populate_by_name=True)

    schema_version: int = Field(default=CACHE_SCHEMA_VERSION, alias="schemaVersion")
    dump_id: str = Field(..., alias="dumpId")
    user_id: str = Field(..., alias="userId")
    generated_at_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        alias="generatedAtUtc",
    )
    includes_watches: bool = Field(default=False, alias="includesWatches")
    includes_security: bool = Field(default=False, alias="includesSecurity")
    includes_ai_analysis: bool = Field(default=True, alias="includesAiAnalysis")
    llm_provider: Optional[str] = Field(default=None, alias="llmProvider")
    llm_model: Optional[str] = Field(default=None, alias="llmModel")
    llm_reasoning_effort: Optional[str] = Field(default=None, alias="llmReasoningEffort")

    def matches_llm_key(self, key: LlmCacheKey) -> bool:
        if not (self.llm_provider and self.llm_model and self.llm_reasoning_effort):
            return False
        return (
            self.llm_provider.strip().lower() == key.provider
            and self.llm_model.strip() == key.model
            and self.llm_reasoning_effort.strip().lower() == key.reasoning_effort
        )


@dataclass
class CacheEntry:
    """A cache hit: metadata plus the cached report."""

    metadata: CacheMetadata
    report: dict[str, Any]


class AnalysisDiskCache:
    """File-based cache of AI-enriched reports keyed by user, dump and model.

    Args:
        root: Cache root directory.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root).expanduser()

    def _dump_dir(self, user_id: str, dump_id: str) -> Path:
        return self.root / user_id / dump_id / CACHE_DIRECTORY_NAME

    def entry_dir(self, user_id: str, dump_id: str, llm_key: Optional[LlmCacheKey] = None) -> Path:
        """Directory holding the entry for *llm_key* (the unkeyed latest entry when None)."""
        base = self._dump_dir(sanitize_id(user_id), sanitize_id(dump_id))
        return base / llm_key.relative_dir() if llm_key is not None else base

    def _lock(self, user_id: str, dump_id: str) -> FileLock:
        lock_dir = self.root / user_id / dump_id
        lock_dir.mkdir(parents=True, exist_ok=True)
        return FileLock(str(lock_dir / f".{CACHE_DIRECTORY_NAME}.lock"), timeout=LOCK_ACQUISITION_TIMEOUT)

    def read(
        self,
        user_id: str,
        dump_id: str,
        llm_key: Optional[LlmCacheKey],
        *,
        require_watches: bool = False,
        require_security: bool = False,
    ) -> Optional[CacheEntry]:
        """Return the cached entry, or None on any kind of miss.

        Raises:
            filelock.Timeout: If the per-dump lock cannot be acquired
        """
        safe_user = sanitize_id(user_id)
        safe_dump = sanitize_id(dump_id)
        directory = self.entry_dir(safe_user, safe_dump, llm_key)
        report_path = directory / REPORT_FILE_NAME
        metadata_path = directory / METADATA_FILE_NAME

        # Quick existence check (non-atomic, but avoids lock contention)
        if not report_path.exists() or not metadata_path.exists():
            return None

        with self._lock(safe_user, safe_dump):
            try:
                metadata = CacheMetadata.model_validate_json(metadata_path.read_text(encoding="utf-8"))
            except (OSError, ValidationError, ValueError) as exc:
                logger.warning("Failed to read cache metadata %s: %s", metadata_path, exc)
                return None

            if (
                metadata.schema_version != CACHE_SCHEMA_VERSION
                or metadata.dump_id.lower() != safe_dump.lower()
                or metadata.user_id.lower() != safe_user.lower()
                or (llm_key is not None and not metadata.matches_llm_key(llm_key))
                or (require_watches and not metadata.includes_watches)
                or (require_security and not metadata.includes_security)
                or not metadata.includes_ai_analysis
            ):
                logger.debug("Cache metadata mismatch for %s/%s", safe_user, safe_dump)
                return None

            try:
                report = json.loads(report_path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                logger.warning("Failed to read cached report %s: %s", report_path, exc)
                return None

        if not isinstance(report, dict):
            return None
        logger.debug("Cache hit for %s/%s at %s", safe_user, safe_dump, directory)
        return CacheEntry(metadata=metadata, report=report)

    def write(
        self,
        user_id: str,
        dump_id: str,
        llm_key: Optional[LlmCacheKey],
        report: dict[str, Any],
        *,
        includes_watches: bool = False,
        includes_security: bool = False,
    ) -> Path:
        """Store *report* for *llm_key*, also refreshing the unkeyed latest entry.

        Returns:
            Path of the keyed (or unkeyed) ``report.json`` written

        Raises:
            filelock.Timeout: If the per-dump lock cannot be acquired
        """
        safe_user = sanitize_id(user_id)
        safe_dump = sanitize_id(dump_id)
        metadata = CacheMetadata(
            dump_id=safe_dump,
            user_id=safe_user,
            includes_watches=includes_watches,
            includes_security=includes_security,
            llm_provider=llm_key.provider if llm_key else None,
            llm_model=llm_key.model if llm_key else None,
            llm_reasoning_effort=llm_key.reasoning_effort if llm_key else None,
        )
        report_text = json.dumps(report, indent=2, ensure_ascii=False, default=str)

        with self._lock(safe_user, safe_dump):
            path = self._write_entry(self.entry_dir(safe_user, safe_dump, llm_key), metadata, report_text)
            if llm_key is not None:
                self._write_entry(self.entry_dir(safe_user, safe_dump), metadata, report_text)
        logger.info("Cached analysis for %s/%s at %s", safe_user, safe_dump, path)
        return path

    def _write_entry(self, directory: Path, metadata: CacheMetadata, report_text: str) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        report_path = directory / REPORT_FILE_NAME
        _atomic_write(report_path, report_text)
        _atomic_write(
            directory / METADATA_FILE_NAME,
            metadata.model_dump_json(by_alias=True, exclude_none=True, indent=2),
        )
        return report_path


def _atomic_write(path: Path, text: str) -> None:
    """Atomic write: temp file + fsync + rename."""
    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except Exception:
        # Clean up temp file on error
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise
