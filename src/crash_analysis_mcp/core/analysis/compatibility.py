"""Provider compatibility layer.

Wraps a ``SamplingTransport`` and works around two provider quirks:

- forced tool use (``tool_choice`` required/named) rejected: retry once with
  ``auto`` and remember that the provider does not support forcing;
- structured tool-call history rejected: switch the run's checkpoint manager
  to checkpoint-only mode and resend a flattened conversation.

Capabilities are remembered per provider identity in a lazily-populated
lookup table; stale entries are harmless.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

from crash_analysis_mcp.core.analysis.transport import (
    ChatMessage,
    SamplingRequest,
    SamplingResponse,
    SamplingTransport,
    ToolChoice,
)
from crash_analysis_mcp.core.errors.analysis import TransportRejectedError

if TYPE_CHECKING:
    from crash_analysis_mcp.core.analysis.checkpoints import CheckpointManager

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Rejection detection
# ---------------------------------------------------------------------------

#: Patterns matched against provider error messages. Each entry is
#: ``(provider_hint, pattern)``.
_TOOL_CHOICE_REJECTION_PATTERNS: list[tuple[str, str]] = [
    ("openai", r"(?i)unsupported\s+(?:parameter|value).{0,40}tool_choice"),
    ("generic", r"(?i)tool[_\s]?choice.{0,60}(?:not\s+supported|unsupported|invalid|not\s+allowed)"),
    ("generic", r"(?i)(?:does\s+not|doesn't)\s+support.{0,40}(?:tool[_\s]?choice|forced\s+tool)"),
    ("anthropic", r"(?i)thinking.{0,80}tool_choice"),
]

_TOOL_HISTORY_REJECTION_PATTERNS: list[tuple[str, str]] = [
    ("anthropic", r"(?i)tool_use_id|tool_result\s+block"),
    ("openai", r"(?i)tool_call_id|messages\s+with\s+role\s+'?tool'?"),
    ("generic", r"(?i)(?:does\s+not|doesn't)\s+support.{0,40}tool\s+(?:history|results?|calls?\s+in\s+messages)"),
    ("mcp", r"(?i)(?:unsupported|invalid|unknown)\s+content\s+type.{0,40}tool"),
]


def classify_transport_rejection(exc: BaseException) -> Optional[str]:
    """Attribute a transport failure to a known rejection kind.

    Returns:
        ``TransportRejectedError.TOOL_CHOICE``, ``TransportRejectedError.TOOL_HISTORY``,
        or None when the failure is not a recognized request-shape rejection.
    """
    if isinstance(exc, TransportRejectedError) and exc.kind:
        return exc.kind

    msg = str(exc)
    for _provider_hint, pattern in _TOOL_CHOICE_REJECTION_PATTERNS:
        if re.search(pattern, msg):
            return TransportRejectedError.TOOL_CHOICE
    for _provider_hint, pattern in _TOOL_HISTORY_REJECTION_PATTERNS:
        if re.search(pattern, msg):
            return TransportRejectedError.TOOL_HISTORY
    return None


# ---------------------------------------------------------------------------
# Capability cache
# ---------------------------------------------------------------------------


@dataclass
class ProviderCapabilities:
    """What a provider was observed to accept."""

    supports_forced_tool_choice: bool = True
    supports_tool_history: bool = True


class ProviderCapabilityCache:
    """Capabilities keyed by provider identity, scoped to one analysis run.

    Providers without an observed rejection have no entry.
    """

    def __init__(self) -> None:
        self._entries: dict[str, ProviderCapabilities] = {}

    def get(self, provider_id: str) -> ProviderCapabilities:
        entry = self._entries.get(provider_id)
        return entry if entry is not None else ProviderCapabilities()

    def _record(self, provider_id: str) -> ProviderCapabilities:
        return self._entries.setdefault(provider_id, ProviderCapabilities())

    def mark_tool_choice_unsupported(self, provider_id: str) -> None:
        self._record(provider_id).supports_forced_tool_choice = False

    def mark_tool_history_unsupported(self, provider_id: str) -> None:
        self._record(provider_id).supports_tool_history = False

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._entries


# ---------------------------------------------------------------------------
# Transport wrapper
# ---------------------------------------------------------------------------

MessageBuilder = Callable[[], list[ChatMessage]]


class CompatibleTransport:
    """Applies known workarounds around every call to *transport*.

    Args:
        transport: Underlying sampling transport.
        checkpoints: Checkpoint manager of the current run.
        cache: Capability cache; defaults to a new cache owned by this transport.
    """

    def __init__(
        self,
        transport: SamplingTransport,
        checkpoints: "CheckpointManager",
        cache: Optional[ProviderCapabilityCache] = None,
    ) -> None:
        self.transport = transport
        self.checkpoints = checkpoints
        self.cache = cache if cache is not None else ProviderCapabilityCache()

    @property
    def provider_id(self) -> str:
        return self.transport.provider_id

    @property
    def model(self) -> str:
        return self.transport.model

    async def create_message(
        self,
        request: SamplingRequest,
        rebuild_messages: Optional[MessageBuilder] = None,
    ) -> SamplingResponse:
        """Send *request*, retrying once per recognized rejection kind.

        Args:
            request: Sampling request.
            rebuild_messages: Rebuilds the conversation after the checkpoint
                manager switches to checkpoint-only mode.

        Raises:
            TransportRejectedError: When a rejection cannot be worked around.
        """
        capabilities = self.cache.get(self.provider_id)
        request = self._apply_known(request, capabilities, rebuild_messages)
        tried: set[str] = set()

        while True:
            try:
                return await self.transport.create_message(request)
            except Exception as exc:
                kind = classify_transport_rejection(exc)
                if kind is None:
                    raise
                retry = kind not in tried
                tried.add(kind)

                if retry and kind == TransportRejectedError.TOOL_CHOICE and request.tool_choice.is_forced:
                    logger.warning(
                        "Provider %s rejected tool_choice=%s; retrying with auto",
                        self.provider_id,
                        request.tool_choice.describe(),
                    )
                    self.cache.mark_tool_choice_unsupported(self.provider_id)
                    request = request.with_tool_choice(ToolChoice.auto())
                    continue

                if (
                    retry
                    and kind == TransportRejectedError.TOOL_HISTORY
                    and request.carries_tool_history
                    and rebuild_messages is not None
                ):
                    self.cache.mark_tool_history_unsupported(self.provider_id)
                    self.checkpoints.enable_checkpoint_only()
                    request = request.with_messages(rebuild_messages())
                    continue

                if isinstance(exc, TransportRejectedError):
                    raise
                raise TransportRejectedError(str(exc), kind=kind, provider_id=self.provider_id) from exc

    def _apply_known(
        self,
        request: SamplingRequest,
        capabilities: ProviderCapabilities,
        rebuild_messages: Optional[MessageBuilder],
    ) -> SamplingRequest:
        if request.tool_choice.is_forced and not capabilities.supports_forced_tool_choice:
            request = request.with_tool_choice(ToolChoice.auto())
        if not capabilities.supports_tool_history and not self.checkpoints.checkpoint_only:
            self.checkpoints.enable_checkpoint_only()
            if rebuild_messages is not None:
                request = request.with_messages(rebuild_messages())
        return request
