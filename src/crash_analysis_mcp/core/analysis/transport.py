"""
Sampling transport abstraction for the analysis workflow.

A transport carries one model turn: a system prompt, the message history
(text, tool calls and tool results), tool definitions, and a tool choice.
It returns the assistant's text and any tool calls. Concrete transports
adapt this contract to a provider; the MCP sampling adapter lives in
``crash_analysis_mcp.tools.sampling``.

Example:
    from crash_analysis_mcp.core.analysis.transport import (
        SamplingTransport, SamplingRequest, SamplingResponse
    )

    class EchoTransport(SamplingTransport):
        provider_id = "echo"
        model = "echo-1"

        async def create_message(self, request: SamplingRequest) -> SamplingResponse:
            return SamplingResponse(text="done")
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional

from crash_analysis_mcp.core.analysis.models.tool_calls import ToolDefinition

logger = logging.getLogger(__name__)


# =============================================================================
# Enums
# =============================================================================


class ChatRole(str, Enum):
    """Role of a message in the conversation.

    USER: Orchestrator input (prompts, checkpoints)
    ASSISTANT: Model output (text and tool calls)
    TOOL: Tool result returned to the model
    """

    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolChoiceMode(str, Enum):
    """How the model may use tools.

    AUTO: Model decides
    REQUIRED: Model must call some tool
    TOOL: Model must call the named tool
    """

    AUTO = "auto"
    REQUIRED = "required"
    TOOL = "tool"


# =============================================================================
# Data Classes - Messages
# =============================================================================


@dataclass
class ToolCall:
    """A tool call requested by the model.

    Attributes:
        id: Identifier echoed back in the matching tool result
        name: Tool name
        arguments: Decoded JSON arguments
    """

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResult:
    """Result of a dispatched tool call.

    Attributes:
        tool_call_id: ID of the originating tool call
        content: Text returned to the model
        is_error: True when the call failed and may be retried
    """

    tool_call_id: str
    content: str
    is_error: bool = False


@dataclass
class ChatMessage:
    """A message in the investigation conversation.

    Attributes:
        role: Message sender
        content: Text content
        tool_calls: Tool calls requested by an assistant message
        tool_results: Results carried by a tool message
    """

    role: ChatRole
    content: Optional[str] = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)

    @property
    def has_tool_history(self) -> bool:
        return bool(self.tool_calls or self.tool_results)

    def char_count(self) -> int:
        """Approximate size of the message, used for context-pressure checks."""
        total = len(self.content or "")
        for call in self.tool_calls:
            total += len(call.name) + len(str(call.arguments))
        for result in self.tool_results:
            total += len(result.content)
        return total


@dataclass(frozen=True)
class ToolChoice:
    """Tool choice for a request."""

    mode: ToolChoiceMode = ToolChoiceMode.AUTO
    name: Optional[str] = None

    @classmethod
    def auto(cls) -> "ToolChoice":
        return cls(ToolChoiceMode.AUTO)

    @classmethod
    def required(cls) -> "ToolChoice":
        return cls(ToolChoiceMode.REQUIRED)

    @classmethod
    def tool(cls, name: str) -> "ToolChoice":
        return cls(ToolChoiceMode.TOOL, name)

    @property
    def is_forced(self) -> bool:
        return self.mode != ToolChoiceMode.AUTO

    def describe(self) -> str:
        return f"tool:{self.name}" if self.mode == ToolChoiceMode.TOOL else self.mode.value


# =============================================================================
# Data Classes - Request / Response
# =============================================================================


@dataclass
class SamplingRequest:
    """One model turn.

    Attributes:
        system_prompt: Phase instructions
        messages: Conversation history
        tools: Tools the model may call in this phase
        tool_choice: Tool choice setting
        max_tokens: Output token ceiling
    """

    system_prompt: str
    messages: list[ChatMessage]
    tools: list[ToolDefinition] = field(default_factory=list)
    tool_choice: ToolChoice = field(default_factory=ToolChoice.auto)
    max_tokens: int = 4096

    def with_tool_choice(self, tool_choice: ToolChoice) -> "SamplingRequest":
        return replace(self, tool_choice=tool_choice)

    def with_messages(self, messages: list[ChatMessage]) -> "SamplingRequest":
        return replace(self, messages=messages)

    @property
    def carries_tool_history(self) -> bool:
        return any(message.has_tool_history for message in self.messages)


@dataclass
class SamplingResponse:
    """Model output for one turn.

    Attributes:
        text: Assistant text, if any
        tool_calls: Requested tool calls
        model: Model that produced the response
        stop_reason: Provider stop reason, when reported
    """

    text: Optional[str] = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    model: Optional[str] = None
    stop_reason: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.text and self.text.strip()) and not self.tool_calls

    def to_message(self) -> ChatMessage:
        return ChatMessage(role=ChatRole.ASSISTANT, content=self.text, tool_calls=list(self.tool_calls))


# =============================================================================
# Transport
# =============================================================================


class SamplingTransport(ABC):
    """Abstract base class for model sampling transports.

    Attributes:
        provider_id: Stable provider identity, used to key capability caches
        model: Model identity reported in results and cache keys
    """

    provider_id: str = "unknown"
    model: str = "unknown"

    @abstractmethod
    async def create_message(self, request: SamplingRequest) -> SamplingResponse:
        """Run one model turn.

        Args:
            request: Sampling request

        Returns:
            SamplingResponse with text and/or tool calls

        Raises:
            TransportRejectedError: If the provider rejects the request shape
        """
        pass
