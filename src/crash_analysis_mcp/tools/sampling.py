"""Sampling transport backed by the connected MCP client.

MCP sampling carries plain text messages only, so this adapter:
- flattens tool calls and tool results in the history into text,
- describes the available tools (with their JSON Schemas) in the system prompt,
- parses tool calls from a ``{"tool_calls": [...]}`` JSON envelope in the reply.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Optional

from mcp.server.session import ServerSession
from mcp.types import ModelHint, ModelPreferences, SamplingMessage, TextContent

from crash_analysis_mcp.core.analysis._json_parsing import parse_tool_call_envelope
from crash_analysis_mcp.core.analysis.transport import (
    ChatMessage,
    ChatRole,
    SamplingRequest,
    SamplingResponse,
    SamplingTransport,
    ToolCall,
    ToolChoiceMode,
)

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER_ID = "mcp-sampling"

_TOOL_PROTOCOL = """\
## Calling tools

To call tools, reply with a single JSON object and nothing else:
{"tool_calls": [{"name": "<tool name>", "arguments": {...}}]}

You may list several calls; they run in order. Tool results arrive in the
next user message, each tagged with its call id.
"""


def _render_tool_calls(message: ChatMessage) -> str:
    envelope = {
        "tool_calls": [{"id": call.id, "name": call.name, "arguments": call.arguments} for call in message.tool_calls]
    }
    rendered = json.dumps(envelope, ensure_ascii=False, default=str)
    if message.content and message.content.strip():
        return f"{message.content.strip()}\n\n{rendered}"
    return rendered


def _render_tool_results(message: ChatMessage) -> str:
    parts = ["Tool results:"]
    for result in message.tool_results:
        status = "error" if result.is_error else "ok"
        parts.append(f"[{result.tool_call_id}] ({status})\n{result.content}")
    if message.content and message.content.strip():
        parts.append(message.content.strip())
    return "\n\n".join(parts)


def to_sampling_message(message: ChatMessage) -> SamplingMessage:
    """Flatten one chat message into an MCP text sampling message."""
    if message.role == ChatRole.ASSISTANT:
        text = _render_tool_calls(message) if message.tool_calls else (message.content or "")
        role = "assistant"
    elif message.role == ChatRole.TOOL:
        text = _render_tool_results(message)
        role = "user"
    else:
        text = message.content or ""
        role = "user"
    return SamplingMessage(role=role, content=TextContent(type="text", text=text))


def render_system_prompt(request: SamplingRequest) -> str:
    """Append tool descriptions and the tool-call protocol to the system prompt."""
    if not request.tools:
        return request.system_prompt

    sections = [request.system_prompt.rstrip(), _TOOL_PROTOCOL, "## Available tools"]
    for tool in request.tools:
        schema = json.dumps(tool.input_schema, ensure_ascii=False, sort_keys=True)
        sections.append(f"### {tool.name}\n{tool.description}\nInput schema: {schema}")

    choice = request.tool_choice
    if choice.mode == ToolChoiceMode.TOOL and choice.name:
        sections.append(f"You MUST call the `{choice.name}` tool in this reply.")
    elif choice.mode == ToolChoiceMode.REQUIRED:
        sections.append("You MUST call at least one tool in this reply.")
    return "\n\n".join(sections)


def _content_text(content: Any) -> Optional[str]:
    blocks = content if isinstance(content, list) else [content]
    texts = [block.text for block in blocks if isinstance(block, TextContent)]
    return "\n".join(texts) if texts else None


class McpSamplingTransport(SamplingTransport):
    """Sampling transport that asks the connected MCP client to run each turn.

    Args:
        session: Server session of the requesting client
        model_hint: Preferred model name passed to the client as a hint
        provider_id: Provider identity; defaults to the client's name
    """

    def __init__(
        self,
        session: ServerSession,
        *,
        model_hint: Optional[str] = None,
        provider_id: Optional[str] = None,
    ) -> None:
        self.session = session
        self.model_hint = model_hint
        self.provider_id = provider_id or self._client_provider_id(session)
        self.model = model_hint or "unknown"

    @staticmethod
    def _client_provider_id(session: ServerSession) -> str:
        params = getattr(session, "client_params", None)
        client_info = getattr(params, "clientInfo", None)
        name = getattr(client_info, "name", None)
        return f"mcp:{name}" if name else DEFAULT_PROVIDER_ID

    async def create_message(self, request: SamplingRequest) -> SamplingResponse:
        preferences = None
        if self.model_hint:
            preferences = ModelPreferences(hints=[ModelHint(name=self.model_hint)])

        result = await self.session.create_message(
            messages=[to_sampling_message(message) for message in request.messages],
            max_tokens=request.max_tokens,
            system_prompt=render_system_prompt(request),
            model_preferences=preferences,
        )

        text, raw_calls = parse_tool_call_envelope(_content_text(result.content))
        tool_calls = [
            ToolCall(
                id=f"call_{uuid.uuid4().hex[:8]}",
                name=entry["name"],
                arguments=entry["arguments"] if isinstance(entry["arguments"], dict) else {},
            )
            for entry in raw_calls
        ]
        if result.model:
            self.model = result.model
        logger.debug(
            "MCP sampling reply from %s: %d tool call(s), stop=%s",
            result.model,
            len(tool_calls),
            result.stopReason,
        )
        return SamplingResponse(
            text=text,
            tool_calls=tool_calls,
            model=result.model,
            stop_reason=result.stopReason,
        )
