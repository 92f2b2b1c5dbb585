"""toolchat/completion.py

Completion endpoint adapters.

Each backend takes the conversation history (Anthropic wire shape), the tool
descriptors to offer, and a fixed output budget, and returns a
:class:`Completion` whose blocks keep the order the model produced them in.
Transport and API failures surface as :class:`UpstreamError`.
"""

from __future__ import annotations

# Standard Library
import logging
import uuid
from collections.abc import Sequence
from typing import Any, Protocol

# Third-Party Libraries
import anthropic
import httpx
from ollama import AsyncClient, ResponseError

# Local Modules
from toolchat.config import Settings
from toolchat.errors import UpstreamError
from toolchat.models import Completion, Message, TextBlock, ToolDescriptor, ToolUseBlock

logger = logging.getLogger(__name__)


class CompletionBackend(Protocol):
    """What the orchestrator needs from a completion endpoint."""

    model: str

    async def complete(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDescriptor],
        max_tokens: int,
    ) -> Completion: ...


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class AnthropicCompletion:
    """Anthropic Messages API backend.

    Args:
        api_key: Anthropic API key.
        model: Model identifier sent with every request.
        client: Pre-built ``AsyncAnthropic`` client (tests inject a mock).
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        self.model = model
        self.client = client or anthropic.AsyncAnthropic(api_key=api_key)

    async def complete(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDescriptor],
        max_tokens: int,
    ) -> Completion:
        request: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": [m.to_dict() for m in messages],
        }
        if tools:
            request["tools"] = [t.to_anthropic() for t in tools]

        logger.debug("Sending %d messages to %s", len(messages), self.model)
        try:
            response = await self.client.messages.create(**request)
        except anthropic.APIError as exc:
            logger.error("Anthropic API error: %s", exc, exc_info=True)
            raise UpstreamError(f"Anthropic API error: {exc}") from exc

        blocks: list[TextBlock | ToolUseBlock] = []
        for block in response.content:
            if block.type == "text":
                blocks.append(TextBlock(text=block.text))
            elif block.type == "tool_use":
                blocks.append(
                    ToolUseBlock(id=block.id, name=block.name, input=dict(block.input or {}))
                )
            else:
                logger.debug("Skipping unsupported content block: %s", block.type)
        return Completion(content=blocks, stop_reason=response.stop_reason)


# ---------------------------------------------------------------------------
# Ollama
# ---------------------------------------------------------------------------


def _field(obj: Any, name: str, default: Any = None) -> Any:
    """Read ``name`` from an Ollama pydantic model or a plain dict."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def to_ollama_messages(messages: Sequence[Message]) -> list[dict[str, Any]]:
    """Convert Anthropic-shaped history into Ollama chat messages.

    Tool-use blocks become ``tool_calls`` on the assistant message and each
    tool-result block becomes its own ``role="tool"`` message.
    """
    converted: list[dict[str, Any]] = []
    for message in messages:
        if isinstance(message.content, str):
            converted.append({"role": message.role, "content": message.content})
            continue

        texts: list[str] = []
        tool_calls: list[dict[str, Any]] = []
        tool_outputs: list[str] = []
        for block in message.content:
            kind = block.get("type")
            if kind == "text":
                texts.append(block.get("text", ""))
            elif kind == "tool_use":
                tool_calls.append(
                    {"function": {"name": block["name"], "arguments": block.get("input", {})}}
                )
            elif kind == "tool_result":
                content = block.get("content", "")
                tool_outputs.append(content if isinstance(content, str) else str(content))

        if message.role == "assistant":
            entry: dict[str, Any] = {"role": "assistant", "content": "\n".join(texts)}
            if tool_calls:
                entry["tool_calls"] = tool_calls
            converted.append(entry)
        else:
            converted.extend({"role": "tool", "content": out} for out in tool_outputs)
            if texts:
                converted.append({"role": "user", "content": "\n".join(texts)})
    return converted


class OllamaCompletion:
    """Local Ollama backend.

    Args:
        model: Ollama model tag.
        host: Ollama API endpoint.
        client: Pre-built ``ollama.AsyncClient`` (tests inject a mock).
    """

    def __init__(
        self,
        model: str,
        host: str,
        client: AsyncClient | None = None,
    ) -> None:
        self.model = model
        self.host = host
        self.client = client or AsyncClient(host=host)

    async def complete(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDescriptor],
        max_tokens: int,
    ) -> Completion:
        try:
            response = await self.client.chat(
                model=self.model,
                messages=to_ollama_messages(messages),
                tools=[t.to_ollama() for t in tools] or None,
                options={"num_predict": max_tokens},
            )
        except (ResponseError, httpx.HTTPError, ConnectionError) as exc:
            logger.error("Ollama error: %s", exc, exc_info=True)
            raise UpstreamError(f"Error communicating with Ollama: {exc}") from exc

        raw_msg = response["message"]
        blocks: list[TextBlock | ToolUseBlock] = []
        content = _field(raw_msg, "content") or ""
        if content:
            blocks.append(TextBlock(text=content))
        # Ollama has no call ids; mint one so tool results can be paired up.
        for call in _field(raw_msg, "tool_calls") or []:
            function = _field(call, "function")
            blocks.append(
                ToolUseBlock(
                    id=f"call_{uuid.uuid4().hex[:12]}",
                    name=_field(function, "name", ""),
                    input=dict(_field(function, "arguments") or {}),
                )
            )
        return Completion(
            content=blocks,
            stop_reason=_field(response, "done_reason"),
        )


def build_completion(settings: Settings) -> CompletionBackend:
    """Create the backend selected by ``settings.completion_provider``."""
    if settings.completion_provider == "ollama":
        return OllamaCompletion(model=settings.ollama_model, host=settings.ollama_host)
    return AnthropicCompletion(
        api_key=settings.anthropic_api_key, model=settings.anthropic_model
    )
