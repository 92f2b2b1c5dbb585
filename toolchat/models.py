"""toolchat/models.py

Data model shared by the router, registry, invoker and orchestrator.

Completion responses are sequences of content blocks drawn from a two-variant
tagged union (``TextBlock`` | ``ToolUseBlock``) discriminated by ``type``.
Conversation messages are kept in the Anthropic wire shape so the history can
be sent as-is; other backends convert it.
"""

from __future__ import annotations

# Standard Library
import dataclasses
from collections.abc import Mapping
from types import MappingProxyType
from typing import Annotated, Any, Literal

# Third-Party Libraries
from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Completion content blocks
# ---------------------------------------------------------------------------


class TextBlock(BaseModel):
    """Plain text emitted by the model."""

    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


class ToolUseBlock(BaseModel):
    """A request from the model to run a tool."""

    model_config = ConfigDict(frozen=True)

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


ContentBlock = Annotated[TextBlock | ToolUseBlock, Field(discriminator="type")]


class Completion(BaseModel):
    """One completion response, blocks kept in the order received."""

    content: list[ContentBlock] = Field(default_factory=list)
    stop_reason: str | None = None

    @property
    def text(self) -> str:
        """All text blocks joined with newlines."""
        return "\n".join(b.text for b in self.content if b.type == "text" and b.text)

    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if b.type == "tool_use"]


# ---------------------------------------------------------------------------
# Conversation messages
# ---------------------------------------------------------------------------


class Message(BaseModel):
    """One entry of the conversation history.

    ``content`` is either plain text or a list of wire-format blocks
    (``text``, ``tool_use`` or ``tool_result`` dicts).
    """

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str | list[dict[str, Any]]

    @classmethod
    def user(cls, text: str) -> Message:
        return cls(role="user", content=text)

    @classmethod
    def assistant(cls, content: str | list[ContentBlock]) -> Message:
        if isinstance(content, str):
            return cls(role="assistant", content=content)
        return cls(role="assistant", content=[b.model_dump() for b in content])

    @classmethod
    def tool_result(cls, tool_use_id: str, result: ToolResult) -> Message:
        """Build the user message that hands a tool result back to the model."""
        return cls(
            role="user",
            content=[
                {
                    "type": "tool_result",
                    "tool_use_id": tool_use_id,
                    "content": result.text,
                }
            ],
        )

    @property
    def is_plain_user_turn(self) -> bool:
        """True for a user message typed by a person (not a tool result)."""
        return self.role == "user" and isinstance(self.content, str)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True, slots=True)
class ToolDescriptor:
    """A tool exposed by the MCP server.

    Attributes:
        name: Unique tool name.
        description: Human-readable description shown to the model.
        input_schema: JSON Schema object describing accepted arguments.
    """

    name: str
    description: str
    input_schema: Mapping[str, Any]

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "input_schema", MappingProxyType(dict(self.input_schema))
        )

    def to_anthropic(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": dict(self.input_schema),
        }

    def to_ollama(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": dict(self.input_schema),
            },
        }


@dataclasses.dataclass(slots=True)
class ToolResult:
    """Normalised output of one tool invocation.

    Attributes:
        content: Ordered MCP content blocks as dicts (``{"type": ..., "text": ...}``).
            Empty is valid.
        degraded: True when the result came from a fallback strategy.
    """

    content: list[dict[str, Any]] = dataclasses.field(default_factory=list)
    degraded: bool = False

    @classmethod
    def from_text(cls, text: str, *, degraded: bool = False) -> ToolResult:
        return cls(content=[{"type": "text", "text": text}], degraded=degraded)

    @property
    def text(self) -> str:
        """Text of every textual block, newline separated."""
        return "\n".join(
            str(block["text"])
            for block in self.content
            if block.get("type") == "text" and block.get("text")
        )

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()
