"""toolchat/chat.py

Query orchestration: the loop between "user asked something" and the final
answer text.

For each query the engine either short-circuits to a tool picked by the
intent classifier (fast path) or runs bounded completion rounds: send the
history, dispatch the tool the model asks for, fold its result back into
the history, and ask again until the model answers in plain text.
"""

from __future__ import annotations

# Standard Library
import asyncio
import logging
from enum import StrEnum
from typing import Final

# Local Modules
from toolchat.completion import CompletionBackend
from toolchat.config import Settings
from toolchat.errors import ToolchatError, ToolExecutionError, UpstreamError
from toolchat.intent import Category, Intent, IntentClassifier, KeywordIntentClassifier
from toolchat.invoker import ToolInvoker
from toolchat.memory import ConversationMemory
from toolchat.models import (
    Completion,
    ContentBlock,
    Message,
    ToolDescriptor,
    ToolUseBlock,
)
from toolchat.registry import ToolRegistry

logger = logging.getLogger(__name__)

# Tool called directly for each fast-path category.
FAST_PATH_TOOLS: Final[dict[Category, str]] = {
    Category.WEATHER: "weather",
}

EMPTY_ANSWER: Final[str] = "Je n'ai pas pu générer de réponse."


class RoundState(StrEnum):
    """States one query moves through."""

    START = "start"
    AWAITING_COMPLETION = "awaiting_completion"
    HANDLING_TOOL_CALL = "handling_tool_call"
    DONE = "done"
    FAILED = "failed"


class ChatEngine:
    """Orchestrates completions and tool calls for one session.

    Args:
        registry: Tools loaded from the MCP server at connect time.
        invoker: Executes tools from ``registry``.
        completion: Completion endpoint backend.
        settings: Supplies ``max_rounds``, ``max_tokens``,
            ``completion_timeout`` and ``max_history_messages``.
        classifier: Fast-path classifier; defaults to
            :class:`KeywordIntentClassifier`.
        memory: Session history; a fresh one is created when omitted.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        invoker: ToolInvoker,
        completion: CompletionBackend,
        settings: Settings,
        classifier: IntentClassifier | None = None,
        memory: ConversationMemory | None = None,
    ) -> None:
        self.registry = registry
        self.invoker = invoker
        self.completion = completion
        self.classifier = classifier or KeywordIntentClassifier()
        self.memory = memory or ConversationMemory(settings.max_history_messages)
        self.max_rounds = settings.max_rounds
        self.max_tokens = settings.max_tokens
        self.completion_timeout = settings.completion_timeout
        # State transitions of the most recent query, for diagnostics.
        self.trail: list[RoundState] = []

        logger.info(
            "ChatEngine initialized: model=%s, tools=%s, max_rounds=%d",
            getattr(completion, "model", "?"),
            registry.names(),
            self.max_rounds,
        )

    async def process_query(self, query: str) -> str:
        """Answer one user query.

        Args:
            query: The user's input text.

        Returns:
            The final answer text.

        Raises:
            UnknownToolError: The model asked for a tool the server lacks.
            ToolExecutionError: A tool call failed and could not be recovered.
            UpstreamError: The completion endpoint failed or timed out.
        """
        self.trail = []
        self._transition(RoundState.START)

        intent = self.classifier.classify(query)
        if not intent.is_general:
            answer = await self._fast_path(query, intent)
            if answer is not None:
                return answer

        return await self._run_rounds(query)

    # -----------------------------------------------------------------
    # Fast path
    # -----------------------------------------------------------------

    async def _fast_path(self, query: str, intent: Intent) -> str | None:
        """Call the category's tool directly; ``None`` means ask the model."""
        tool = FAST_PATH_TOOLS.get(intent.category)
        if tool is None or tool not in self.registry:
            logger.info("No fast-path tool available for %s", intent.category)
            return None

        self._transition(RoundState.HANDLING_TOOL_CALL)
        logger.info("Fast path: calling %s for %s", tool, intent.args)
        try:
            result = await self.invoker.invoke(tool, intent.args)
        except Exception as exc:
            logger.warning(
                "Fast path %s failed, asking the model instead: %s",
                tool,
                exc,
                exc_info=True,
            )
            return None

        if result.is_empty:
            logger.warning("Fast path %s returned no text, asking the model", tool)
            return None

        answer = result.text
        self.memory.commit([Message.user(query), Message.assistant(answer)])
        self._transition(RoundState.DONE)
        return answer

    # -----------------------------------------------------------------
    # Completion rounds
    # -----------------------------------------------------------------

    async def _run_rounds(self, query: str) -> str:
        history = self.memory.get_context()
        pending: list[Message] = [Message.user(query)]
        collected: list[str] = []
        tools = self.registry.descriptors()

        round_number = 0
        while True:
            round_number += 1
            self._transition(RoundState.AWAITING_COMPLETION)
            try:
                completion = await self._complete(history + pending, tools)
            except UpstreamError:
                self._fail(collected)
                raise
            except Exception as exc:
                self._fail(collected)
                logger.error("Completion backend failed: %s", exc, exc_info=True)
                raise UpstreamError(f"Completion failed: {exc}") from exc

            blocks, texts, tool_use = self._split(completion)
            collected.extend(texts)

            if tool_use is not None and round_number >= self.max_rounds:
                logger.warning(
                    "Round limit (%d) reached; ignoring request for tool %s",
                    self.max_rounds,
                    tool_use.name,
                )
                tool_use = None

            if tool_use is None:
                break

            pending.append(Message.assistant(blocks))
            self._transition(RoundState.HANDLING_TOOL_CALL)
            try:
                result = await self.invoker.invoke(tool_use.name, tool_use.input)
            except ToolchatError:
                self._fail(collected)
                raise
            except Exception as exc:
                self._fail(collected)
                logger.error("Tool %s crashed: %s", tool_use.name, exc, exc_info=True)
                raise ToolExecutionError(
                    tool_use.name, str(exc) or type(exc).__name__, exc
                ) from exc
            pending.append(Message.tool_result(tool_use.id, result))

        answer = "\n".join(collected)
        if not answer:
            logger.warning("Empty response from the completion endpoint")
            answer = EMPTY_ANSWER

        pending.append(Message.assistant("\n".join(texts) or answer))
        self.memory.commit(pending)
        self._transition(RoundState.DONE)
        logger.debug("Answer ready after %d round(s): %d chars", round_number, len(answer))
        return answer

    async def _complete(
        self, messages: list[Message], tools: list[ToolDescriptor]
    ) -> Completion:
        try:
            async with asyncio.timeout(self.completion_timeout):
                return await self.completion.complete(messages, tools, self.max_tokens)
        except TimeoutError as exc:
            raise UpstreamError(
                f"Completion timed out after {self.completion_timeout:g}s"
            ) from exc

    @staticmethod
    def _split(
        completion: Completion,
    ) -> tuple[list[ContentBlock], list[str], ToolUseBlock | None]:
        """Walk blocks in order: keep text and the first tool request.

        Returns:
            ``(blocks, texts, tool_use)``: the blocks to record in history,
            the non-empty texts, and the tool request to dispatch (if any).
        """
        blocks: list[ContentBlock] = []
        texts: list[str] = []
        tool_use: ToolUseBlock | None = None
        for block in completion.content:
            if block.type == "text":
                if block.text:
                    blocks.append(block)
                    texts.append(block.text)
            elif tool_use is None:
                blocks.append(block)
                tool_use = block
            else:
                # One tool call in flight per round.
                logger.warning("Ignoring additional tool request: %s", block.name)
        return blocks, texts, tool_use

    def _fail(self, collected: list[str]) -> None:
        self._transition(RoundState.FAILED)
        if collected:
            logger.warning(
                "Round failed; partial answer not returned: %r",
                "\n".join(collected)[:500],
            )

    def _transition(self, state: RoundState) -> None:
        if self.trail:
            logger.debug("Round state: %s -> %s", self.trail[-1], state)
        self.trail.append(state)

    # -----------------------------------------------------------------
    # Session helpers
    # -----------------------------------------------------------------

    def clear_history(self) -> None:
        """Forget all previous exchanges."""
        self.memory.clear()
        logger.info("Conversation history cleared")

    def get_message_count(self) -> int:
        return self.memory.message_count()
