"""toolchat/memory.py

Session conversation history with a bounded size.

A query's messages are only committed once its round finishes, so a failed
round never leaves a half-finished tool exchange behind.
"""

from __future__ import annotations

# Standard Library
from collections.abc import Iterable

# Local Modules
from toolchat.models import Message


class ConversationMemory:
    """History of completed exchanges, trimmed oldest-exchange-first.

    Trimming drops whole exchanges so the history always starts with a
    message the user typed; a tool result is never separated from the tool
    call it answers.
    """

    def __init__(self, max_messages: int = 40) -> None:
        """Initialize an empty history.

        Args:
            max_messages: Soft cap on stored messages.  A single exchange
                longer than the cap is kept whole.
        """
        self.max_messages = max_messages
        self._messages: list[Message] = []

    def commit(self, messages: Iterable[Message]) -> None:
        """Append the messages of one finished exchange, then trim."""
        self._messages.extend(messages)
        self._trim()

    def _trim(self) -> None:
        while len(self._messages) > self.max_messages:
            # Start of the second exchange; stop if only one is left.
            next_turn = next(
                (
                    i
                    for i, message in enumerate(self._messages)
                    if i > 0 and message.is_plain_user_turn
                ),
                None,
            )
            if next_turn is None:
                return
            del self._messages[:next_turn]

    def get_context(self) -> list[Message]:
        """Return a copy of the history, oldest first."""
        return list(self._messages)

    def clear(self) -> None:
        self._messages.clear()

    def message_count(self) -> int:
        return len(self._messages)
