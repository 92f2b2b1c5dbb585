"""toolchat/intent.py

Keyword-based fast-path intent classifier.

This is pattern matching, not NLP.  It recognises a closed set of query
categories whose tool can be called directly, without asking the model
first, and extracts that tool's arguments from the raw text.  Anything it
cannot classify confidently is ``GENERAL`` and goes to the model.

Adding a new fast-path category:
    1. Add the token to ``Category`` below.
    2. Add its keywords to ``_KEYWORDS`` and an extractor to
       ``KeywordIntentClassifier._extractors``.
    3. Map it to a tool name in ``toolchat.chat.FAST_PATH_TOOLS``.
"""

from __future__ import annotations

# Standard Library
import dataclasses
import logging
import re
from collections.abc import Callable
from enum import StrEnum
from typing import Any, Final, Protocol

logger = logging.getLogger(__name__)


class Category(StrEnum):
    """Query categories known to the classifier."""

    WEATHER = "weather"
    # Sentinel: no fast path, the model decides.
    GENERAL = "general"


# Checked in declaration order; the first category with a keyword hit wins.
_KEYWORDS: Final[dict[Category, tuple[str, ...]]] = {
    Category.WEATHER: (
        "météo",
        "temps",
        "prévisions",
        "température",
        "pluie",
        "soleil",
        "neige",
        "vent",
        "humidité",
        "climat",
        "weather",
        "forecast",
    ),
}

# Location phrase after a preposition: "météo à Chelles", "weather in Lyon".
# Letters and spaces only, so punctuation ends the capture.
_LOCATION_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"\b(?:à|a|de|pour|sur|en|in|for)\s+([a-zA-ZÀ-ÿ\s]+)",
    re.IGNORECASE,
)

# Cities whose postal code is known up front.
_KNOWN_POSTAL_CODES: Final[dict[str, str]] = {
    "chelles": "77500",
}


@dataclasses.dataclass(frozen=True, slots=True)
class Intent:
    """Classification of one query.

    Attributes:
        category: The resolved :class:`Category`.
        args: Tool arguments extracted for the category; empty for ``GENERAL``.
    """

    category: Category
    args: dict[str, Any] = dataclasses.field(default_factory=dict)

    @property
    def is_general(self) -> bool:
        return self.category is Category.GENERAL


GENERAL: Final[Intent] = Intent(Category.GENERAL)


class IntentClassifier(Protocol):
    """Anything that can turn query text into an :class:`Intent`."""

    def classify(self, text: str) -> Intent: ...


def match_category(query: str) -> Category:
    """Return the first category with a case-insensitive keyword hit."""
    lowered = query.lower()
    for category, keywords in _KEYWORDS.items():
        if any(keyword in lowered for keyword in keywords):
            return category
    return Category.GENERAL


def extract_location(query: str) -> dict[str, str] | None:
    """Extract ``{"city", "postal_code"}`` from a weather query.

    Args:
        query: Raw user text.

    Returns:
        The weather tool arguments, or ``None`` when no location phrase is
        found.  Known cities get their postal code; others pass through
        unchanged with an empty one.
    """
    match = _LOCATION_PATTERN.search(query)
    if not match:
        return None
    city = match.group(1).strip()
    if not city:
        return None
    postal_code = _KNOWN_POSTAL_CODES.get(city.lower())
    if postal_code is not None:
        return {"city": city.lower(), "postal_code": postal_code}
    return {"city": city, "postal_code": ""}


class KeywordIntentClassifier:
    """Default classifier: keyword lists plus one regex per category."""

    def __init__(self) -> None:
        self._extractors: dict[Category, Callable[[str], dict[str, Any] | None]] = {
            Category.WEATHER: extract_location,
        }

    def classify(self, text: str) -> Intent:
        """Classify ``text``; falls back to ``GENERAL`` when extraction fails."""
        category = match_category(text)
        if category is Category.GENERAL:
            return GENERAL

        args = self._extractors[category](text)
        if not args:
            logger.info(
                "Matched %s keywords but extracted no arguments from %r",
                category,
                text[:200],
            )
            return GENERAL

        logger.info("Intent classifier resolved %s with args %s", category, args)
        return Intent(category, args)
