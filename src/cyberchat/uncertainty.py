"""Lexical detection of answers where the model admits it does not know."""
from __future__ import annotations

from typing import Iterable

# Exact lower-case substrings; no fuzzy matching.
UNCERTAINTY_PHRASES: tuple[str, ...] = (
    "i don't know",
    "i'm not sure",
    "i am not sure",
    "i'm unsure",
    "unsure",
    "i can't recall",
    "i cannot recall",
    "i do not know",
    "don't know",
    "it's unclear to me",
    "i lack information",
    "i have no information",
    "i'm not certain",
    "uncertain",
    "no idea",
    "haven't a clue",
    "i cannot provide",
    "i'm unable to",
)


def is_uncertain(text: str | None, phrases: Iterable[str] = UNCERTAINTY_PHRASES) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return any(phrase in lowered for phrase in phrases)
