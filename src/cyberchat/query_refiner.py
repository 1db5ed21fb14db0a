"""Turn terse follow-up questions into standalone web search queries."""
from __future__ import annotations

from typing import Iterable

from .turns import Turn

STOP_WORDS = frozenset({
    "a", "an", "the", "is", "are", "was", "were", "what", "who", "when", "where",
    "why", "how", "of", "for", "in", "on", "at", "by", "to", "and", "or",
    "me", "it", "about", "tell", "please", "can", "could", "you", "do", "does",
    "did", "give", "explain",
})

ANAPHORIC_CUES = ("more", "about it", "that", "this")

MAX_CONTEXT_TOKENS = 5
MAX_CONTEXT_TURNS = 2
SHORT_QUERY_TOKENS = 3
STRIP_RATIO = 0.7


def strip_stop_words(text: str, min_len: int = 2) -> list[str]:
    return [w for w in text.lower().split() if w not in STOP_WORDS and len(w) >= min_len]


def _context_keywords(raw_query: str, prior_turns: Iterable[Turn]) -> list[str]:
    lowered = raw_query.lower()
    relevant = [
        t for t in prior_turns if t.sender == "user" and t.text.lower() != lowered
    ][-MAX_CONTEXT_TURNS:]
    keywords: list[str] = []
    for turn in relevant:
        keywords.extend(strip_stop_words(turn.text, min_len=3))
    return keywords


def refine_search_query(raw_query: str, prior_turns: Iterable[Turn] = ()) -> str:
    """
    Build a search query from the user's message and recent user turns.

    Args:
        raw_query: The message the user just sent
        prior_turns: Earlier transcript turns, current message excluded

    Returns:
        Refined query, or raw_query if refinement leaves nothing
    """
    tokens = strip_stop_words(raw_query)
    query = " ".join(tokens)
    keywords = _context_keywords(raw_query, prior_turns)
    prefix = " ".join(keywords[:MAX_CONTEXT_TOKENS])

    # Cues are matched on the raw text; "about it" is made of stop words
    lowered = raw_query.lower()
    if len(tokens) <= SHORT_QUERY_TOKENS and any(cue in lowered for cue in ANAPHORIC_CUES):
        if prefix:
            query = f"{prefix} {query}"
    elif prefix and len(query) < len(raw_query) * STRIP_RATIO:
        query = f"{prefix} {raw_query.lower()}"

    return query.strip() or raw_query
