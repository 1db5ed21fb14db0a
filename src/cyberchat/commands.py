"""Control phrases intercepted before a message reaches the model."""
from __future__ import annotations

from dataclasses import dataclass

UNLOCK_ACK = "🔓 Unrestricted mode activated. Extended responses are now enabled for this session."
LOCK_ACK = "🔒 Unrestricted mode deactivated. Standard responses restored."
DENIED_WARNING = "⚠️ That command is reserved for the creator. It was not sent to the AI."


@dataclass(frozen=True)
class Intercept:
    """Outcome of a control phrase: reply text, turn kind, and the new mode flag."""
    reply: str
    kind: str
    unrestricted: bool
    reasoning: str


def check_control_phrase(
    text: str,
    elevated: bool,
    unrestricted: bool,
    unlock_phrase: str | None,
    lock_phrase: str | None,
) -> Intercept | None:
    """
    Match `text` against the configured control phrases.

    Matching is exact after trimming surrounding whitespace. Returns None
    when the message should go to the model as usual.
    """
    message = text.strip()
    if not message:
        return None

    if unlock_phrase and message == unlock_phrase:
        if not elevated:
            return Intercept(
                reply=DENIED_WARNING,
                kind="error",
                unrestricted=unrestricted,
                reasoning="A reserved control phrase was sent without creator privilege. It was blocked and not forwarded to the AI.",
            )
        return Intercept(
            reply=UNLOCK_ACK,
            kind="text",
            unrestricted=True,
            reasoning="The creator activated unrestricted mode with the control phrase. No AI call was made.",
        )

    if lock_phrase and message == lock_phrase:
        if not elevated:
            return Intercept(
                reply=DENIED_WARNING,
                kind="error",
                unrestricted=unrestricted,
                reasoning="A reserved control phrase was sent without creator privilege. It was blocked and not forwarded to the AI.",
            )
        return Intercept(
            reply=LOCK_ACK,
            kind="text",
            unrestricted=False,
            reasoning="The creator deactivated unrestricted mode with the control phrase. No AI call was made.",
        )

    return None


def is_control_turn(text: str, unlock_phrase: str | None, lock_phrase: str | None) -> bool:
    """True for control phrases and their replies; these never enter model context."""
    message = text.strip()
    if message in {UNLOCK_ACK, LOCK_ACK, DENIED_WARNING}:
        return True
    return bool(message) and message in {p for p in (unlock_phrase, lock_phrase) if p}
