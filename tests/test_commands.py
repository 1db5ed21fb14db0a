# tests/test_commands.py
from cyberchat.commands import (
    DENIED_WARNING,
    LOCK_ACK,
    UNLOCK_ACK,
    check_control_phrase,
    is_control_turn,
)

UNLOCK = "open sesame"
LOCK = "close sesame"


def test_ordinary_text_passes_through():
    assert check_control_phrase("hello", True, False, UNLOCK, LOCK) is None


def test_unlock_with_privilege():
    result = check_control_phrase("  open sesame \n", True, False, UNLOCK, LOCK)

    assert result.reply == UNLOCK_ACK
    assert result.kind == "text"
    assert result.unrestricted is True


def test_lock_with_privilege():
    result = check_control_phrase(LOCK, True, True, UNLOCK, LOCK)

    assert result.reply == LOCK_ACK
    assert result.unrestricted is False


def test_phrase_without_privilege_is_blocked_and_keeps_mode():
    result = check_control_phrase(UNLOCK, False, False, UNLOCK, LOCK)

    assert result.reply == DENIED_WARNING
    assert result.kind == "error"
    assert result.unrestricted is False


def test_match_is_exact():
    assert check_control_phrase("Open Sesame", True, False, UNLOCK, LOCK) is None
    assert check_control_phrase("open sesame please", True, False, UNLOCK, LOCK) is None


def test_unconfigured_phrases_never_match():
    assert check_control_phrase("open sesame", True, False, None, None) is None


def test_control_turn_detection():
    assert is_control_turn(UNLOCK_ACK, UNLOCK, LOCK)
    assert is_control_turn(" close sesame ", UNLOCK, LOCK)
    assert not is_control_turn("", None, None)
    assert not is_control_turn("hello", UNLOCK, LOCK)
