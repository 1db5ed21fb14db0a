import json

import pytest

from cyberchat.store import CHAT_STORAGE_KEY, SETTINGS_STORAGE_KEY, LocalStore, MemoryStore
from cyberchat.transcript import LiveTurnError, TranscriptStore
from cyberchat.turns import Turn


def test_new_transcript_starts_with_welcome_and_is_not_persisted():
    store = MemoryStore()
    transcript = TranscriptStore(store)

    assert len(transcript) == 1
    assert transcript.turns[0].is_welcome
    assert store.get_item(CHAT_STORAGE_KEY) is None


def test_only_one_live_turn():
    transcript = TranscriptStore(MemoryStore())
    transcript.begin_live(Turn.create("Thinking...", "assistant"))

    with pytest.raises(LiveTurnError):
        transcript.begin_live(Turn.create("Thinking...", "assistant"))


def test_settle_sets_metadata_and_clears_live_pointer():
    store = MemoryStore()
    transcript = TranscriptStore(store)
    transcript.append(Turn.create("Hello", "user"))
    live = transcript.begin_live(Turn.create("Thinking...", "assistant"))
    transcript.update_live("Hi")
    assert live.reasoning is None and live.duration_seconds is None

    turn = transcript.settle("Hi there", "text", "because", 0.4)

    assert turn is live
    assert turn.text == "Hi there"
    assert turn.reasoning == "because"
    assert turn.duration_seconds == 0.4
    assert transcript.live_turn_id is None
    stored = json.loads(store.get_item(CHAT_STORAGE_KEY))
    assert stored[-1]["text"] == "Hi there"


def test_update_without_live_turn_raises():
    with pytest.raises(LiveTurnError):
        TranscriptStore(MemoryStore()).update_live("x")


def test_transcript_round_trips_through_file(tmp_path):
    path = tmp_path / "store.json"
    transcript = TranscriptStore(LocalStore(path))
    transcript.append(Turn.create("Hello", "user"))
    transcript.begin_live(Turn.create("Thinking...", "assistant"))
    transcript.settle("Hi", "text", "r", 1.2)

    reloaded = TranscriptStore(LocalStore(path))

    assert [t.text for t in reloaded.turns] == ["Hello", "Hi"]
    assert reloaded.turns[1].duration_seconds == 1.2


def test_corrupt_history_falls_back_to_welcome():
    store = MemoryStore()
    store.set_item(CHAT_STORAGE_KEY, "{broken")

    transcript = TranscriptStore(store)

    assert transcript.turns[0].is_welcome


def test_clear_resets_and_removes_storage():
    store = MemoryStore()
    transcript = TranscriptStore(store)
    transcript.append(Turn.create("Hello", "user"))

    transcript.clear()

    assert len(transcript) == 1
    assert transcript.turns[0].is_welcome
    assert store.get_item(CHAT_STORAGE_KEY) is None


def test_history_excludes_system_and_welcome():
    transcript = TranscriptStore(MemoryStore())
    transcript.append(Turn.create("Processing file...", "system"))
    user = transcript.append(Turn.create("Hello", "user"))

    assert transcript.history() == [user]


def test_unreadable_store_file_starts_empty(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("not json", encoding="utf-8")

    assert LocalStore(path).get_item(CHAT_STORAGE_KEY) is None


def test_turn_rejects_unknown_kind():
    with pytest.raises(ValueError):
        Turn.create("x", "assistant", kind="mystery")


def test_two_stores_on_one_file_keep_each_others_keys(tmp_path):
    path = tmp_path / "store.json"
    chat_session = LocalStore(path)
    settings_cli = LocalStore(path)

    settings_cli.set_item(SETTINGS_STORAGE_KEY, '{"model": "m"}')
    chat_session.set_item(CHAT_STORAGE_KEY, "[]")

    fresh = LocalStore(path)
    assert fresh.get_item(SETTINGS_STORAGE_KEY) == '{"model": "m"}'
    assert fresh.get_item(CHAT_STORAGE_KEY) == "[]"


def test_remove_item_leaves_keys_written_elsewhere(tmp_path):
    path = tmp_path / "store.json"
    first = LocalStore(path)
    first.set_item(CHAT_STORAGE_KEY, "[]")
    second = LocalStore(path)
    second.set_item(SETTINGS_STORAGE_KEY, "{}")

    first.remove_item(CHAT_STORAGE_KEY)

    fresh = LocalStore(path)
    assert fresh.get_item(CHAT_STORAGE_KEY) is None
    assert fresh.get_item(SETTINGS_STORAGE_KEY) == "{}"
