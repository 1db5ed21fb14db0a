# tests/test_stream.py
import json

import pytest

from cyberchat.stream import (
    ContentEvent,
    DoneEvent,
    Fragment,
    SSEDecoder,
    StreamSession,
    decode_chunks,
)


def _contents(events):
    return [e.text for e in events if isinstance(e, ContentEvent)]


def _dones(events):
    return [e for e in events if isinstance(e, DoneEvent)]


def test_decoder_emits_fragments_in_order(sse):
    events = list(decode_chunks([sse("Hi", " there", "!")]))

    assert _contents(events) == ["Hi", " there", "!"]
    assert len(_dones(events)) == 1
    assert events[-1] == DoneEvent("done")


@pytest.mark.parametrize("step", [1, 2, 3, 5, 7, 13, 64])
def test_decoder_split_invariance(sse, step):
    """Any chunking of the stream yields the same fragments and one completion."""
    raw = sse("Quantum ", "entangle", "ment é ✨", " works.")
    chunks = [raw[i:i + step] for i in range(0, len(raw), step)]

    events = list(decode_chunks(chunks))

    assert "".join(_contents(events)) == "Quantum entanglement é ✨ works."
    assert _contents(events) == ["Quantum ", "entangle", "ment é ✨", " works."]
    assert len(_dones(events)) == 1


def test_decoder_does_not_emit_partial_event(sse):
    raw = sse("Hello", done=False)
    decoder = SSEDecoder()

    # Everything but the final separator
    assert decoder.feed(raw[:-2]) == []
    # Split right inside the blank-line separator
    assert decoder.feed(raw[-2:-1]) == []
    assert decoder.feed(raw[-1:]) == [ContentEvent("Hello")]


def test_decoder_skips_malformed_payload(sse, caplog):
    raw = b'data: {"choices": [{"delta": {"content": "a"}}]}\n\n' \
          b"data: {not json\n\n" \
          b'data: {"choices": [{"delta": {"content": "b"}}]}\n\n' \
          b"data: [DONE]\n\n"

    with caplog.at_level("WARNING"):
        events = list(decode_chunks([raw]))

    assert _contents(events) == ["a", "b"]
    assert "malformed" in caplog.text.lower()


def test_decoder_ignores_comments_and_payloads_without_content():
    raw = b": OPENROUTER PROCESSING\n\n" \
          b'data: {"choices": [{"delta": {"role": "assistant"}}]}\n\n' \
          b'data: {"id": "x"}\n\n' \
          b'data: {"choices": [{"delta": {"content": "ok"}}]}\n\n'

    events = list(decode_chunks([raw]))

    assert _contents(events) == ["ok"]
    assert events[-1] == DoneEvent("eof")


def test_decoder_done_sentinel_stops_extraction(sse):
    raw = sse("first") + sse("after-done", done=False)
    decoder = SSEDecoder()

    events = decoder.feed(raw)

    assert _contents(events) == ["first"]
    assert decoder.done is True
    # Closed decoder refuses further input
    assert decoder.feed(sse("more")) == []
    assert decoder.finish() == []


def test_decoder_finish_reason_stop_completes():
    raw = b'data: {"choices": [{"delta": {"content": "x"}}]}\n\n' \
          b'data: {"choices": [{"delta": {}, "finish_reason": "stop"}]}\n\n' \
          b'data: {"choices": [{"delta": {"content": "ignored"}}]}\n\n'

    events = list(decode_chunks([raw]))

    assert _contents(events) == ["x"]
    assert _dones(events) == [DoneEvent("stop")]


def test_decoder_source_end_discards_trailing_partial():
    raw = b'data: {"choices": [{"delta": {"content": "kept"}}]}\n\n' \
          b'data: {"choices": [{"delta": {"content": "lost"'

    events = list(decode_chunks([raw]))

    assert _contents(events) == ["kept"]
    assert len(_dones(events)) == 1


def test_stream_session_marks_first_fragment_for_replace(sse, fake_response):
    response = fake_response([sse("one", "two", "three")])
    session = StreamSession(response)

    fragments = list(session)

    assert fragments == [Fragment("one", True), Fragment("two", False), Fragment("three", False)]
    assert session.completed is True
    assert session.closed is True
    assert response.close_calls == 1


def test_stream_session_close_is_idempotent(sse, fake_response):
    response = fake_response([sse("a")])
    session = StreamSession(response)

    session.close()
    session.close()
    fragments = list(session)

    assert fragments == []
    assert response.close_calls == 1


def test_stream_session_is_not_restartable(sse, fake_response):
    session = StreamSession(fake_response([sse("a")]))
    list(session)

    with pytest.raises(RuntimeError):
        list(session)


def test_stream_session_closes_when_consumer_stops_early(sse, fake_response):
    response = fake_response([sse("a"), sse("b")])
    session = StreamSession(response)

    for _ in session:
        break

    assert response.close_calls == 1


def test_stream_session_completes_on_source_end_without_sentinel(fake_response):
    payload = json.dumps({"choices": [{"delta": {"content": "tail"}}]})
    response = fake_response([f"data: {payload}\n\n".encode()])
    session = StreamSession(response)

    assert [f.text for f in session] == ["tail"]
    assert session.completed is True
    assert session.finish_reason == "eof"
