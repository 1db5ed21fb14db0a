"""Decoding of chat-completion server-sent event streams."""
from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Union

log = logging.getLogger(__name__)

EVENT_SEPARATOR = "\n\n"
DATA_MARKER = "data: "
DONE_SENTINEL = "[DONE]"
TERMINAL_FINISH_REASONS = {"stop", "length"}


@dataclass(frozen=True)
class ContentEvent:
    text: str


@dataclass(frozen=True)
class DoneEvent:
    reason: str


StreamEvent = Union[ContentEvent, DoneEvent]


@dataclass(frozen=True)
class Fragment:
    """A piece of generated text. `replace` is set on the first fragment of a session."""
    text: str
    replace: bool


def _extract_content(payload: Any) -> tuple[str | None, str | None]:
    """Return (delta content, finish_reason) from a parsed chunk."""
    if not isinstance(payload, dict):
        return None, None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None, None
    choice = choices[0]
    delta = choice.get("delta") or {}
    content = delta.get("content") if isinstance(delta, dict) else None
    if not isinstance(content, str) or not content:
        content = None
    finish_reason = choice.get("finish_reason")
    if not isinstance(finish_reason, str):
        finish_reason = None
    return content, finish_reason


class SSEDecoder:
    """
    Incremental decoder for `data: <json>\\n\\n` framed events.

    Bytes are decoded incrementally so multi-byte characters may straddle
    chunk boundaries. Events are only extracted once their separator has
    arrived. After completion every further `feed` returns nothing.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.done = False

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        if self.done:
            return []
        self._buffer += self._decoder.decode(chunk)
        events: list[StreamEvent] = []

        while True:
            end = self._buffer.find(EVENT_SEPARATOR)
            if end == -1:
                break
            event_part = self._buffer[:end]
            self._buffer = self._buffer[end + len(EVENT_SEPARATOR):]

            if not event_part.startswith(DATA_MARKER):
                continue
            data = event_part[len(DATA_MARKER):].strip()

            if data == DONE_SENTINEL:
                events.append(self._complete("done"))
                break

            try:
                payload = json.loads(data)
            except json.JSONDecodeError as e:
                log.warning(f"Skipping malformed stream payload {data[:80]!r}: {e}")
                continue

            content, finish_reason = _extract_content(payload)
            if content is not None:
                events.append(ContentEvent(content))
            elif finish_reason in TERMINAL_FINISH_REASONS:
                events.append(self._complete(finish_reason))
                break

        return events

    def finish(self) -> list[StreamEvent]:
        """Mark end of source. Any incomplete trailing event is dropped."""
        if self.done:
            return []
        if self._buffer.strip():
            log.debug(f"Discarding {len(self._buffer)} chars of unterminated stream data")
        return [self._complete("eof")]

    def _complete(self, reason: str) -> DoneEvent:
        self.done = True
        self._buffer = ""
        return DoneEvent(reason)


def decode_chunks(chunks: Iterable[bytes]) -> Iterator[StreamEvent]:
    """Decode a finite chunk sequence, ending with exactly one DoneEvent."""
    decoder = SSEDecoder()
    for chunk in chunks:
        yield from decoder.feed(chunk)
        if decoder.done:
            return
    yield from decoder.finish()


class StreamSession:
    """
    One open generation stream.

    Iterating yields Fragments in arrival order. The sequence is lazy and
    cannot be restarted. The underlying response is closed as soon as the
    stream completes; `close()` may be called again from anywhere.
    """

    def __init__(self, response: Any, chunk_size: int | None = None) -> None:
        self.response = response
        self.chunk_size = chunk_size
        self.decoder = SSEDecoder()
        self.first_fragment = True
        self.completed = False
        self.finish_reason: str | None = None
        self.closed = False
        self._started = False

    def __iter__(self) -> Iterator[Fragment]:
        if self._started:
            raise RuntimeError("StreamSession can only be iterated once")
        self._started = True
        try:
            for chunk in self.response.iter_content(chunk_size=self.chunk_size):
                if self.closed:
                    break
                if not chunk:
                    continue
                for event in self.decoder.feed(chunk):
                    fragment = self._handle(event)
                    if fragment is not None:
                        yield fragment
                if self.completed:
                    break
            if not self.completed and not self.closed:
                for event in self.decoder.finish():
                    self._handle(event)
        finally:
            self.close()

    def _handle(self, event: StreamEvent) -> Fragment | None:
        if isinstance(event, DoneEvent):
            self.completed = True
            self.finish_reason = event.reason
            log.debug(f"Stream completed ({event.reason})")
            return None
        fragment = Fragment(event.text, replace=self.first_fragment)
        self.first_fragment = False
        return fragment

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self.response.close()
        except Exception as e:
            log.debug(f"Error closing stream response: {e}")
