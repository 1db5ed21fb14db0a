from __future__ import annotations

import json
import logging

from .store import CHAT_STORAGE_KEY, LocalStore
from .turns import Turn

log = logging.getLogger(__name__)


class LiveTurnError(RuntimeError):
    pass


class TranscriptStore:
    """
    Single linear transcript of turns.

    Turns are appended or mutated in place; only `clear()` removes them.
    At most one turn is live (receiving stream fragments) at a time.
    Persistence happens on append and on settlement, not per fragment.
    """

    def __init__(self, store: LocalStore) -> None:
        self.store = store
        self._turns: list[Turn] = self._load()
        self.live_turn_id: str | None = None

    def _load(self) -> list[Turn]:
        raw = self.store.get_item(CHAT_STORAGE_KEY)
        if not raw:
            return [Turn.welcome()]
        try:
            data = json.loads(raw)
            turns = [Turn.from_dict(item) for item in data]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            log.error(f"Failed to parse stored transcript: {e}")
            return [Turn.welcome()]
        return turns or [Turn.welcome()]

    def _persist(self) -> None:
        if len(self._turns) == 1 and self._turns[0].is_welcome:
            return
        self.store.set_item(
            CHAT_STORAGE_KEY, json.dumps([t.to_dict() for t in self._turns])
        )

    @property
    def turns(self) -> list[Turn]:
        return list(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def get(self, turn_id: str) -> Turn | None:
        for turn in self._turns:
            if turn.id == turn_id:
                return turn
        return None

    def append(self, turn: Turn) -> Turn:
        only_welcome = len(self._turns) == 1 and self._turns[0].is_welcome
        if only_welcome and turn.sender == "user" and turn.text.strip():
            self._turns = [turn]
        else:
            self._turns.append(turn)
        self._persist()
        return turn

    def begin_live(self, turn: Turn) -> Turn:
        """Append a placeholder turn and mark it live."""
        if self.live_turn_id is not None:
            raise LiveTurnError(f"Turn {self.live_turn_id} is still live")
        self.append(turn)
        self.live_turn_id = turn.id
        return turn

    @property
    def live_turn(self) -> Turn | None:
        if self.live_turn_id is None:
            return None
        return self.get(self.live_turn_id)

    def update_live(self, text: str) -> Turn:
        turn = self.live_turn
        if turn is None:
            raise LiveTurnError("No live turn to update")
        turn.text = text
        turn.touch()
        return turn

    def settle(
        self,
        text: str,
        kind: str,
        reasoning: str,
        duration_seconds: float,
    ) -> Turn:
        """Freeze the live turn and persist the transcript."""
        turn = self.live_turn
        if turn is None:
            raise LiveTurnError("No live turn to settle")
        turn.text = text
        turn.kind = kind
        turn.reasoning = reasoning
        turn.duration_seconds = duration_seconds
        turn.touch()
        self.live_turn_id = None
        self._persist()
        return turn

    def clear(self) -> None:
        if self.live_turn_id is not None:
            raise LiveTurnError("Cannot clear while a turn is live")
        self._turns = [Turn.welcome()]
        self.store.remove_item(CHAT_STORAGE_KEY)

    def history(self, exclude_ids: set[str] | None = None) -> list[Turn]:
        """Turns eligible for model context: no system turns, no welcome turn."""
        exclude_ids = exclude_ids or set()
        return [
            t
            for t in self._turns
            if t.sender != "system" and not t.is_welcome and t.id not in exclude_ids
        ]
