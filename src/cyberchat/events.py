"""
Events emitted by the orchestrator while a turn is in flight.
"""
from __future__ import annotations

from typing import Any, Callable, Literal, TypedDict, Union


class TokenEvent(TypedDict):
    type: Literal["token"]
    turn_id: str
    text: str
    replace: bool


class StatusEvent(TypedDict):
    type: Literal["status"]
    turn_id: str
    state: str
    text: str


class SettledEvent(TypedDict):
    type: Literal["settled"]
    turn_id: str
    turn: Any


TurnEvent = Union[TokenEvent, StatusEvent, SettledEvent]
Listener = Callable[[TurnEvent], None]
