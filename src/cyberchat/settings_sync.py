"""Settings shared between every client instance on the same channel."""
from __future__ import annotations

import json
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable

from pydantic import ValidationError

from .config import ChatSettings
from .schemas import SettingsPayload, SettingsUpdateMessage
from .store import SETTINGS_STORAGE_KEY, LocalStore

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Origin:
    """Where a settings change came from; remote changes are never re-broadcast."""
    kind: str  # "local" | "remote"
    source_id: str | None = None

    @classmethod
    def remote(cls, source_id: str) -> Origin:
        return cls(kind="remote", source_id=source_id)

    @property
    def is_remote(self) -> bool:
        return self.kind == "remote"


LOCAL = Origin(kind="local")


class BroadcastChannel:
    """
    Named in-process pub/sub.

    Every channel object opened with the same name receives messages posted
    by the others; the sender never receives its own message.
    """

    _registry: dict[str, list[BroadcastChannel]] = defaultdict(list)

    def __init__(self, name: str) -> None:
        self.name = name
        self.closed = False
        self._handlers: list[Callable[[dict], None]] = []
        self._registry[name].append(self)

    def on_message(self, handler: Callable[[dict], None]) -> None:
        self._handlers.append(handler)

    def post_message(self, message: dict) -> int:
        """Deliver to every other open channel of the same name. Returns receiver count."""
        if self.closed:
            raise RuntimeError(f"Channel '{self.name}' is closed")
        receivers = [c for c in self._registry[self.name] if c is not self and not c.closed]
        for channel in receivers:
            for handler in list(channel._handlers):
                handler(message)
        return len(receivers)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        peers = self._registry.get(self.name, [])
        if self in peers:
            peers.remove(self)

    @classmethod
    def reset(cls) -> None:
        cls._registry.clear()


class SettingsService:
    """
    Process-wide ChatSettings with persistence and cross-instance sync.

    `set()` persists, notifies subscribers and, for local changes only,
    broadcasts a SETTINGS_UPDATE. Incoming updates that differ from the
    current value are applied with a remote origin.
    """

    def __init__(self, store: LocalStore, channel: BroadcastChannel | None = None,
                 default: ChatSettings | None = None) -> None:
        self.store = store
        self.channel = channel
        self.instance_id = uuid.uuid4().hex
        self._subscribers: list[Callable[[ChatSettings, Origin], None]] = []
        self._settings = self._load(default or ChatSettings())
        if channel is not None:
            channel.on_message(self._on_broadcast)

    def _load(self, default: ChatSettings) -> ChatSettings:
        raw = self.store.get_item(SETTINGS_STORAGE_KEY)
        if not raw:
            return default
        try:
            return ChatSettings.from_dict(json.loads(raw))
        except (json.JSONDecodeError, AttributeError) as e:
            log.warning(f"Ignoring unreadable stored settings: {e}")
            return default

    def get(self) -> ChatSettings:
        return self._settings

    def subscribe(self, callback: Callable[[ChatSettings, Origin], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def set(self, settings: ChatSettings, origin: Origin = LOCAL) -> None:
        self._settings = settings
        self.store.set_item(SETTINGS_STORAGE_KEY, json.dumps(settings.to_dict()))
        for callback in list(self._subscribers):
            callback(settings, origin)

        if origin.is_remote or self.channel is None:
            return
        message = SettingsUpdateMessage(
            payload=SettingsPayload(**settings.to_dict()),
            source_id=self.instance_id,
        )
        receivers = self.channel.post_message(message.model_dump(by_alias=True))
        log.debug(f"Broadcast settings update to {receivers} instance(s)")

    def update(self, **changes: str) -> ChatSettings:
        current = self._settings.to_dict()
        current.update({k: v for k, v in changes.items() if v is not None})
        new = ChatSettings(**current)
        self.set(new)
        return new

    def _on_broadcast(self, message: dict) -> None:
        if message.get("type") != "SETTINGS_UPDATE":
            return
        try:
            update = SettingsUpdateMessage.model_validate(message)
        except ValidationError as e:
            log.warning(f"Ignoring malformed settings broadcast: {e}")
            return
        if update.source_id == self.instance_id:
            return
        incoming = ChatSettings(
            provider=update.payload.provider,
            model=update.payload.model,
            api_key=update.payload.api_key,
        )
        if incoming == self._settings:
            return
        log.info(f"Adopting settings from instance {update.source_id}")
        self.set(incoming, origin=Origin.remote(update.source_id))
