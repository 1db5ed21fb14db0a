"""Local key/value persistence backed by a single JSON file."""
from __future__ import annotations

import json
import logging
from pathlib import Path

log = logging.getLogger(__name__)

CHAT_STORAGE_KEY = "cyberchat-ai-history"
SETTINGS_STORAGE_KEY = "cyberchat-ai-settings"


class LocalStore:
    """
    String key/value storage.

    Values are opaque strings (callers JSON-encode their own payloads).
    Each change re-reads the file first, so only the changed key differs
    from what other writers left behind.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._items: dict[str, str] = self._read()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            log.warning(f"Unreadable store at {self.path}, starting empty: {e}")
            return {}
        if not isinstance(raw, dict):
            log.warning(f"Store at {self.path} is not a JSON object, starting empty")
            return {}
        return {str(k): v for k, v in raw.items() if isinstance(v, str)}

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._items, indent=2), encoding="utf-8")
        tmp.replace(self.path)

    def _refresh(self) -> None:
        # Pick up keys written by other store objects on the same file
        self._items = self._read()

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._refresh()
        self._items[key] = value
        self._write()

    def remove_item(self, key: str) -> None:
        self._refresh()
        if key in self._items:
            del self._items[key]
            self._write()


class MemoryStore(LocalStore):
    """Non-persistent store for tests and throwaway sessions."""

    def __init__(self) -> None:
        self.path = None
        self._items = {}

    def _refresh(self) -> None:
        pass

    def _write(self) -> None:
        pass
