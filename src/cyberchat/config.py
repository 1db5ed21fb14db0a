from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from .uncertainty import UNCERTAINTY_PHRASES

DEFAULT_API_URL = "https://openrouter.ai/api/v1/chat/completions"
DEFAULT_SEARCH_URL = "https://api.duckduckgo.com/"
DEFAULT_SITE_URL = "http://localhost:9002"
DEFAULT_APP_TITLE = "CyberChat AI"
DEFAULT_CHANNEL = "cyberchat-settings"


@dataclass(frozen=True)
class ChatSettings:
    """Provider/model/credential triple shared across instances."""
    provider: str = "OpenRouter"
    model: str = "openrouter/auto"
    api_key: str = ""

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key.strip())

    @classmethod
    def from_dict(cls, data: dict) -> ChatSettings:
        defaults = cls()
        return cls(
            provider=data.get("provider") or defaults.provider,
            model=data.get("model") or defaults.model,
            api_key=data.get("api_key") or data.get("apiKey") or "",
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class AppConfig:
    data_dir: Path
    api_url: str
    search_url: str
    site_url: str
    app_title: str
    history_limit: int
    channel_name: str
    unlock_phrase: str | None
    lock_phrase: str | None
    uncertainty_phrases: tuple[str, ...]

    @property
    def store_path(self) -> Path:
        return self.data_dir / "store.json"

    @property
    def error_log_path(self) -> Path:
        return self.data_dir / "turn_errors.jsonl"


class ConfigError(ValueError):
    pass


def _expect_str(data: dict[str, Any], key: str, default: str | None = None) -> str | None:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"Config '{key}' must be a non-empty string.")
    return value.strip()


def _expect_int(data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ConfigError(f"Config '{key}' must be a non-negative integer.")
    return value


def _expect_phrases(data: dict[str, Any], key: str) -> tuple[str, ...]:
    value = data.get(key)
    if value is None:
        return UNCERTAINTY_PHRASES
    if not isinstance(value, list) or not all(isinstance(p, str) and p.strip() for p in value):
        raise ConfigError(f"Config '{key}' must be a list of non-empty strings.")
    return tuple(p.lower() for p in value)


def get_data_dir() -> Path:
    env_val = os.getenv("CYBERCHAT_HOME")
    if env_val:
        return Path(env_val)
    return Path.home() / ".cyberchat"


def load_config(path: Path | None = None) -> AppConfig:
    """
    Load app config from an optional JSON file, then apply env overrides.

    Without a path, <data_dir>/config.json is used if present.
    """
    data_dir = get_data_dir()
    if path is None:
        candidate = data_dir / "config.json"
        path = candidate if candidate.exists() else None
    elif not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    raw: dict[str, Any] = {}
    if path is not None:
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Config file is not valid JSON: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError("Config must be a JSON object.")

    file_data_dir = _expect_str(raw, "data_dir")
    if file_data_dir and not os.getenv("CYBERCHAT_HOME"):
        data_dir = Path(file_data_dir)

    return AppConfig(
        data_dir=data_dir,
        api_url=os.getenv("CYBERCHAT_API_URL") or _expect_str(raw, "api_url", DEFAULT_API_URL),
        search_url=os.getenv("CYBERCHAT_SEARCH_URL") or _expect_str(raw, "search_url", DEFAULT_SEARCH_URL),
        site_url=_expect_str(raw, "site_url", DEFAULT_SITE_URL),
        app_title=_expect_str(raw, "app_title", DEFAULT_APP_TITLE),
        history_limit=_expect_int(raw, "history_limit", 10),
        channel_name=_expect_str(raw, "channel_name", DEFAULT_CHANNEL),
        unlock_phrase=os.getenv("CYBERCHAT_UNLOCK_PHRASE") or _expect_str(raw, "unlock_phrase"),
        lock_phrase=os.getenv("CYBERCHAT_LOCK_PHRASE") or _expect_str(raw, "lock_phrase"),
        uncertainty_phrases=_expect_phrases(raw, "uncertainty_phrases"),
    )
