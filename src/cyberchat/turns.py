from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from .util import new_turn_id, now_ms

Sender = Literal["user", "assistant", "system"]
TurnKind = Literal["text", "summary", "search_result", "error", "file_upload_request"]

SENDERS = {"user", "assistant", "system"}
TURN_KINDS = {"text", "summary", "search_result", "error", "file_upload_request"}

WELCOME_PREFIX = "assistant-welcome-"
WELCOME_TEXT = (
    "Welcome to CyberChat AI! How can I assist you in the digital realm today? 🤖✨"
)
PLACEHOLDER_TEXT = "Thinking..."


@dataclass
class Turn:
    """One message in the transcript.

    `text` is mutable while the turn is live and frozen once settled.
    `reasoning` and `duration_seconds` are only written at settlement.
    """

    id: str
    text: str
    sender: str
    created_at: int
    updated_at: int
    kind: str = "text"
    attachment_name: str | None = None
    attachment_payload: str | None = None
    attachment_preview: str | None = None
    reasoning: str | None = None
    duration_seconds: float | None = None

    @classmethod
    def create(
        cls,
        text: str,
        sender: str,
        kind: str = "text",
        attachment_name: str | None = None,
        attachment_payload: str | None = None,
        attachment_preview: str | None = None,
    ) -> Turn:
        if sender not in SENDERS:
            raise ValueError(f"Unknown sender: {sender}")
        if kind not in TURN_KINDS:
            raise ValueError(f"Unknown turn kind: {kind}")
        ts = now_ms()
        return cls(
            id=new_turn_id(sender),
            text=text,
            sender=sender,
            created_at=ts,
            updated_at=ts,
            kind=kind,
            attachment_name=attachment_name,
            attachment_payload=attachment_payload,
            attachment_preview=attachment_preview,
        )

    @classmethod
    def welcome(cls) -> Turn:
        ts = now_ms()
        return cls(
            id=f"{WELCOME_PREFIX}{ts}",
            text=WELCOME_TEXT,
            sender="assistant",
            created_at=ts,
            updated_at=ts,
        )

    @property
    def is_welcome(self) -> bool:
        return self.id.startswith(WELCOME_PREFIX)

    @property
    def has_image(self) -> bool:
        return bool(self.attachment_payload) and bool(
            self.attachment_preview and self.attachment_preview.startswith("data:image")
        )

    def touch(self) -> None:
        self.updated_at = now_ms()

    @classmethod
    def from_dict(cls, data: dict) -> Turn:
        return cls(
            id=data["id"],
            text=data.get("text", ""),
            sender=data["sender"],
            created_at=data.get("created_at", 0),
            updated_at=data.get("updated_at", data.get("created_at", 0)),
            kind=data.get("kind", "text"),
            attachment_name=data.get("attachment_name"),
            attachment_payload=data.get("attachment_payload"),
            attachment_preview=data.get("attachment_preview"),
            reasoning=data.get("reasoning"),
            duration_seconds=data.get("duration_seconds"),
        )

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "text": self.text,
            "sender": self.sender,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "kind": self.kind,
        }
        optional = {
            "attachment_name": self.attachment_name,
            "attachment_payload": self.attachment_payload,
            "attachment_preview": self.attachment_preview,
            "reasoning": self.reasoning,
            "duration_seconds": self.duration_seconds,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data
