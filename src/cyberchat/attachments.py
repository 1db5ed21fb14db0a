from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from pathlib import Path

from .util import to_data_uri


@dataclass(frozen=True)
class Attachment:
    name: str
    mime_type: str
    data_uri: str

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @property
    def preview(self) -> str | None:
        return self.data_uri if self.is_image else None

    @classmethod
    def from_path(cls, path: Path) -> Attachment:
        mime_type, _ = mimetypes.guess_type(path.name)
        mime_type = mime_type or "application/octet-stream"
        return cls(name=path.name, mime_type=mime_type, data_uri=to_data_uri(path.read_bytes(), mime_type))
