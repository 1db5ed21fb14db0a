from __future__ import annotations

import base64
import secrets
import time


def now_ms() -> int:
    return int(time.time() * 1000)


def new_turn_id(sender: str) -> str:
    """Time-ordered id: <sender>-<epoch ms>-<random suffix>."""
    return f"{sender}-{now_ms()}-{secrets.token_hex(3)[:5]}"


def to_data_uri(data: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def elapsed_seconds(start: float, end: float | None = None) -> float:
    """Seconds between two perf_counter readings, rounded to one decimal."""
    if end is None:
        end = time.perf_counter()
    return round(max(end - start, 0.0), 1)
