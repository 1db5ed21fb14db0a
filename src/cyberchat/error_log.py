"""Rotating JSONL log of failed turns."""

import json
import logging
import time
import traceback
from datetime import datetime, timezone
from pathlib import Path

log = logging.getLogger(__name__)


class RotatingErrorLogger:
    """
    JSONL error log with size-based rotation.

    turn_errors.jsonl -> turn_errors.1.jsonl -> ... -> turn_errors.<max_files>.jsonl
    """

    def __init__(self, base_path: Path, max_size_mb: float = 5, max_files: int = 3):
        """
        Args:
            base_path: Current log file path
            max_size_mb: Size that triggers rotation before the next write
            max_files: Rotated files kept besides the current one
        """
        self.base_path = Path(base_path)
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)
        self.max_files = max_files

    def log(self, turn_id: str, stage: str, error: BaseException, timestamp: float | None = None) -> None:
        """
        Record a turn failure.

        Args:
            turn_id: Assistant turn that failed
            stage: Orchestrator state at failure (e.g. "streaming_primary")
            error: The exception
            timestamp: Unix timestamp, defaults to now
        """
        if timestamp is None:
            timestamp = time.time()

        entry = {
            "turn_id": turn_id,
            "stage": stage,
            "timestamp": timestamp,
            "iso_ts": datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "error": str(error),
            "error_type": type(error).__name__,
            "traceback": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
        }

        try:
            self.base_path.parent.mkdir(parents=True, exist_ok=True)
            if self.base_path.exists() and self.base_path.stat().st_size > self.max_size_bytes:
                self._rotate()
            with open(self.base_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry) + "\n")
        except OSError as e:
            # The chat keeps going when the error log is unwritable
            log.warning(f"Could not write error log {self.base_path}: {e}")

    def read_entries(self) -> list[dict]:
        if not self.base_path.exists():
            return []
        with self.base_path.open("r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]

    def _rotate(self) -> None:
        stem = self.base_path.stem
        suffix = self.base_path.suffix
        base_dir = self.base_path.parent

        oldest = base_dir / f"{stem}.{self.max_files}{suffix}"
        if oldest.exists():
            oldest.unlink()

        for i in range(self.max_files - 1, 0, -1):
            old_file = base_dir / f"{stem}.{i}{suffix}"
            if old_file.exists():
                old_file.rename(base_dir / f"{stem}.{i + 1}{suffix}")

        if self.base_path.exists():
            self.base_path.rename(base_dir / f"{stem}.1{suffix}")
