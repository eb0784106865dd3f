"""
Durable interaction log backed by JSON lines.

Each exchange is written as an `insert` entry before streaming begins and
completed by an `update` entry carrying the final response, so a crash
mid-stream still leaves an auditable record.

Usage:
    from ai_router.interaction_log import JsonlInteractionLog

    log = JsonlInteractionLog(LogConfig(log_path="~/.ai-router/interactions.jsonl"))
    await log.insert(record)
    await log.update(record.id, response_text)
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .collaborators import InteractionRecord

logger = logging.getLogger(__name__)


@dataclass
class LogConfig:
    """Configuration for the interaction log."""

    # Log file path (supports ~ expansion)
    log_path: str = "~/.ai-router/interactions.jsonl"

    # Maximum log file size in MB before rotation
    max_size_mb: float = 100.0

    # Number of rotated files to keep
    max_files: int = 5


class JsonlInteractionLog:
    """Append-only interaction log with size-based rotation."""

    def __init__(self, config: LogConfig | None = None):
        self.config = config or LogConfig()
        self._log_path = Path(self.config.log_path).expanduser()
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._entry_count = 0
        self._lock = threading.Lock()

    @property
    def log_path(self) -> Path:
        return self._log_path

    def _check_rotation(self) -> None:
        """Check if log file needs rotation."""
        if not self._log_path.exists():
            return

        size_mb = self._log_path.stat().st_size / (1024 * 1024)
        if size_mb >= self.config.max_size_mb:
            self._rotate_logs()

    def _rotate_logs(self) -> None:
        """Rotate log files."""
        # Shift existing rotated files
        for i in range(self.config.max_files - 1, 0, -1):
            old_path = self._log_path.with_suffix(f".jsonl.{i}")
            new_path = self._log_path.with_suffix(f".jsonl.{i + 1}")
            if old_path.exists():
                if i + 1 >= self.config.max_files:
                    old_path.unlink()  # Delete oldest
                else:
                    old_path.rename(new_path)

        if self._log_path.exists():
            self._log_path.rename(self._log_path.with_suffix(".jsonl.1"))

        logger.info(f"Rotated interaction log: {self._log_path}")

    def _write_entry(self, entry: dict[str, Any]) -> None:
        """Append one entry; runs in a worker thread."""
        line = json.dumps(entry, default=str) + "\n"
        with self._lock:
            self._check_rotation()
            with open(self._log_path, "a") as f:
                f.write(line)
            self._entry_count += 1

    async def insert(self, record: InteractionRecord) -> None:
        """Write the initial record of an exchange."""
        await asyncio.to_thread(
            self._write_entry,
            {
                "type": "insert",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                **asdict(record),
            },
        )

    async def update(self, record_id: str, response: str) -> None:
        """Complete a record with the final response text."""
        await asyncio.to_thread(
            self._write_entry,
            {
                "type": "update",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "id": record_id,
                "response": response,
            },
        )

    def load_records(self) -> dict[str, InteractionRecord]:
        """Replay the current log file into records keyed by id."""
        records: dict[str, InteractionRecord] = {}

        if not self._log_path.exists():
            return records

        with open(self._log_path) as f:
            for line in f:
                try:
                    data = json.loads(line)
                    entry_type = data.pop("type")
                    data.pop("timestamp", None)
                    if entry_type == "insert":
                        records[data["id"]] = InteractionRecord(**data)
                    elif entry_type == "update" and data["id"] in records:
                        records[data["id"]].response = data["response"]
                except (json.JSONDecodeError, KeyError, TypeError) as e:
                    logger.warning(f"Skipping malformed line: {e}")

        return records

    def get_statistics(self) -> dict[str, Any]:
        """Get logging statistics."""
        stats: dict[str, Any] = {
            "log_path": str(self._log_path),
            "entries_written": self._entry_count,
        }
        if self._log_path.exists():
            stats["log_size_mb"] = self._log_path.stat().st_size / (1024 * 1024)
        return stats


__all__ = ["JsonlInteractionLog", "LogConfig"]
