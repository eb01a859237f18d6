"""In-memory claim event log for the notification/log collaborator.

Register a `ClaimEventLog` with `ClaimTracker.add_listener`; it keeps the most recent
advisories for display and export, and mirrors each one into `logging`.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Final

from territory_claim.models import DEFAULT_TZ, Advisory
from territory_claim.timeutils import format_epoch_ms

logger = logging.getLogger(__name__)

MAX_LOG_ENTRIES: Final[int] = 300

_LEVELS: Final[dict[str, int]] = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass(frozen=True, slots=True)
class LogEntry:
    timestamp_ms: int
    level: str
    kind: str
    message: str


class ClaimEventLog:
    """Bounded, thread-safe log of advisories (oldest entries dropped first)."""

    def __init__(self, max_entries: int = MAX_LOG_ENTRIES) -> None:
        self._entries: deque[LogEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def __call__(self, advisory: Advisory) -> None:
        self.log(advisory)

    def log(self, advisory: Advisory) -> None:
        entry = LogEntry(
            timestamp_ms=advisory.timestamp_ms,
            level=advisory.level,
            kind=advisory.kind,
            message=advisory.message,
        )
        with self._lock:
            self._entries.append(entry)
        logger.log(_LEVELS.get(advisory.level, logging.INFO), "[%s] %s", advisory.kind, advisory.message)

    @property
    def entries(self) -> list[LogEntry]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def export_text(self, tz_name: str = DEFAULT_TZ, title: str = "Territory claim log") -> str:
        """Render the log as plain text with a short header.

        Each line reads "[YYYY-MM-DD HH:MM:SS] [LEVEL] message".
        """

        entries = self.entries
        lines = [f"=== {title} ===", f"entries: {len(entries)}  timezone: {tz_name}", ""]
        for e in entries:
            lines.append(f"[{format_epoch_ms(e.timestamp_ms, tz_name)}] [{e.level.upper()}] {e.message}")
        return "\n".join(lines) + "\n"
