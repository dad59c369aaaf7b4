"""Capped, append-only activity log.

Entries are kept in a bounded deque (oldest evicted first) and listed most
recent first. Every entry is mirrored to the standard logger, and listeners
can subscribe to receive entries as they are appended (used for live
operator notifications).
"""

from __future__ import annotations

import itertools
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable

from forwarder_core.models import LogEntry, LogLevel

logger = logging.getLogger(__name__)

MAX_ENTRIES = 100

LogListener = Callable[[LogEntry], None]

_PY_LEVELS: dict[LogLevel, int] = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.DETECTION: logging.INFO,
    LogLevel.SIGNATURE: logging.INFO,
    LogLevel.BROADCAST: logging.INFO,
    LogLevel.BALANCE: logging.INFO,
}


class ActivityRecorder:
    """Bounded activity log shared by all forwarding components."""

    def __init__(self, max_entries: int = MAX_ENTRIES):
        self._entries: deque[LogEntry] = deque(maxlen=max_entries)
        self._ids = itertools.count(1)
        self._listeners: list[LogListener] = []

    def subscribe(self, listener: LogListener) -> None:
        """Register a listener. Duplicate listeners are ignored."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: LogListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def append(
        self,
        level: LogLevel,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> LogEntry:
        """Record a new entry and fan it out to listeners."""
        entry = LogEntry(
            id=str(next(self._ids)),
            timestamp=datetime.now(timezone.utc),
            level=level,
            message=message,
            details=details,
        )
        self._entries.append(entry)

        if details:
            logger.log(_PY_LEVELS[level], "[%s] %s %s", level.value, message, details)
        else:
            logger.log(_PY_LEVELS[level], "[%s] %s", level.value, message)

        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception as e:
                logger.warning(f"Activity listener failed: {e}")
        return entry

    # Level shortcuts
    def info(self, message: str, details: dict[str, Any] | None = None) -> LogEntry:
        return self.append(LogLevel.INFO, message, details)

    def success(self, message: str, details: dict[str, Any] | None = None) -> LogEntry:
        return self.append(LogLevel.SUCCESS, message, details)

    def warning(self, message: str, details: dict[str, Any] | None = None) -> LogEntry:
        return self.append(LogLevel.WARNING, message, details)

    def error(self, message: str, details: dict[str, Any] | None = None) -> LogEntry:
        return self.append(LogLevel.ERROR, message, details)

    def clear(self) -> None:
        self._entries.clear()

    def list(self, limit: int | None = None) -> list[LogEntry]:
        """Entries, most recent first."""
        entries = list(reversed(self._entries))
        if limit is not None:
            return entries[:limit]
        return entries

    def __len__(self) -> int:
        return len(self._entries)
