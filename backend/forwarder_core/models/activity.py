"""Activity log entry model."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


class LogLevel(str, Enum):
    """Activity log level."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    DETECTION = "detection"
    SIGNATURE = "signature"
    BROADCAST = "broadcast"
    BALANCE = "balance"


# Levels that are pushed to the operator as an immediate notification
NOTIFY_LEVELS = frozenset({LogLevel.ERROR, LogLevel.SUCCESS, LogLevel.DETECTION})


class LogEntry(BaseModel):
    """A single structured activity log entry."""

    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime
    level: LogLevel
    message: str
    details: dict[str, Any] | None = None

    @property
    def is_notification(self) -> bool:
        return self.level in NOTIFY_LEVELS
