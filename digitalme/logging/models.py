"""Event-log data models: LogLevel, LogComponent, LogEntry."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class LogLevel(Enum):
    """Severity with integer values so ``>=`` comparisons follow severity."""

    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50

    @property
    def name_str(self) -> str:
        return self.name.lower()


class LogComponent(Enum):
    """Engine components that emit structured events."""

    PROFILE_AGENT = "profile_agent"
    EXTRACTOR = "extractor"
    MERGE = "merge"
    REFINER = "refiner"
    STORE = "store"
    IMPORTER = "importer"
    CLI = "cli"
    CONFIG = "config"


@dataclass
class LogEntry:
    """One structured event.

    ``profile_id`` and ``operation`` are filled from the logger context;
    ``data`` carries event-specific fields such as word counts or the
    confidence before and after a refinement.
    """

    timestamp: datetime
    level: LogLevel
    component: LogComponent
    message: str

    profile_id: Optional[str] = None
    operation: Optional[str] = None

    data: Dict[str, Any] = field(default_factory=dict)

    error_type: Optional[str] = None
    error_message: Optional[str] = None

    duration_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "level_name": self.level.name_str,
            "component": self.component.value,
            "message": self.message,
            "profile_id": self.profile_id,
            "operation": self.operation,
            "data": self.data,
            "error_type": self.error_type,
            "error_message": self.error_message,
            "duration_ms": self.duration_ms,
        }

    def to_json(self) -> str:
        """One JSON line for the log files."""
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)

    def to_readable(self) -> str:
        """Short console form: ``[WARN] [12:00:01] [refiner] message (15ms)``."""
        indicators = {
            LogLevel.DEBUG: "[DEBUG]",
            LogLevel.INFO: "[INFO]",
            LogLevel.WARNING: "[WARN]",
            LogLevel.ERROR: "[ERROR]",
            LogLevel.CRITICAL: "[CRIT]",
        }
        msg = (
            f"{indicators[self.level]} [{self.timestamp.strftime('%H:%M:%S')}] "
            f"[{self.component.value}] {self.message}"
        )
        if self.profile_id:
            msg += f" profile={self.profile_id}"
        if self.duration_ms is not None:
            msg += f" ({self.duration_ms}ms)"
        return msg
