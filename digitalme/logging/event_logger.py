"""Structured event log for the style engine.

``EventLogger`` appends JSON lines to files in ``log_dir`` (via
``aiofiles``) and keeps an in-memory ring buffer for ``get_recent()``.
Every entry is mirrored to the standard ``logging`` module under the
``digitalme.events`` logger so console output and the JSON files agree.

Global helpers:
    - ``init_logger()``  -- create and register the singleton
    - ``get_logger()``   -- retrieve it (raises if not initialised)
    - ``reset_logger()`` -- drop it (used by tests)
"""

import logging
from collections import Counter, deque
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional

import aiofiles

from digitalme.logging.models import LogComponent, LogEntry, LogLevel
from digitalme.utils import utc_now

_mirror = logging.getLogger("digitalme.events")


class EventLogger:
    """Writes structured engine events.

    Files:
        - ``events.log`` -- every entry at or above ``min_level``
        - ``errors.log`` -- ERROR and CRITICAL only

    Parameters:
        log_dir: Directory for log files (created if missing).
        min_level: Entries below this level are kept in memory only.
        max_recent: Ring buffer size.
    """

    def __init__(
        self,
        log_dir: str = "logs",
        min_level: LogLevel = LogLevel.INFO,
        max_recent: int = 1000,
    ) -> None:
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.min_level = min_level

        self._profile_id: Optional[str] = None
        self._operation: Optional[str] = None

        self._events_log = self.log_dir / "events.log"
        self._error_log = self.log_dir / "errors.log"

        self._recent_logs: Deque[LogEntry] = deque(maxlen=max_recent)
        self._handlers: List[Callable[[LogEntry], None]] = []

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    def set_context(
        self, profile_id: Optional[str] = None, operation: Optional[str] = None
    ) -> None:
        """Attach ``profile_id`` / ``operation`` to subsequent entries."""
        if profile_id is not None:
            self._profile_id = profile_id
        if operation is not None:
            self._operation = operation

    def clear_context(self) -> None:
        self._profile_id = None
        self._operation = None

    def add_handler(self, handler: Callable[[LogEntry], None]) -> None:
        """Register a synchronous callback invoked for every entry."""
        self._handlers.append(handler)

    # ------------------------------------------------------------------
    # Core log method
    # ------------------------------------------------------------------

    async def log(
        self,
        level: LogLevel,
        component: LogComponent,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[Exception] = None,
        duration_ms: Optional[int] = None,
        profile_id: Optional[str] = None,
    ) -> LogEntry:
        """Record one event and return it."""
        entry = LogEntry(
            timestamp=utc_now(),
            level=level,
            component=component,
            message=message,
            profile_id=profile_id or self._profile_id,
            operation=self._operation,
            data=data or {},
            duration_ms=duration_ms,
        )
        if error is not None:
            entry.error_type = type(error).__name__
            entry.error_message = str(error)

        self._recent_logs.append(entry)
        _mirror.log(level.value, "[%s] %s", component.value, message)

        if level.value >= self.min_level.value:
            await self._write_to_file(entry)

        for handler in self._handlers:
            try:
                handler(entry)
            except Exception:
                _mirror.exception("Event handler %r failed", handler)

        return entry

    async def debug(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.DEBUG, component, message, **kwargs)

    async def info(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.INFO, component, message, **kwargs)

    async def warning(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.WARNING, component, message, **kwargs)

    async def error(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.ERROR, component, message, **kwargs)

    async def critical(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.CRITICAL, component, message, **kwargs)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_recent(
        self,
        limit: int = 20,
        level: Optional[LogLevel] = None,
        component: Optional[LogComponent] = None,
        profile_id: Optional[str] = None,
    ) -> List[LogEntry]:
        """Most recent entries from the ring buffer, oldest first."""
        logs = list(self._recent_logs)
        if level is not None:
            logs = [e for e in logs if e.level == level]
        if component is not None:
            logs = [e for e in logs if e.component == component]
        if profile_id is not None:
            logs = [e for e in logs if e.profile_id == profile_id]
        return logs[-limit:]

    def summarize(self) -> Dict[str, Any]:
        """Counts by level and component over the ring buffer."""
        logs = list(self._recent_logs)
        return {
            "total": len(logs),
            "by_level": dict(Counter(e.level.name_str for e in logs)),
            "by_component": dict(Counter(e.component.value for e in logs)),
            "errors": [e.to_readable() for e in logs if e.level.value >= LogLevel.ERROR.value],
        }

    # ------------------------------------------------------------------
    # File output
    # ------------------------------------------------------------------

    async def _write_to_file(self, entry: LogEntry) -> None:
        json_line = entry.to_json() + "\n"

        async with aiofiles.open(self._events_log, "a", encoding="utf-8") as f:
            await f.write(json_line)

        if entry.level.value >= LogLevel.ERROR.value:
            async with aiofiles.open(self._error_log, "a", encoding="utf-8") as f:
                await f.write(json_line)


# ======================================================================
# GLOBAL LOGGER SINGLETON
# ======================================================================

_logger: Optional[EventLogger] = None


def init_logger(
    log_dir: str = "logs",
    min_level: LogLevel = LogLevel.INFO,
    max_recent: int = 1000,
) -> EventLogger:
    """Create and register the global ``EventLogger``."""
    global _logger
    _logger = EventLogger(log_dir=log_dir, min_level=min_level, max_recent=max_recent)
    return _logger


def get_logger() -> EventLogger:
    """
    Raises:
        RuntimeError: If ``init_logger()`` has not been called yet.
    """
    if _logger is None:
        raise RuntimeError("Event logger not initialized. Call init_logger() first.")
    return _logger


def is_initialized() -> bool:
    return _logger is not None


def reset_logger() -> None:
    global _logger
    _logger = None
