"""Per-component event logger and timed-operation context manager.

``ComponentLogger`` binds a fixed ``LogComponent`` so callers do not repeat
it::

    events = ComponentLogger(LogComponent.REFINER)
    await events.info("Refinement applied", data={"words": 120})

``TimedOperation`` (from ``ComponentLogger.timed()``) logs the start,
duration and outcome of a block and never suppresses its exception.
"""

import time
from typing import Any, Optional

from digitalme.logging.event_logger import EventLogger, get_logger
from digitalme.logging.models import LogComponent, LogEntry, LogLevel


class ComponentLogger:
    """Binds a ``LogComponent`` to an ``EventLogger``.

    Args:
        component: Component stamped on every entry.
        event_logger: Explicit target; the global logger is used when omitted.
    """

    def __init__(
        self, component: LogComponent, event_logger: Optional[EventLogger] = None
    ) -> None:
        self.component = component
        self._event_logger = event_logger

    @property
    def target(self) -> EventLogger:
        return self._event_logger or get_logger()

    async def log(self, level: LogLevel, message: str, **kwargs: Any) -> LogEntry:
        return await self.target.log(level, self.component, message, **kwargs)

    async def debug(self, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.DEBUG, message, **kwargs)

    async def info(self, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.INFO, message, **kwargs)

    async def warning(self, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.WARNING, message, **kwargs)

    async def error(
        self, message: str, error: Optional[Exception] = None, **kwargs: Any
    ) -> LogEntry:
        return await self.log(LogLevel.ERROR, message, error=error, **kwargs)

    def timed(self, message: str, **kwargs: Any) -> "TimedOperation":
        """
        Usage::

            async with events.timed("Merging 3 sources", profile_id=pid):
                profile = build_style_profile(weighted)
        """
        return TimedOperation(self, message, **kwargs)


class TimedOperation:
    """Logs ``Starting:`` at DEBUG, then ``Completed:`` (INFO) or ``Failed:`` (ERROR)."""

    def __init__(self, logger: ComponentLogger, message: str, **kwargs: Any) -> None:
        self.logger = logger
        self.message = message
        self.kwargs = kwargs
        self.start: Optional[float] = None

    async def __aenter__(self) -> "TimedOperation":
        self.start = time.monotonic()
        await self.logger.debug(f"Starting: {self.message}", **self.kwargs)
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Any,
    ) -> None:
        assert self.start is not None
        duration_ms = int((time.monotonic() - self.start) * 1000)

        if exc_type is not None:
            await self.logger.error(
                f"Failed: {self.message}",
                error=exc_val if isinstance(exc_val, Exception) else None,
                duration_ms=duration_ms,
                **self.kwargs,
            )
        else:
            await self.logger.info(
                f"Completed: {self.message}", duration_ms=duration_ms, **self.kwargs
            )
