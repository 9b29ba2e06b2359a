"""Structured event logging for the DigitalMe style engine."""
from digitalme.logging.models import LogLevel, LogComponent, LogEntry
from digitalme.logging.event_logger import (
    EventLogger,
    get_logger,
    init_logger,
    is_initialized,
    reset_logger,
)
from digitalme.logging.component_logger import ComponentLogger, TimedOperation

__all__ = [
    "LogLevel", "LogComponent", "LogEntry",
    "EventLogger", "init_logger", "get_logger", "is_initialized", "reset_logger",
    "ComponentLogger", "TimedOperation",
]
