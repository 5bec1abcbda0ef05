"""Diagnostic sink abstract interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum


class LogLevel(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    SYSLOG = "syslog"  # recorded for the system log only, never shown to users


class LogSink(ABC):
    """Receiver for structured diagnostic events emitted by the core.

    Replaces a global notification centre: producers are handed a sink
    explicitly and consumers (console, UI message list) implement it.
    """

    @abstractmethod
    def record(self, level: LogLevel, message: str, details: str | None = None) -> None:
        """Record one diagnostic event."""
        ...

    def error(self, message: str, details: str | None = None) -> None:
        self.record(LogLevel.ERROR, message, details)

    def warning(self, message: str, details: str | None = None) -> None:
        self.record(LogLevel.WARNING, message, details)

    def info(self, message: str, details: str | None = None) -> None:
        self.record(LogLevel.INFO, message, details)

    def syslog(self, message: str, details: str | None = None) -> None:
        self.record(LogLevel.SYSLOG, message, details)
