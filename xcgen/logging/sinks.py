"""Concrete diagnostic sinks."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

import structlog

from xcgen.logging.base import LogLevel, LogSink

_STRUCTLOG_METHODS = {
    LogLevel.ERROR: "error",
    LogLevel.WARNING: "warning",
    LogLevel.INFO: "info",
    LogLevel.SYSLOG: "debug",
}


class StructlogSink(LogSink):
    """Forward diagnostic events to a structlog logger."""

    def __init__(self, logger_name: str = "xcgen.messages", **context: str) -> None:
        self._log = structlog.get_logger(logger_name).bind(**context)

    def record(self, level: LogLevel, message: str, details: str | None = None) -> None:
        method = getattr(self._log, _STRUCTLOG_METHODS[level])
        if details is not None:
            method(message, details=details)
        else:
            method(message)


@dataclass(frozen=True)
class UIMessage:
    text: str
    level: LogLevel


class MessageLog(LogSink):
    """Collect user-visible messages in arrival order.

    Syslog-level events are not user visible and are dropped.
    """

    def __init__(self) -> None:
        self.messages: list[UIMessage] = []

    def record(self, level: LogLevel, message: str, details: str | None = None) -> None:
        if level == LogLevel.SYSLOG:
            return
        text = f"{message} [Details]: {details}" if details else message
        self.messages.append(UIMessage(text=text, level=level))

    def clear(self) -> None:
        self.messages.clear()

    def of_level(self, level: LogLevel) -> list[UIMessage]:
        return [m for m in self.messages if m.level == level]


class FanOutSink(LogSink):
    """Deliver every event to several sinks."""

    def __init__(self, sinks: Iterable[LogSink]) -> None:
        self.sinks = list(sinks)

    def record(self, level: LogLevel, message: str, details: str | None = None) -> None:
        for sink in self.sinks:
            sink.record(level, message, details)
