"""Diagnostic event sinks."""

from xcgen.logging.base import LogLevel, LogSink
from xcgen.logging.sinks import FanOutSink, MessageLog, StructlogSink, UIMessage

__all__ = ["FanOutSink", "LogLevel", "LogSink", "MessageLog", "StructlogSink", "UIMessage"]
