"""Custom exceptions for xcgen."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class XcgenError(Exception):
    """Base exception for all xcgen errors."""


class MalformedLabelError(XcgenError):
    """Raised when a string cannot be parsed as a Bazel build label."""

    def __init__(self, value: str, reason: str):
        self.value = value
        self.reason = reason
        super().__init__(f"Malformed build label {value!r}: {reason}")


class UnknownOptionKeyError(XcgenError):
    """Raised when an option key is not part of the recognized set."""

    def __init__(self, key: Any, reason: str = "not a recognized option key"):
        self.key = key
        super().__init__(f"Unknown option key {key!r}: {reason}")


class ExtractionFailedError(XcgenError):
    """Raised when rule extraction from the build tool fails.

    Extraction is all-or-nothing: no partial results accompany this error.
    """

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Extraction failed: {reason}")


class RecursiveTestSuiteError(ExtractionFailedError):
    """Raised when a test_suite references itself directly or transitively."""

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__("recursive test_suite: " + " -> ".join(self.cycle))


class GenerationError(XcgenError):
    """Base class for failures that abort descriptor generation."""


class NoTargetsSelectedError(GenerationError):
    """Raised when no build targets remain after path filtering."""

    def __init__(self, message: str = "No build targets selected after path filtering"):
        super().__init__(message)


class MissingHostForTestError(GenerationError):
    """Raised when a linked host label is not among the known rules."""

    def __init__(self, test_label: str, host_label: str):
        self.test_label = test_label
        self.host_label = host_label
        super().__init__(
            f"Target {test_label} is linked to {host_label}, which is not a known rule"
        )


class UnresolvedTestSuiteError(GenerationError):
    """Raised when a selected test_suite has no known membership."""

    def __init__(self, suite_label: str):
        self.suite_label = suite_label
        super().__init__(f"Membership of test_suite {suite_label} is unknown; extract rules first")


class DiffMismatchError(XcgenError, AssertionError):
    """Raised when a generated descriptor differs from its golden file."""

    def __init__(self, lines: Sequence[Any]):
        self.lines = list(lines)
        body = "\n".join(str(line) for line in self.lines)
        super().__init__(f"{len(self.lines)} difference(s) from golden:\n{body}")


class ProjectFileError(XcgenError):
    """Raised when a project bundle cannot be read or written."""


class InvalidWorkspaceError(XcgenError):
    """Raised when the workspace root has no Bazel WORKSPACE file."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Missing WORKSPACE file at {path}")


class ConfigError(XcgenError):
    """Raised when a generator config cannot be located or loaded."""


class ConfigNotFoundError(ConfigError):
    """Raised when no generator config exists at the requested location."""


class InvalidConfigContentsError(ConfigError):
    """Raised when a generator config file cannot be parsed or validated."""
