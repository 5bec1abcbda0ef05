"""Package path filters.

A filter is either an exact package path (``foo/bar``) or a recursive
pattern ending in ``/...`` (``foo/...``) that matches the package and
every descendant package. Matching is done on path segments, so
``foo/...`` matches ``foo/bar`` but not ``foobar``.
"""

from __future__ import annotations

from collections.abc import Iterable

RECURSIVE_SUFFIX = "..."


def normalize_pattern(pattern: str) -> str:
    pattern = pattern.strip()
    if pattern.startswith("//"):
        pattern = pattern[2:]
    return pattern.rstrip("/")


def _segments(path: str) -> list[str]:
    return [segment for segment in path.split("/") if segment]


def matches(pattern: str, package: str) -> bool:
    """Return True if *package* is selected by *pattern*."""
    pattern_segments = _segments(normalize_pattern(pattern))
    package_segments = _segments(normalize_pattern(package))

    if pattern_segments and pattern_segments[-1] == RECURSIVE_SUFFIX:
        prefix = pattern_segments[:-1]
        return package_segments[: len(prefix)] == prefix
    return package_segments == pattern_segments


class PathFilterSet:
    """A set of filters; a package is included if any filter matches it.

    An empty set includes nothing.
    """

    def __init__(self, patterns: Iterable[str]) -> None:
        self.patterns = sorted({normalize_pattern(p) for p in patterns})

    def includes(self, package: str) -> bool:
        return any(matches(pattern, package) for pattern in self.patterns)

    def includes_file(self, file_path: str) -> bool:
        """Filter a workspace-relative file by the package directory holding it."""
        directory, _, _ = normalize_pattern(file_path).rpartition("/")
        return self.includes(directory)

    def __len__(self) -> int:
        return len(self.patterns)
