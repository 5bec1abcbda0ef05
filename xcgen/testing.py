"""Test doubles and assertions for xcgen, for use in unit / golden tests.

Usage::

    from xcgen.testing import FakeQueryRunner, assert_no_diff

    runner = FakeQueryRunner(xml=QUERY_XML)          # answers from canned XML
    runner.queue_response(entries, delay=0.05)       # next package query only
    assert_no_diff(diff(candidate, golden))
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

import pytest

from xcgen.bazel.query import normalize_package, parse_query_xml
from xcgen.exceptions import ExtractionFailedError
from xcgen.golden import DiffLine
from xcgen.models.label import BuildLabel
from xcgen.models.rule import RuleEntry


def assert_no_diff(lines: Iterable[DiffLine]) -> None:
    """Fail the current test listing every difference, if there are any."""
    lines = list(lines)
    if lines:
        body = "\n".join(str(line) for line in lines)
        pytest.fail(f"{len(lines)} difference(s) from golden:\n{body}", pytrace=False)


@dataclass
class _QueuedResponse:
    entries: list[RuleEntry] | None
    delay: float
    error: ExtractionFailedError | None


class FakeQueryRunner:
    """Stand-in for ``BazelQueryRunner`` that never starts a process.

    Package queries return the known entries whose package is requested;
    label queries return the known entries with those labels. Responses
    queued with ``queue_response`` take precedence, one per package query.
    """

    def __init__(
        self,
        entries: Sequence[RuleEntry] = (),
        *,
        xml: str | None = None,
        delay: float = 0.0,
    ) -> None:
        self.entries: list[RuleEntry] = list(entries)
        if xml is not None:
            self.entries.extend(parse_query_xml(xml))
        self.delay = delay
        self._queued: list[_QueuedResponse] = []
        self._calls: list[tuple[str, list[str]]] = []

    @property
    def calls(self) -> list[tuple[str, list[str]]]:
        """``(kind, arguments)`` per query received."""
        return self._calls

    def queue_response(
        self,
        entries: Sequence[RuleEntry] | None = None,
        delay: float = 0.0,
        error: ExtractionFailedError | None = None,
    ) -> None:
        self._queued.append(
            _QueuedResponse(list(entries) if entries is not None else None, delay, error)
        )

    async def query_packages(self, packages: Iterable[str]) -> list[RuleEntry]:
        wanted = [normalize_package(p) for p in packages]
        self._calls.append(("packages", wanted))
        if self._queued:
            response = self._queued.pop(0)
            await asyncio.sleep(response.delay)
            if response.error is not None:
                raise response.error
            if response.entries is not None:
                return response.entries
        elif self.delay:
            await asyncio.sleep(self.delay)
        return [e for e in self.entries if e.label.package_component in wanted]

    async def query_labels(self, labels: Iterable[BuildLabel]) -> list[RuleEntry]:
        wanted = set(labels)
        self._calls.append(("labels", sorted(str(label) for label in wanted)))
        return [e for e in self.entries if e.label in wanted]
