"""Rule extraction: query Bazel, parse rules, expand test_suites.

Extraction shells out to Bazel and may take a long time, so it runs as
an asyncio task. The subprocess is awaited without blocking the event
loop, and completion callbacks run on the loop thread that started the
extraction, so the rule-info cache is only ever mutated there.

Overlapping requests are not cancelled. Every completed extraction
replaces the cache wholesale, so the result that completes last wins,
even when it belongs to an older request. That case is logged as
``extractor.older_result_applied``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Protocol

import structlog

from xcgen.bazel.query import normalize_package
from xcgen.exceptions import ExtractionFailedError, MalformedLabelError, RecursiveTestSuiteError
from xcgen.logging.base import LogSink
from xcgen.logging.sinks import StructlogSink
from xcgen.models.label import BuildLabel
from xcgen.models.rule import MANUAL_TAG, RuleEntry, RuleInfo
from xcgen.processing import ProcessingCounter

log = structlog.get_logger("xcgen.extractor")


class QueryRunner(Protocol):
    """Interface the extractor needs from the build tool collaborator."""

    async def query_packages(self, packages: Iterable[str]) -> list[RuleEntry]: ...

    async def query_labels(self, labels: Iterable[BuildLabel]) -> list[RuleEntry]: ...


@dataclass(frozen=True)
class ExtractionOutcome:
    """Delivered to completion callbacks; exactly one of rules/error is set."""

    generation: int
    rules: list[RuleInfo] | None = None
    error: ExtractionFailedError | None = None
    suite_members: dict[BuildLabel, frozenset[BuildLabel]] | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _missing_suite_members(by_label: Mapping[BuildLabel, RuleEntry]) -> set[BuildLabel]:
    missing: set[BuildLabel] = set()
    for entry in by_label.values():
        if entry.info.is_test_suite:
            missing.update(m for m in entry.test_suite_members if m not in by_label)
    return missing


def _missing_linked_labels(by_label: Mapping[BuildLabel, RuleEntry]) -> set[BuildLabel]:
    missing: set[BuildLabel] = set()
    for entry in by_label.values():
        missing.update(m for m in entry.info.linked_target_labels if m not in by_label)
    return missing


def _package_suite_packages(by_label: Mapping[BuildLabel, RuleEntry]) -> set[str]:
    return {
        entry.label.package_component
        for entry in by_label.values()
        if entry.info.is_test_suite and entry.members_from_package
    }


@dataclass(frozen=True)
class TagFilter:
    """A test_suite's ``tags`` read as a filter over its direct members.

    A test passes when it carries every positive tag and none of the
    ``-tag`` exclusions. ``manual`` on the suite itself filters nothing.
    """

    required: frozenset[str] = frozenset()
    excluded: frozenset[str] = frozenset()

    @classmethod
    def from_tags(cls, tags: Iterable[str]) -> TagFilter:
        required: set[str] = set()
        excluded: set[str] = set()
        for tag in tags:
            if tag.startswith("-"):
                excluded.add(tag[1:])
            elif tag and tag != MANUAL_TAG:
                required.add(tag)
        return cls(frozenset(required), frozenset(excluded))

    def accepts(self, entry: RuleEntry) -> bool:
        tags = set(entry.tags)
        return self.required <= tags and not (self.excluded & tags)


def _package_members(
    suite: RuleEntry, by_label: Mapping[BuildLabel, RuleEntry]
) -> tuple[BuildLabel, ...]:
    """Non-manual tests in the suite's own package."""
    package = suite.label.package_component
    return tuple(
        sorted(
            label
            for label, entry in by_label.items()
            if label.package_component == package
            and entry.info.is_test
            and MANUAL_TAG not in entry.tags
        )
    )


def _resolve_suite(
    root: BuildLabel,
    by_label: Mapping[BuildLabel, RuleEntry],
    cache: dict[BuildLabel, frozenset[BuildLabel]],
) -> frozenset[BuildLabel]:
    """Concrete members of one suite, via an explicit DFS stack.

    ``on_path`` holds the suites currently being expanded; meeting one of
    them again means the suite graph has a cycle. Each suite's tag filter
    applies to its direct concrete members only, not to nested suites.
    """
    if root in cache:
        return cache[root]

    def frame(suite: BuildLabel) -> tuple[BuildLabel, Iterator[BuildLabel], TagFilter]:
        entry = by_label[suite]
        return suite, iter(entry.test_suite_members), TagFilter.from_tags(entry.tags)

    stack = [frame(root)]
    on_path = [root]
    collected: dict[BuildLabel, set[BuildLabel]] = {root: set()}

    while stack:
        suite, members, tag_filter = stack[-1]
        member = next(members, None)
        if member is None:
            stack.pop()
            on_path.pop()
            cache[suite] = frozenset(collected.pop(suite))
            if stack:
                collected[stack[-1][0]].update(cache[suite])
            continue

        entry = by_label.get(member)
        if entry is None:
            raise ExtractionFailedError(f"test_suite {suite} references unknown target {member}")
        if not entry.info.is_test_suite:
            if tag_filter.accepts(entry):
                collected[suite].add(member)
            continue
        if member in on_path:
            cycle = on_path[on_path.index(member) :] + [member]
            raise RecursiveTestSuiteError([str(label) for label in cycle])
        if member in cache:
            collected[suite].update(cache[member])
            continue

        stack.append(frame(member))
        on_path.append(member)
        collected[member] = set()

    return cache[root]


def resolve_test_suites(
    entries: Iterable[RuleEntry],
) -> tuple[list[RuleInfo], dict[BuildLabel, frozenset[BuildLabel]]]:
    """Expand suites and also return each suite's concrete member labels.

    A suite flagged ``members_from_package`` takes the non-manual tests of
    its own package found among *entries*.
    """
    by_label: dict[BuildLabel, RuleEntry] = {}
    for entry in entries:
        by_label.setdefault(entry.label, entry)
    for label, entry in list(by_label.items()):
        if entry.info.is_test_suite and entry.members_from_package:
            by_label[label] = replace(
                entry,
                test_suite_members=_package_members(entry, by_label),
                members_from_package=False,
            )

    concrete: set[BuildLabel] = set()
    cache: dict[BuildLabel, frozenset[BuildLabel]] = {}
    for label, entry in by_label.items():
        if entry.info.is_test_suite:
            concrete.update(_resolve_suite(label, by_label, cache))
        else:
            concrete.add(label)

    rules = [by_label[label].info for label in sorted(concrete)]
    return rules, cache


def expand_test_suites(entries: Iterable[RuleEntry]) -> list[RuleInfo]:
    """Replace every test_suite with its transitive concrete members.

    Returns deduplicated concrete rules sorted by label. Raises
    ``RecursiveTestSuiteError`` on a suite cycle and
    ``ExtractionFailedError`` if a member is not among *entries*.
    """
    rules, _ = resolve_test_suites(entries)
    return rules


class ProjectInfoExtractor:
    """Turn a set of Bazel packages into a resolved list of ``RuleInfo``."""

    def __init__(
        self,
        query_runner: QueryRunner,
        packages: Sequence[str],
        log_sink: LogSink | None = None,
        processing: ProcessingCounter | None = None,
    ) -> None:
        self.query_runner = query_runner
        self.packages = [normalize_package(p) for p in packages]
        self.log_sink = log_sink or StructlogSink()
        self.processing = processing or ProcessingCounter()
        self._known_rules: dict[BuildLabel, RuleInfo] = {}
        self._suite_members: dict[BuildLabel, frozenset[BuildLabel]] = {}
        self._generation = 0
        self._applied_generation = 0
        self._tasks: set[asyncio.Task[ExtractionOutcome]] = set()

    @property
    def known_rules(self) -> dict[BuildLabel, RuleInfo]:
        """Rules from the last applied extraction, keyed by label."""
        return dict(self._known_rules)

    @property
    def suite_members(self) -> dict[BuildLabel, frozenset[BuildLabel]]:
        """Concrete members of every test_suite seen by the last applied extraction."""
        return dict(self._suite_members)

    @property
    def rule_infos(self) -> list[RuleInfo]:
        return [self._known_rules[label] for label in sorted(self._known_rules)]

    @property
    def applied_generation(self) -> int:
        return self._applied_generation

    # ── extraction ───────────────────────────────────────────────────────

    async def extract_target_rules(self) -> list[RuleInfo]:
        """Extract, expand and apply rules for the configured packages.

        Raises ``ExtractionFailedError`` (or its ``RecursiveTestSuiteError``
        subclass); the cache is left untouched on failure.
        """
        generation = self._next_generation()
        async with self.processing.track():
            rules, suites = await self._extract()
        self._apply(generation, rules, suites)
        return rules

    def start_extraction(
        self,
        on_complete: Callable[[ExtractionOutcome], None] | None = None,
    ) -> asyncio.Task[ExtractionOutcome]:
        """Schedule an extraction on the running loop and return its task.

        The processing counter is incremented before this returns and
        decremented once *on_complete* has run.
        """
        generation = self._next_generation()
        self.processing.started()
        try:
            task = asyncio.create_task(
                self._run_extraction(generation, on_complete), name=f"extract-{generation}"
            )
        except BaseException:
            self.processing.finished()
            raise
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait(self) -> None:
        """Wait for every scheduled extraction to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run_extraction(
        self,
        generation: int,
        on_complete: Callable[[ExtractionOutcome], None] | None,
    ) -> ExtractionOutcome:
        try:
            try:
                rules, suites = await self._extract()
            except ExtractionFailedError as e:
                self.log_sink.error("Failed to extract build targets", details=e.reason)
                outcome = ExtractionOutcome(generation=generation, error=e)
            else:
                self._apply(generation, rules, suites)
                outcome = ExtractionOutcome(
                    generation=generation, rules=rules, suite_members=dict(suites)
                )

            if on_complete is not None:
                try:
                    on_complete(outcome)
                except Exception:
                    log.exception("extractor.callback_error", generation=generation)
            return outcome
        finally:
            self.processing.finished()

    async def _extract(self) -> tuple[list[RuleInfo], dict[BuildLabel, frozenset[BuildLabel]]]:
        if not self.packages:
            return [], {}
        try:
            entries = await self.query_runner.query_packages(self.packages)
            by_label = {entry.label: entry for entry in entries}
            await self._fetch_outside_packages(by_label)
            rules, suites = resolve_test_suites(by_label.values())
        except ExtractionFailedError:
            raise
        except (MalformedLabelError, OSError, ValueError) as e:
            raise ExtractionFailedError(str(e)) from e

        log.info(
            "extractor.extracted", packages=len(self.packages), rules=len(rules), suites=len(suites)
        )
        return rules, suites

    async def _fetch_outside_packages(self, by_label: dict[BuildLabel, RuleEntry]) -> None:
        """Pull in suite members and linked targets outside the configured packages.

        Packages of suites that take their package's tests are queried
        whole. A suite member Bazel does not know fails the extraction; an
        unknown linked target is left out for the generator to report.
        """
        queried = set(self.packages)
        requested: set[BuildLabel] = set()
        while True:
            packages = _package_suite_packages(by_label) - queried
            if packages:
                queried.update(packages)
                for entry in await self.query_runner.query_packages(sorted(packages)):
                    by_label.setdefault(entry.label, entry)
                continue

            missing_members = _missing_suite_members(by_label)
            unresolved = sorted(missing_members & requested)
            if unresolved:
                names = ", ".join(str(label) for label in unresolved)
                raise ExtractionFailedError(f"test_suite members not found: {names}")

            wanted = (missing_members | _missing_linked_labels(by_label)) - requested
            if not wanted:
                return
            requested.update(wanted)
            for entry in await self.query_runner.query_labels(sorted(wanted)):
                by_label.setdefault(entry.label, entry)

    def _next_generation(self) -> int:
        self._generation += 1
        return self._generation

    def _apply(
        self,
        generation: int,
        rules: Sequence[RuleInfo],
        suites: Mapping[BuildLabel, frozenset[BuildLabel]],
    ) -> None:
        if generation < self._applied_generation:
            log.warning(
                "extractor.older_result_applied",
                generation=generation,
                replaced_generation=self._applied_generation,
            )
        self._known_rules = {rule.label: rule for rule in rules}
        self._suite_members = dict(suites)
        self._applied_generation = generation
