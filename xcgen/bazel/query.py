"""Bazel query invocation and ``--output=xml`` parsing."""

from __future__ import annotations

import asyncio
import xml.etree.ElementTree as ET
from collections.abc import Iterable, Sequence
from pathlib import Path

import structlog

from xcgen.exceptions import ExtractionFailedError, MalformedLabelError
from xcgen.models.label import BuildLabel
from xcgen.models.rule import TEST_SUITE_TYPE, RuleEntry, RuleInfo

log = structlog.get_logger("xcgen.bazel")

# Label attributes that associate a rule with an auxiliary target.
LINKED_LABEL_ATTRIBUTES = ("xctest_app", "test_host", "host")

_SUITE_MEMBERS_ATTRIBUTE = "tests"
_IMPLICIT_SUITE_MEMBERS_ATTRIBUTE = "$implicit_tests"
_TAGS_ATTRIBUTE = "tags"

# Keep diagnostics readable when bazel dumps a long stderr.
_STDERR_TAIL_LINES = 20


def normalize_package(package: str) -> str:
    """Strip a leading ``//`` and trailing ``/`` from a package path."""
    package = package.strip()
    if package.startswith("//"):
        package = package[2:]
    return package.rstrip("/")


def rules_in_packages_expression(packages: Iterable[str]) -> str:
    """Build ``kind(rule, //a:all + //b:all)`` for the given packages."""
    targets = [f"//{normalize_package(p)}:all" for p in packages]
    if not targets:
        raise ValueError("At least one package is required")
    return f"kind(rule, {' + '.join(targets)})"


def labels_expression(labels: Iterable[BuildLabel]) -> str:
    return " + ".join(str(label) for label in sorted(set(labels)))


def _stderr_tail(stderr: bytes) -> str:
    lines = stderr.decode(errors="replace").strip().splitlines()
    return "\n".join(lines[-_STDERR_TAIL_LINES:])


def _list_labels(list_el: ET.Element) -> list[BuildLabel]:
    return [
        BuildLabel.parse(item.get("value"))
        for item in list_el.iter("label")
        if item.get("value")
    ]


def parse_query_xml(text: str) -> list[RuleEntry]:
    """Parse ``bazel query --output=xml`` into raw rule entries.

    A test_suite's members come from ``tests``; when that is empty, from
    the ``$implicit_tests`` Bazel computes for the package. If neither is
    reported the entry is flagged ``members_from_package``.

    Raises ``ExtractionFailedError`` on malformed XML or labels.
    """
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise ExtractionFailedError(f"malformed query output: {e}") from e

    entries: list[RuleEntry] = []
    try:
        for rule_el in root.iter("rule"):
            name = rule_el.get("name")
            rule_class = rule_el.get("class")
            if not name or not rule_class:
                raise ExtractionFailedError("query output has a rule without name or class")

            linked: set[BuildLabel] = set()
            explicit: list[BuildLabel] = []
            implicit: list[BuildLabel] | None = None
            tags: list[str] = []
            for attr_el in rule_el:
                attr_name = attr_el.get("name")
                if attr_el.tag == "label" and attr_name in LINKED_LABEL_ATTRIBUTES:
                    value = attr_el.get("value")
                    if value:
                        linked.add(BuildLabel.parse(value))
                elif attr_el.tag == "list" and attr_name == _SUITE_MEMBERS_ATTRIBUTE:
                    explicit.extend(_list_labels(attr_el))
                elif attr_el.tag == "list" and attr_name == _IMPLICIT_SUITE_MEMBERS_ATTRIBUTE:
                    implicit = _list_labels(attr_el)
                elif attr_el.tag == "list" and attr_name == _TAGS_ATTRIBUTE:
                    tags.extend(item.get("value", "") for item in attr_el.iter("string"))

            is_suite = rule_class == TEST_SUITE_TYPE
            entries.append(
                RuleEntry(
                    info=RuleInfo(
                        label=BuildLabel.parse(name),
                        type=rule_class,
                        linked_target_labels=frozenset(linked),
                    ),
                    test_suite_members=tuple(explicit or implicit or ()),
                    tags=tuple(tags),
                    members_from_package=is_suite and not explicit and implicit is None,
                )
            )
    except MalformedLabelError as e:
        raise ExtractionFailedError(str(e)) from e
    return entries


class BazelQueryRunner:
    """Run ``bazel query`` in a workspace and parse its XML output."""

    def __init__(
        self,
        bazel_path: str | Path,
        workspace_root: str | Path,
        startup_options: Sequence[str] = (),
        timeout: float | None = None,
    ) -> None:
        self.bazel_path = str(bazel_path)
        self.workspace_root = str(workspace_root)
        self.startup_options = list(startup_options)
        self.timeout = timeout

    def build_command(self, expression: str) -> list[str]:
        return [
            self.bazel_path,
            *self.startup_options,
            "query",
            expression,
            "--output=xml",
            "--keep_going=false",
        ]

    async def run_query(self, expression: str) -> str:
        """Run a query and return its stdout, raising ``ExtractionFailedError`` on failure."""
        cmd = self.build_command(expression)
        log.debug("bazel.query", expression=expression, cwd=self.workspace_root)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=self.workspace_root,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ExtractionFailedError(f"could not run {self.bazel_path}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise ExtractionFailedError(
                f"bazel query timed out after {self.timeout}s: {expression}"
            ) from None

        if proc.returncode != 0:
            raise ExtractionFailedError(
                f"bazel query failed (exit {proc.returncode}): {_stderr_tail(stderr)}"
            )
        return stdout.decode(errors="replace")

    async def query_packages(self, packages: Iterable[str]) -> list[RuleEntry]:
        return parse_query_xml(await self.run_query(rules_in_packages_expression(packages)))

    async def query_labels(self, labels: Iterable[BuildLabel]) -> list[RuleEntry]:
        expression = labels_expression(labels)
        if not expression:
            return []
        return parse_query_xml(await self.run_query(expression))
