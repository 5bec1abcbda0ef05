"""Project generator: build targets, filters and options to a ProjectDescriptor.

Steps:
    1. expand selected test_suites into their concrete members
    2. host closure: auto-include linked targets (e.g. a test's host app)
    3. path filtering of targets and additional files
    4. effective per-target options
    5. deterministic descriptor (targets by label, files lexicographic)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

import structlog

from xcgen.exceptions import (
    MissingHostForTestError,
    NoTargetsSelectedError,
    UnresolvedTestSuiteError,
)
from xcgen.extractor import ProjectInfoExtractor
from xcgen.logging.base import LogSink
from xcgen.logging.sinks import StructlogSink
from xcgen.models.descriptor import DescriptorTarget, ProjectDescriptor
from xcgen.models.label import BuildLabel
from xcgen.models.rule import RuleInfo
from xcgen.options import OptionSet
from xcgen.path_filters import PathFilterSet, normalize_pattern
from xcgen.progress import (
    PHASE_CLOSURE,
    PHASE_FILTER,
    PHASE_OPTIONS,
    ProgressTracker,
)

log = structlog.get_logger("xcgen.generator")


class ProjectGenerator:
    """Produce a ``ProjectDescriptor`` from selected rules.

    Linked labels are looked up in the known rule set: the extractor's
    cache (if an extractor is given) plus any ``known_rules`` passed in.
    """

    def __init__(
        self,
        extractor: ProjectInfoExtractor | None = None,
        known_rules: Iterable[RuleInfo] = (),
        suite_members: Mapping[BuildLabel, Iterable[BuildLabel]] | None = None,
        log_sink: LogSink | None = None,
    ) -> None:
        self.extractor = extractor
        self._extra_rules = {rule.label: rule for rule in known_rules}
        self._extra_suites = {
            label: frozenset(members) for label, members in (suite_members or {}).items()
        }
        self.log_sink = log_sink or StructlogSink()
        self.progress = ProgressTracker()

    def known_rules(self) -> dict[BuildLabel, RuleInfo]:
        rules = dict(self._extra_rules)
        if self.extractor is not None:
            rules.update(self.extractor.known_rules)
        return rules

    def known_suites(self) -> dict[BuildLabel, frozenset[BuildLabel]]:
        suites = dict(self._extra_suites)
        if self.extractor is not None:
            suites.update(self.extractor.suite_members)
        return suites

    def generate(
        self,
        name: str,
        build_targets: Sequence[RuleInfo],
        path_filters: Sequence[str],
        additional_file_paths: Sequence[str],
        output_dir: str,
        options: OptionSet | None = None,
    ) -> ProjectDescriptor:
        """Resolve, filter and order targets into a descriptor.

        Raises ``NoTargetsSelectedError`` when nothing survives filtering,
        ``MissingHostForTestError`` when a linked label is not a known rule
        and ``UnresolvedTestSuiteError`` for a suite with unknown members.
        No partial descriptor is ever returned.
        """
        progress = ProgressTracker()
        self.progress = progress
        options = options or OptionSet()
        known = self.known_rules()
        for rule in build_targets:
            known.setdefault(rule.label, rule)

        with progress.phase(PHASE_CLOSURE) as phase:
            selected = self._expand_selected_suites(build_targets, known)
            auto_added = self._resolve_host_closure(selected, known)
            phase.detail = f"selected={len(selected) - len(auto_added)}, added={len(auto_added)}"

        filters = PathFilterSet(path_filters)
        with progress.phase(PHASE_FILTER) as phase:
            included = [
                rule for rule in selected.values() if filters.includes(rule.label.package_component)
            ]
            if not included:
                raise NoTargetsSelectedError()
            files = sorted(
                {
                    normalize_pattern(path)
                    for path in additional_file_paths
                    if filters.includes_file(path)
                }
            )
            excluded = len(selected) - len(included)
            phase.detail = f"included={len(included)}, excluded={excluded}"
        if excluded:
            log.debug("generator.targets_filtered", excluded=excluded, filters=filters.patterns)

        with progress.phase(PHASE_OPTIONS):
            targets = tuple(
                DescriptorTarget(rule=rule, options=options.resolve_for_target(rule.label))
                for rule in sorted(included, key=lambda r: r.label)
            )

        descriptor = ProjectDescriptor(
            name=name,
            output_dir=output_dir,
            targets=targets,
            additional_files=tuple(files),
            path_filters=tuple(filters.patterns),
        )
        log.info(
            "generator.generated",
            project=name,
            targets=len(descriptor.targets),
            files=len(descriptor.additional_files),
        )
        return descriptor

    async def generate_from_extraction(
        self,
        name: str,
        build_targets: Sequence[RuleInfo],
        path_filters: Sequence[str],
        additional_file_paths: Sequence[str],
        output_dir: str,
        options: OptionSet | None = None,
    ) -> ProjectDescriptor:
        """Refresh the extractor's rules when needed, then generate.

        Extraction runs as awaited subprocess work; generation itself runs
        afterwards on the caller's task.
        """
        if self.extractor is not None and self._needs_extraction(build_targets):
            await self.extractor.extract_target_rules()
        return self.generate(
            name, build_targets, path_filters, additional_file_paths, output_dir, options
        )

    def _needs_extraction(self, build_targets: Sequence[RuleInfo]) -> bool:
        if not self.extractor.known_rules:
            return True
        suites = self.known_suites()
        return any(rule.is_test_suite and rule.label not in suites for rule in build_targets)

    def _expand_selected_suites(
        self,
        build_targets: Sequence[RuleInfo],
        known: Mapping[BuildLabel, RuleInfo],
    ) -> dict[BuildLabel, RuleInfo]:
        selected: dict[BuildLabel, RuleInfo] = {}
        suites = self.known_suites()
        for rule in build_targets:
            if not rule.is_test_suite:
                selected.setdefault(rule.label, rule)
                continue
            members = suites.get(rule.label)
            if members is None:
                raise UnresolvedTestSuiteError(str(rule.label))
            for member in sorted(members):
                member_rule = known.get(member)
                if member_rule is None:
                    raise UnresolvedTestSuiteError(str(rule.label))
                selected.setdefault(member, member_rule)
        return selected

    def _resolve_host_closure(
        self,
        selected: dict[BuildLabel, RuleInfo],
        known: Mapping[BuildLabel, RuleInfo],
    ) -> list[BuildLabel]:
        """Add every linked label transitively; return the labels added."""
        added: list[BuildLabel] = []
        pending = sorted(selected)
        while pending:
            label = pending.pop(0)
            rule = selected[label]
            for linked in rule.sorted_linked_labels():
                if linked in selected:
                    continue
                host = known.get(linked)
                if host is None:
                    raise MissingHostForTestError(str(label), str(linked))
                selected[linked] = host
                added.append(linked)
                pending.append(linked)
                log.info("generator.host_added", target=str(label), host=str(linked))
                self.log_sink.info(f"Added host {linked} required by {label}")
        return added
