"""Rule metadata records produced by extraction."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from xcgen.models.label import BuildLabel, as_label

TEST_SUITE_TYPE = "test_suite"
TEST_RULE_SUFFIX = "_test"
MANUAL_TAG = "manual"

# Rule kinds offered for selection when building a generator config.
SELECTABLE_RULE_TYPES: frozenset[str] = frozenset(
    {
        "apple_watch1_extension",
        "objc_binary",
        "objc_library",
        "ios_application",
        "ios_extension",
        "ios_framework",
        "ios_test",
        "swift_library",
        "test_suite",
    }
)


@dataclass(frozen=True, order=True)
class RuleInfo:
    """A build target's label, rule kind and linked auxiliary targets.

    ``linked_target_labels`` holds association links such as a test's host
    application. They are not build dependencies.
    """

    label: BuildLabel
    type: str
    linked_target_labels: frozenset[BuildLabel] = field(default=frozenset(), compare=False)

    @classmethod
    def create(
        cls,
        label: BuildLabel | str,
        type: str,
        linked: Iterable[BuildLabel | str] = (),
    ) -> RuleInfo:
        return cls(
            label=as_label(label),
            type=type,
            linked_target_labels=frozenset(as_label(item) for item in linked),
        )

    @property
    def is_test_suite(self) -> bool:
        return self.type == TEST_SUITE_TYPE

    @property
    def is_test(self) -> bool:
        """A concrete test rule (kinds named `*_test`), not a suite."""
        return self.type.endswith(TEST_RULE_SUFFIX)

    def sorted_linked_labels(self) -> list[BuildLabel]:
        return sorted(self.linked_target_labels)


@dataclass(frozen=True)
class RuleEntry:
    """Raw extraction record, before test_suite expansion.

    A suite with ``members_from_package`` set named no tests and its
    implicit members were not reported; they are the non-manual tests of
    its own package.
    """

    info: RuleInfo
    test_suite_members: tuple[BuildLabel, ...] = ()
    tags: tuple[str, ...] = ()
    members_from_package: bool = False

    @property
    def label(self) -> BuildLabel:
        return self.info.label

    @property
    def type(self) -> str:
        return self.info.type


def filter_selectable(
    rules: Iterable[RuleInfo],
    selected: Iterable[BuildLabel | str] = (),
) -> list[RuleInfo]:
    """Keep selectable rule kinds plus anything the caller already selected.

    Results are sorted by (type, label), the order the target picker shows.
    """
    selected_labels = {as_label(item) for item in selected}
    kept = [
        rule
        for rule in rules
        if rule.type in SELECTABLE_RULE_TYPES or rule.label in selected_labels
    ]
    return sorted(kept, key=lambda rule: (rule.type, rule.label))
