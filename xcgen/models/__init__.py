"""Data models for labels, rules and generated descriptors."""

from xcgen.models.descriptor import DescriptorTarget, ProjectDescriptor
from xcgen.models.label import BuildLabel, as_label
from xcgen.models.rule import (
    SELECTABLE_RULE_TYPES,
    TEST_SUITE_TYPE,
    RuleEntry,
    RuleInfo,
    filter_selectable,
)

__all__ = [
    "BuildLabel",
    "DescriptorTarget",
    "ProjectDescriptor",
    "RuleEntry",
    "RuleInfo",
    "SELECTABLE_RULE_TYPES",
    "TEST_SUITE_TYPE",
    "as_label",
    "filter_selectable",
]
