"""xcgen: Xcode project descriptors generated from Bazel rule metadata."""

__version__ = "0.1.0"

from xcgen.extractor import ExtractionOutcome, ProjectInfoExtractor, expand_test_suites
from xcgen.generator import ProjectGenerator
from xcgen.golden import DiffLine, diff, validate_diff
from xcgen.models.descriptor import DescriptorTarget, ProjectDescriptor
from xcgen.models.label import BuildLabel
from xcgen.models.rule import RuleEntry, RuleInfo
from xcgen.options import OptionKey, OptionSet

__all__ = [
    "BuildLabel",
    "DescriptorTarget",
    "DiffLine",
    "ExtractionOutcome",
    "OptionKey",
    "OptionSet",
    "ProjectDescriptor",
    "ProjectGenerator",
    "ProjectInfoExtractor",
    "RuleEntry",
    "RuleInfo",
    "diff",
    "expand_test_suites",
    "validate_diff",
]
