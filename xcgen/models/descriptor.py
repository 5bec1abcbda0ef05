"""Generation output: the resolved project descriptor."""

from __future__ import annotations

from dataclasses import dataclass, field

from xcgen.models.label import BuildLabel, as_label
from xcgen.models.rule import RuleInfo


@dataclass(frozen=True)
class DescriptorTarget:
    """A resolved rule plus its effective per-target options."""

    rule: RuleInfo
    options: dict[str, str] = field(default_factory=dict)

    @property
    def label(self) -> BuildLabel:
        return self.rule.label


@dataclass(frozen=True)
class ProjectDescriptor:
    """Structured project description handed to the writer.

    Targets are sorted by label and files lexicographically by the
    generator; the descriptor itself only guards against duplicate labels.
    """

    name: str
    output_dir: str
    targets: tuple[DescriptorTarget, ...] = ()
    additional_files: tuple[str, ...] = ()
    path_filters: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        seen: set[BuildLabel] = set()
        for target in self.targets:
            if target.label in seen:
                raise ValueError(f"Duplicate target label in descriptor: {target.label}")
            seen.add(target.label)

    @property
    def labels(self) -> list[BuildLabel]:
        return [target.label for target in self.targets]

    def target_for(self, label: BuildLabel | str) -> DescriptorTarget | None:
        wanted = as_label(label)
        for target in self.targets:
            if target.label == wanted:
                return target
        return None
