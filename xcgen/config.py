"""Generator configs: which targets, filters and options make up one project."""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from xcgen.exceptions import (
    ConfigNotFoundError,
    InvalidConfigContentsError,
    MalformedLabelError,
    UnknownOptionKeyError,
)
from xcgen.logging.base import LogSink
from xcgen.logging.sinks import StructlogSink
from xcgen.models.label import BuildLabel
from xcgen.models.rule import TEST_SUITE_TYPE, RuleInfo
from xcgen.options import OptionSet
from xcgen.processing import ProcessingCounter

log = structlog.get_logger("xcgen.config")

CONFIG_SUFFIX = ".xcgenconfig"


def is_config_filename(filename: str) -> bool:
    return filename.endswith(CONFIG_SUFFIX)


class GeneratorConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    project_name: str
    build_targets: list[str] = Field(default_factory=list)
    path_filters: list[str] = Field(default_factory=list)
    additional_file_paths: list[str] = Field(default_factory=list)
    options: dict[str, dict[str, Any]] = Field(default_factory=dict)
    output_dir: str | None = None

    @field_validator("project_name", mode="before")
    @classmethod
    def _strip_whitespace(cls, v: str) -> str:
        return v.strip() if isinstance(v, str) else v

    @field_validator("build_targets")
    @classmethod
    def _validate_labels(cls, v: list[str]) -> list[str]:
        for value in v:
            try:
                BuildLabel.parse(value)
            except MalformedLabelError as e:
                raise ValueError(str(e)) from e
        return v

    @field_validator("options")
    @classmethod
    def _validate_options(cls, v: dict[str, dict[str, Any]]) -> dict[str, dict[str, Any]]:
        try:
            OptionSet.from_dict(v)
        except UnknownOptionKeyError as e:
            raise ValueError(str(e)) from e
        return v

    @property
    def labels(self) -> list[BuildLabel]:
        return [BuildLabel.parse(value) for value in self.build_targets]

    def option_set(self) -> OptionSet:
        return OptionSet.from_dict(self.options)

    @classmethod
    def load(cls, path: str | Path) -> GeneratorConfig:
        path = Path(path)
        if not path.is_file():
            raise ConfigNotFoundError(f"No generator config at {path}")
        try:
            return cls.model_validate_json(path.read_text())
        except (ValidationError, OSError, UnicodeDecodeError) as e:
            raise InvalidConfigContentsError(f"Failed to load config from '{path}': {e}") from e

    def save(self, path: str | Path) -> None:
        Path(path).write_text(json.dumps(self.model_dump(), indent=2, sort_keys=True) + "\n")


class ConfigSession:
    """An open generator config tracked as a child of a project session."""

    def __init__(
        self,
        name: str,
        config: GeneratorConfig,
        parent_options: OptionSet | None = None,
        log_sink: LogSink | None = None,
    ) -> None:
        self.name = name
        self.config = config
        self.parent_options = parent_options
        self.log_sink = log_sink or StructlogSink(config=name)
        self.processing = ProcessingCounter()
        self.project_rule_infos: list[RuleInfo] = []
        self.project_suite_members: Mapping[BuildLabel, frozenset[BuildLabel]] = {}
        self.closed = False
        self.close_callbacks: list[Callable[[ConfigSession], None]] = []

    @property
    def busy(self) -> bool:
        return self.processing.busy

    def effective_options(self) -> OptionSet:
        """The parent's options with this config's explicit values on top."""
        own = self.config.option_set()
        if self.parent_options is None:
            return own
        return self.parent_options.merge(own)

    def selected_rules(self) -> list[RuleInfo]:
        """Resolve the config's build targets against the project's rules.

        Suites resolve to a ``test_suite`` placeholder the generator
        expands; labels the project does not know are skipped with a
        warning.
        """
        by_label = {rule.label: rule for rule in self.project_rule_infos}
        selected: list[RuleInfo] = []
        for label in self.config.labels:
            rule = by_label.get(label)
            if rule is not None:
                selected.append(rule)
            elif label in self.project_suite_members:
                selected.append(RuleInfo(label=label, type=TEST_SUITE_TYPE))
            else:
                self.log_sink.warning(f"Build target {label} is not a known rule")
        return selected

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        log.debug("config.closed", config=self.name)
        for cb in self.close_callbacks:
            cb(self)
