"""Typed option model with project-wide values and per-target overrides.

Resolution order for ``OptionSet.get``:
    1. the per-target override for the requested target (if any)
    2. the project-wide value (if any)
    3. the built-in default for the key
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from xcgen.exceptions import UnknownOptionKeyError
from xcgen.models.label import BuildLabel

# Keys used in the persisted flat mapping
_PROJECT_VALUE_KEY = "p"
_TARGET_VALUES_KEY = "t"


class OptionKey(str, Enum):
    ALWAYS_SEARCH_USER_PATHS = "ALWAYS_SEARCH_USER_PATHS"
    BAZEL_CONTINUE_BUILDING_AFTER_ERROR = "BAZEL_CONTINUE_BUILDING_AFTER_ERROR"
    BUILD_ACTION_PRE_ACTION_SCRIPT = "BUILD_ACTION_PRE_ACTION_SCRIPT"
    COMMANDLINE_ARGUMENTS = "COMMANDLINE_ARGUMENTS"
    ENVIRONMENT_VARIABLES = "ENVIRONMENT_VARIABLES"
    GENERATE_RUNFILES = "GENERATE_RUNFILES"
    INCLUDE_BUILD_SOURCES = "INCLUDE_BUILD_SOURCES"
    SUPPRESS_SWIFT_MODULE_DEBUG_INFO = "SUPPRESS_SWIFT_MODULE_DEBUG_INFO"


@dataclass(frozen=True)
class OptionSpec:
    """Static properties of an option key."""

    default: str | None
    supports_target_values: bool = False
    per_user: bool = False


OPTION_SPECS: dict[OptionKey, OptionSpec] = {
    OptionKey.ALWAYS_SEARCH_USER_PATHS: OptionSpec(default="NO"),
    OptionKey.BAZEL_CONTINUE_BUILDING_AFTER_ERROR: OptionSpec(default="NO"),
    OptionKey.BUILD_ACTION_PRE_ACTION_SCRIPT: OptionSpec(
        default=None, supports_target_values=True
    ),
    OptionKey.COMMANDLINE_ARGUMENTS: OptionSpec(
        default=None, supports_target_values=True, per_user=True
    ),
    OptionKey.ENVIRONMENT_VARIABLES: OptionSpec(
        default=None, supports_target_values=True, per_user=True
    ),
    OptionKey.GENERATE_RUNFILES: OptionSpec(default="NO"),
    OptionKey.INCLUDE_BUILD_SOURCES: OptionSpec(default="NO"),
    OptionKey.SUPPRESS_SWIFT_MODULE_DEBUG_INFO: OptionSpec(default="NO"),
}


def coerce_key(key: Any) -> OptionKey:
    """Return the ``OptionKey`` for *key*, raising if it is not recognized."""
    if isinstance(key, OptionKey):
        return key
    if isinstance(key, str):
        try:
            return OptionKey(key)
        except ValueError:
            raise UnknownOptionKeyError(key) from None
    raise UnknownOptionKeyError(key)


def _target_key(target_label: BuildLabel | str) -> str:
    return str(target_label)


@dataclass
class Option:
    """One option's project value and per-target overrides."""

    default_value: str | None = None
    project_value: str | None = None
    target_values: dict[str, str] = field(default_factory=dict)

    @property
    def has_explicit_value(self) -> bool:
        return self.project_value is not None or bool(self.target_values)


class OptionSet:
    """Mapping from every recognized ``OptionKey`` to its ``Option``."""

    def __init__(self) -> None:
        self.options: dict[OptionKey, Option] = {
            key: Option(default_value=spec.default) for key, spec in OPTION_SPECS.items()
        }

    def __getitem__(self, key: OptionKey | str) -> Option:
        return self.options[coerce_key(key)]

    def get(self, key: OptionKey | str, target_label: BuildLabel | str | None = None) -> str | None:
        option = self.options[coerce_key(key)]
        if target_label is not None:
            override = option.target_values.get(_target_key(target_label))
            if override is not None:
                return override
        if option.project_value is not None:
            return option.project_value
        return option.default_value

    def set(
        self,
        key: OptionKey | str,
        value: str | None,
        target_label: BuildLabel | str | None = None,
    ) -> None:
        """Set the project value, or a per-target override if *target_label* is given.

        ``value=None`` clears the corresponding entry.
        """
        option_key = coerce_key(key)
        option = self.options[option_key]
        if target_label is None:
            option.project_value = value
            return

        if not OPTION_SPECS[option_key].supports_target_values:
            raise UnknownOptionKeyError(option_key.value, "option does not support per-target values")
        target = _target_key(target_label)
        if value is None:
            option.target_values.pop(target, None)
        else:
            option.target_values[target] = value

    def resolve_for_target(self, target_label: BuildLabel | str) -> dict[str, str]:
        """Effective value of every option for one target; unset keys are omitted."""
        resolved: dict[str, str] = {}
        for key in OptionKey:
            value = self.get(key, target_label)
            if value is not None:
                resolved[key.value] = value
        return resolved

    def merge(self, other: OptionSet) -> OptionSet:
        """Return a copy of this set with *other*'s explicit values layered on top."""
        merged = self.copy()
        for key, option in other.options.items():
            target = merged.options[key]
            if option.project_value is not None:
                target.project_value = option.project_value
            target.target_values.update(option.target_values)
        return merged

    def copy(self) -> OptionSet:
        clone = OptionSet()
        clone.options = copy.deepcopy(self.options)
        return clone

    # ── persistence ──────────────────────────────────────────────────────

    def to_dict(self, per_user: bool | None = None) -> dict[str, dict[str, Any]]:
        """Flat persisted form; keys without explicit values are omitted.

        ``per_user`` limits the output to per-user (True) or shared (False)
        options. ``None`` includes both.
        """
        data: dict[str, dict[str, Any]] = {}
        for key, option in self.options.items():
            if per_user is not None and OPTION_SPECS[key].per_user != per_user:
                continue
            if not option.has_explicit_value:
                continue
            entry: dict[str, Any] = {}
            if option.project_value is not None:
                entry[_PROJECT_VALUE_KEY] = option.project_value
            if option.target_values:
                entry[_TARGET_VALUES_KEY] = dict(sorted(option.target_values.items()))
            data[key.value] = entry
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> OptionSet:
        options = cls()
        for raw_key, entry in (data or {}).items():
            key = coerce_key(raw_key)
            if not isinstance(entry, Mapping):
                raise ValueError(f"Option {raw_key} must be a mapping, got {type(entry).__name__}")
            project_value = entry.get(_PROJECT_VALUE_KEY)
            if project_value is not None:
                options.set(key, str(project_value))
            for target, value in (entry.get(_TARGET_VALUES_KEY) or {}).items():
                options.set(key, str(value), target_label=target)
        return options

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, OptionSet):
            return NotImplemented
        return self.options == other.options

    def __repr__(self) -> str:
        return f"OptionSet({self.to_dict()!r})"


def parse_environment_variables(text: str | None) -> dict[str, str]:
    """Split newline separated ``KEY=VALUE`` pairs on the first ``=``.

    Lines without ``=`` map to an empty value; blank lines are skipped.
    """
    env: dict[str, str] = {}
    if not text:
        return env
    for line in text.splitlines():
        if not line.strip():
            continue
        name, _, value = line.partition("=")
        env[name] = value
    return env
