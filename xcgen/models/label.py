"""Bazel build label value type."""

from __future__ import annotations

import re
from dataclasses import dataclass

from xcgen.exceptions import MalformedLabelError

_LABEL_PREFIX = "//"

# Characters Bazel never accepts in package names or target names.
_INVALID_CHARS_RE = re.compile(r"[\s\"'\\<>|]")


def _validate(value: str) -> None:
    if not isinstance(value, str):
        raise MalformedLabelError(repr(value), "label must be a string")
    if not value:
        raise MalformedLabelError(value, "label is empty")
    if not value.startswith(_LABEL_PREFIX):
        raise MalformedLabelError(value, "label must begin with '//'")
    if _INVALID_CHARS_RE.search(value):
        raise MalformedLabelError(value, "label contains invalid characters")

    body = value[len(_LABEL_PREFIX) :]
    if body.count(":") > 1:
        raise MalformedLabelError(value, "label contains more than one ':'")

    package, sep, target = body.partition(":")
    if sep and not target:
        raise MalformedLabelError(value, "target name after ':' is empty")
    if not sep and not package:
        raise MalformedLabelError(value, "label names neither a package nor a target")
    if package:
        for segment in package.split("/"):
            if segment in ("", ".", ".."):
                raise MalformedLabelError(value, f"invalid package segment {segment!r}")


@dataclass(frozen=True, order=True)
class BuildLabel:
    """Canonical ``//package[:target]`` label.

    Equality, hashing and ordering all use the canonical string, so labels
    can be used as dict keys and sorted for deterministic output.
    """

    value: str

    def __post_init__(self) -> None:
        _validate(self.value)

    @classmethod
    def parse(cls, value: str) -> BuildLabel:
        return cls(value)

    @property
    def package_component(self) -> str:
        body = self.value[len(_LABEL_PREFIX) :]
        package, _, _ = body.partition(":")
        return package

    @property
    def target_component(self) -> str:
        body = self.value[len(_LABEL_PREFIX) :]
        package, sep, target = body.partition(":")
        if sep:
            return target
        # //foo/bar is shorthand for //foo/bar:bar
        return package.rsplit("/", 1)[-1]

    def __str__(self) -> str:
        return self.value


def as_label(value: BuildLabel | str) -> BuildLabel:
    """Coerce a label or string into a ``BuildLabel``."""
    if isinstance(value, BuildLabel):
        return value
    return BuildLabel.parse(value)
