"""Golden-file comparison for serialized project descriptors.

Documents are normalized (volatile keys removed) and flattened into
``path -> value`` entries before comparison. Targets are addressed by
label and scalar list items by value with their count, so ordering
alone never produces a difference but a repeated item does.
"""

from __future__ import annotations

import json
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from xcgen.exceptions import DiffMismatchError

# Regenerated on every run
VOLATILE_KEYS: frozenset[str] = frozenset({"id", "generated_at"})

# List items that are mappings with this key are addressed by its value
_IDENTITY_KEY = "label"


@dataclass(frozen=True)
class DiffLine:
    kind: str  # "added" | "removed" | "changed"
    path: str
    candidate: str | None = None
    golden: str | None = None

    def __str__(self) -> str:
        if self.kind == "added":
            return f"+ {self.path} = {self.candidate}"
        if self.kind == "removed":
            return f"- {self.path} = {self.golden}"
        return f"~ {self.path}: {self.golden} -> {self.candidate}"


def normalize(document: Any, volatile_keys: Iterable[str] = VOLATILE_KEYS) -> Any:
    """Return a copy of *document* without volatile keys, at any depth."""
    volatile = frozenset(volatile_keys)
    if isinstance(document, Mapping):
        return {
            key: normalize(value, volatile)
            for key, value in document.items()
            if key not in volatile
        }
    if isinstance(document, list):
        return [normalize(item, volatile) for item in document]
    return document


def _flatten(value: Any, path: str, out: dict[str, str]) -> None:
    if isinstance(value, Mapping):
        if not value:
            out[path] = "{}"
        for key in sorted(value):
            _flatten(value[key], f"{path}.{key}" if path else str(key), out)
        return

    if isinstance(value, list):
        if not value:
            out[path] = "[]"
        scalars: Counter[str] = Counter()
        for index, item in enumerate(value):
            if isinstance(item, Mapping) and _IDENTITY_KEY in item:
                _flatten(item, f"{path}[{item[_IDENTITY_KEY]}]", out)
            elif isinstance(item, (Mapping, list)):
                _flatten(item, f"{path}[{index}]", out)
            else:
                scalars[json.dumps(item)] += 1
        for item, count in scalars.items():
            out[f"{path}[{item}]"] = "present" if count == 1 else f"present x{count}"
        return

    out[path] = json.dumps(value, sort_keys=True)


def flatten(document: Any) -> dict[str, str]:
    out: dict[str, str] = {}
    _flatten(normalize(document), "", out)
    return out


def render_lines(document: Any) -> list[str]:
    """Normalized document as sorted ``path = value`` lines."""
    return [f"{path} = {value}" for path, value in sorted(flatten(document).items())]


def diff(candidate: Any, golden: Any) -> list[DiffLine]:
    """Structural diff of two serialized descriptors, sorted by path."""
    cand = flatten(candidate)
    gold = flatten(golden)
    lines: list[DiffLine] = []
    for path in sorted(cand.keys() | gold.keys()):
        if path not in gold:
            lines.append(DiffLine("added", path, candidate=cand[path]))
        elif path not in cand:
            lines.append(DiffLine("removed", path, golden=gold[path]))
        elif cand[path] != gold[path]:
            lines.append(DiffLine("changed", path, candidate=cand[path], golden=gold[path]))
    return lines


def load_document(path: str | Path) -> Any:
    return json.loads(Path(path).read_text())


def diff_files(candidate_path: str | Path, golden_path: str | Path) -> list[DiffLine]:
    return diff(load_document(candidate_path), load_document(golden_path))


def validate_diff(lines: Iterable[DiffLine]) -> None:
    """Raise ``DiffMismatchError`` listing every difference, if there are any."""
    lines = list(lines)
    if lines:
        raise DiffMismatchError(lines)
