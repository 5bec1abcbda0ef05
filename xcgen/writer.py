"""Descriptor serialization and on-disk output."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from xcgen.models.descriptor import ProjectDescriptor
from xcgen.options import OptionKey, parse_environment_variables

log = structlog.get_logger("xcgen.writer")

PROJECT_BUNDLE_SUFFIX = ".xcodeproj"
DESCRIPTOR_FILENAME = "project.json"
FORMAT_VERSION = 1


def _new_id() -> str:
    return uuid.uuid4().hex[:24].upper()


def serialize_descriptor(descriptor: ProjectDescriptor) -> dict[str, Any]:
    """JSON-ready document for a descriptor.

    ``id`` and ``generated_at`` are regenerated on every call; the golden
    diff treats them as volatile.
    """
    targets = []
    for target in descriptor.targets:
        env_text = target.options.get(OptionKey.ENVIRONMENT_VARIABLES.value)
        targets.append(
            {
                "id": _new_id(),
                "label": str(target.label),
                "name": target.label.target_component,
                "package": target.label.package_component,
                "type": target.rule.type,
                "linked_targets": [str(label) for label in target.rule.sorted_linked_labels()],
                "options": dict(sorted(target.options.items())),
                "environment": parse_environment_variables(env_text),
            }
        )
    return {
        "format_version": FORMAT_VERSION,
        "id": _new_id(),
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "project": {
            "name": descriptor.name,
            "output_dir": descriptor.output_dir,
        },
        "targets": targets,
        "additional_files": list(descriptor.additional_files),
        "path_filters": list(descriptor.path_filters),
    }


def bundle_path_for(descriptor: ProjectDescriptor, output_dir: str | Path | None = None) -> Path:
    base = Path(output_dir if output_dir is not None else descriptor.output_dir)
    return base / f"{descriptor.name}{PROJECT_BUNDLE_SUFFIX}"


class DescriptorWriter:
    """Write ``<output_dir>/<name>.xcodeproj/project.json``."""

    def __init__(self, output_dir: str | Path | None = None) -> None:
        self.output_dir = output_dir

    def write(self, descriptor: ProjectDescriptor) -> Path:
        bundle = bundle_path_for(descriptor, self.output_dir)
        bundle.mkdir(parents=True, exist_ok=True)
        document = serialize_descriptor(descriptor)
        (bundle / DESCRIPTOR_FILENAME).write_text(
            json.dumps(document, indent=2, sort_keys=True) + "\n"
        )
        log.info("writer.wrote", bundle=str(bundle), targets=len(descriptor.targets))
        return bundle
