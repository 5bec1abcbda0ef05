"""Headless project generation and project creation.

Every failure is raised as a ``HeadlessModeError`` subclass carrying the
process exit code the CLI should use.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Sequence
from pathlib import Path

import structlog

from xcgen.bazel.query import BazelQueryRunner, normalize_package
from xcgen.config import ConfigSession, GeneratorConfig
from xcgen.exceptions import (
    ConfigNotFoundError,
    ExtractionFailedError,
    GenerationError,
    InvalidConfigContentsError,
    MalformedLabelError,
    ProjectFileError,
    XcgenError,
)
from xcgen.extractor import ProjectInfoExtractor, QueryRunner
from xcgen.generator import ProjectGenerator
from xcgen.logging.base import LogSink
from xcgen.logging.sinks import StructlogSink
from xcgen.models.label import BuildLabel
from xcgen.options import OptionSet
from xcgen.progress import PHASE_EXTRACT, PHASE_WRITE, ProgressTracker
from xcgen.project import PROJECT_BUNDLE_SUFFIX, WORKSPACE_FILENAME, ProjectSession, XcgenProject
from xcgen.writer import DescriptorWriter

log = structlog.get_logger("xcgen.headless")


class HeadlessModeError(XcgenError):
    """Base class for headless failures; ``exit_code`` is the process status."""

    exit_code = 127


class InvalidConfigPathError(HeadlessModeError):
    exit_code = 11


class InvalidConfigFileContentsError(HeadlessModeError):
    exit_code = 12


class ExplicitOutputOptionRequiredError(HeadlessModeError):
    exit_code = 13


class InvalidBazelPathError(HeadlessModeError):
    exit_code = 14


class GenerationFailedError(HeadlessModeError):
    exit_code = 15


class InvalidWorkspaceRootOverrideError(HeadlessModeError):
    exit_code = 16


class InvalidProjectFileContentsError(HeadlessModeError):
    exit_code = 20


class MissingBazelPathError(HeadlessModeError):
    exit_code = 21


class MissingBuildTargetsError(HeadlessModeError):
    exit_code = 22


class InvalidProjectBundleNameError(HeadlessModeError):
    exit_code = 23


class BazelTargetProcessingFailedError(HeadlessModeError):
    exit_code = 24


class MissingWorkspaceFileError(HeadlessModeError):
    exit_code = 25


QueryRunnerFactory = Callable[[str, Path], QueryRunner]


def query_timeout_from_env() -> float | None:
    """Seconds from ``XCGEN_QUERY_TIMEOUT``; unset or empty means no timeout."""
    raw = os.environ.get("XCGEN_QUERY_TIMEOUT", "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        log.warning("headless.invalid_query_timeout", value=raw)
        return None


def _default_query_runner(bazel_path: str, workspace_root: Path) -> QueryRunner:
    return BazelQueryRunner(bazel_path, workspace_root, timeout=query_timeout_from_env())


def verify_bazel_path(bazel_path: str | None) -> str:
    if not bazel_path:
        raise MissingBazelPathError("A path to the Bazel binary is required (--bazel)")
    path = Path(bazel_path)
    if not path.is_file() or not os.access(path, os.X_OK):
        raise InvalidBazelPathError(f"Bazel binary at {bazel_path} does not exist or is not executable")
    return str(path)


def verify_workspace(workspace_root: Path) -> None:
    if not (workspace_root / WORKSPACE_FILENAME).is_file():
        raise MissingWorkspaceFileError(
            f"The workspace root {workspace_root} does not contain a {WORKSPACE_FILENAME} file"
        )


def parse_build_targets(values: Sequence[str]) -> list[BuildLabel]:
    if not values:
        raise MissingBuildTargetsError("At least one build target is required")
    try:
        return [BuildLabel.parse(value) for value in values]
    except MalformedLabelError as e:
        raise MissingBuildTargetsError(str(e)) from e


def packages_for(labels: Sequence[BuildLabel]) -> list[str]:
    return sorted({label.package_component for label in labels})


def find_enclosing_project(path: Path) -> Path | None:
    """The ``*.xcgenproj`` bundle that contains *path*, if any."""
    for parent in path.resolve().parents:
        if parent.name.endswith(PROJECT_BUNDLE_SUFFIX) and (parent / XcgenProject.PROJECT_FILENAME).is_file():
            return parent
    return None


class HeadlessGenerator:
    """Generate a project descriptor from a generator config without UI."""

    def __init__(
        self,
        bazel_path: str | None,
        config_path: str | Path,
        output_folder: str | Path | None = None,
        workspace_root: str | Path | None = None,
        build_targets: Sequence[str] = (),
        log_sink: LogSink | None = None,
        query_runner_factory: QueryRunnerFactory | None = None,
    ) -> None:
        self.bazel_path = bazel_path
        self.config_path = Path(config_path)
        self.output_folder = output_folder
        self.workspace_root = workspace_root
        self.build_targets = list(build_targets)
        self.log_sink = log_sink or StructlogSink(mode="generate")
        self.query_runner_factory = query_runner_factory or _default_query_runner
        self.progress = ProgressTracker()

    def _load_config(self) -> GeneratorConfig:
        try:
            return GeneratorConfig.load(self.config_path)
        except ConfigNotFoundError as e:
            raise InvalidConfigPathError(str(e)) from e
        except InvalidConfigContentsError as e:
            raise InvalidConfigFileContentsError(str(e)) from e

    def _load_project(self) -> tuple[Path | None, XcgenProject | None]:
        bundle = find_enclosing_project(self.config_path)
        if bundle is None:
            return None, None
        try:
            return bundle, XcgenProject.load(bundle)
        except ProjectFileError as e:
            raise InvalidProjectFileContentsError(str(e)) from e

    def _resolve_workspace_root(self, bundle: Path | None, project: XcgenProject | None) -> Path:
        if self.workspace_root is not None:
            root = Path(self.workspace_root)
            if not root.is_dir():
                raise InvalidWorkspaceRootOverrideError(
                    f"Workspace root override {self.workspace_root} is not a directory"
                )
            return root.resolve()
        if project is not None:
            return project.workspace_root_path(bundle)
        return self.config_path.resolve().parent

    async def generate(self) -> Path:
        """Run the whole headless generation; return the written bundle path."""
        bazel_path = verify_bazel_path(self.bazel_path)
        config = self._load_config()

        output_folder = self.output_folder or config.output_dir
        if not output_folder:
            raise ExplicitOutputOptionRequiredError(
                "The config has no output folder; pass --outputfolder"
            )

        bundle, project = self._load_project()
        workspace_root = self._resolve_workspace_root(bundle, project)
        verify_workspace(workspace_root)

        labels = parse_build_targets(self.build_targets or config.build_targets)
        if self.build_targets:
            config = config.model_copy(update={"build_targets": [str(label) for label in labels]})

        options = project.option_set() if project is not None else OptionSet()
        session = ConfigSession(
            config.project_name, config, parent_options=options, log_sink=self.log_sink
        )

        packages = set(packages_for(labels))
        if project is not None:
            packages.update(normalize_package(p) for p in project.packages)

        runner = self.query_runner_factory(bazel_path, workspace_root)
        extractor = ProjectInfoExtractor(
            runner, sorted(packages), log_sink=self.log_sink, processing=session.processing
        )
        generator = ProjectGenerator(extractor=extractor, log_sink=self.log_sink)

        try:
            with self.progress.phase(PHASE_EXTRACT) as phase:
                await extractor.extract_target_rules()
                phase.detail = f"rules={len(extractor.known_rules)}"
        except ExtractionFailedError as e:
            raise BazelTargetProcessingFailedError(str(e)) from e
        session.project_rule_infos = extractor.rule_infos
        session.project_suite_members = extractor.suite_members

        selected = session.selected_rules()
        if not selected:
            raise MissingBuildTargetsError("None of the requested build targets were found")

        try:
            descriptor = generator.generate(
                config.project_name,
                selected,
                config.path_filters,
                config.additional_file_paths,
                str(output_folder),
                session.effective_options(),
            )
        except GenerationError as e:
            raise GenerationFailedError(str(e)) from e
        finally:
            self.progress.merge(generator.progress)

        with self.progress.phase(PHASE_WRITE) as phase:
            bundle_path = DescriptorWriter(output_folder).write(descriptor)
            phase.detail = str(bundle_path)
        log.info("headless.generated", project=config.project_name, bundle=str(bundle_path))
        return bundle_path


class HeadlessProjectCreator:
    """Create a project bundle with one generator config from a list of targets."""

    def __init__(
        self,
        bazel_path: str | None,
        project_name: str,
        workspace_root: str | Path,
        build_targets: Sequence[str],
        output_folder: str | Path | None = None,
        log_sink: LogSink | None = None,
    ) -> None:
        self.bazel_path = bazel_path
        self.project_name = project_name
        self.workspace_root = Path(workspace_root)
        self.build_targets = list(build_targets)
        self.output_folder = output_folder
        self.log_sink = log_sink

    def _verify_name(self) -> str:
        name = (self.project_name or "").strip()
        if name.endswith(PROJECT_BUNDLE_SUFFIX):
            name = name[: -len(PROJECT_BUNDLE_SUFFIX)]
        if not name or "/" in name or name.startswith("."):
            raise InvalidProjectBundleNameError(f"Invalid project name {self.project_name!r}")
        return name

    def create(self) -> Path:
        """Write ``<name>.xcgenproj`` and return its path."""
        bazel_path = verify_bazel_path(self.bazel_path)
        name = self._verify_name()
        if not self.workspace_root.is_dir():
            raise InvalidWorkspaceRootOverrideError(
                f"Workspace root {self.workspace_root} is not a directory"
            )
        workspace_root = self.workspace_root.resolve()
        verify_workspace(workspace_root)
        labels = parse_build_targets(self.build_targets)

        session = ProjectSession.create(
            name,
            workspace_root,
            bundle_dir=self.output_folder or workspace_root,
            log_sink=self.log_sink,
        )
        # Assigned on the model so no extraction is started.
        session.project.bazel_path = bazel_path
        session.project.packages = packages_for(labels)
        bundle_path = session.save()

        config = GeneratorConfig(
            project_name=name,
            build_targets=[str(label) for label in labels],
            path_filters=session.packages,
        )
        session.save_config(name, config)
        log.info("headless.project_created", project=name, bundle=str(bundle_path))
        return bundle_path
