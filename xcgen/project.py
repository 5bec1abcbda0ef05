"""Project bundles and the session that keeps their rule infos current.

A project bundle is a directory::

    <name>.xcgenproj/
        project.json          shared settings and options
        <user>.user.json      per-user options (optional)
        configs/*.xcgenconfig generator configs
"""

from __future__ import annotations

import asyncio
import getpass
import json
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path
from typing import Any, ClassVar

import structlog
from pydantic import BaseModel, Field, ValidationError

from xcgen.bazel.query import BazelQueryRunner, normalize_package
from xcgen.config import CONFIG_SUFFIX, ConfigSession, GeneratorConfig, is_config_filename
from xcgen.exceptions import (
    ConfigError,
    ConfigNotFoundError,
    InvalidWorkspaceError,
    ProjectFileError,
    UnknownOptionKeyError,
)
from xcgen.extractor import ExtractionOutcome, ProjectInfoExtractor, QueryRunner
from xcgen.logging.base import LogSink
from xcgen.logging.sinks import FanOutSink, MessageLog, StructlogSink, UIMessage
from xcgen.models.label import BuildLabel
from xcgen.models.rule import RuleInfo
from xcgen.options import OptionSet
from xcgen.processing import ChildRegistry, ProcessingCounter

log = structlog.get_logger("xcgen.project")

PROJECT_BUNDLE_SUFFIX = ".xcgenproj"
BUILD_FILENAMES = ("BUILD", "BUILD.bazel")
WORKSPACE_FILENAME = "WORKSPACE"


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "default"


class XcgenProject(BaseModel):
    """Persisted project settings."""

    PROJECT_FILENAME: ClassVar[str] = "project.json"
    CONFIGS_SUBPATH: ClassVar[str] = "configs"

    project_name: str
    workspace_root: str
    bazel_path: str | None = None
    packages: list[str] = Field(default_factory=list)
    options: dict[str, dict[str, Any]] = Field(default_factory=dict)

    @staticmethod
    def user_filename(user: str | None = None) -> str:
        return f"{user or _current_user()}.user.json"

    def workspace_root_path(self, bundle_path: str | Path | None = None) -> Path:
        """Absolute workspace root; relative roots are resolved against the bundle's folder."""
        root = Path(self.workspace_root)
        if not root.is_absolute() and bundle_path is not None:
            root = Path(bundle_path).parent / root
        return root.resolve()

    def option_set(self) -> OptionSet:
        try:
            return OptionSet.from_dict(self.options)
        except (UnknownOptionKeyError, ValueError) as e:
            raise ProjectFileError(f"Invalid options in project {self.project_name}: {e}") from e

    @classmethod
    def load(cls, bundle_path: str | Path, user: str | None = None) -> XcgenProject:
        bundle = Path(bundle_path)
        project_file = bundle / cls.PROJECT_FILENAME
        try:
            data = json.loads(project_file.read_text())
            project = cls.model_validate(data)
        except (OSError, ValueError, ValidationError) as e:
            raise ProjectFileError(f"Failed to read project at {bundle}: {e}") from e

        user_file = bundle / cls.user_filename(user)
        if user_file.is_file():
            try:
                user_data = json.loads(user_file.read_text())
            except (OSError, ValueError) as e:
                raise ProjectFileError(f"Failed to read per-user settings {user_file}: {e}") from e
            project.options.update(user_data.get("options") or {})
        return project

    def save(self, bundle_path: str | Path, options: OptionSet, user: str | None = None) -> None:
        """Write shared settings to project.json and per-user options beside it."""
        bundle = Path(bundle_path)
        bundle.mkdir(parents=True, exist_ok=True)
        (bundle / self.CONFIGS_SUBPATH).mkdir(exist_ok=True)

        shared = self.model_copy(update={"options": options.to_dict(per_user=False)})
        (bundle / self.PROJECT_FILENAME).write_text(
            json.dumps(shared.model_dump(), indent=2, sort_keys=True) + "\n"
        )
        per_user = options.to_dict(per_user=True)
        user_file = bundle / self.user_filename(user)
        if per_user:
            user_file.write_text(json.dumps({"options": per_user}, indent=2, sort_keys=True) + "\n")
        elif user_file.exists():
            user_file.unlink()


QueryRunnerFactory = Callable[[str, Path], QueryRunner]


def _default_query_runner(bazel_path: str, workspace_root: Path) -> QueryRunner:
    return BazelQueryRunner(bazel_path, workspace_root)


class ProjectSession:
    """A loaded project: packages, options, rule infos and open configs.

    Changing packages or the bazel path re-runs extraction. Completed
    extractions replace ``rule_infos`` wholesale (last completed wins)
    and are pushed to every open config session.
    """

    def __init__(
        self,
        project: XcgenProject,
        bundle_path: str | Path | None = None,
        log_sink: LogSink | None = None,
        query_runner_factory: QueryRunnerFactory | None = None,
    ) -> None:
        self.project = project
        self.bundle_path = Path(bundle_path) if bundle_path is not None else None
        self.message_log = MessageLog()
        sinks: list[LogSink] = [self.message_log, StructlogSink(project=project.project_name)]
        if log_sink is not None:
            sinks.append(log_sink)
        self.log_sink: LogSink = FanOutSink(sinks)
        self.options = project.option_set()
        self.processing = ProcessingCounter()
        self.processing.add_listener(self._forward_processing)
        self._forwarded_count = 0
        self.children = ChildRegistry()
        self.extractor: ProjectInfoExtractor | None = None
        self._query_runner_factory = query_runner_factory or _default_query_runner
        self._rule_infos: list[RuleInfo] = []
        self._suite_members: dict[BuildLabel, frozenset[BuildLabel]] = {}
        self.generator_config_names = self._scan_config_names()

    # ── construction ─────────────────────────────────────────────────────

    @classmethod
    def create(
        cls,
        project_name: str,
        workspace_root: str | Path,
        bundle_dir: str | Path | None = None,
        **kwargs: Any,
    ) -> ProjectSession:
        """Start a new, unsaved project rooted at *workspace_root*."""
        root = Path(workspace_root).resolve()
        bundle = Path(bundle_dir or root) / f"{project_name}{PROJECT_BUNDLE_SUFFIX}"
        project = XcgenProject(project_name=project_name, workspace_root=str(root))
        session = cls(project, bundle_path=bundle, **kwargs)
        session.log_sink.syslog(f"Create project: {project_name}")
        return session

    @classmethod
    def open(cls, bundle_path: str | Path, **kwargs: Any) -> ProjectSession:
        return cls(XcgenProject.load(bundle_path), bundle_path=bundle_path, **kwargs)

    def save(self) -> Path:
        if self.bundle_path is None:
            raise ProjectFileError("Project has no bundle path")
        self.project.save(self.bundle_path, self.options)
        return self.bundle_path

    # ── properties ───────────────────────────────────────────────────────

    @property
    def project_name(self) -> str:
        return self.project.project_name

    @property
    def workspace_root(self) -> Path:
        return self.project.workspace_root_path(self.bundle_path)

    @property
    def packages(self) -> list[str]:
        return list(self.project.packages)

    @packages.setter
    def packages(self, value: Iterable[str]) -> None:
        self.project.packages = [normalize_package(p) for p in value]
        self.update_rule_entries()

    @property
    def bazel_path(self) -> str | None:
        return self.project.bazel_path

    @bazel_path.setter
    def bazel_path(self, value: str | None) -> None:
        self.project.bazel_path = value
        self.update_rule_entries()

    @property
    def rule_infos(self) -> list[RuleInfo]:
        return list(self._rule_infos)

    @property
    def suite_members(self) -> dict[BuildLabel, frozenset[BuildLabel]]:
        return dict(self._suite_members)

    @property
    def messages(self) -> list[UIMessage]:
        return self.message_log.messages

    @property
    def busy(self) -> bool:
        return self.processing.busy

    # ── BUILD files and workspace ────────────────────────────────────────

    def package_for_build_file(self, build_file: str | Path) -> str | None:
        """Workspace-relative package of a BUILD file, or None if outside the workspace."""
        package_dir = Path(build_file).resolve().parent
        try:
            relative = package_dir.relative_to(self.workspace_root)
        except ValueError:
            return None
        package = relative.as_posix()
        return "" if package == "." else package

    def contains_build_file(self, build_file: str | Path) -> bool:
        package = self.package_for_build_file(build_file)
        return package is not None and package in self.project.packages

    def add_build_file(self, build_file: str | Path) -> bool:
        """Add the package holding *build_file*; False if outside the workspace or present."""
        if Path(build_file).name not in BUILD_FILENAMES:
            return False
        package = self.package_for_build_file(build_file)
        if package is None or package in self.project.packages:
            return False
        self.packages = [*self.project.packages, package]
        return True

    def remove_packages(self, packages: Iterable[str]) -> None:
        """Drop packages; open configs are closed first since their targets may vanish."""
        to_remove = {normalize_package(p) for p in packages}
        self.close_child_configs()
        self.packages = [p for p in self.project.packages if p not in to_remove]

    def check_workspace(self) -> None:
        workspace_file = self.workspace_root / WORKSPACE_FILENAME
        if not workspace_file.is_file():
            self.log_sink.error(
                f"The workspace root does not contain a Bazel WORKSPACE file at {workspace_file}"
            )
            raise InvalidWorkspaceError(str(workspace_file))

    # ── extraction ───────────────────────────────────────────────────────

    def update_rule_entries(self) -> asyncio.Task[ExtractionOutcome] | None:
        """Start a fresh extraction; returns its task, or None if it cannot run now."""
        if not self.bazel_path:
            return None
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            log.debug("project.extraction_deferred", reason="no running event loop")
            return None

        runner = self._query_runner_factory(self.bazel_path, self.workspace_root)
        if self.extractor is None:
            self.extractor = ProjectInfoExtractor(
                runner,
                self.project.packages,
                log_sink=self.log_sink,
                processing=self.processing,
            )
        else:
            # Same extractor so overlapping requests share one generation counter.
            self.extractor.query_runner = runner
            self.extractor.packages = [normalize_package(p) for p in self.project.packages]
        return self.extractor.start_extraction(self._on_extraction_complete)

    async def refresh_rule_entries(self) -> list[RuleInfo]:
        """Run an extraction and wait for it; raises on failure."""
        task = self.update_rule_entries()
        if task is None:
            return self.rule_infos
        outcome = await task
        if outcome.error is not None:
            raise outcome.error
        return self.rule_infos

    def _on_extraction_complete(self, outcome: ExtractionOutcome) -> None:
        if not outcome.ok:
            return
        self._rule_infos = list(outcome.rules or [])
        self._suite_members = dict(outcome.suite_members or {})
        for child in self.children:
            child.project_rule_infos = self.rule_infos
            child.project_suite_members = self.suite_members

    def _forward_processing(self, count: int) -> None:
        delta = count - self._forwarded_count
        self._forwarded_count = count
        for child in self.children:
            if delta > 0:
                child.processing.started(delta)
            elif delta < 0:
                child.processing.finished(-delta)

    # ── configs ──────────────────────────────────────────────────────────

    @property
    def config_folder(self) -> Path | None:
        if self.bundle_path is None:
            return None
        return self.bundle_path / XcgenProject.CONFIGS_SUBPATH

    @property
    def has_child_configs(self) -> bool:
        return len(self.children) > 0

    def config_path(self, name: str) -> Path | None:
        folder = self.config_folder
        if folder is None:
            return None
        return folder / f"{name}{CONFIG_SUFFIX}"

    def _scan_config_names(self) -> list[str]:
        folder = self.config_folder
        if folder is None or not folder.is_dir():
            return []
        return sorted(
            path.name[: -len(CONFIG_SUFFIX)]
            for path in folder.iterdir()
            if path.is_file() and is_config_filename(path.name)
        )

    def load_config(self, name: str) -> ConfigSession:
        existing = self.children.get(name)
        if existing is not None:
            return existing

        path = self.config_path(name)
        if path is None or not path.is_file():
            raise ConfigNotFoundError(f"No such config: {name}")
        try:
            config = GeneratorConfig.load(path)
        except ConfigError:
            raise
        except Exception as e:
            raise ConfigError(f"Unexpected exception loading config from '{path}': {e}") from e
        return self._track_config(name, config)

    def save_config(self, name: str, config: GeneratorConfig) -> ConfigSession:
        path = self.config_path(name)
        if path is None:
            raise ProjectFileError("Project must be saved before configs can be added")
        path.parent.mkdir(parents=True, exist_ok=True)
        config.save(path)
        if name not in self.generator_config_names:
            self.generator_config_names = sorted([*self.generator_config_names, name])
        existing = self.children.get(name)
        if existing is not None:
            existing.config = config
            return existing
        return self._track_config(name, config)

    def delete_configs(self, names: Sequence[str]) -> None:
        """Delete config files; failures are reported and the rest still processed."""
        remaining = set(self.generator_config_names)
        for name in names:
            remaining.discard(name)
            child = self.children.unregister(name)
            if child is not None:
                child.close()
            path = self.config_path(name)
            if path is None:
                continue
            try:
                path.unlink()
            except OSError as e:
                self.log_sink.error(f"Failed to delete config {name}", details=str(e))
        self.generator_config_names = sorted(remaining)

    def close_child_configs(self) -> None:
        self.children.close_all()

    def _track_config(self, name: str, config: GeneratorConfig) -> ConfigSession:
        session = ConfigSession(name, config, parent_options=self.options, log_sink=self.log_sink)
        session.project_rule_infos = self.rule_infos
        session.project_suite_members = self.suite_members
        session.close_callbacks.append(lambda child: self.children.unregister(child.name))
        self.children.register(session, parent_in_flight=self.processing.count)
        if name not in self.generator_config_names:
            self.generator_config_names = sorted([*self.generator_config_names, name])
        return session
