"""Tests for headless generation and project creation."""

from __future__ import annotations

import json

import pytest

from xcgen.config import GeneratorConfig
from xcgen.exceptions import ExtractionFailedError
from xcgen.headless import (
    BazelTargetProcessingFailedError,
    ExplicitOutputOptionRequiredError,
    GenerationFailedError,
    HeadlessGenerator,
    HeadlessProjectCreator,
    InvalidBazelPathError,
    InvalidConfigFileContentsError,
    InvalidConfigPathError,
    InvalidProjectBundleNameError,
    InvalidWorkspaceRootOverrideError,
    MissingBazelPathError,
    MissingBuildTargetsError,
    MissingWorkspaceFileError,
    query_timeout_from_env,
)
from xcgen.options import OptionKey, OptionSet
from xcgen.progress import PHASE_EXTRACT, PHASE_WRITE
from xcgen.project import XcgenProject
from xcgen.writer import DESCRIPTOR_FILENAME


def _config(path, **overrides):
    data = {
        "project_name": "App",
        "build_targets": ["//app:AppTests"],
        "path_filters": ["app/..."],
    }
    data.update(overrides)
    path.write_text(json.dumps(data))
    return path


@pytest.fixture
def config_path(workspace):
    return _config(workspace / "App.xcgenconfig")


def _generator(bazel_binary, config_path, runner, **kwargs) -> HeadlessGenerator:
    return HeadlessGenerator(
        bazel_path=str(bazel_binary),
        config_path=config_path,
        query_runner_factory=lambda bazel, root: runner,
        **kwargs,
    )


class TestExitCodes:
    def test_codes_are_unique(self):
        errors = [
            InvalidConfigPathError,
            InvalidConfigFileContentsError,
            ExplicitOutputOptionRequiredError,
            InvalidBazelPathError,
            GenerationFailedError,
            InvalidWorkspaceRootOverrideError,
            MissingBazelPathError,
            MissingBuildTargetsError,
            InvalidProjectBundleNameError,
            BazelTargetProcessingFailedError,
            MissingWorkspaceFileError,
        ]
        codes = [e.exit_code for e in errors]
        assert len(set(codes)) == len(codes)
        assert InvalidConfigPathError.exit_code == 11
        assert BazelTargetProcessingFailedError.exit_code == 24


class TestHeadlessGenerator:
    @pytest.mark.asyncio
    async def test_generate(self, tmp_path, bazel_binary, config_path, fake_runner):
        out = tmp_path / "out"
        headless = _generator(bazel_binary, config_path, fake_runner, output_folder=out)
        bundle = await headless.generate()

        assert bundle == out / "App.xcodeproj"
        doc = json.loads((bundle / DESCRIPTOR_FILENAME).read_text())
        assert [t["label"] for t in doc["targets"]] == ["//app:App", "//app:AppTests"]
        phases = [p.phase for p in headless.progress.phases]
        assert phases[0] == PHASE_EXTRACT
        assert phases[-1] == PHASE_WRITE
        assert headless.progress.status_of(PHASE_WRITE) == "completed"

    @pytest.mark.asyncio
    async def test_build_target_override(self, tmp_path, bazel_binary, config_path, fake_runner):
        headless = _generator(
            bazel_binary,
            config_path,
            fake_runner,
            output_folder=tmp_path / "out",
            build_targets=["//app:Lib"],
        )
        bundle = await headless.generate()
        doc = json.loads((bundle / DESCRIPTOR_FILENAME).read_text())
        assert [t["label"] for t in doc["targets"]] == ["//app:Lib"]

    @pytest.mark.asyncio
    async def test_output_dir_from_config(self, tmp_path, bazel_binary, workspace, fake_runner):
        path = _config(workspace / "Out.xcgenconfig", output_dir=str(tmp_path / "cfg-out"))
        bundle = await _generator(bazel_binary, path, fake_runner).generate()
        assert bundle == tmp_path / "cfg-out" / "App.xcodeproj"

    @pytest.mark.asyncio
    async def test_uses_enclosing_project(self, tmp_path, bazel_binary, workspace, fake_runner):
        bundle_path = tmp_path / "elsewhere" / "App.xcgenproj"
        options = OptionSet()
        options.set(OptionKey.GENERATE_RUNFILES, "YES")
        XcgenProject(project_name="App", workspace_root=str(workspace)).save(bundle_path, options)
        config_path = bundle_path / "configs" / "App.xcgenconfig"
        GeneratorConfig(
            project_name="App", build_targets=["//app:App"], path_filters=["app"]
        ).save(config_path)

        bundle = await _generator(
            bazel_binary, config_path, fake_runner, output_folder=tmp_path / "out"
        ).generate()
        doc = json.loads((bundle / DESCRIPTOR_FILENAME).read_text())
        assert doc["targets"][0]["options"]["GENERATE_RUNFILES"] == "YES"

    @pytest.mark.asyncio
    async def test_queries_project_packages_for_test_host(
        self, tmp_path, bazel_binary, workspace, fake_runner
    ):
        bundle_path = tmp_path / "elsewhere" / "App.xcgenproj"
        XcgenProject(
            project_name="App", workspace_root=str(workspace), packages=["app", "tests/ui"]
        ).save(bundle_path, OptionSet())
        config_path = bundle_path / "configs" / "UITests.xcgenconfig"
        GeneratorConfig(
            project_name="UITests", build_targets=["//tests/ui:UITests"], path_filters=["..."]
        ).save(config_path)

        bundle = await _generator(
            bazel_binary, config_path, fake_runner, output_folder=tmp_path / "out"
        ).generate()
        doc = json.loads((bundle / DESCRIPTOR_FILENAME).read_text())
        assert [t["label"] for t in doc["targets"]] == ["//app:App", "//tests/ui:UITests"]
        assert fake_runner.calls == [("packages", ["app", "tests/ui"])]

    @pytest.mark.asyncio
    async def test_fetches_test_host_outside_config_packages(
        self, tmp_path, bazel_binary, workspace, fake_runner
    ):
        config_path = workspace / "UITests.xcgenconfig"
        GeneratorConfig(
            project_name="UITests", build_targets=["//tests/ui:UITests"], path_filters=["..."]
        ).save(config_path)

        bundle = await _generator(
            bazel_binary, config_path, fake_runner, output_folder=tmp_path / "out"
        ).generate()
        doc = json.loads((bundle / DESCRIPTOR_FILENAME).read_text())
        assert [t["label"] for t in doc["targets"]] == ["//app:App", "//tests/ui:UITests"]
        assert fake_runner.calls == [("packages", ["tests/ui"]), ("labels", ["//app:App"])]

    @pytest.mark.asyncio
    async def test_missing_bazel(self, config_path, fake_runner):
        headless = HeadlessGenerator(bazel_path=None, config_path=config_path)
        with pytest.raises(MissingBazelPathError):
            await headless.generate()

    @pytest.mark.asyncio
    async def test_invalid_bazel(self, tmp_path, config_path):
        headless = HeadlessGenerator(bazel_path=str(tmp_path / "nope"), config_path=config_path)
        with pytest.raises(InvalidBazelPathError):
            await headless.generate()

    @pytest.mark.asyncio
    async def test_missing_config(self, tmp_path, bazel_binary, fake_runner):
        headless = _generator(bazel_binary, tmp_path / "nope.xcgenconfig", fake_runner)
        with pytest.raises(InvalidConfigPathError):
            await headless.generate()

    @pytest.mark.asyncio
    async def test_invalid_config(self, tmp_path, bazel_binary, fake_runner):
        path = tmp_path / "bad.xcgenconfig"
        path.write_text("[]")
        with pytest.raises(InvalidConfigFileContentsError):
            await _generator(bazel_binary, path, fake_runner).generate()

    @pytest.mark.asyncio
    async def test_output_required(self, bazel_binary, config_path, fake_runner):
        with pytest.raises(ExplicitOutputOptionRequiredError):
            await _generator(bazel_binary, config_path, fake_runner).generate()

    @pytest.mark.asyncio
    async def test_missing_workspace_file(self, tmp_path, bazel_binary, config_path, fake_runner):
        config_path.parent.joinpath("WORKSPACE").unlink()
        headless = _generator(bazel_binary, config_path, fake_runner, output_folder=tmp_path / "out")
        with pytest.raises(MissingWorkspaceFileError):
            await headless.generate()

    @pytest.mark.asyncio
    async def test_workspace_override_must_exist(self, tmp_path, bazel_binary, config_path, fake_runner):
        headless = _generator(
            bazel_binary,
            config_path,
            fake_runner,
            output_folder=tmp_path / "out",
            workspace_root=tmp_path / "missing",
        )
        with pytest.raises(InvalidWorkspaceRootOverrideError):
            await headless.generate()

    @pytest.mark.asyncio
    async def test_no_build_targets(self, tmp_path, bazel_binary, workspace, fake_runner):
        path = _config(workspace / "Empty.xcgenconfig", build_targets=[])
        headless = _generator(bazel_binary, path, fake_runner, output_folder=tmp_path / "out")
        with pytest.raises(MissingBuildTargetsError):
            await headless.generate()

    @pytest.mark.asyncio
    async def test_extraction_failure(self, tmp_path, bazel_binary, config_path, fake_runner):
        fake_runner.queue_response(error=ExtractionFailedError("exit 1"))
        headless = _generator(bazel_binary, config_path, fake_runner, output_folder=tmp_path / "out")
        with pytest.raises(BazelTargetProcessingFailedError):
            await headless.generate()
        assert headless.progress.status_of(PHASE_EXTRACT) == "failed"

    @pytest.mark.asyncio
    async def test_generation_failure(self, tmp_path, bazel_binary, workspace, fake_runner):
        path = _config(workspace / "Filtered.xcgenconfig", path_filters=["other/..."])
        headless = _generator(bazel_binary, path, fake_runner, output_folder=tmp_path / "out")
        with pytest.raises(GenerationFailedError):
            await headless.generate()


class TestHeadlessProjectCreator:
    def test_create(self, tmp_path, bazel_binary, workspace):
        creator = HeadlessProjectCreator(
            bazel_path=str(bazel_binary),
            project_name="App",
            workspace_root=workspace,
            build_targets=["//app:App", "//tests/ui:UITests"],
            output_folder=tmp_path / "projects",
        )
        bundle = creator.create()

        assert bundle == tmp_path / "projects" / "App.xcgenproj"
        project = XcgenProject.load(bundle)
        assert project.packages == ["app", "tests/ui"]
        assert project.bazel_path == str(bazel_binary)
        config = GeneratorConfig.load(bundle / "configs" / "App.xcgenconfig")
        assert config.build_targets == ["//app:App", "//tests/ui:UITests"]
        assert config.path_filters == ["app", "tests/ui"]

    @pytest.mark.parametrize("name", ["", "a/b", ".hidden"])
    def test_invalid_name(self, bazel_binary, workspace, name):
        creator = HeadlessProjectCreator(str(bazel_binary), name, workspace, ["//app:App"])
        with pytest.raises(InvalidProjectBundleNameError):
            creator.create()

    def test_bundle_suffix_stripped(self, tmp_path, bazel_binary, workspace):
        creator = HeadlessProjectCreator(
            str(bazel_binary), "App.xcgenproj", workspace, ["//app:App"], tmp_path
        )
        assert creator.create() == tmp_path / "App.xcgenproj"

    def test_missing_targets(self, bazel_binary, workspace):
        with pytest.raises(MissingBuildTargetsError):
            HeadlessProjectCreator(str(bazel_binary), "App", workspace, []).create()

    def test_malformed_target(self, bazel_binary, workspace):
        with pytest.raises(MissingBuildTargetsError):
            HeadlessProjectCreator(str(bazel_binary), "App", workspace, ["app:App"]).create()

    def test_missing_workspace_file(self, tmp_path, bazel_binary):
        with pytest.raises(MissingWorkspaceFileError):
            HeadlessProjectCreator(str(bazel_binary), "App", tmp_path, ["//app:App"]).create()


class TestQueryTimeout:
    def test_unset(self, monkeypatch):
        monkeypatch.delenv("XCGEN_QUERY_TIMEOUT", raising=False)
        assert query_timeout_from_env() is None

    def test_value(self, monkeypatch):
        monkeypatch.setenv("XCGEN_QUERY_TIMEOUT", "90")
        assert query_timeout_from_env() == 90.0

    def test_invalid_value_ignored(self, monkeypatch):
        monkeypatch.setenv("XCGEN_QUERY_TIMEOUT", "soon")
        assert query_timeout_from_env() is None
