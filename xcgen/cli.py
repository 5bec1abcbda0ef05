"""CLI entry point: xcgen.

Subcommands:
    xcgen generate --genconfig app.xcgenconfig --bazel /usr/local/bin/bazel
    xcgen create-project --name App --workspaceroot . --build-target //app:App
    xcgen diff candidate.json golden.json
"""

from __future__ import annotations

import asyncio
import sys
from typing import Any, Callable

import click

from xcgen.core.logging import bind_command, setup_logging
from xcgen.golden import diff_files
from xcgen.headless import HeadlessGenerator, HeadlessModeError, HeadlessProjectCreator
from xcgen.progress import ProgressTracker

EXIT_UNEXPECTED_OS_ERROR = 126
EXIT_UNEXPECTED_ERROR = 127

_STATUS_ICONS = {
    "completed": "+",
    "failed": "!",
    "skipped": "-",
    "running": "~",
    "pending": ".",
}


def _run_headless(action: Callable[[], Any]) -> Any:
    """Run *action*, turning every failure into a message and exit code."""
    try:
        return action()
    except HeadlessModeError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(e.exit_code)
    except OSError as e:
        click.echo(f"Unexpected I/O error: {e}", err=True)
        sys.exit(EXIT_UNEXPECTED_OS_ERROR)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        sys.exit(EXIT_UNEXPECTED_ERROR)


def _echo_progress(progress: ProgressTracker) -> None:
    summary = progress.get_summary()
    click.echo(f"\nGeneration summary (total: {summary['total_duration']}s):")
    for p in summary["phases"]:
        icon = _STATUS_ICONS.get(p["status"], "?")
        duration = f" ({p['duration']}s)" if p["duration"] else ""
        detail = f" - {p['detail']}" if p["detail"] else ""
        error = f" - {p['error']}" if p["error"] else ""
        click.echo(f"  [{icon}] {p['phase']}{duration}{detail}{error}")


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
def main(verbose: bool) -> None:
    """xcgen: Xcode project descriptors from Bazel workspaces."""
    setup_logging(verbose=verbose)


@main.command("generate")
@click.option("--genconfig", "config_path", required=True, help="Generator config file")
@click.option("--bazel", "bazel_path", envvar="XCGEN_BAZEL", help="Path to the Bazel binary")
@click.option("--outputfolder", "output_folder", default=None, help="Where to write the project")
@click.option("--workspaceroot", "workspace_root", default=None, help="Override the workspace root")
@click.option(
    "--build-target",
    "build_targets",
    multiple=True,
    help="Build target label; overrides the config's targets (repeatable)",
)
def generate(
    config_path: str,
    bazel_path: str | None,
    output_folder: str | None,
    workspace_root: str | None,
    build_targets: tuple[str, ...],
) -> None:
    """Generate a project descriptor from a generator config."""
    bind_command("generate", config=config_path)
    headless = HeadlessGenerator(
        bazel_path=bazel_path,
        config_path=config_path,
        output_folder=output_folder,
        workspace_root=workspace_root,
        build_targets=build_targets,
    )
    try:
        bundle = _run_headless(lambda: asyncio.run(headless.generate()))
    finally:
        if headless.progress.phases:
            _echo_progress(headless.progress)
    click.echo(f"\nProject written to {bundle}")


@main.command("create-project")
@click.option("--name", "project_name", required=True, help="Project name")
@click.option("--workspaceroot", "workspace_root", required=True, help="Bazel workspace root")
@click.option("--bazel", "bazel_path", envvar="XCGEN_BAZEL", help="Path to the Bazel binary")
@click.option(
    "--build-target", "build_targets", multiple=True, help="Build target label (repeatable)"
)
@click.option("--outputfolder", "output_folder", default=None, help="Where to create the bundle")
def create_project(
    project_name: str,
    workspace_root: str,
    bazel_path: str | None,
    build_targets: tuple[str, ...],
    output_folder: str | None,
) -> None:
    """Create a project bundle with a default generator config."""
    bind_command("create-project", project=project_name)
    creator = HeadlessProjectCreator(
        bazel_path=bazel_path,
        project_name=project_name,
        workspace_root=workspace_root,
        build_targets=build_targets,
        output_folder=output_folder,
    )
    bundle = _run_headless(creator.create)
    click.echo(f"Project bundle written to {bundle}")


@main.command("diff")
@click.argument("candidate", type=click.Path(exists=True, dir_okay=False))
@click.argument("golden", type=click.Path(exists=True, dir_okay=False))
def diff(candidate: str, golden: str) -> None:
    """Compare a generated descriptor with a golden file."""
    bind_command("diff", golden=golden)
    try:
        lines = diff_files(candidate, golden)
    except ValueError as e:
        click.echo(f"Error: invalid JSON: {e}", err=True)
        sys.exit(EXIT_UNEXPECTED_ERROR)
    if not lines:
        click.echo("No differences.")
        return
    for line in lines:
        click.echo(str(line))
    click.echo(f"\n{len(lines)} difference(s)", err=True)
    sys.exit(1)


if __name__ == "__main__":
    main()
