"""CLI entrypoint for build-forge."""

import logging
from pathlib import Path

import rich_click as click

from build_forge import __version__
from build_forge.orchestrator.controllers import (
    ForgeCliController,
    ForgeRunCommand,
    ForgeStatusCommand,
)
from build_forge.orchestrator.errors import BatchFailedError, ForgeError

click.rich_click.USE_MARKDOWN = True
FORGE_CONTROLLER = ForgeCliController()


def _forge_options(function):
    options = [
        click.option(
            "--project-dir",
            type=click.Path(file_okay=False, path_type=Path),
            default=None,
            help="Project directory (default: `BUILD_FORGE_PROJECT_DIR` or `.`).",
        ),
        click.option(
            "--isolate/--no-isolate",
            default=None,
            help="Run each parallel unit in its own git worktree and branch.",
        ),
        click.option(
            "--max-parallel",
            type=click.IntRange(min=1),
            default=None,
            help="Maximum units dispatched at once.",
        ),
        click.option("--skip-review", is_flag=True, help="Leave completed branches unmerged."),
        click.option(
            "--keep-branches",
            is_flag=True,
            help="Keep rejected branches for inspection.",
        ),
        click.option(
            "--checks-only",
            is_flag=True,
            help="Merge on passing checks without agent review.",
        ),
        click.option(
            "--review-all",
            is_flag=True,
            help="Ask the reviewer even when checks fail.",
        ),
        click.option(
            "--retry",
            "retry_cycles",
            type=click.IntRange(min=0),
            default=None,
            help="Recovery cycles after the first forge run.",
        ),
        click.option("--verbose", is_flag=True, help="Enable debug logging."),
        click.option(
            "--no-input",
            is_flag=True,
            help="Never ask to force-retry failed units.",
        ),
    ]
    for option in reversed(options):
        function = option(function)
    return function


@click.group()
@click.version_option(version=__version__, prog_name="build-forge")
def build_forge() -> None:
    """Autonomous build orchestrator.

    Decomposes a commission into **units**, has a coding agent implement each one,
    and verifies every unit with its shell **proof**.
    """


@build_forge.command("run")
@click.argument("commission", nargs=-1)
@_forge_options
def forge_run(  # noqa: PLR0913
    commission: tuple[str, ...],
    project_dir: Path | None,
    isolate: bool | None,
    max_parallel: int | None,
    skip_review: bool,
    keep_branches: bool,
    checks_only: bool,
    review_all: bool,
    retry_cycles: int | None,
    verbose: bool,
    no_input: bool,
) -> None:
    """Start a new commission, or continue the one in the project directory."""

    _run(
        ForgeRunCommand(
            project_dir=project_dir,
            commission=" ".join(commission) or None,
            isolate=isolate,
            max_parallel=max_parallel,
            skip_review=skip_review,
            keep_branches=keep_branches,
            checks_only=checks_only,
            review_all=review_all,
            retry_cycles=retry_cycles,
        ),
        verbose=verbose,
        no_input=no_input,
    )


@build_forge.command("resume")
@_forge_options
def forge_resume(  # noqa: PLR0913
    project_dir: Path | None,
    isolate: bool | None,
    max_parallel: int | None,
    skip_review: bool,
    keep_branches: bool,
    checks_only: bool,
    review_all: bool,
    retry_cycles: int | None,
    verbose: bool,
    no_input: bool,
) -> None:
    """Continue from the existing ledger."""

    _run(
        ForgeRunCommand(
            project_dir=project_dir,
            isolate=isolate,
            max_parallel=max_parallel,
            skip_review=skip_review,
            keep_branches=keep_branches,
            checks_only=checks_only,
            review_all=review_all,
            retry_cycles=retry_cycles,
        ),
        verbose=verbose,
        no_input=no_input,
    )


@build_forge.command("status")
@click.option(
    "--project-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Project directory (default: `BUILD_FORGE_PROJECT_DIR` or `.`).",
)
def forge_status(project_dir: Path | None) -> None:
    """Show ledger counts and failed units."""

    try:
        lines = FORGE_CONTROLLER.status(ForgeStatusCommand(project_dir=project_dir))
    except (ForgeError, OSError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _run(command: ForgeRunCommand, *, verbose: bool, no_input: bool) -> None:
    _configure_logging(verbose)
    confirm = None if no_input else _confirm_force_retry
    try:
        result = FORGE_CONTROLLER.run(command, emit=click.echo, confirm_force_retry=confirm)
    except (ForgeError, OSError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        if result.failed_count:
            raise click.ClickException(str(BatchFailedError(result.failed_count)))
        raise click.ClickException("Forge finished with unfinished units.")


def _confirm_force_retry(count: int) -> bool:
    return click.confirm(f"{count} unit(s) failed for good. Reset them and try again?", default=False)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    build_forge()
