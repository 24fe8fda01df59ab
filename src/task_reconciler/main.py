"""CLI entrypoint for task-reconciler."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click
from dotenv import find_dotenv, load_dotenv

from task_reconciler import __version__
from task_reconciler.reconciler.controllers import (
    CatchUpCommand,
    ProcessTaskCommand,
    ReconcilerCliController,
    RunCommand,
    StatusCommand,
)

click.rich_click.USE_MARKDOWN = True
RECONCILER_CONTROLLER = ReconcilerCliController()

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_HANDLER_NAME = "task-reconciler"

T = TypeVar("T")


@click.group()
@click.version_option(version=__version__, prog_name="task-reconciler")
@click.option(
    "--env-file",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Load environment variables from this file (default: ./.env when present).",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Logging verbosity.",
)
def task_reconciler(env_file: Path | None, log_level: str) -> None:
    """Process marketplace task assignments exactly once."""

    load_dotenv(env_file or find_dotenv(usecwd=True))
    _configure_logging(log_level)


@task_reconciler.command("run")
@click.option("--store-path", type=click.Path(path_type=Path), default=None, help="Store path.")
def run(store_path: Path | None) -> None:
    """Catch up on missed assignments, then listen for new ones until interrupted."""

    _emit_lines(_guarded(lambda: RECONCILER_CONTROLLER.run(RunCommand(store_path=store_path))))


@task_reconciler.command("catch-up")
@click.option("--store-path", type=click.Path(path_type=Path), default=None, help="Store path.")
def catch_up(store_path: Path | None) -> None:
    """Replay assignment events between the stored watermark and the chain head."""

    result = _guarded(
        lambda: RECONCILER_CONTROLLER.catch_up(CatchUpCommand(store_path=store_path)),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Catch-up did not complete.")


@task_reconciler.command("process-task")
@click.argument("task_id", type=click.IntRange(min=1))
@click.option("--store-path", type=click.Path(path_type=Path), default=None, help="Store path.")
def process_task(task_id: int, store_path: Path | None) -> None:
    """Run one processing attempt for TASK_ID (manual retry of a failed task)."""

    result = _guarded(
        lambda: RECONCILER_CONTROLLER.process_task(
            ProcessTaskCommand(store_path=store_path, task_id=task_id),
        ),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException(f"Task {task_id} failed.")


@task_reconciler.command("status")
@click.option("--store-path", type=click.Path(path_type=Path), default=None, help="Store path.")
@click.option(
    "--recent",
    type=click.IntRange(min=0, max=1000),
    default=10,
    show_default=True,
    help="How many most recently processed task ids to print.",
)
def status(store_path: Path | None, recent: int) -> None:
    """Show the local watermark and processed-task count."""

    _emit_lines(RECONCILER_CONTROLLER.status(StatusCommand(store_path=store_path, recent=recent)))


def _guarded(call: Callable[[], T]) -> T:
    try:
        return call()
    except ValueError as error:
        raise click.ClickException(str(error)) from error


def _configure_logging(level: str) -> None:
    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == LOG_HANDLER_NAME:
            root.removeHandler(existing)
    handler = logging.StreamHandler()
    handler.set_name(LOG_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    task_reconciler()
