"""CLI entrypoint for orpheus."""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import rich_click as click

from orpheus import __version__
from orpheus.config import Settings
from orpheus.orchestrator.controllers import (
    BackendsCommand,
    ClearCommand,
    DispatchCliController,
    EventsCommand,
    HistoryCommand,
    RunCommand,
)
from orpheus.orchestrator.errors import OrpheusError
from orpheus.orchestrator.models import EventKind

click.rich_click.USE_MARKDOWN = True
CONTROLLER = DispatchCliController()
LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="orpheus")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def orpheus(verbose: bool) -> None:
    """Route prompts to LLM backends with retries, fallback and an audit log.

    Provider keys come from `ANTHROPIC_API_KEY`, `OPENAI_API_KEY` and
    `GOOGLE_AI_API_KEY`; the event log lives at `ORPHEUS_MEMORY_PATH`.
    """

    with _cli_errors():
        settings = Settings.from_env()
        settings.validate_log_level()
    level_name = "debug" if verbose else settings.log_level
    logging.basicConfig(
        level=getattr(logging, level_name.upper()),
        format=LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )


@orpheus.command("run")
@click.argument("prompt", nargs=-1, required=True)
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--json", "output_json", is_flag=True, help="Print the report as JSON.")
@click.option(
    "--parallel/--sequential",
    default=None,
    help="Batch mode for planned tasks; defaults to `ORPHEUS_PARALLEL_EXECUTION`.",
)
@click.option("--echo", is_flag=True, help="Use offline echo backends instead of providers.")
def run(
    prompt: tuple[str, ...],
    db_path: Path | None,
    output_json: bool,
    parallel: bool | None,
    echo: bool,
) -> None:
    """Plan a prompt and dispatch it with retries and fallback."""

    with _cli_errors():
        result = CONTROLLER.run(
            RunCommand(
                db_path=db_path,
                prompt=" ".join(prompt),
                output_json=output_json,
                parallel=parallel,
                echo=echo,
            ),
        )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Dispatch failed.")


@orpheus.command("backends")
@click.option("--echo", is_flag=True, help="Check offline echo backends.")
def backends(echo: bool) -> None:
    """Probe availability of every configured backend."""

    with _cli_errors():
        result = CONTROLLER.backends(BackendsCommand(echo=echo))
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Some backends are unavailable.")


@orpheus.command("history")
@click.argument("task_id")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--json", "output_json", is_flag=True, help="Print events as JSON.")
def history(task_id: str, db_path: Path | None, output_json: bool) -> None:
    """Show the audit trail of one task."""

    with _cli_errors():
        lines = CONTROLLER.history(
            HistoryCommand(db_path=db_path, task_id=task_id, output_json=output_json),
        )
    _emit_lines(lines)


@orpheus.command("events")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--kind",
    type=click.Choice([kind.value for kind in EventKind], case_sensitive=False),
    default=None,
    help="Only events of this kind.",
)
@click.option("--task-id", default=None, help="Only events of this task.")
@click.option("--backend", "backend_id", default=None, help="Only events of this backend.")
@click.option(
    "--limit",
    type=click.IntRange(min=0),
    default=50,
    show_default=True,
    help="Show the latest N matching events; 0 shows all.",
)
@click.option("--json", "output_json", is_flag=True, help="Print events as JSON.")
def events(  # noqa: PLR0913
    db_path: Path | None,
    kind: str | None,
    task_id: str | None,
    backend_id: str | None,
    limit: int,
    output_json: bool,
) -> None:
    """List audit events, oldest first."""

    with _cli_errors():
        lines = CONTROLLER.events(
            EventsCommand(
                db_path=db_path,
                kind=kind,
                task_id=task_id,
                backend_id=backend_id,
                limit=limit,
                output_json=output_json,
            ),
        )
    _emit_lines(lines)


@orpheus.command("clear")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.confirmation_option(prompt="Delete every event from the audit log?")
def clear(db_path: Path | None) -> None:
    """Delete every event from the audit log."""

    with _cli_errors():
        lines = CONTROLLER.clear(ClearCommand(db_path=db_path))
    _emit_lines(lines)


@orpheus.command("models")
def models() -> None:
    """Show the model catalog used for provider defaults."""

    _emit_lines(CONTROLLER.models())


@orpheus.command("config")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def config(db_path: Path | None) -> None:
    """Show effective configuration with API keys redacted."""

    with _cli_errors():
        lines = CONTROLLER.config(db_path)
    _emit_lines(lines)


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except (OrpheusError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    orpheus()
