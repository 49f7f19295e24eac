"""CLI entrypoint for dt-queue."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import rich_click as click

from dt_queue import __version__
from dt_queue.queue.bridge.base import ExternalCallError
from dt_queue.queue.controllers import (
    QueueAddCommand,
    QueueCliController,
    QueueClearCommand,
    QueueCommandResult,
    QueueExecuteCommand,
    QueueListCommand,
    QueueLoadCommand,
    QueueRepairCommand,
    QueueReportCommand,
    QueueStatusCommand,
    parse_param_assignments,
)
from dt_queue.queue.models import ClearScope
from dt_queue.queue.repair import RepairError
from dt_queue.queue.store import LockUnavailable, QueueStoreError

click.rich_click.USE_MARKDOWN = True
QUEUE_CONTROLLER = QueueCliController()

_config_dir_option = click.option(
    "--config-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Directory holding queue.json and queue.lock. Defaults to DT_CONFIG_DIR or ~/.config/dt.",
)
_json_option = click.option("--json", "as_json", is_flag=True, help="Print JSON output.")


@click.group()
@click.version_option(version=__version__, prog_name="dt-queue")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging level for diagnostics on stderr.",
)
def dt_queue(log_level: str) -> None:
    """Persistent task queue with batching and variable references.

    Tasks reference earlier results as `$<id>` or `$<id>.<path>`.
    """

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
        force=True,
    )


@dt_queue.command("status")
@_config_dir_option
@click.option("--all", "show_all", is_flag=True, help="Include completed tasks.")
@_json_option
def queue_status(config_dir: Path | None, show_all: bool, as_json: bool) -> None:
    """Show queue status, counts and unfinished tasks."""

    with _cli_errors():
        _emit_lines(
            QUEUE_CONTROLLER.status(
                QueueStatusCommand(config_dir=config_dir, show_all=show_all, as_json=as_json),
            ),
        )


@dt_queue.command("list")
@_config_dir_option
@_json_option
def queue_list(config_dir: Path | None, as_json: bool) -> None:
    """List all tasks with their status."""

    with _cli_errors():
        _emit_lines(
            QUEUE_CONTROLLER.list_tasks(QueueListCommand(config_dir=config_dir, as_json=as_json)),
        )


@dt_queue.command("add")
@click.argument("action")
@_config_dir_option
@click.option("--uuid", default=None, help="Record id or `$<id>.<path>` reference.")
@click.option("--uuids", multiple=True, help="Record ids for multi-record actions. Repeatable.")
@click.option("--destination", default=None, help="Destination group path or id.")
@click.option("--name", default=None, help="Record name for create.")
@click.option("--type", "record_type", default=None, help="Record type for create.")
@click.option("--content", default=None, help="Record content for create.")
@click.option("--database", default=None, help="Database name.")
@click.option("--tags", multiple=True, help="Tag names. Repeatable.")
@click.option("--source", default=None, help="Source record for link/unlink.")
@click.option("--target", default=None, help="Target record or tag.")
@click.option(
    "--depends-on",
    "depends_on",
    type=int,
    multiple=True,
    help="Id of an earlier task that must complete first. Repeatable.",
)
@click.option(
    "--param",
    "extra_params",
    multiple=True,
    help="Extra parameter as key=value; JSON values are decoded. Repeatable.",
)
def queue_add(  # noqa: PLR0913
    action: str,
    config_dir: Path | None,
    uuid: str | None,
    uuids: tuple[str, ...],
    destination: str | None,
    name: str | None,
    record_type: str | None,
    content: str | None,
    database: str | None,
    tags: tuple[str, ...],
    source: str | None,
    target: str | None,
    depends_on: tuple[int, ...],
    extra_params: tuple[str, ...],
) -> None:
    """Append one task to the queue."""

    params = {
        key: value
        for key, value in {
            "uuid": uuid,
            "uuids": list(uuids) or None,
            "destination": destination,
            "name": name,
            "type": record_type,
            "content": content,
            "database": database,
            "tags": list(tags) or None,
            "source": source,
            "target": target,
        }.items()
        if value is not None
    }
    with _cli_errors():
        params.update(parse_param_assignments(extra_params))
        _emit_lines(
            QUEUE_CONTROLLER.add(
                QueueAddCommand(
                    config_dir=config_dir,
                    action=action,
                    params=params,
                    depends_on=depends_on,
                ),
            ),
        )


@dt_queue.command("load")
@click.argument("source", type=click.File("r", encoding="utf-8"))
@_config_dir_option
def queue_load(source, config_dir: Path | None) -> None:
    """Append tasks from a JSON file (`-` for stdin).

    Accepts an array of `{action, params, dependsOn}` objects or `{"tasks": [...]}`.
    """

    with _cli_errors():
        _emit_lines(
            QUEUE_CONTROLLER.load(
                QueueLoadCommand(
                    config_dir=config_dir,
                    source_text=source.read(),
                    source_name=source.name,
                ),
            ),
        )


@dt_queue.command("validate")
@_config_dir_option
@_json_option
def queue_validate(config_dir: Path | None, as_json: bool) -> None:
    """Statically check actions, parameters, dependencies and references."""

    with _cli_errors():
        result = QUEUE_CONTROLLER.validate(
            QueueReportCommand(config_dir=config_dir, as_json=as_json),
        )
    _emit_result(result, "Queue validation failed.")


@dt_queue.command("verify")
@_config_dir_option
@_json_option
def queue_verify(config_dir: Path | None, as_json: bool) -> None:
    """Check that referenced records, databases and groups exist."""

    with _cli_errors():
        result = QUEUE_CONTROLLER.verify(
            QueueReportCommand(config_dir=config_dir, as_json=as_json),
        )
    _emit_result(result, "Queue verification failed.")


@dt_queue.command("repair")
@_config_dir_option
@click.option("--apply", is_flag=True, help="Replace the task list with the proposal.")
@click.option("--engine", default=None, help="AI engine. Defaults to DT_REPAIR_ENGINE.")
@_json_option
def queue_repair(config_dir: Path | None, apply: bool, engine: str | None, as_json: bool) -> None:
    """Ask the AI engine for a corrected task list."""

    with _cli_errors():
        result = QUEUE_CONTROLLER.repair(
            QueueRepairCommand(config_dir=config_dir, apply=apply, engine=engine, as_json=as_json),
        )
    _emit_result(result, "Queue repair failed.")


@dt_queue.command("execute")
@_config_dir_option
@click.option("--dry-run", is_flag=True, help="Validate only; run nothing.")
@click.option("--verbose", is_flag=True, help="Report per-task results.")
@_json_option
def queue_execute(config_dir: Path | None, dry_run: bool, verbose: bool, as_json: bool) -> None:
    """Run every pending task, batching where possible."""

    with _cli_errors():
        result = QUEUE_CONTROLLER.execute(
            QueueExecuteCommand(
                config_dir=config_dir,
                dry_run=dry_run,
                verbose=verbose,
                as_json=as_json,
            ),
        )
    _emit_result(result, "Queue execution failed.")


@dt_queue.command("clear")
@_config_dir_option
@click.option(
    "--scope",
    type=click.Choice([scope.value for scope in ClearScope]),
    default=ClearScope.COMPLETED.value,
    show_default=True,
    help="Which tasks to remove; `all` deletes the queue document.",
)
@click.option("--all", "clear_all", is_flag=True, help="Shortcut for --scope all.")
def queue_clear(config_dir: Path | None, scope: str, clear_all: bool) -> None:
    """Remove completed or failed tasks, or the whole queue."""

    with _cli_errors():
        _emit_lines(
            QUEUE_CONTROLLER.clear(
                QueueClearCommand(
                    config_dir=config_dir,
                    scope=ClearScope.ALL if clear_all else ClearScope(scope),
                ),
            ),
        )


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except (
        ExternalCallError,
        LockUnavailable,
        QueueStoreError,
        RepairError,
        TypeError,
        ValueError,
    ) as error:
        raise click.ClickException(str(error)) from error


def _emit_result(result: QueueCommandResult, failure_message: str) -> None:
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException(failure_message)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    dt_queue()
