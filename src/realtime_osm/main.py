"""CLI entrypoint for realtime-osm."""

from collections.abc import Callable
from pathlib import Path

import rich_click as click

from realtime_osm import __version__
from realtime_osm.config import Settings
from realtime_osm.logging_setup import setup_logging
from realtime_osm.server.controllers import (
    CatalogMatchCommand,
    CatalogRefreshCommand,
    ServeCommand,
    ServerCliController,
)
from realtime_osm.tasks.controllers import (
    TaskAddCommand,
    TaskCliController,
    TaskDeleteCommand,
    TaskListCommand,
    TaskStatsCommand,
)
from realtime_osm.tasks.models import TaskStoreError

click.rich_click.USE_MARKDOWN = True
SERVER_CONTROLLER = ServerCliController()
TASK_CONTROLLER = TaskCliController()
_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


@click.group()
@click.version_option(version=__version__, prog_name="realtime-osm")
@click.option(
    "--log-level",
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Log level, overrides REALTIME_OSM_LOG_LEVEL.",
)
def realtime_osm(log_level: str | None) -> None:
    """Keep clipped OpenStreetMap extracts up to date."""

    settings = Settings.from_env()
    if log_level is not None:
        settings.log_level = log_level.upper()
    try:
        level = settings.logging_level
    except KeyError as error:
        raise click.ClickException(f"Unknown log level: {settings.log_level}") from error
    setup_logging(level)


@realtime_osm.command("serve")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def serve(db_path: Path | None) -> None:
    """Run the extract server until SIGINT or SIGTERM."""

    _invoke(lambda: SERVER_CONTROLLER.serve(ServeCommand(db_path=db_path)))


@realtime_osm.group()
def task() -> None:
    """Task management commands."""


@task.command("add")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--name", required=True, help="Task name, [A-Za-z0-9_]+.")
@click.option(
    "--coverage",
    required=True,
    help="GeoJSON polygon, WKT polygon or a Geofabrik region code such as `germany`.",
)
@click.option(
    "--expiration-date",
    default=None,
    help="ISO 8601 date after which the task is deleted.",
)
@click.option(
    "--update-interval",
    "update_interval_seconds",
    type=click.IntRange(min=1),
    default=None,
    help="Seconds between updates (default 600).",
)
def task_add(
    db_path: Path | None,
    name: str,
    coverage: str,
    expiration_date: str | None,
    update_interval_seconds: int | None,
) -> None:
    """Register a new extract task."""

    _invoke(
        lambda: TASK_CONTROLLER.add(
            TaskAddCommand(
                db_path=db_path,
                name=name,
                coverage=coverage,
                expiration_date=expiration_date,
                update_interval_seconds=update_interval_seconds,
            ),
        ),
    )


@task.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def task_list(db_path: Path | None) -> None:
    """List registered tasks."""

    _invoke(lambda: TASK_CONTROLLER.list_tasks(TaskListCommand(db_path=db_path)))


@task.command("delete")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", type=int, required=True, help="Task id.")
def task_delete(db_path: Path | None, task_id: int) -> None:
    """Delete a task; the running server drops its worker and data on the next sync."""

    _invoke(lambda: TASK_CONTROLLER.delete(TaskDeleteCommand(db_path=db_path, task_id=task_id)))


@task.command("stats")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", type=int, default=None, help="Only show timings of this task.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=20,
    show_default=True,
    help="Max number of timings to print.",
)
def task_stats(db_path: Path | None, task_id: int | None, limit: int) -> None:
    """Show recorded update timings, newest first."""

    _invoke(
        lambda: TASK_CONTROLLER.stats(
            TaskStatsCommand(db_path=db_path, task_id=task_id, limit=limit),
        ),
    )


@realtime_osm.group()
def catalog() -> None:
    """Region catalog commands."""


@catalog.command("refresh")
@click.option(
    "--catalog-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Boundary metadata directory.",
)
def catalog_refresh(catalog_dir: Path | None) -> None:
    """Download (if changed) and parse the region boundary bundle."""

    _invoke(
        lambda: SERVER_CONTROLLER.refresh_catalog(CatalogRefreshCommand(catalog_dir=catalog_dir)),
    )


@catalog.command("match")
@click.option(
    "--catalog-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Boundary metadata directory.",
)
@click.option(
    "--offline",
    is_flag=True,
    default=False,
    help="Use already extracted boundary files, no download.",
)
@click.argument("coverage")
def catalog_match(catalog_dir: Path | None, offline: bool, coverage: str) -> None:
    """Print the regional extract a coverage would be sourced from."""

    _invoke(
        lambda: SERVER_CONTROLLER.match(
            CatalogMatchCommand(coverage=coverage, catalog_dir=catalog_dir, offline=offline),
        ),
    )


def _invoke(action: Callable[[], list[str]]) -> None:
    try:
        lines = action()
    except (ValueError, TaskStoreError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    realtime_osm()
