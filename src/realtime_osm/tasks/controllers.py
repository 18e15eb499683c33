"""Controllers for task CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from realtime_osm.config import Settings
from realtime_osm.tasks.models import ExtractTask, RegionCode, coverage_name
from realtime_osm.tasks.repository import SQLiteTaskStore
from realtime_osm.tasks.service import NewTask, TaskService


@dataclass(slots=True)
class TaskAddCommand:
    """CLI input for task creation."""

    db_path: Path | None
    name: str
    coverage: str
    expiration_date: str | None
    update_interval_seconds: int | None


@dataclass(slots=True)
class TaskListCommand:
    """CLI input for task listing."""

    db_path: Path | None


@dataclass(slots=True)
class TaskDeleteCommand:
    """CLI input for task deletion."""

    db_path: Path | None
    task_id: int


@dataclass(slots=True)
class TaskStatsCommand:
    """CLI input for update timing listing."""

    db_path: Path | None
    task_id: int | None
    limit: int


class TaskCliController:
    """Task management operations for operators."""

    def add(self, command: TaskAddCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _store(settings) as store:
            service = TaskService(store=store, data_directory=settings.store.data_directory)
            task = service.add_task(
                NewTask(
                    name=command.name,
                    coverage=command.coverage,
                    expiration_date=command.expiration_date,
                    update_interval_seconds=command.update_interval_seconds,
                ),
            )
        return [f"Task added: id={task.id} name={task.name} url={task.url}"]

    def list_tasks(self, command: TaskListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _store(settings) as store:
            tasks = store.list_tasks()
        if not tasks:
            return ["No tasks."]
        return [_task_line(task) for task in tasks]

    def delete(self, command: TaskDeleteCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _store(settings) as store:
            deleted = TaskService(
                store=store,
                data_directory=settings.store.data_directory,
            ).delete_task(command.task_id)
        if not deleted:
            raise ValueError(f"Task {command.task_id} does not exist.")
        return [f"Task deleted: id={command.task_id}"]

    def stats(self, command: TaskStatsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _store(settings) as store:
            stats = store.list_stats(command.task_id, limit=command.limit)
        if not stats:
            return ["No update timings recorded."]
        return [
            f"task={stat.task_id} at={stat.timestamp.isoformat()} took_ms={stat.elapsed_millis}"
            for stat in stats
        ]


def _task_line(task: ExtractTask) -> str:
    coverage = (
        f"region:{task.coverage.code}"
        if isinstance(task.coverage, RegionCode)
        else f"polygon:{coverage_name(task.coverage) or '-'}"
    )
    average = "-" if task.average_runtime_millis is None else f"{task.average_runtime_millis:.0f}"
    return (
        f"id={task.id} name={task.name} coverage={coverage} "
        f"interval_s={task.update_interval_seconds} "
        f"expires={_fmt(task.expiration_date)} last_updated={_fmt(task.last_updated)} "
        f"avg_ms={average} url={task.url or '-'}"
    )


def _fmt(value: datetime | None) -> str:
    return "-" if value is None else value.isoformat()


@contextmanager
def _store(settings: Settings) -> Iterator[SQLiteTaskStore]:
    store = SQLiteTaskStore(settings.store.db_path, busy_timeout_ms=settings.store.busy_timeout_ms)
    store.init_schema()
    try:
        yield store
    finally:
        store.close()
