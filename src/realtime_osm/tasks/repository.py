"""SQLite-backed task store."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, SQLModel, col, select

from realtime_osm.storage.common import build_sqlite_engine, ensure_utc, utc_now
from realtime_osm.storage.sqlmodel_models import TaskRow, TaskStatRow
from realtime_osm.tasks.models import (
    TASK_FIELDS,
    Coverage,
    ExtractTask,
    TaskStatView,
    TaskStoreError,
    TaskValidationError,
    coverage_from_json,
    coverage_to_json,
)

_COLUMN_BY_FIELD = {
    "name": "name",
    "coverage": "coverage",
    "url": "url",
    "expiration_date": "expiration_date",
    "update_interval_seconds": "update_interval",
    "last_updated": "last_updated",
}


class SQLiteTaskStore:
    """Task persistence facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Create missing tables."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        SQLModel.metadata.create_all(self.engine)

    def create_task(
        self,
        *,
        name: str,
        coverage: Coverage,
        expiration_date: datetime | None,
        update_interval_seconds: int,
    ) -> ExtractTask:
        """Insert a task; coverage must be unique across tasks."""

        row = TaskRow(
            name=name,
            coverage=coverage_to_json(coverage),
            expiration_date=expiration_date,
            update_interval=update_interval_seconds,
            added_date=utc_now(),
        )
        try:
            with Session(self.engine) as session:
                session.add(row)
                session.commit()
                session.refresh(row)
                return _to_task(row)
        except IntegrityError as error:
            raise TaskValidationError(
                ["coverage: a task with this coverage already exists"],
            ) from error
        except SQLAlchemyError as error:
            raise TaskStoreError(f"Can't insert task {name!r}: {error}") from error

    def get_task(self, task_id: int) -> ExtractTask | None:
        try:
            with Session(self.engine) as session:
                row = session.get(TaskRow, task_id)
                return None if row is None else _to_task(row)
        except SQLAlchemyError as error:
            raise TaskStoreError(f"Can't read task {task_id}: {error}") from error

    def list_tasks(self) -> list[ExtractTask]:
        try:
            with Session(self.engine) as session:
                rows = session.exec(select(TaskRow).order_by(col(TaskRow.id).asc())).all()
                return [_to_task(row) for row in rows]
        except SQLAlchemyError as error:
            raise TaskStoreError(f"Can't list tasks: {error}") from error

    def delete_task(self, task_id: int) -> None:
        try:
            with Session(self.engine) as session:
                session.exec(sa_delete(TaskStatRow).where(col(TaskStatRow.task_id) == task_id))
                session.exec(sa_delete(TaskRow).where(col(TaskRow.id) == task_id))
                session.commit()
        except SQLAlchemyError as error:
            raise TaskStoreError(f"Can't delete task {task_id}: {error}") from error

    def update_task_field(self, task_id: int, field: str, value: object) -> None:
        if field not in TASK_FIELDS:
            raise ValueError(f"Unknown task field: {field!r}")
        if field == "coverage" and not isinstance(value, str):
            value = coverage_to_json(value)  # type: ignore[arg-type]
        try:
            with Session(self.engine) as session:
                row = session.get(TaskRow, task_id)
                if row is None:
                    raise TaskStoreError(f"Task {task_id} does not exist.")
                setattr(row, _COLUMN_BY_FIELD[field], value)
                session.add(row)
                session.commit()
        except SQLAlchemyError as error:
            raise TaskStoreError(f"Can't update {field} of task {task_id}: {error}") from error

    def append_stat(self, task_id: int, timestamp: datetime, elapsed_millis: int) -> None:
        try:
            with Session(self.engine) as session:
                session.add(
                    TaskStatRow(task_id=task_id, timestamp=timestamp, timing=elapsed_millis),
                )
                session.commit()
        except SQLAlchemyError as error:
            raise TaskStoreError(f"Can't record timing for task {task_id}: {error}") from error

    def set_average_runtime(self, task_id: int) -> None:
        try:
            with Session(self.engine) as session:
                average = session.exec(
                    select(func.avg(TaskStatRow.timing)).where(TaskStatRow.task_id == task_id),
                ).one()
                row = session.get(TaskRow, task_id)
                if row is None:
                    return
                row.average_runtime = None if average is None else float(average)
                session.add(row)
                session.commit()
        except SQLAlchemyError as error:
            raise TaskStoreError(
                f"Can't update average runtime of task {task_id}: {error}",
            ) from error

    def list_stats(self, task_id: int | None = None, *, limit: int = 100) -> list[TaskStatView]:
        statement = select(TaskStatRow)
        if task_id is not None:
            statement = statement.where(TaskStatRow.task_id == task_id)
        statement = statement.order_by(col(TaskStatRow.timestamp).desc()).limit(limit)
        try:
            with Session(self.engine) as session:
                return [
                    TaskStatView(
                        task_id=row.task_id,
                        timestamp=ensure_utc(row.timestamp),
                        elapsed_millis=row.timing,
                    )
                    for row in session.exec(statement).all()
                ]
        except SQLAlchemyError as error:
            raise TaskStoreError(f"Can't list task statistics: {error}") from error

    def __enter__(self) -> SQLiteTaskStore:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _to_task(row: TaskRow) -> ExtractTask:
    if row.id is None:
        raise TaskStoreError("Task row without id.")
    return ExtractTask(
        id=row.id,
        name=row.name,
        coverage=coverage_from_json(row.coverage),
        url=row.url,
        expiration_date=_optional_utc(row.expiration_date),
        update_interval_seconds=row.update_interval,
        last_updated=_optional_utc(row.last_updated),
        added_date=_optional_utc(row.added_date),
        average_runtime_millis=row.average_runtime,
    )


def _optional_utc(value: datetime | None) -> datetime | None:
    return None if value is None else ensure_utc(value)
