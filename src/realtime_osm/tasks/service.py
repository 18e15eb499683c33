"""Task creation with input validation and data-file naming."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from realtime_osm.server.layout import extract_path
from realtime_osm.storage.common import ensure_utc
from realtime_osm.storage.sqlmodel_models import DEFAULT_UPDATE_INTERVAL_SECONDS
from realtime_osm.tasks.coverage import parse_coverage
from realtime_osm.tasks.models import Coverage, ExtractTask, TaskValidationError
from realtime_osm.tasks.repository import SQLiteTaskStore

_TASK_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_]+$")


@dataclass(slots=True)
class NewTask:
    """Raw task input as an operator supplies it."""

    name: str
    coverage: str
    expiration_date: str | None = None
    update_interval_seconds: int | None = None


class TaskService:
    """Validates new tasks and assigns their on-disk extract path."""

    def __init__(self, *, store: SQLiteTaskStore, data_directory: Path) -> None:
        self._store = store
        self._data_directory = data_directory

    def add_task(self, payload: NewTask) -> ExtractTask:
        """Validate and insert a task, then set its url from id and name.

        Raises:
            TaskValidationError: with every problem found in the input.
        """

        problems: list[str] = []
        name = payload.name.strip()
        if not _TASK_NAME_PATTERN.match(name):
            problems.append("name [a-zA-Z0-9_]")

        coverage: Coverage | None = None
        try:
            coverage = parse_coverage(payload.coverage)
        except ValueError as error:
            problems.append(f"coverage [GeoJSON / WKT string / Geofabrik region code]: {error}")

        expiration_date: datetime | None = None
        if payload.expiration_date:
            try:
                expiration_date = ensure_utc(datetime.fromisoformat(payload.expiration_date))
            except ValueError:
                problems.append(
                    "expirationDate in ISO 8601, hours optional [YYYY-MM-DD(THH:MM:SS+HH:MM)]",
                )

        update_interval = payload.update_interval_seconds or DEFAULT_UPDATE_INTERVAL_SECONDS
        if update_interval <= 0:
            problems.append("updateInterval must be a positive number of seconds")

        if problems or coverage is None:
            raise TaskValidationError(problems)

        task = self._store.create_task(
            name=name,
            coverage=coverage,
            expiration_date=expiration_date,
            update_interval_seconds=update_interval,
        )
        url = str(extract_path(self._data_directory, task_id=task.id, name=task.name))
        self._store.update_task_field(task.id, "url", url)
        task.url = url
        return task

    def delete_task(self, task_id: int) -> bool:
        if self._store.get_task(task_id) is None:
            return False
        self._store.delete_task(task_id)
        return True
