"""Domain models for extract tasks and the task store contract."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from shapely.geometry import shape
from shapely.geometry.base import BaseGeometry

REGION_CODE_KEY = "geofabrikRegion"

TASK_FIELDS = frozenset(
    {
        "name",
        "coverage",
        "url",
        "expiration_date",
        "update_interval_seconds",
        "last_updated",
    },
)


class TaskStoreError(RuntimeError):
    """Task store read or write failed."""


class TaskValidationError(ValueError):
    """Task input rejected, with every problem found."""

    def __init__(self, problems: list[str]) -> None:
        super().__init__("Invalid task parameters: " + ", ".join(problems))
        self.problems = problems


@dataclass(frozen=True, slots=True)
class RegionCode:
    """Symbolic region code waiting to be resolved to a catalog geometry."""

    code: str


Coverage = dict[str, Any] | RegionCode


@dataclass(slots=True)
class ExtractTask:
    """Working copy of one task as the server sees it."""

    id: int
    name: str
    coverage: Coverage
    url: str | None = None
    expiration_date: datetime | None = None
    update_interval_seconds: int = 600
    last_updated: datetime | None = None
    added_date: datetime | None = None
    average_runtime_millis: float | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expiration_date is not None and self.expiration_date < now


@dataclass(slots=True)
class TaskStatView:
    """One recorded update timing."""

    task_id: int
    timestamp: datetime
    elapsed_millis: int


class TaskStore(Protocol):
    """Persistence contract the controller and workers depend on."""

    def list_tasks(self) -> list[ExtractTask]:
        """Return every task currently stored."""

    def delete_task(self, task_id: int) -> None:
        """Remove a task and its statistics."""

    def update_task_field(self, task_id: int, field: str, value: object) -> None:
        """Overwrite one task attribute (one of ``TASK_FIELDS``)."""

    def append_stat(self, task_id: int, timestamp: datetime, elapsed_millis: int) -> None:
        """Record the duration of one successful update."""

    def set_average_runtime(self, task_id: int) -> None:
        """Recompute the task's average runtime from its recorded timings."""


def coverage_from_json(raw: str) -> Coverage:
    """Decode persisted coverage text."""

    payload = json.loads(raw)
    if isinstance(payload, dict) and REGION_CODE_KEY in payload:
        return RegionCode(code=str(payload[REGION_CODE_KEY]))
    if not isinstance(payload, dict):
        raise ValueError(f"Coverage must be a JSON object, got {type(payload).__name__}")
    return payload


def coverage_to_json(coverage: Coverage) -> str:
    """Encode coverage for persistence; feature keys are sorted for uniqueness checks."""

    if isinstance(coverage, RegionCode):
        return json.dumps({REGION_CODE_KEY: coverage.code})
    return json.dumps(coverage, sort_keys=True)


def coverage_geometry(coverage: Coverage) -> BaseGeometry:
    """Shapely geometry of a feature coverage."""

    if isinstance(coverage, RegionCode):
        raise TypeError(f"Region code {coverage.code!r} has no geometry until resolved.")
    geometry = coverage.get("geometry") if coverage.get("type") == "Feature" else coverage
    if geometry is None:
        raise ValueError("Coverage feature has no geometry.")
    return shape(geometry)


def coverage_name(coverage: Coverage) -> str | None:
    """Descriptive name carried in feature properties, if any."""

    if isinstance(coverage, RegionCode):
        return coverage.code
    properties = coverage.get("properties")
    if not isinstance(properties, dict):
        return None
    name = properties.get("name")
    return str(name) if name else None
