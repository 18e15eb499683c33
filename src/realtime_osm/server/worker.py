"""Per-task worker: acquires, updates and clips one extract on disk."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from shapely.geometry import mapping

from realtime_osm.config import Settings
from realtime_osm.server import polyfile
from realtime_osm.server.catalog import CatalogEntry, CatalogSnapshot
from realtime_osm.server.layout import (
    clipped_path,
    region_extract_url,
    update_temp_path,
    updated_path,
)
from realtime_osm.server.matcher import find_extract
from realtime_osm.server.models import (
    ToolKind,
    ToolOutcome,
    ToolStatus,
    WorkerEvent,
    WorkerState,
    transition,
)
from realtime_osm.server.process import ToolHandle, ToolRunner
from realtime_osm.storage.common import utc_now
from realtime_osm.tasks.models import (
    ExtractTask,
    RegionCode,
    TaskStore,
    TaskStoreError,
    coverage_geometry,
    coverage_name,
)

logger = logging.getLogger(__name__)


class UpdateLimiter:
    """Counts workers holding an update slot; admission is best effort, never queued."""

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("Update limiter capacity must be > 0.")
        self.capacity = capacity
        self._holders: set[int] = set()

    @property
    def active(self) -> int:
        return len(self._holders)

    @property
    def saturated(self) -> bool:
        return len(self._holders) >= self.capacity

    def try_acquire(self, task_id: int) -> bool:
        if task_id in self._holders:
            return True
        if self.saturated:
            return False
        self._holders.add(task_id)
        return True

    def release(self, task_id: int) -> None:
        self._holders.discard(task_id)


@dataclass(slots=True)
class WorkerSettings:
    """Everything a worker needs from the server configuration."""

    data_age_threshold: timedelta = timedelta(days=1)
    update_retry_delay_seconds: float = 30.0
    extract_base_url: str = "http://download.geofabrik.de/"
    planet_file: Path | None = None
    poly_dir: Path = Path(".")
    update_temp_dir: Path = Path("osmupdate_temp")
    osmupdate_command: str = "osmupdate"
    osmconvert_command: str = "osmconvert"
    max_merge: int = 2

    @classmethod
    def from_settings(cls, settings: Settings) -> WorkerSettings:
        server = settings.server
        tools = settings.tools
        return cls(
            data_age_threshold=timedelta(days=server.data_age_threshold_days),
            update_retry_delay_seconds=server.update_retry_delay_seconds,
            extract_base_url=server.extract_base_url,
            planet_file=server.planet_file,
            poly_dir=server.poly_dir,
            update_temp_dir=server.update_temp_dir,
            osmupdate_command=tools.osmupdate_command,
            osmconvert_command=tools.osmconvert_command,
            max_merge=tools.max_merge,
        )


class TaskWorker:
    """State machine keeping one task's extract current.

    At most one tool runs at a time. ``update()`` while busy is a no-op, so
    the periodic timer and capacity retries can never overlap a running
    pipeline. ``terminate()`` is the only way to stop a worker.
    """

    def __init__(
        self,
        task: ExtractTask,
        *,
        store: TaskStore,
        runner: ToolRunner,
        limiter: UpdateLimiter,
        catalog: Callable[[], CatalogSnapshot | None],
        settings: WorkerSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._task = task
        self._store = store
        self._runner = runner
        self._limiter = limiter
        self._catalog = catalog
        self._settings = settings
        self._clock = clock
        self._state = WorkerState.IDLE
        self._timer: asyncio.Task[None] | None = None
        self._retries: set[asyncio.TimerHandle] = set()
        self._handle: ToolHandle | None = None
        self._pipeline: asyncio.Task[None] | None = None

    @property
    def task(self) -> ExtractTask:
        return self._task

    @property
    def task_id(self) -> int:
        return self._task.id

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def terminated(self) -> bool:
        return self._state is WorkerState.TERMINATED

    @property
    def pending_retries(self) -> int:
        return len(self._retries)

    @property
    def extract(self) -> Path:
        return Path(self._task.url or "")

    def start(self) -> None:
        """Start the periodic timer; acquire data right away when the extract is missing."""

        if not self._task.url:
            logger.error("Task %s has no data file path, terminating worker.", self.task_id)
            self.terminate()
            return
        logger.info("Starting worker for task %s", self.task_id)
        self._timer = asyncio.create_task(self._periodic())
        if not self.extract.exists():
            self._begin(WorkerEvent.ACQUIRE, self._acquire())

    def update(self) -> None:
        """Refresh the extract unless the worker is busy or terminated."""

        if self.terminated:
            logger.debug("Worker for task %s is terminated, ignoring update.", self.task_id)
            return
        if self._state is not WorkerState.IDLE:
            logger.info("Task %s is busy (%s), skipping update.", self.task_id, self._state.value)
            return
        if self._limiter.saturated:
            logger.warning(
                "Postponing update for task %s: %d parallel updates running, retrying in %ss.",
                self.task_id,
                self._limiter.active,
                self._settings.update_retry_delay_seconds,
            )
            self._schedule_retry()
            return
        if self._is_stale():
            self._begin(WorkerEvent.ACQUIRE, self._acquire())
            return
        self._limiter.try_acquire(self.task_id)
        self._begin(WorkerEvent.START_UPDATE, self._update(time.monotonic()))

    def terminate(self, remove_data: bool = True) -> None:
        """Stop timers, kill the running tool and optionally delete the extract."""

        if self.terminated:
            return
        self._state = transition(self._state, WorkerEvent.TERMINATE)
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for retry in self._retries:
            retry.cancel()
        self._retries.clear()
        if self._handle is not None:
            self._handle.kill()
        self._limiter.release(self.task_id)
        if remove_data and self._task.url:
            _remove_file(self.extract, what="data")
        logger.info("Terminated worker for task %s", self.task_id)

    async def join(self) -> None:
        """Wait until the running pipeline, if any, has wound down."""

        pipeline = self._pipeline
        if pipeline is not None and not pipeline.done():
            await asyncio.wait({pipeline})

    async def _periodic(self) -> None:
        while True:
            await asyncio.sleep(self._task.update_interval_seconds)
            try:
                self.update()
            except Exception:
                logger.exception("Periodic update of task %s failed", self.task_id)

    def _schedule_retry(self) -> None:
        loop = asyncio.get_running_loop()

        def fire() -> None:
            self._retries.discard(handle)
            self.update()

        handle = loop.call_later(self._settings.update_retry_delay_seconds, fire)
        self._retries.add(handle)

    def _begin(self, event: WorkerEvent, pipeline: Coroutine[Any, Any, None]) -> None:
        self._state = transition(self._state, event)
        self._pipeline = asyncio.create_task(self._guard(pipeline))

    async def _guard(self, pipeline: Coroutine[Any, Any, None]) -> None:
        try:
            await pipeline
        except Exception:
            logger.exception("Worker pipeline for task %s failed", self.task_id)
        finally:
            self._handle = None
            if self._state not in {WorkerState.IDLE, WorkerState.TERMINATED}:
                self._state = transition(self._state, WorkerEvent.FINISH)

    def _is_stale(self) -> bool:
        try:
            modified = self.extract.stat().st_mtime
        except FileNotFoundError:
            logger.info("%s not found, acquiring data for task %s.", self.extract, self.task_id)
            return True
        except OSError as error:
            logger.error("Can't stat %s for task %s: %s", self.extract, self.task_id, error)
            return True
        age = timedelta(seconds=time.time() - modified)
        if age > self._settings.data_age_threshold:
            logger.info(
                "%s older than %s, acquiring fresh data for task %s.",
                self.extract,
                self._settings.data_age_threshold,
                self.task_id,
            )
            return True
        return False

    async def _acquire(self) -> None:
        snapshot = self._catalog()
        entry = find_extract(self._task.coverage, snapshot)
        if entry is None:
            await self._extract_from_planet()
            return

        if isinstance(self._task.coverage, RegionCode) and snapshot is not None:
            self._resolve_region(self._task.coverage.code, entry, snapshot)

        extract = self.extract
        side = updated_path(extract)
        url = region_extract_url(self._settings.extract_base_url, entry.name)
        extract.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Downloading %s for task %s", url, self.task_id)
        outcome = await self._run(await self._runner.start_download(url, side))
        if outcome.status is not ToolStatus.SUCCESS:
            if outcome.status is ToolStatus.FAILED:
                logger.warning(
                    "Download of %s for task %s failed: %s",
                    url,
                    self.task_id,
                    outcome.detail,
                )
            _remove_file(side, what="partial download")
            return
        if not _move(side, extract):
            return
        logger.info("Downloaded %s for task %s", url, self.task_id)

        poly = self._write_poly()
        if poly is None:
            return
        try:
            await self._clip(poly)
        finally:
            _remove_file(poly, what="poly")

    async def _extract_from_planet(self) -> None:
        planet = self._settings.planet_file
        usable = (
            planet is not None
            and planet.is_file()
            and not isinstance(self._task.coverage, RegionCode)
        )
        if not usable:
            logger.warning(
                "No extract found for task %s and no planet file to fall back to, "
                "terminating worker.",
                self.task_id,
            )
            self.terminate()
            return

        poly = self._write_poly()
        if poly is None:
            return
        extract = self.extract
        side = clipped_path(extract)
        extract.parent.mkdir(parents=True, exist_ok=True)
        logger.info("No regional extract for task %s, cutting it from %s", self.task_id, planet)
        try:
            handle = await self._runner.start(
                ToolKind.PLANET_EXTRACT,
                [self._settings.osmconvert_command, str(planet), f"-B={poly}", f"-o={side}"],
            )
            outcome = await self._run(handle)
        finally:
            _remove_file(poly, what="poly")
        if outcome.status is not ToolStatus.SUCCESS:
            if outcome.status is ToolStatus.FAILED:
                logger.warning(
                    "Planet extraction for task %s failed: %s",
                    self.task_id,
                    outcome.detail,
                )
            _remove_file(side, what="planet extract")
            return
        if _move(side, extract):
            logger.info("Extracted task %s from planet file", self.task_id)

    async def _update(self, started: float) -> None:
        extract = self.extract
        side = updated_path(extract)
        logger.info("Starting update for task %s", self.task_id)
        poly: Path | None = None
        try:
            poly = self._write_poly()
            if poly is None:
                return
            temp_prefix = update_temp_path(self._settings.update_temp_dir, self.task_id)
            temp_prefix.parent.mkdir(parents=True, exist_ok=True)
            try:
                handle = await self._runner.start(
                    ToolKind.UPDATE,
                    [
                        self._settings.osmupdate_command,
                        "-v",
                        f"--max-merge={self._settings.max_merge}",
                        f"-t={temp_prefix}",
                        str(extract),
                        str(side),
                    ],
                )
                outcome = await self._run(handle)
            finally:
                self._limiter.release(self.task_id)

            if outcome.status is ToolStatus.NOOP:
                logger.info("Task %s already up-to-date.", self.task_id)
                _remove_file(side, what="update")
                return
            if outcome.status is ToolStatus.KILLED:
                _remove_file(side, what="update")
                return
            if outcome.status is ToolStatus.FAILED:
                logger.warning("Update of task %s failed: %s", self.task_id, outcome.detail)
                _remove_file(side, what="update")
                return
            if not _move(side, extract):
                return
            if not await self._clip(poly):
                return
            self._record_stats(int((time.monotonic() - started) * 1000))
            logger.info("Successfully updated task %s", self.task_id)
        finally:
            self._limiter.release(self.task_id)
            if poly is not None:
                _remove_file(poly, what="poly")

    async def _clip(self, poly: Path) -> bool:
        if self.terminated:
            return False
        self._state = transition(self._state, WorkerEvent.START_CLIP)
        extract = self.extract
        side = clipped_path(extract)
        logger.debug("Clipping data to coverage for task %s", self.task_id)
        handle = await self._runner.start(
            ToolKind.CLIP,
            [self._settings.osmconvert_command, str(extract), f"-B={poly}", f"-o={side}"],
        )
        outcome = await self._run(handle)
        if outcome.status is not ToolStatus.SUCCESS:
            if outcome.status is ToolStatus.FAILED:
                logger.error("Can't clip extract for task %s: %s", self.task_id, outcome.detail)
            _remove_file(side, what="clipped")
            return False
        if not _move(side, extract):
            return False
        logger.info("Successfully clipped extract for task %s", self.task_id)
        return True

    async def _run(self, handle: ToolHandle) -> ToolOutcome:
        self._handle = handle
        if self.terminated:
            handle.kill()
        try:
            outcome = await handle.wait()
        finally:
            self._handle = None
        if self.terminated and outcome.status is not ToolStatus.KILLED:
            return ToolOutcome(status=ToolStatus.KILLED, exit_code=outcome.exit_code)
        if outcome.status is ToolStatus.KILLED:
            logger.debug("%s for task %s was killed", handle.kind.value, self.task_id)
        return outcome

    def _resolve_region(self, code: str, entry: CatalogEntry, snapshot: CatalogSnapshot) -> None:
        coverage = {
            "type": "Feature",
            "geometry": mapping(snapshot.region_geometry(entry.name)),
            "properties": {"name": code},
        }
        self._task.coverage = coverage
        logger.info("Resolved region %s of task %s to %s", code, self.task_id, entry.name)
        try:
            self._store.update_task_field(self.task_id, "coverage", coverage)
        except TaskStoreError as error:
            logger.error("Can't store resolved coverage of task %s: %s", self.task_id, error)

    def _write_poly(self) -> Path | None:
        try:
            return polyfile.encode(
                self.task_id,
                coverage_name(self._task.coverage),
                coverage_geometry(self._task.coverage),
                self._settings.poly_dir,
            )
        except (OSError, TypeError, ValueError) as error:
            logger.error("Can't write poly file for task %s: %s", self.task_id, error)
            return None

    def _record_stats(self, elapsed_millis: int) -> None:
        now = self._clock()
        try:
            self._store.append_stat(self.task_id, now, elapsed_millis)
            self._store.set_average_runtime(self.task_id)
            self._store.update_task_field(self.task_id, "last_updated", now)
        except TaskStoreError as error:
            logger.error("Can't record statistics for task %s: %s", self.task_id, error)
            return
        self._task.last_updated = now


def _move(source: Path, target: Path) -> bool:
    try:
        os.replace(source, target)
    except OSError as error:
        logger.error("Can't move %s to %s: %s", source, target, error)
        _remove_file(source, what="side")
        return False
    return True


def _remove_file(path: Path, *, what: str) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as error:
        logger.error("Can't remove %s file %s: %s", what, path, error)
