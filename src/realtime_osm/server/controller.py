"""Reconciles the task store with the registry of running task workers."""

from __future__ import annotations

import asyncio
import logging
import shutil
from collections.abc import Callable, Mapping
from datetime import datetime
from types import MappingProxyType

from realtime_osm.config import Settings
from realtime_osm.server.catalog import RegionCatalog
from realtime_osm.server.layout import POLY_GLOB
from realtime_osm.server.process import ToolRunner
from realtime_osm.server.worker import TaskWorker, UpdateLimiter, WorkerSettings
from realtime_osm.storage.common import utc_now
from realtime_osm.tasks.models import ExtractTask, TaskStore, TaskStoreError

logger = logging.getLogger(__name__)


class Controller:
    """Owns the catalog, the update limiter and the worker registry.

    ``reconcile()`` is the only code that adds or removes registry entries,
    so there is never more than one worker per task id.
    """

    def __init__(
        self,
        *,
        store: TaskStore,
        catalog: RegionCatalog,
        runner: ToolRunner,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._catalog = catalog
        self._runner = runner
        self._server = settings.server
        self._worker_settings = WorkerSettings.from_settings(settings)
        self._clock = clock
        self.limiter = UpdateLimiter(settings.server.max_parallel_updates)
        self._workers: dict[int, TaskWorker] = {}

    @property
    def workers(self) -> Mapping[int, TaskWorker]:
        return MappingProxyType(self._workers)

    def reconcile(self) -> None:
        """One pass: expire tasks, drop stale workers, start missing ones."""

        try:
            tasks = self._store.list_tasks()
        except TaskStoreError as error:
            logger.error("Can't fetch tasks, skipping worker sync: %s", error)
            return

        fetched = {task.id: task for task in tasks}
        handled_before = set(self._workers)
        now = self._clock()

        for task_id, worker in list(self._workers.items()):
            task = fetched.get(task_id, worker.task)
            if not task.is_expired(now):
                continue
            logger.info("Task %s expired on %s, deleting it.", task_id, task.expiration_date)
            try:
                self._store.delete_task(task_id)
            except TaskStoreError as error:
                logger.error("Can't delete expired task %s: %s", task_id, error)
            fetched.pop(task_id, None)
            worker.terminate()
            del self._workers[task_id]

        for task_id, worker in list(self._workers.items()):
            if worker.terminated:
                del self._workers[task_id]

        for task_id in [task_id for task_id in self._workers if task_id not in fetched]:
            self._workers.pop(task_id).terminate()

        for task_id, task in fetched.items():
            if task_id in self._workers:
                continue
            worker = self._create_worker(task)
            self._workers[task_id] = worker
            worker.start()

        if set(self._workers) != handled_before:
            logger.info("Handling tasks: %s", sorted(self._workers))

    async def run(self, stop: asyncio.Event) -> None:
        """Load the catalog, then reconcile on a timer until ``stop`` is set."""

        await self._refresh_catalog()
        loops = [
            asyncio.create_task(self._catalog_loop()),
            asyncio.create_task(self._sync_loop()),
        ]
        try:
            await stop.wait()
        finally:
            for loop_task in loops:
                loop_task.cancel()
            for result in await asyncio.gather(*loops, return_exceptions=True):
                if isinstance(result, Exception):
                    logger.error("Controller loop ended with an error: %r", result)
            await self.shutdown()

    async def shutdown(self) -> None:
        """Kill running tools, keep extracts, remove poly files and update temp files."""

        workers = list(self._workers.values())
        self._workers.clear()
        for worker in workers:
            worker.terminate(remove_data=False)
        await asyncio.gather(*(worker.join() for worker in workers))

        for poly in self._server.poly_dir.glob(POLY_GLOB):
            try:
                poly.unlink(missing_ok=True)
            except OSError as error:
                logger.error("Can't remove poly file %s: %s", poly, error)
        if self._server.update_temp_dir.exists():
            try:
                shutil.rmtree(self._server.update_temp_dir)
            except OSError as error:
                logger.error(
                    "Can't remove update temp directory %s: %s",
                    self._server.update_temp_dir,
                    error,
                )
        logger.info("Controller stopped.")

    async def _catalog_loop(self) -> None:
        while True:
            await asyncio.sleep(self._server.catalog_refresh_interval_seconds)
            await self._refresh_catalog()

    async def _sync_loop(self) -> None:
        while True:
            try:
                self.reconcile()
            except Exception:
                logger.exception("Worker sync pass failed")
            await asyncio.sleep(self._server.worker_sync_interval_seconds)

    async def _refresh_catalog(self) -> None:
        try:
            await self._catalog.refresh()
        except Exception:
            logger.exception("Region catalog refresh failed")

    def _create_worker(self, task: ExtractTask) -> TaskWorker:
        return TaskWorker(
            task,
            store=self._store,
            runner=self._runner,
            limiter=self.limiter,
            catalog=lambda: self._catalog.snapshot,
            settings=self._worker_settings,
            clock=self._clock,
        )
