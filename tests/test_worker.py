from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import allure
import pytest
from fakes import (
    FakeTaskStore,
    FakeToolRunner,
    box_feature,
    catalog_entry,
    writes,
)

from realtime_osm.server.catalog import CatalogSnapshot
from realtime_osm.server.layout import clipped_path, poly_path, updated_path
from realtime_osm.server.models import ToolKind, ToolOutcome, ToolStatus, WorkerState
from realtime_osm.server.worker import TaskWorker, UpdateLimiter, WorkerSettings
from realtime_osm.tasks.models import ExtractTask, RegionCode

pytestmark = [
    allure.epic("Extract Server"),
    allure.feature("Task Worker"),
]

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
NOOP = ToolOutcome(status=ToolStatus.NOOP, exit_code=21)
FAILED = ToolOutcome(status=ToolStatus.FAILED, exit_code=1, detail="boom")


def _europe() -> CatalogSnapshot:
    return CatalogSnapshot(
        [
            catalog_entry("europe", (0, 0, 40, 40), 1000),
            catalog_entry("europe/germany", (5, 5, 15, 15), 50),
        ],
    )


def _task(tmp_path: Path, *, coverage=None, url: str | None = "default") -> ExtractTask:
    if url == "default":
        url = str(tmp_path / "data" / "7_berlin.osm.pbf")
    return ExtractTask(
        id=7,
        name="berlin",
        coverage=coverage if coverage is not None else box_feature(10, 10, 11, 11, name="berlin"),
        url=url,
    )


def _worker(
    task: ExtractTask,
    *,
    store: FakeTaskStore,
    runner: FakeToolRunner,
    settings: WorkerSettings,
    snapshot: CatalogSnapshot | None = None,
    limiter: UpdateLimiter | None = None,
) -> TaskWorker:
    return TaskWorker(
        task,
        store=store,
        runner=runner,
        limiter=limiter or UpdateLimiter(6),
        catalog=lambda: snapshot,
        settings=settings,
        clock=lambda: NOW,
    )


def _existing_extract(task: ExtractTask, content: bytes = b"original") -> Path:
    extract = Path(task.url or "")
    extract.parent.mkdir(parents=True, exist_ok=True)
    extract.write_bytes(content)
    return extract


async def _settle(predicate: Callable[[], bool]) -> None:
    for _ in range(200):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.mark.asyncio
async def test_end_to_end_acquires_smallest_region_and_clips(
    tmp_path: Path,
    store: FakeTaskStore,
    runner: FakeToolRunner,
    worker_settings: WorkerSettings,
) -> None:
    task = _task(tmp_path)
    runner.on(ToolKind.DOWNLOAD, writes(b"germany"))
    runner.on(ToolKind.CLIP, writes(b"clipped"))
    worker = _worker(
        task,
        store=store,
        runner=runner,
        settings=worker_settings,
        snapshot=_europe(),
    )

    worker.start()
    assert worker.state is WorkerState.ACQUIRING_INITIAL
    await worker.join()

    extract = Path(task.url or "")
    assert worker.state is WorkerState.IDLE
    assert extract.read_bytes() == b"clipped"
    assert runner.kinds() == [ToolKind.DOWNLOAD, ToolKind.CLIP]
    assert runner.started[0].argv == [
        "http://download.geofabrik.de/europe/germany-latest.osm.pbf",
        str(updated_path(extract)),
    ]
    assert not updated_path(extract).exists()
    assert not clipped_path(extract).exists()
    assert not poly_path(worker_settings.poly_dir, 7).exists()
    assert store.stats == []
    worker.terminate(remove_data=False)


@pytest.mark.asyncio
async def test_region_code_is_resolved_and_persisted(
    tmp_path: Path,
    store: FakeTaskStore,
    runner: FakeToolRunner,
    worker_settings: WorkerSettings,
) -> None:
    task = _task(tmp_path, coverage=RegionCode(code="germany"))
    runner.on(ToolKind.DOWNLOAD, writes(b"germany"))
    runner.on(ToolKind.CLIP, writes(b"clipped"))
    worker = _worker(
        task,
        store=store,
        runner=runner,
        settings=worker_settings,
        snapshot=_europe(),
    )

    worker.start()
    await worker.join()

    assert isinstance(worker.task.coverage, dict)
    assert worker.task.coverage["properties"] == {"name": "germany"}
    assert [(task_id, field) for task_id, field, _ in store.field_updates] == [(7, "coverage")]
    assert runner.started[0].argv[0].endswith("/europe/germany-latest.osm.pbf")
    assert Path(task.url or "").read_bytes() == b"clipped"
    worker.terminate(remove_data=False)


@pytest.mark.asyncio
async def test_region_code_resolves_to_every_part_of_the_region(
    tmp_path: Path,
    store: FakeTaskStore,
    runner: FakeToolRunner,
    worker_settings: WorkerSettings,
) -> None:
    snapshot = CatalogSnapshot(
        [
            catalog_entry("europe", (0, 0, 40, 40), 1000),
            catalog_entry("europe/greece", (20, 20, 25, 25), 25),
            catalog_entry("europe/greece", (30, 30, 31, 31), 1),
        ],
    )
    task = _task(tmp_path, coverage=RegionCode(code="greece"))
    runner.on(ToolKind.DOWNLOAD, writes(b"greece"))
    runner.on(ToolKind.CLIP, writes(b"clipped"))
    worker = _worker(task, store=store, runner=runner, settings=worker_settings, snapshot=snapshot)

    worker.start()
    await worker.join()

    assert isinstance(worker.task.coverage, dict)
    geometry = worker.task.coverage["geometry"]
    assert geometry["type"] == "MultiPolygon"
    assert len(geometry["coordinates"]) == 2
    assert runner.started[0].argv[0].endswith("/europe/greece-latest.osm.pbf")
    worker.terminate(remove_data=False)


@pytest.mark.asyncio
async def test_no_match_without_planet_file_terminates_and_removes_stale_extract(
    tmp_path: Path,
    store: FakeTaskStore,
    runner: FakeToolRunner,
    worker_settings: WorkerSettings,
) -> None:
    task = _task(tmp_path)
    extract = _existing_extract(task)
    three_days_ago = time.time() - 3 * 86_400
    os.utime(extract, (three_days_ago, three_days_ago))
    worker = _worker(task, store=store, runner=runner, settings=worker_settings)

    worker.update()
    await worker.join()

    assert worker.terminated
    assert not extract.exists()
    assert runner.started == []
    assert store.deleted == []


@pytest.mark.asyncio
async def test_unreadable_extract_path_does_not_raise_from_update(
    tmp_path: Path,
    store: FakeTaskStore,
    runner: FakeToolRunner,
    worker_settings: WorkerSettings,
) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_bytes(b"not a directory")
    task = _task(tmp_path, url=str(blocker / "7_berlin.osm.pbf"))
    worker = _worker(task, store=store, runner=runner, settings=worker_settings)

    worker.update()
    await worker.join()

    assert worker.terminated
    assert blocker.read_bytes() == b"not a directory"


@pytest.mark.asyncio
async def test_periodic_timer_survives_a_failing_update(
    tmp_path: Path,
    store: FakeTaskStore,
    runner: FakeToolRunner,
    worker_settings: WorkerSettings,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    task = ExtractTask(
        id=7,
        name="berlin",
        coverage=box_feature(10, 10, 11, 11, name="berlin"),
        url=str(tmp_path / "data" / "7_berlin.osm.pbf"),
        update_interval_seconds=0,
    )
    _existing_extract(task)
    worker = _worker(task, store=store, runner=runner, settings=worker_settings)
    calls: list[int] = []

    def flaky_update() -> None:
        calls.append(len(calls))
        if len(calls) == 1:
            raise RuntimeError("disk went away")

    monkeypatch.setattr(worker, "update", flaky_update)

    worker.start()
    await _settle(lambda: len(calls) >= 3)
    worker.terminate(remove_data=False)

    assert "Periodic update of task 7 failed" in caplog.text


@pytest.mark.asyncio
async def test_no_match_falls_back_to_planet_extract(
    tmp_path: Path,
    store: FakeTaskStore,
    runner: FakeToolRunner,
    worker_settings: WorkerSettings,
) -> None:
    planet = tmp_path / "planet.osm.pbf"
    planet.write_bytes(b"planet")
    worker_settings.planet_file = planet
    runner.on(ToolKind.PLANET_EXTRACT, writes(b"cut"))
    task = _task(tmp_path)
    worker = _worker(task, store=store, runner=runner, settings=worker_settings)

    worker.start()
    await worker.join()

    assert worker.state is WorkerState.IDLE
    assert runner.kinds() == [ToolKind.PLANET_EXTRACT]
    assert runner.started[0].argv[1] == str(planet)
    assert Path(task.url or "").read_bytes() == b"cut"
    assert not poly_path(worker_settings.poly_dir, 7).exists()
    worker.terminate(remove_data=False)


@pytest.mark.asyncio
async def test_unresolved_region_code_never_uses_planet_file(
    tmp_path: Path,
    store: FakeTaskStore,
    runner: FakeToolRunner,
    worker_settings: WorkerSettings,
) -> None:
    planet = tmp_path / "planet.osm.pbf"
    planet.write_bytes(b"planet")
    worker_settings.planet_file = planet
    task = _task(tmp_path, coverage=RegionCode(code="atlantis"))
    worker = _worker(task, store=store, runner=runner, settings=worker_settings)

    worker.start()
    await worker.join()

    assert worker.terminated
    assert runner.started == []


@pytest.mark.asyncio
async def test_failed_download_returns_to_idle(
    tmp_path: Path,
    store: FakeTaskStore,
    runner: FakeToolRunner,
    worker_settings: WorkerSettings,
) -> None:
    runner.on(ToolKind.DOWNLOAD, lambda argv: FAILED)
    task = _task(tmp_path)
    worker = _worker(
        task,
        store=store,
        runner=runner,
        settings=worker_settings,
        snapshot=_europe(),
    )

    worker.start()
    await worker.join()

    assert worker.state is WorkerState.IDLE
    assert not Path(task.url or "").exists()
    assert runner.kinds() == [ToolKind.DOWNLOAD]
    worker.terminate()


@pytest.mark.asyncio
async def test_missing_url_terminates_on_start(
    tmp_path: Path,
    store: FakeTaskStore,
    runner: FakeToolRunner,
    worker_settings: WorkerSettings,
) -> None:
    task = _task(tmp_path, url=None)
    worker = _worker(task, store=store, runner=runner, settings=worker_settings)

    worker.start()

    assert worker.terminated
    worker.update()
    assert runner.started == []


@pytest.mark.asyncio
async def test_update_while_busy_is_noop(
    tmp_path: Path,
    store: FakeTaskStore,
    runner: FakeToolRunner,
    worker_settings: WorkerSettings,
) -> None:
    task = _task(tmp_path)
    _existing_extract(task)
    runner.held.add(ToolKind.UPDATE)
    worker = _worker(task, store=store, runner=runner, settings=worker_settings)

    worker.update()
    await _settle(lambda: bool(runner.started))
    worker.update()
    worker.update()

    assert worker.state is WorkerState.UPDATING
    assert runner.kinds() == [ToolKind.UPDATE]

    runner.finish(0, NOOP)
    await worker.join()
    assert worker.state is WorkerState.IDLE


@pytest.mark.asyncio
async def test_saturated_limiter_schedules_exactly_one_retry(
    tmp_path: Path,
    store: FakeTaskStore,
    runner: FakeToolRunner,
    worker_settings: WorkerSettings,
) -> None:
    task = _task(tmp_path)
    _existing_extract(task)
    limiter = UpdateLimiter(1)
    assert limiter.try_acquire(99)
    worker = _worker(task, store=store, runner=runner, settings=worker_settings, limiter=limiter)

    worker.update()

    assert worker.state is WorkerState.IDLE
    assert worker.pending_retries == 1
    assert runner.started == []

    worker.terminate(remove_data=False)
    assert worker.pending_retries == 0


@pytest.mark.asyncio
async def test_retry_runs_update_once_capacity_frees_up(
    tmp_path: Path,
    store: FakeTaskStore,
    runner: FakeToolRunner,
    worker_settings: WorkerSettings,
) -> None:
    task = _task(tmp_path)
    _existing_extract(task)
    worker_settings.update_retry_delay_seconds = 0.01
    runner.on(ToolKind.UPDATE, lambda argv: NOOP)
    limiter = UpdateLimiter(1)
    limiter.try_acquire(99)
    worker = _worker(task, store=store, runner=runner, settings=worker_settings, limiter=limiter)

    worker.update()
    limiter.release(99)
    await asyncio.sleep(0.05)
    await worker.join()

    assert runner.kinds() == [ToolKind.UPDATE]
    assert worker.pending_retries == 0
    assert worker.state is WorkerState.IDLE
    assert limiter.active == 0


@pytest.mark.asyncio
async def test_successful_update_clips_and_records_stats(
    tmp_path: Path,
    store: FakeTaskStore,
    runner: FakeToolRunner,
    worker_settings: WorkerSettings,
) -> None:
    task = _task(tmp_path)
    extract = _existing_extract(task)
    runner.on(ToolKind.UPDATE, writes(b"updated"))
    runner.on(ToolKind.CLIP, writes(b"clipped"))
    limiter = UpdateLimiter(6)
    worker = _worker(task, store=store, runner=runner, settings=worker_settings, limiter=limiter)

    worker.update()
    await worker.join()

    assert worker.state is WorkerState.IDLE
    assert extract.read_bytes() == b"clipped"
    assert runner.kinds() == [ToolKind.UPDATE, ToolKind.CLIP]
    update_argv = runner.started[0].argv
    assert update_argv[0] == "osmupdate"
    assert "--max-merge=2" in update_argv
    assert f"-t={worker_settings.update_temp_dir / 'Task7'}" in update_argv
    assert update_argv[-2:] == [str(extract), str(updated_path(extract))]
    poly = poly_path(worker_settings.poly_dir, 7)
    assert runner.started[1].argv == [
        "osmconvert",
        str(extract),
        f"-B={poly}",
        f"-o={clipped_path(extract)}",
    ]
    assert not poly.exists()
    assert [(task_id, stamp) for task_id, stamp, _ in store.stats] == [(7, NOW)]
    assert store.stats[0][2] >= 0
    assert store.averaged == [7]
    assert (7, "last_updated", NOW) in store.field_updates
    assert worker.task.last_updated == NOW
    assert limiter.active == 0


@pytest.mark.asyncio
async def test_noop_update_records_nothing(
    tmp_path: Path,
    store: FakeTaskStore,
    runner: FakeToolRunner,
    worker_settings: WorkerSettings,
) -> None:
    task = _task(tmp_path)
    extract = _existing_extract(task)
    runner.on(ToolKind.UPDATE, lambda argv: NOOP)
    worker = _worker(task, store=store, runner=runner, settings=worker_settings)

    worker.update()
    await worker.join()

    assert extract.read_bytes() == b"original"
    assert runner.kinds() == [ToolKind.UPDATE]
    assert store.stats == []
    assert not poly_path(worker_settings.poly_dir, 7).exists()


@pytest.mark.asyncio
async def test_failed_update_leaves_extract_and_removes_side_file(
    tmp_path: Path,
    store: FakeTaskStore,
    runner: FakeToolRunner,
    worker_settings: WorkerSettings,
) -> None:
    task = _task(tmp_path)
    extract = _existing_extract(task)
    runner.on(ToolKind.UPDATE, writes(b"broken", FAILED))
    worker = _worker(task, store=store, runner=runner, settings=worker_settings)

    worker.update()
    await worker.join()

    assert worker.state is WorkerState.IDLE
    assert extract.read_bytes() == b"original"
    assert not updated_path(extract).exists()
    assert runner.kinds() == [ToolKind.UPDATE]
    assert store.stats == []


@pytest.mark.asyncio
async def test_clip_failure_records_no_stats(
    tmp_path: Path,
    store: FakeTaskStore,
    runner: FakeToolRunner,
    worker_settings: WorkerSettings,
) -> None:
    task = _task(tmp_path)
    extract = _existing_extract(task)
    runner.on(ToolKind.UPDATE, writes(b"updated"))
    runner.on(ToolKind.CLIP, writes(b"half", FAILED))
    worker = _worker(task, store=store, runner=runner, settings=worker_settings)

    worker.update()
    await worker.join()

    assert worker.state is WorkerState.IDLE
    assert extract.read_bytes() == b"updated"
    assert not clipped_path(extract).exists()
    assert store.stats == []


@pytest.mark.asyncio
async def test_killed_update_leaves_extract_byte_for_byte(
    tmp_path: Path,
    store: FakeTaskStore,
    runner: FakeToolRunner,
    worker_settings: WorkerSettings,
) -> None:
    task = _task(tmp_path)
    extract = _existing_extract(task)
    runner.held.add(ToolKind.UPDATE)
    limiter = UpdateLimiter(6)
    worker = _worker(task, store=store, runner=runner, settings=worker_settings, limiter=limiter)

    worker.update()
    await _settle(lambda: bool(runner.started))
    poly = poly_path(worker_settings.poly_dir, 7)
    assert poly.exists()
    assert limiter.active == 1
    updated_path(extract).write_bytes(b"partial")

    runner.started[0].handle.kill()
    await worker.join()

    assert worker.state is WorkerState.IDLE
    assert extract.read_bytes() == b"original"
    assert not updated_path(extract).exists()
    assert not poly.exists()
    assert limiter.active == 0
    assert store.stats == []


@pytest.mark.asyncio
async def test_stale_extract_is_acquired_again(
    tmp_path: Path,
    store: FakeTaskStore,
    runner: FakeToolRunner,
    worker_settings: WorkerSettings,
) -> None:
    task = _task(tmp_path)
    extract = _existing_extract(task)
    three_days_ago = time.time() - 3 * 86_400
    os.utime(extract, (three_days_ago, three_days_ago))
    runner.held.add(ToolKind.DOWNLOAD)
    worker = _worker(
        task,
        store=store,
        runner=runner,
        settings=worker_settings,
        snapshot=_europe(),
    )

    worker.update()
    await _settle(lambda: bool(runner.started))

    assert worker.state is WorkerState.ACQUIRING_INITIAL
    assert runner.kinds() == [ToolKind.DOWNLOAD]
    worker.terminate(remove_data=False)
    await worker.join()
    assert extract.read_bytes() == b"original"


@pytest.mark.asyncio
async def test_terminate_kills_tool_and_removes_data(
    tmp_path: Path,
    store: FakeTaskStore,
    runner: FakeToolRunner,
    worker_settings: WorkerSettings,
) -> None:
    task = _task(tmp_path)
    extract = _existing_extract(task)
    runner.held.add(ToolKind.UPDATE)
    limiter = UpdateLimiter(6)
    worker = _worker(task, store=store, runner=runner, settings=worker_settings, limiter=limiter)
    worker.start()
    worker.update()
    await _settle(lambda: bool(runner.started))

    worker.terminate()
    worker.terminate()
    await worker.join()

    assert worker.state is WorkerState.TERMINATED
    assert runner.started[0].handle.killed
    assert not extract.exists()
    assert limiter.active == 0
    assert runner.kinds() == [ToolKind.UPDATE]
    worker.update()
    assert runner.kinds() == [ToolKind.UPDATE]


@pytest.mark.asyncio
async def test_terminate_can_keep_data(
    tmp_path: Path,
    store: FakeTaskStore,
    runner: FakeToolRunner,
    worker_settings: WorkerSettings,
) -> None:
    task = _task(tmp_path)
    extract = _existing_extract(task)
    worker = _worker(task, store=store, runner=runner, settings=worker_settings)
    worker.start()

    worker.terminate(remove_data=False)

    assert worker.terminated
    assert extract.read_bytes() == b"original"
