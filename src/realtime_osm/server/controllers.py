"""Controllers for server and catalog CLI commands."""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass
from pathlib import Path

from realtime_osm.config import Settings
from realtime_osm.http.fetcher import HttpDownloader
from realtime_osm.server.catalog import CatalogSnapshot, RegionCatalog
from realtime_osm.server.controller import Controller
from realtime_osm.server.layout import region_extract_url
from realtime_osm.server.matcher import find_extract
from realtime_osm.server.process import ProcessRunner
from realtime_osm.tasks.coverage import parse_coverage
from realtime_osm.tasks.repository import SQLiteTaskStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ServeCommand:
    """CLI input for running the extract server."""

    db_path: Path | None


@dataclass(slots=True)
class CatalogRefreshCommand:
    """CLI input for a one-shot catalog refresh."""

    catalog_dir: Path | None


@dataclass(slots=True)
class CatalogMatchCommand:
    """CLI input for resolving a coverage against the catalog."""

    coverage: str
    catalog_dir: Path | None
    offline: bool


class ServerCliController:
    """Runs the server and inspects the region catalog."""

    def serve(self, command: ServeCommand) -> list[str]:
        settings = _settings(db_path=command.db_path)
        asyncio.run(_serve(settings))
        return ["Server stopped."]

    def refresh_catalog(self, command: CatalogRefreshCommand) -> list[str]:
        settings = _settings(catalog_dir=command.catalog_dir)
        snapshot = asyncio.run(_load_catalog(settings, offline=False))
        if snapshot is None:
            raise ValueError("Region catalog is unavailable, see log for details.")
        return [f"Region catalog: {len(snapshot)} boundaries in {len(snapshot.names)} regions"]

    def match(self, command: CatalogMatchCommand) -> list[str]:
        settings = _settings(catalog_dir=command.catalog_dir)
        coverage = parse_coverage(command.coverage)
        snapshot = asyncio.run(_load_catalog(settings, offline=command.offline))
        entry = find_extract(coverage, snapshot)
        if entry is None:
            return ["No regional extract covers this coverage."]
        return [
            f"Region: {entry.name}",
            f"Area: {entry.area / 1_000_000:.1f} km2",
            f"Extract: {region_extract_url(settings.server.extract_base_url, entry.name)}",
        ]


async def _serve(settings: Settings) -> None:
    store = SQLiteTaskStore(settings.store.db_path, busy_timeout_ms=settings.store.busy_timeout_ms)
    store.init_schema()
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop.set)
    try:
        async with _downloader(settings) as downloader:
            controller = Controller(
                store=store,
                catalog=RegionCatalog(
                    directory=settings.server.catalog_dir,
                    url=settings.server.catalog_url,
                    downloader=downloader,
                ),
                runner=ProcessRunner(downloader=downloader),
                settings=settings,
            )
            logger.info("Extract server started, tasks from %s", settings.store.db_path)
            await controller.run(stop)
    finally:
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(signum)
        store.close()


async def _load_catalog(settings: Settings, *, offline: bool) -> CatalogSnapshot | None:
    async with _downloader(settings) as downloader:
        catalog = RegionCatalog(
            directory=settings.server.catalog_dir,
            url=settings.server.catalog_url,
            downloader=downloader,
        )
        if offline:
            return await catalog.load_local()
        return await catalog.refresh()


def _downloader(settings: Settings) -> HttpDownloader:
    return HttpDownloader(
        timeout_seconds=settings.tools.http_timeout_seconds,
        max_retries=settings.tools.http_max_retries,
    )


def _settings(*, db_path: Path | None = None, catalog_dir: Path | None = None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    if catalog_dir is not None:
        settings.server.catalog_dir = catalog_dir
    settings.validate()
    return settings
