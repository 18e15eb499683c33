"""Shared test fixtures."""

from __future__ import annotations

import os
from pathlib import Path

import pytest
from fakes import FakeTaskStore, FakeToolRunner

from realtime_osm.config import Settings
from realtime_osm.server.worker import WorkerSettings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Drop REALTIME_OSM_* variables leaking in from the developer shell."""

    for name in list(os.environ):
        if name.startswith("REALTIME_OSM_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def worker_settings(tmp_path: Path) -> WorkerSettings:
    return WorkerSettings(
        poly_dir=tmp_path / "poly",
        update_temp_dir=tmp_path / "osmupdate_temp",
    )


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    settings = Settings()
    settings.server.poly_dir = tmp_path / "poly"
    settings.server.update_temp_dir = tmp_path / "osmupdate_temp"
    settings.server.catalog_dir = tmp_path / "bounds"
    settings.store.db_path = tmp_path / "realtimeosm.db"
    settings.store.data_directory = tmp_path / "data"
    return settings


@pytest.fixture()
def store() -> FakeTaskStore:
    return FakeTaskStore()


@pytest.fixture()
def runner() -> FakeToolRunner:
    return FakeToolRunner()
