"""Runtime configuration for the extract server and task store."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

_LOG_LEVELS = frozenset({"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"})


@dataclass(slots=True)
class ServerSettings:
    """Controller and worker scheduling settings."""

    data_age_threshold_days: float = 1.0
    max_parallel_updates: int = 6
    worker_sync_interval_seconds: float = 5.0
    update_retry_delay_seconds: float = 30.0
    catalog_dir: Path = Path("geofabrikbounds")
    catalog_url: str = "http://download.geofabrik.de/allkmlfiles.tgz"
    catalog_refresh_interval_seconds: int = 86_400
    extract_base_url: str = "http://download.geofabrik.de/"
    planet_file: Path | None = None
    poly_dir: Path = Path(".")
    update_temp_dir: Path = Path("osmupdate_temp")


@dataclass(slots=True)
class ToolSettings:
    """External tool commands and HTTP client settings."""

    osmupdate_command: str = "osmupdate"
    osmconvert_command: str = "osmconvert"
    max_merge: int = 2
    http_timeout_seconds: float = 60.0
    http_max_retries: int = 3


@dataclass(slots=True)
class StoreSettings:
    """Task store settings."""

    db_path: Path = Path("realtimeosm.db")
    data_directory: Path = Path("data")
    busy_timeout_ms: int = 5_000


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    log_level: str = "INFO"
    server: ServerSettings = field(default_factory=ServerSettings)
    tools: ToolSettings = field(default_factory=ToolSettings)
    store: StoreSettings = field(default_factory=StoreSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with defaults for local development."""

        planet_file = os.getenv("REALTIME_OSM_PLANET_FILE", "").strip()
        return cls(
            log_level=os.getenv("REALTIME_OSM_LOG_LEVEL", "INFO").strip().upper(),
            server=ServerSettings(
                data_age_threshold_days=float(
                    os.getenv("REALTIME_OSM_DATA_AGE_THRESHOLD_DAYS", "1"),
                ),
                max_parallel_updates=int(os.getenv("REALTIME_OSM_MAX_PARALLEL_UPDATES", "6")),
                worker_sync_interval_seconds=float(
                    os.getenv("REALTIME_OSM_WORKER_SYNC_INTERVAL_SECONDS", "5"),
                ),
                update_retry_delay_seconds=float(
                    os.getenv("REALTIME_OSM_UPDATE_RETRY_DELAY_SECONDS", "30"),
                ),
                catalog_dir=Path(os.getenv("REALTIME_OSM_CATALOG_DIR", "geofabrikbounds")),
                catalog_url=os.getenv(
                    "REALTIME_OSM_CATALOG_URL",
                    "http://download.geofabrik.de/allkmlfiles.tgz",
                ),
                catalog_refresh_interval_seconds=int(
                    os.getenv("REALTIME_OSM_CATALOG_REFRESH_INTERVAL_SECONDS", "86400"),
                ),
                extract_base_url=os.getenv(
                    "REALTIME_OSM_EXTRACT_BASE_URL",
                    "http://download.geofabrik.de/",
                ),
                planet_file=Path(planet_file) if planet_file else None,
                poly_dir=Path(os.getenv("REALTIME_OSM_POLY_DIR", ".")),
                update_temp_dir=Path(os.getenv("REALTIME_OSM_UPDATE_TEMP_DIR", "osmupdate_temp")),
            ),
            tools=ToolSettings(
                osmupdate_command=os.getenv("REALTIME_OSM_OSMUPDATE_COMMAND", "osmupdate"),
                osmconvert_command=os.getenv("REALTIME_OSM_OSMCONVERT_COMMAND", "osmconvert"),
                max_merge=int(os.getenv("REALTIME_OSM_OSMUPDATE_MAX_MERGE", "2")),
                http_timeout_seconds=float(os.getenv("REALTIME_OSM_HTTP_TIMEOUT_SECONDS", "60")),
                http_max_retries=int(os.getenv("REALTIME_OSM_HTTP_MAX_RETRIES", "3")),
            ),
            store=StoreSettings(
                db_path=db_path or Path(os.getenv("REALTIME_OSM_DB_PATH", "realtimeosm.db")),
                data_directory=Path(os.getenv("REALTIME_OSM_DATA_DIRECTORY", "data")),
                busy_timeout_ms=int(os.getenv("REALTIME_OSM_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            ),
        )

    @property
    def logging_level(self) -> int:
        return logging.getLevelNamesMapping()[self.log_level]

    def validate(self) -> None:
        """Raise configuration error if any setting is out of range."""

        if self.log_level not in _LOG_LEVELS:
            raise ValueError(
                f"REALTIME_OSM_LOG_LEVEL must be one of {sorted(_LOG_LEVELS)}: "
                f"{self.log_level!r}",
            )
        server = self.server
        if server.data_age_threshold_days <= 0:
            raise ValueError("REALTIME_OSM_DATA_AGE_THRESHOLD_DAYS must be > 0.")
        if server.max_parallel_updates <= 0:
            raise ValueError("REALTIME_OSM_MAX_PARALLEL_UPDATES must be > 0.")
        if server.worker_sync_interval_seconds <= 0:
            raise ValueError("REALTIME_OSM_WORKER_SYNC_INTERVAL_SECONDS must be > 0.")
        if server.update_retry_delay_seconds <= 0:
            raise ValueError("REALTIME_OSM_UPDATE_RETRY_DELAY_SECONDS must be > 0.")
        if server.catalog_refresh_interval_seconds <= 0:
            raise ValueError("REALTIME_OSM_CATALOG_REFRESH_INTERVAL_SECONDS must be > 0.")
        _validate_http_url(server.catalog_url, variable="REALTIME_OSM_CATALOG_URL")
        _validate_http_url(server.extract_base_url, variable="REALTIME_OSM_EXTRACT_BASE_URL")
        if server.planet_file is not None and not server.planet_file.is_file():
            raise ValueError(
                f"REALTIME_OSM_PLANET_FILE does not point to a file: {server.planet_file}",
            )
        if self.tools.max_merge <= 0:
            raise ValueError("REALTIME_OSM_OSMUPDATE_MAX_MERGE must be > 0.")
        if not self.tools.osmupdate_command.strip():
            raise ValueError("REALTIME_OSM_OSMUPDATE_COMMAND must not be empty.")
        if not self.tools.osmconvert_command.strip():
            raise ValueError("REALTIME_OSM_OSMCONVERT_COMMAND must not be empty.")


def _validate_http_url(value: str, *, variable: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {variable}: {value!r}. Expected an absolute http:// or https:// URL.",
        )
