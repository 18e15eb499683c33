"""On-disk naming conventions for extracts and their temporary artifacts."""

from __future__ import annotations

from pathlib import Path

EXTRACT_SUFFIX = ".osm.pbf"
UPDATED_PREFIX = "new_"
CLIPPED_PREFIX = "clipped_"
POLY_SUFFIX = ".poly"
POLY_GLOB = f"task*{POLY_SUFFIX}"
REGION_EXTRACT_SUFFIX = "-latest.osm.pbf"


def extract_path(data_directory: Path, *, task_id: int, name: str) -> Path:
    return data_directory / f"{task_id}_{name}{EXTRACT_SUFFIX}"


def updated_path(target: Path) -> Path:
    """Side file the update tool and downloads write before replacing ``target``."""

    return target.with_name(UPDATED_PREFIX + target.name)


def clipped_path(target: Path) -> Path:
    return target.with_name(CLIPPED_PREFIX + target.name)


def poly_path(directory: Path, task_id: int) -> Path:
    return directory / f"task{task_id}{POLY_SUFFIX}"


def update_temp_path(temp_directory: Path, task_id: int) -> Path:
    return temp_directory / f"Task{task_id}"


def region_extract_url(base_url: str, region_name: str) -> str:
    return f"{base_url.rstrip('/')}/{region_name.strip('/')}{REGION_EXTRACT_SUFFIX}"
