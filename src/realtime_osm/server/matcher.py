"""Pick the regional extract a task's data is sourced from."""

from __future__ import annotations

from collections.abc import Iterable

from shapely.geometry import MultiPolygon
from shapely.geometry.base import BaseGeometry

from realtime_osm.server.catalog import CatalogEntry, CatalogSnapshot
from realtime_osm.tasks.models import Coverage, RegionCode, coverage_geometry


def find_extract(coverage: Coverage, snapshot: CatalogSnapshot | None) -> CatalogEntry | None:
    """Smallest catalog entry that fully contains the coverage.

    A region code resolves by name: an exact name wins, otherwise the
    smallest region whose name ends in ``/<code>``. An unavailable catalog
    (``None``) matches nothing. A MultiPolygon matches the regions
    that hold each of its parts.
    """

    if snapshot is None:
        return None
    if isinstance(coverage, RegionCode):
        return _match_region_code(coverage.code, snapshot)
    return _match_geometry(coverage_geometry(coverage), snapshot)


def _match_geometry(geometry: BaseGeometry, snapshot: CatalogSnapshot) -> CatalogEntry | None:
    if not isinstance(geometry, MultiPolygon):
        return _smallest(snapshot.covering(geometry))
    # Regions qualify when each part lies in one of their polygons, so a
    # resolved multi-part region matches itself again.
    names: set[str] | None = None
    for part in geometry.geoms:
        covering = {entry.name for entry in snapshot.covering(part)}
        names = covering if names is None else names & covering
    return _smallest(_main_part(snapshot.find_by_name(name)) for name in names or ())


def _match_region_code(code: str, snapshot: CatalogSnapshot) -> CatalogEntry | None:
    exact = snapshot.find_by_name(code)
    if exact:
        return _main_part(exact)
    by_name: dict[str, list[CatalogEntry]] = {}
    for entry in snapshot.find_by_suffix(code):
        by_name.setdefault(entry.name, []).append(entry)
    return _smallest(_main_part(parts) for parts in by_name.values())


def _main_part(parts: Iterable[CatalogEntry]) -> CatalogEntry:
    # Multi-part regions (islands, exclaves) are ranked by their largest polygon.
    return max(parts, key=lambda entry: entry.area)


def _smallest(entries: Iterable[CatalogEntry]) -> CatalogEntry | None:
    return min(entries, key=lambda entry: entry.area, default=None)
