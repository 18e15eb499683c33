"""Catalog of named regional extract boundaries.

The boundary bundle is a gzipped tar of KML files, one per region, laid out
in the same directory hierarchy as the extract download server
(``europe/germany.kml`` describes ``europe/germany-latest.osm.pbf``).
Every refresh builds a new immutable ``CatalogSnapshot`` and publishes it
with a single reference swap, so readers never see a half-built catalog.
"""

from __future__ import annotations

import asyncio
import logging
import tarfile
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

from defusedxml import ElementTree
from pyproj import Geod
from shapely import make_valid
from shapely.errors import GEOSException
from shapely.geometry import MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union
from shapely.strtree import STRtree

from realtime_osm.http.fetcher import FetchStatus, HttpDownloader

logger = logging.getLogger(__name__)

BOUNDARY_SUFFIX = ".kml"
DEFAULT_ARCHIVE_NAME = "allkmlfiles.tgz"

_GEOD = Geod(ellps="WGS84")


class CatalogError(RuntimeError):
    """Boundary archive or boundary file can't be read."""


@dataclass(frozen=True, slots=True)
class CatalogEntry:
    """One polygon of a named region; multi-part regions yield one entry per part."""

    name: str
    geometry: Polygon
    area: float


class CatalogSnapshot:
    """Immutable, spatially indexed set of catalog entries."""

    def __init__(self, entries: Iterable[CatalogEntry]) -> None:
        self._entries: tuple[CatalogEntry, ...] = tuple(entries)
        self._tree = STRtree([entry.geometry for entry in self._entries])
        by_name: dict[str, list[CatalogEntry]] = {}
        for entry in self._entries:
            by_name.setdefault(entry.name, []).append(entry)
        self._by_name = {name: tuple(parts) for name, parts in by_name.items()}

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CatalogEntry]:
        return iter(self._entries)

    @property
    def names(self) -> list[str]:
        return sorted(self._by_name)

    def covering(self, geometry: BaseGeometry) -> list[CatalogEntry]:
        """Entries whose polygon covers ``geometry``, boundary included."""

        indices = self._tree.query(geometry, predicate="covered_by")
        return [self._entries[int(index)] for index in indices]

    def find_by_name(self, name: str) -> tuple[CatalogEntry, ...]:
        return self._by_name.get(name, ())

    def region_geometry(self, name: str) -> BaseGeometry:
        """Every part of region ``name`` merged into one (Multi)Polygon.

        Raises:
            KeyError: no entry carries ``name``.
        """

        parts = [entry.geometry for entry in self._by_name[name]]
        if len(parts) == 1:
            return parts[0]
        return unary_union(parts)

    def find_by_suffix(self, code: str) -> list[CatalogEntry]:
        """Entries whose hierarchical name ends in ``/<code>``."""

        suffix = f"/{code}"
        return [entry for entry in self._entries if entry.name.endswith(suffix)]


class RegionCatalog:
    """Downloads the boundary bundle and publishes parsed snapshots.

    ``snapshot`` is ``None`` until the first successful load and again after
    an extraction failure; callers treat ``None`` as "no match possible".
    """

    def __init__(self, *, directory: Path, url: str, downloader: HttpDownloader) -> None:
        self.directory = directory
        self.url = url
        self._downloader = downloader
        self._snapshot: CatalogSnapshot | None = None

    @property
    def snapshot(self) -> CatalogSnapshot | None:
        return self._snapshot

    @property
    def archive_path(self) -> Path:
        name = PurePosixPath(urlparse(self.url).path).name or DEFAULT_ARCHIVE_NAME
        return self.directory / name

    def publish(self, snapshot: CatalogSnapshot | None) -> None:
        self._snapshot = snapshot

    async def refresh(self) -> CatalogSnapshot | None:
        """Fetch the bundle if it changed, then re-extract and re-parse it."""

        logger.info("Updating region catalog from %s", self.url)
        self.directory.mkdir(parents=True, exist_ok=True)
        archive = self.archive_path
        result = await self._downloader.download(self.url, archive, conditional=True)
        if result.status is FetchStatus.NOT_MODIFIED:
            logger.debug("Boundary archive not modified.")
            if self._snapshot is not None:
                return self._snapshot
        elif result.status is FetchStatus.FAILED:
            logger.error("Can't download boundary archive %s: %s", self.url, result.error)
            return self._snapshot

        try:
            snapshot = await asyncio.to_thread(load_archive, archive, self.directory)
        except CatalogError as error:
            logger.error("Region catalog unavailable: %s", error)
            self.publish(None)
            return None
        self.publish(snapshot)
        logger.info("Region catalog updated: %d boundaries", len(snapshot))
        return snapshot

    async def load_local(self) -> CatalogSnapshot:
        """Parse already extracted boundary files without touching the network."""

        snapshot = await asyncio.to_thread(load_directory, self.directory)
        self.publish(snapshot)
        return snapshot


def load_archive(archive: Path, directory: Path) -> CatalogSnapshot:
    """Extract ``archive`` into ``directory`` and parse every boundary file.

    Raises:
        CatalogError: the archive is missing, corrupt or can't be extracted.
    """

    try:
        with tarfile.open(archive, "r:*") as bundle:
            bundle.extractall(directory, filter="data")
    except (tarfile.TarError, OSError) as error:
        raise CatalogError(f"Can't extract {archive}: {error}") from error
    return load_directory(directory)


def load_directory(directory: Path) -> CatalogSnapshot:
    entries: list[CatalogEntry] = []
    for path in sorted(directory.rglob(f"*{BOUNDARY_SUFFIX}")):
        name = boundary_name(path, directory)
        try:
            polygons = parse_boundary(path.read_bytes())
        except (CatalogError, OSError) as error:
            logger.warning("Skipping boundary %s: %s", path, error)
            continue
        entries.extend(
            CatalogEntry(name=name, geometry=polygon, area=geodesic_area(polygon))
            for polygon in polygons
        )
    return CatalogSnapshot(entries)


def boundary_name(path: Path, directory: Path) -> str:
    """Catalog name of a boundary file: relative path, ``/`` separated, no extension."""

    relative = path.relative_to(directory).as_posix()
    return relative[: -len(BOUNDARY_SUFFIX)]


def parse_boundary(raw_xml: bytes) -> list[Polygon]:
    """Flatten every KML polygon in a document into valid single polygons."""

    try:
        root = ElementTree.fromstring(raw_xml)
    except ElementTree.ParseError as error:
        raise CatalogError(f"Invalid KML: {error}") from error

    polygons: list[Polygon] = []
    for element in root.iter():
        if _local_name(element.tag) != "polygon":
            continue
        polygon = _kml_polygon(element)
        if polygon is not None:
            polygons.extend(_flatten(polygon))
    return polygons


def geodesic_area(geometry: BaseGeometry) -> float:
    """Area in square metres on the WGS84 ellipsoid."""

    area, _ = _GEOD.geometry_area_perimeter(geometry)
    return abs(area)


def _kml_polygon(element: ElementTree.Element) -> Polygon | None:
    shell: list[tuple[float, float]] | None = None
    holes: list[list[tuple[float, float]]] = []
    for child in element:
        boundary = _local_name(child.tag)
        if boundary not in {"outerboundaryis", "innerboundaryis"}:
            continue
        ring = _ring_coordinates(child)
        if len(ring) < 4:
            continue
        if boundary == "outerboundaryis":
            shell = ring
        else:
            holes.append(ring)
    if shell is None:
        return None
    return Polygon(shell, holes)


def _ring_coordinates(boundary: ElementTree.Element) -> list[tuple[float, float]]:
    for element in boundary.iter():
        if _local_name(element.tag) == "coordinates" and element.text:
            return [_parse_tuple(token) for token in element.text.split()]
    return []


def _parse_tuple(token: str) -> tuple[float, float]:
    parts = token.split(",")
    try:
        return float(parts[0]), float(parts[1])
    except (IndexError, ValueError) as error:
        raise CatalogError(f"Invalid KML coordinate {token!r}") from error


def _flatten(geometry: BaseGeometry) -> Iterator[Polygon]:
    try:
        if not geometry.is_valid:
            geometry = make_valid(geometry)
    except GEOSException as error:
        raise CatalogError(f"Invalid boundary polygon: {error}") from error
    yield from _polygons(geometry)


def _polygons(geometry: BaseGeometry) -> Iterator[Polygon]:
    if isinstance(geometry, Polygon):
        if not geometry.is_empty:
            yield geometry
    elif isinstance(geometry, MultiPolygon):
        yield from (part for part in geometry.geoms if not part.is_empty)
    elif hasattr(geometry, "geoms"):
        for part in geometry.geoms:
            yield from _polygons(part)


def _local_name(tag: str) -> str:
    if "}" in tag:
        return tag.rsplit("}", 1)[1].lower()
    return tag.lower()
