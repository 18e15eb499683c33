"""Parse operator-supplied coverage into a feature or region code."""

from __future__ import annotations

import json
from typing import Any

from shapely import wkt
from shapely.errors import GEOSException, ShapelyError
from shapely.geometry import MultiPolygon, Polygon, mapping, shape
from shapely.geometry.base import BaseGeometry
from shapely.geometry.polygon import orient
from shapely.validation import explain_validity

from realtime_osm.tasks.models import Coverage, RegionCode
from realtime_osm.tasks.regions import is_region_code

MAX_COVERAGE_VERTICES = 10_000
_POLYGON_TYPES = frozenset({"Polygon", "MultiPolygon"})


def parse_coverage(raw: str | dict[str, Any]) -> Coverage:
    """Turn GeoJSON, WKT or a Geofabrik region code into task coverage.

    GeoJSON may be a Feature or a bare Polygon/MultiPolygon geometry. Feature
    properties are dropped so equal polygons compare equal in the store, and
    rings are re-oriented to the right-hand rule.

    Raises:
        ValueError: coverage cannot be parsed or is not a usable polygon.
    """

    payload = _maybe_json(raw)
    if isinstance(payload, str):
        text = payload.strip()
        if is_region_code(text):
            return RegionCode(code=text.lower())
        geometry = _parse_wkt(text)
    elif isinstance(payload, dict):
        geometry = _parse_geojson(payload)
    else:
        raise ValueError(
            "Coverage must be GeoJSON, a WKT string or a Geofabrik region code.",
        )
    return {"type": "Feature", "geometry": mapping(_normalize(geometry)), "properties": None}


def vertex_count(geometry: BaseGeometry) -> int:
    polygons = geometry.geoms if isinstance(geometry, MultiPolygon) else [geometry]
    total = 0
    for polygon in polygons:
        total += len(polygon.exterior.coords)
        total += sum(len(ring.coords) for ring in polygon.interiors)
    return total


def _maybe_json(raw: str | dict[str, Any]) -> object:
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _parse_wkt(text: str) -> BaseGeometry:
    try:
        return wkt.loads(text)
    except (GEOSException, ShapelyError) as error:
        raise ValueError(
            f"Can't parse coverage string as WKT or Geofabrik region code: {error}",
        ) from error


def _parse_geojson(payload: dict[str, Any]) -> BaseGeometry:
    if payload.get("type") == "Feature":
        geometry = payload.get("geometry")
        if not isinstance(geometry, dict):
            raise ValueError("Submitted feature does not have a geometry property.")
    else:
        geometry = payload
    # Old-style crs members are tolerated and dropped.
    geometry = {key: value for key, value in geometry.items() if key != "crs"}
    try:
        return shape(geometry)
    except (GEOSException, ShapelyError, KeyError, TypeError, ValueError) as error:
        raise ValueError(f"Invalid GeoJSON geometry: {error}") from error


def _normalize(geometry: BaseGeometry) -> BaseGeometry:
    if geometry.geom_type not in _POLYGON_TYPES:
        raise ValueError(f"Coverage must be a Polygon or MultiPolygon, got {geometry.geom_type}.")
    if geometry.is_empty:
        raise ValueError("Coverage polygon is empty.")
    if vertex_count(geometry) > MAX_COVERAGE_VERTICES:
        raise ValueError(f"Polygon has more than {MAX_COVERAGE_VERTICES} nodes.")
    if not geometry.is_valid:
        raise ValueError(f"Invalid polygon: {explain_validity(geometry)}")
    if isinstance(geometry, Polygon):
        return orient(geometry, sign=1.0)
    return MultiPolygon([orient(part, sign=1.0) for part in geometry.geoms])
