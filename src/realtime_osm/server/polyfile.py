"""Osmosis Polygon Filter File Format encoder.

Format reference:
https://wiki.openstreetmap.org/wiki/Osmosis/Polygon_Filter_File_Format

The first line is a free-form name. Each ring is a section opened by its
index and closed by ``END``; holes carry a negative index. One coordinate
pair per line, tab separated. A final ``END`` closes the file.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from pathlib import Path
from typing import Any

from realtime_osm.server.layout import poly_path

UNDEFINED_NAME = "undefined"


def render_poly(name: str | None, geometry: Mapping[str, Any] | Any) -> str:
    """Render a Polygon or MultiPolygon (GeoJSON mapping or shapely) as poly text."""

    mapping = getattr(geometry, "__geo_interface__", geometry)
    sections = [_render_section(index, ring) for index, ring in _numbered_rings(mapping)]
    return "\n".join([name or UNDEFINED_NAME, *sections, "END"])


def encode(
    task_id: int,
    name: str | None,
    geometry: Mapping[str, Any] | Any,
    directory: Path,
) -> Path:
    """Write the poly filter for ``task_id`` and return its path.

    The caller deletes the file when the tool run that consumes it is over.
    """

    path = poly_path(directory, task_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_poly(name, geometry), "utf-8")
    return path


def _numbered_rings(mapping: Mapping[str, Any]) -> Iterator[tuple[int, Sequence[Sequence[float]]]]:
    geometry_type = mapping.get("type")
    if geometry_type == "Polygon":
        polygons = [mapping["coordinates"]]
    elif geometry_type == "MultiPolygon":
        polygons = list(mapping["coordinates"])
    else:
        raise ValueError(f"Poly filter needs a Polygon or MultiPolygon, got {geometry_type!r}")

    counter = 0
    for rings in polygons:
        for position, ring in enumerate(rings):
            counter += 1
            yield (counter if position == 0 else -counter), ring


def _render_section(index: int, ring: Sequence[Sequence[float]]) -> str:
    lines = [str(index)]
    lines.extend(f"\t{point[0]}\t{point[1]}" for point in ring)
    lines.append("END")
    return "\n".join(lines)
