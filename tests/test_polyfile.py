from __future__ import annotations

from pathlib import Path

import allure
import pytest
from shapely.geometry import MultiPolygon, Polygon

from realtime_osm.server.polyfile import encode, render_poly

pytestmark = [
    allure.epic("Extract Server"),
    allure.feature("Poly Filter Files"),
]

OUTER = [(0.0, 0.0), (10.0, 0.0), (10.0, 10.0), (0.0, 10.0), (0.0, 0.0)]
HOLE = [(2.0, 2.0), (2.0, 4.0), (4.0, 4.0), (4.0, 2.0), (2.0, 2.0)]


def test_polygon_with_hole_renders_positive_then_negative_sections() -> None:
    text = render_poly("berlin", Polygon(OUTER, [HOLE]))

    lines = text.split("\n")
    assert lines[0] == "berlin"
    assert lines[1] == "1"
    assert lines[2] == "\t0.0\t0.0"
    assert lines[7] == "END"
    assert lines[8] == "-2"
    assert lines[-2:] == ["END", "END"]
    assert lines.count("END") == 3


def test_multipolygon_sections_use_running_index() -> None:
    second = [(20.0, 20.0), (21.0, 20.0), (21.0, 21.0), (20.0, 20.0)]
    geometry = MultiPolygon([Polygon(OUTER, [HOLE]), Polygon(second)])

    headers = [
        line
        for line in render_poly("x", geometry).split("\n")[1:]
        if line and not line.startswith("\t") and line != "END"
    ]

    assert headers == ["1", "-2", "3"]


def test_geojson_mapping_and_missing_name() -> None:
    geometry = {"type": "Polygon", "coordinates": [[[1, 2], [3, 2], [3, 4], [1, 2]]]}

    text = render_poly(None, geometry)

    assert text == "undefined\n1\n\t1\t2\n\t3\t2\n\t3\t4\n\t1\t2\nEND\nEND"


def test_non_polygon_geometry_is_rejected() -> None:
    with pytest.raises(ValueError, match="Polygon or MultiPolygon"):
        render_poly("line", {"type": "LineString", "coordinates": [[0, 0], [1, 1]]})


def test_encode_writes_task_poly_file(tmp_path: Path) -> None:
    path = encode(7, "berlin", Polygon(OUTER), tmp_path / "poly")

    assert path == tmp_path / "poly" / "task7.poly"
    assert path.read_text("utf-8").startswith("berlin\n1\n\t0.0\t0.0\n")
