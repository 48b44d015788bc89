"""Tests for enumerating 250m mesh cells over a bounding box."""

from __future__ import annotations

import logging

import pytest
import shapely.geometry
import shapely.ops

from meshstore.services import grid_tiler, mesh_codec

TOKYO_BBOX = (139.759, 35.678, 139.771, 35.688)


def test_cells_cover_bbox() -> None:
    """Test that the union of the cells covers the bbox without gaps."""
    cells = grid_tiler.GridTiler().cells(TOKYO_BBOX)
    union = shapely.ops.unary_union(
        [shapely.geometry.box(*cell.bbox) for cell in cells]
    )
    assert union.covers(shapely.geometry.box(*TOKYO_BBOX))


def test_cells_do_not_overlap() -> None:
    """Test that cells are distinct and only share boundaries."""
    cells = grid_tiler.GridTiler().cells(TOKYO_BBOX)
    assert len({cell.mesh_id for cell in cells}) == len(cells)
    boxes = [shapely.geometry.box(*cell.bbox) for cell in cells]
    union = shapely.ops.unary_union(boxes)
    assert union.area == pytest.approx(sum(box.area for box in boxes))


def test_cell_ids_match_codec() -> None:
    """Test each cell's id is the code of its own bbox."""
    for cell in grid_tiler.GridTiler().cells(TOKYO_BBOX):
        assert mesh_codec.cell_bbox(cell.mesh_id) == pytest.approx(cell.bbox)


def test_count_matches_cells() -> None:
    """Test count() agrees with the number of enumerated cells."""
    tiler = grid_tiler.GridTiler()
    assert tiler.count(TOKYO_BBOX) == len(tiler.cells(TOKYO_BBOX))


def test_zero_width_bbox_yields_cells() -> None:
    """Test that the bbox of a due north-south line still has cells."""
    cells = grid_tiler.GridTiler().cells((139.76, 35.68, 139.76, 35.69))
    assert cells
    assert all(cell.bbox[0] <= 139.76 < cell.bbox[2] for cell in cells)


def test_bbox_outside_extent_is_empty() -> None:
    """Test bboxes entirely outside the national extent give no cells."""
    tiler = grid_tiler.GridTiler()
    assert tiler.cells((0.0, 0.0, 1.0, 1.0)) == []
    assert tiler.count((0.0, 0.0, 1.0, 1.0)) == 0


def test_bbox_is_clipped_to_extent() -> None:
    """Test that a bbox straddling the extent only yields cells inside it."""
    cells = grid_tiler.GridTiler().cells((122.0, 30.0, 122.94, 30.001))
    assert cells
    assert all(cell.bbox[2] >= grid_tiler.JAPAN_BOUNDS[0] for cell in cells)


def test_capacity_guard_returns_empty(caplog: pytest.LogCaptureFixture) -> None:
    """Test that a bbox over the cell guard yields [] and only logs."""
    tiler = grid_tiler.GridTiler(max_cells=100)
    with caplog.at_level(logging.WARNING, logger="meshstore"):
        assert tiler.cells(grid_tiler.JAPAN_BOUNDS) == []
    assert "exceeds limit of 100" in caplog.text


def test_unbounded_tiler_has_no_guard() -> None:
    """Test that max_cells=None never raises from check_capacity."""
    grid_tiler.GridTiler().check_capacity(10**12)


def test_intersect_bbox() -> None:
    """Test bbox intersection keeps touching edges."""
    assert grid_tiler.intersect_bbox((0, 0, 1, 1), (1, 0, 2, 1)) == (1, 0, 1, 1)
    assert grid_tiler.intersect_bbox((0, 0, 1, 1), (2, 2, 3, 3)) is None
