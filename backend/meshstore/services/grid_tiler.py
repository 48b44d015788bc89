"""Enumeration of 250m mesh cells overlapping a bounding box.

The national grid is walked in arc-seconds so that cell edges land exactly
on multiples of the quarter mesh step (7.5" latitude x 11.25" longitude).
Each cell's identifier comes from its centre point, which keeps the id
stable regardless of floating point error on the edges.

Example:
    >>> from meshstore.services.grid_tiler import GridTiler
    >>> tiler = GridTiler(max_cells=10_000)
    >>> cells = tiler.cells((139.759, 35.678, 139.771, 35.688))
    >>> cells[0].mesh_id, cells[0].bbox
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterator
from typing import NamedTuple

from meshstore.core import errors
from meshstore.services import mesh_codec

logger = logging.getLogger(__name__)

BBox = tuple[float, float, float, float]

# Extent of the grid: (min_lon, min_lat, max_lon, max_lat).
JAPAN_BOUNDS: BBox = (122.93, 24.04, 153.99, 45.95)

MESH_LAT_STEP_SEC = mesh_codec.QUARTER_LAT_SEC
MESH_LON_STEP_SEC = mesh_codec.QUARTER_LON_SEC


class MeshCell(NamedTuple):
    mesh_id: str
    bbox: BBox


class CellWindow(NamedTuple):
    """Snapped cell index range, in units of one cell step."""

    row_start: int
    row_end: int
    col_start: int
    col_end: int

    @property
    def rows(self) -> int:
        return self.row_end - self.row_start

    @property
    def cols(self) -> int:
        return self.col_end - self.col_start

    @property
    def total(self) -> int:
        return self.rows * self.cols


def intersect_bbox(bbox: BBox, bounds: BBox) -> BBox | None:
    """Intersect two boxes, None when they do not overlap.

    Boxes that touch along an edge, or a zero-width box (for example the
    bbox of a due north-south line) still produce a result.
    """
    min_lon = max(bbox[0], bounds[0])
    min_lat = max(bbox[1], bounds[1])
    max_lon = min(bbox[2], bounds[2])
    max_lat = min(bbox[3], bounds[3])

    if min_lon > max_lon or min_lat > max_lat:
        return None

    return (min_lon, min_lat, max_lon, max_lat)


def _snap(lower_sec: float, upper_sec: float, step: float) -> tuple[int, int]:
    start = math.floor(lower_sec / step)
    end = math.ceil(upper_sec / step)
    # A zero-width range still covers the cell the coordinate falls in.
    if end <= start:
        end = start + 1
    return start, end


class GridTiler:
    """Tile bounding boxes into 250m mesh cells.

    Args:
        max_cells: Maximum number of cells a single bbox may expand to.
            None disables the guard.
        bounds: Extent of the national grid.
    """

    def __init__(
        self,
        max_cells: int | None = None,
        bounds: BBox = JAPAN_BOUNDS,
    ) -> None:
        self.max_cells = max_cells
        self.bounds = bounds

    def window(self, bbox: BBox) -> CellWindow | None:
        """Snap a bbox, clipped to the national extent, to cell indices."""
        bounded = intersect_bbox(bbox, self.bounds)
        if bounded is None:
            return None

        min_lon, min_lat, max_lon, max_lat = bounded
        row_start, row_end = _snap(
            min_lat * 3600, max_lat * 3600, MESH_LAT_STEP_SEC
        )
        col_start, col_end = _snap(
            min_lon * 3600, max_lon * 3600, MESH_LON_STEP_SEC
        )
        return CellWindow(row_start, row_end, col_start, col_end)

    def count(self, bbox: BBox) -> int:
        """Number of cells ``bbox`` snaps to, ignoring the guard."""
        window = self.window(bbox)
        return window.total if window is not None else 0

    def check_capacity(self, total: int) -> None:
        """Raise CapacityExceeded if ``total`` cells is over the guard."""
        if self.max_cells is not None and total > self.max_cells:
            raise errors.CapacityExceeded(total, self.max_cells)

    def cells(self, bbox: BBox) -> list[MeshCell]:
        """Return every mesh cell intersecting ``bbox``.

        Args:
            bbox: ``(min_lon, min_lat, max_lon, max_lat)`` in degrees.

        Returns:
            Cells in row-major order (south to north, west to east). Empty
            when the bbox lies outside the national extent or when it would
            need more cells than ``max_cells``; the latter is logged as a
            warning, never raised.
        """
        window = self.window(bbox)
        if window is None:
            return []

        try:
            self.check_capacity(window.total)
        except errors.CapacityExceeded as exc:
            logger.warning(
                "Skipping mesh decomposition for bbox %s: %s", bbox, exc
            )
            return []

        return list(self._iter_cells(window))

    @staticmethod
    def _iter_cells(window: CellWindow) -> Iterator[MeshCell]:
        for row in range(window.row_start, window.row_end):
            lat_sec = row * MESH_LAT_STEP_SEC
            lat0 = lat_sec / 3600
            lat1 = (lat_sec + MESH_LAT_STEP_SEC) / 3600
            center_lat = (lat_sec + MESH_LAT_STEP_SEC / 2) / 3600
            for col in range(window.col_start, window.col_end):
                lon_sec = col * MESH_LON_STEP_SEC
                lon0 = lon_sec / 3600
                lon1 = (lon_sec + MESH_LON_STEP_SEC) / 3600
                center_lon = (lon_sec + MESH_LON_STEP_SEC / 2) / 3600
                yield MeshCell(
                    mesh_id=mesh_codec.mesh_code(center_lat, center_lon),
                    bbox=(lon0, lat0, lon1, lat1),
                )
