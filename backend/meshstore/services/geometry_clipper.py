"""Clip lines and polygons to 250m mesh cells.

Each feature is intersected with every candidate cell from the GridTiler.
For every non-empty clip the piece's absolute measure (geodesic metres or
square metres on the WGS84 ellipsoid) and its share of the whole feature
are recorded. Shares are clamped to 1 to absorb floating point error, so
the pieces of one feature sum to approximately, not exactly, 1.

Example:
    >>> from meshstore.services.geometry_clipper import GeometryClipper
    >>> clipper = GeometryClipper()
    >>> pieces = clipper.clip_line({
    ...     "type": "LineString",
    ...     "coordinates": [[139.759, 35.678], [139.771, 35.688]],
    ... })
    >>> sum(piece.length_ratio for piece in pieces)  # ~1.0
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any, NamedTuple

import pyproj
import shapely.geometry
import shapely.geometry.polygon
from shapely import errors as shapely_errors
from shapely.prepared import prep

from meshstore.core import errors
from meshstore.services import grid_tiler

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from shapely.geometry.base import BaseGeometry

logger = logging.getLogger(__name__)

GEOD = pyproj.Geod(ellps="WGS84")

LINE_TYPES = frozenset({"LineString", "MultiLineString"})
POLYGON_TYPES = frozenset({"Polygon", "MultiPolygon"})


class LinePiece(NamedTuple):
    mesh_id: str
    geometry: dict[str, Any]
    length_m: float
    length_ratio: float


class PolygonPiece(NamedTuple):
    mesh_id: str
    geometry: dict[str, Any]
    area_m2: float
    area_ratio: float


def _parts(geom: BaseGeometry, kinds: frozenset[str]) -> list[BaseGeometry]:
    if geom.is_empty:
        return []
    if geom.geom_type in kinds:
        return [geom]
    if hasattr(geom, "geoms"):
        found: list[BaseGeometry] = []
        for part in geom.geoms:
            found.extend(_parts(part, kinds))
        return found
    return []


def line_parts(geom: BaseGeometry) -> BaseGeometry | None:
    """Keep only the linear parts of a clip result."""
    parts = _parts(geom, LINE_TYPES)
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    lines: list[Any] = []
    for part in parts:
        lines.extend(getattr(part, "geoms", [part]))
    return shapely.geometry.MultiLineString(lines)


def polygon_parts(geom: BaseGeometry) -> BaseGeometry | None:
    """Keep only the polygonal parts of a clip result."""
    parts = _parts(geom, POLYGON_TYPES)
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    polygons: list[Any] = []
    for part in parts:
        polygons.extend(getattr(part, "geoms", [part]))
    return shapely.geometry.MultiPolygon(polygons)


def geodesic_length(geom: BaseGeometry) -> float:
    """Length in metres of a (multi)linestring on the WGS84 ellipsoid."""
    return float(GEOD.geometry_length(geom))


def geodesic_area(geom: BaseGeometry) -> float:
    """Area in square metres of a (multi)polygon on the WGS84 ellipsoid."""
    if geom.area == 0:
        return 0.0
    total = 0.0
    for polygon in getattr(geom, "geoms", [geom]):
        # Exterior counter-clockwise, holes clockwise, so holes subtract.
        oriented = shapely.geometry.polygon.orient(polygon, sign=1.0)
        area, _ = GEOD.geometry_area_perimeter(oriented)
        total += abs(area)
    return total


MEASURES: dict[str, Callable[[BaseGeometry], float]] = {
    "line": geodesic_length,
    "polygon": geodesic_area,
}


def require_usable(measure: float) -> float:
    """Return `measure` unless it is zero, negative or not finite.

    Raises:
        GeometryDegenerate: For unusable measures.
    """
    if not (math.isfinite(measure) and measure > 0):
        raise errors.GeometryDegenerate(f"Degenerate measure: {measure}")
    return measure


def to_shape(geometry: Mapping[str, Any]) -> BaseGeometry:
    """Build a shapely geometry from a GeoJSON geometry mapping.

    Raises:
        InputError: If the mapping cannot be turned into a geometry.
    """
    try:
        return shapely.geometry.shape(geometry)
    except (
        KeyError,
        TypeError,
        ValueError,
        shapely_errors.ShapelyError,
    ) as exc:
        raise errors.InputError(f"Invalid geometry: {exc}") from exc


class GeometryClipper:
    """Decompose line and polygon geometry into per-mesh pieces.

    Args:
        tiler: GridTiler supplying candidate cells. Defaults to an
            unbounded tiler over the national extent.
    """

    def __init__(self, tiler: grid_tiler.GridTiler | None = None) -> None:
        self.tiler = tiler or grid_tiler.GridTiler()

    def clip_line(self, geometry: Mapping[str, Any]) -> list[LinePiece]:
        """Clip a LineString/MultiLineString to every cell it crosses.

        Args:
            geometry: GeoJSON geometry mapping in lon/lat.

        Returns:
            One LinePiece per cell with non-zero clipped length. Empty for
            zero-length geometry, geometry outside the national extent, or
            when the cell guard is exceeded.

        Raises:
            InputError: If the geometry is not line-like or not readable.
        """
        shape = self._shape(geometry, LINE_TYPES)
        return [
            LinePiece(mesh_id, piece_geometry, measure, ratio)
            for mesh_id, piece_geometry, measure, ratio in self._clip(
                shape, geodesic_length, line_parts
            )
        ]

    def clip_polygon(self, geometry: Mapping[str, Any]) -> list[PolygonPiece]:
        """Clip a Polygon/MultiPolygon to every cell it covers.

        Args:
            geometry: GeoJSON geometry mapping in lon/lat.

        Returns:
            One PolygonPiece per cell with non-zero clipped area.

        Raises:
            InputError: If the geometry is not polygonal or not readable.
        """
        shape = self._shape(geometry, POLYGON_TYPES)
        return [
            PolygonPiece(mesh_id, piece_geometry, measure, ratio)
            for mesh_id, piece_geometry, measure, ratio in self._clip(
                shape, geodesic_area, polygon_parts
            )
        ]

    @staticmethod
    def _shape(
        geometry: Mapping[str, Any], kinds: frozenset[str]
    ) -> BaseGeometry:
        geom_type = geometry.get("type") if geometry else None
        if geom_type not in kinds:
            raise errors.InputError(
                f"Expected one of {sorted(kinds)}, got {geom_type!r}"
            )
        return to_shape(geometry)

    def _clip(
        self,
        shape: BaseGeometry,
        measure: Callable[[BaseGeometry], float],
        extract: Callable[[BaseGeometry], BaseGeometry | None],
    ) -> list[tuple[str, dict[str, Any], float, float]]:
        if shape.is_empty:
            return []
        try:
            total = require_usable(measure(shape))
        except errors.GeometryDegenerate as exc:
            logger.debug("Skipping geometry: %s", exc)
            return []

        cells = self.tiler.cells(shape.bounds)
        if not cells:
            return []

        prepared = prep(shape)
        pieces: list[tuple[str, dict[str, Any], float, float]] = []
        for cell in cells:
            cell_box = shapely.geometry.box(*cell.bbox)
            if not prepared.intersects(cell_box):
                continue
            try:
                clipped = extract(shape.intersection(cell_box))
            except shapely_errors.GEOSException as exc:
                raise errors.InputError(
                    f"Geometry could not be clipped: {exc}"
                ) from exc
            if clipped is None:
                continue
            try:
                clipped_measure = require_usable(measure(clipped))
            except errors.GeometryDegenerate:
                continue
            pieces.append(
                (
                    cell.mesh_id,
                    shapely.geometry.mapping(clipped),
                    clipped_measure,
                    min(1.0, clipped_measure / total),
                )
            )
        return pieces
