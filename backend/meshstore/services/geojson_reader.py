"""Reading GeoJSON input files into features grouped by geometry kind.

A file may hold a single Feature or a FeatureCollection with WGS84 lon/lat
coordinates. Features whose geometry is missing or of an unsupported type
(GeometryCollection, bare coordinates, ...) are skipped with a log line;
a file that cannot be read or parsed raises InputError.

Example:
    >>> import pathlib
    >>> from meshstore.services import geojson_reader
    >>> grouped = geojson_reader.read_grouped(pathlib.Path("roads.geojson"))
    >>> len(grouped["line"])
"""

from __future__ import annotations

import dataclasses
import json
import logging
import math
from typing import TYPE_CHECKING, Any

from meshstore.core import errors
from meshstore.db import models as db_models
from meshstore.services import geometry_clipper

if TYPE_CHECKING:
    import pathlib

logger = logging.getLogger(__name__)

GEOMETRY_KINDS: tuple[db_models.GeometryKind, ...] = (
    "point",
    "line",
    "polygon",
)

_KIND_BY_TYPE: dict[str, db_models.GeometryKind] = {
    "Point": "point",
    "MultiPoint": "point",
    "LineString": "line",
    "MultiLineString": "line",
    "Polygon": "polygon",
    "MultiPolygon": "polygon",
}

SUPPORTED_SUFFIXES = (".geojson", ".json")


@dataclasses.dataclass
class Feature:
    """One input feature.

    Attributes:
        geometry: GeoJSON geometry mapping (lon/lat).
        properties: Feature properties, ``{}`` when absent or not a mapping.
    """

    geometry: dict[str, Any]
    properties: dict[str, Any]

    @property
    def geometry_type(self) -> str:
        return str(self.geometry.get("type"))

    @property
    def kind(self) -> db_models.GeometryKind:
        return _KIND_BY_TYPE[self.geometry_type]


def geometry_kind(geometry: Any) -> db_models.GeometryKind | None:
    """Return the kind of a GeoJSON geometry, None if unsupported."""
    if not isinstance(geometry, dict):
        return None
    return _KIND_BY_TYPE.get(str(geometry.get("type")))


def normalize_properties(properties: Any) -> dict[str, Any]:
    if not isinstance(properties, dict):
        return {}
    return properties


def load_document(path: pathlib.Path) -> dict[str, Any]:
    """Read and decode a GeoJSON file.

    Raises:
        InputError: If the file is unreadable or not JSON.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise errors.InputError(f"Cannot read {path}: {exc}") from exc
    try:
        document = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise errors.InputError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(document, dict):
        raise errors.InputError(f"Unsupported GeoJSON payload in {path}")
    return document


def iter_raw_features(document: dict[str, Any]) -> list[dict[str, Any]]:
    """Return the raw feature objects of a Feature or FeatureCollection.

    Raises:
        InputError: For any other top-level structure.
    """
    doc_type = document.get("type")
    if doc_type == "FeatureCollection":
        features = document.get("features")
        if not isinstance(features, list):
            raise errors.InputError("FeatureCollection without features list")
        return [item for item in features if isinstance(item, dict)]
    if doc_type == "Feature":
        return [document]
    raise errors.InputError(f"Unsupported GeoJSON payload type: {doc_type!r}")


def _valid_position(position: Any) -> bool:
    return (
        isinstance(position, (list, tuple))
        and len(position) >= 2
        and all(
            isinstance(value, (int, float))
            and not isinstance(value, bool)
            and math.isfinite(value)
            for value in position[:2]
        )
    )


def parse_feature(raw: dict[str, Any]) -> Feature:
    """Validate one raw feature.

    Raises:
        InputError: When the geometry is missing, unsupported or unreadable.
    """
    geometry = raw.get("geometry")
    if geometry is None:
        raise errors.InputError("Feature has no geometry")
    if geometry_kind(geometry) is None:
        geom_type = geometry.get("type") if isinstance(geometry, dict) else None
        raise errors.InputError(f"Unsupported geometry type: {geom_type!r}")
    # Raises InputError for malformed coordinates.
    geometry_clipper.to_shape(geometry)
    return Feature(
        geometry=geometry,
        properties=normalize_properties(raw.get("properties")),
    )


def explode_points(feature: Feature) -> list[Feature]:
    """Split a MultiPoint into Point features sharing the same properties."""
    if feature.geometry_type == "Point":
        if not _valid_position(feature.geometry.get("coordinates")):
            return []
        return [feature]
    points: list[Feature] = []
    for position in feature.geometry.get("coordinates") or []:
        if not _valid_position(position):
            continue
        points.append(
            Feature(
                geometry={"type": "Point", "coordinates": list(position)},
                properties=feature.properties,
            )
        )
    return points


def group_features(
    raw_features: list[dict[str, Any]],
) -> dict[db_models.GeometryKind, list[Feature]]:
    """Partition raw features by kind, dropping malformed ones."""
    grouped: dict[db_models.GeometryKind, list[Feature]] = {
        kind: [] for kind in GEOMETRY_KINDS
    }
    for index, raw in enumerate(raw_features):
        try:
            feature = parse_feature(raw)
        except errors.InputError as exc:
            logger.info("Skipping feature %d: %s", index, exc)
            continue
        grouped[feature.kind].append(feature)
    return grouped


def read_grouped(
    path: pathlib.Path,
) -> dict[db_models.GeometryKind, list[Feature]]:
    """Load a GeoJSON file and group its features by geometry kind.

    Args:
        path: GeoJSON file path.

    Returns:
        Mapping of "point", "line" and "polygon" to their features (each
        list possibly empty).

    Raises:
        InputError: If the file cannot be read or is not a Feature or
            FeatureCollection.
    """
    return group_features(iter_raw_features(load_document(path)))
