"""Data models for layers, mesh index entries and feature rows.

This module defines the records exchanged between the ingestion services
and the store. LayerDefinition is one row of the layer registry,
MeshIndexEntry is one row of the mesh presence index, and FeatureRow /
PieceRow are the whole-feature and per-mesh rows written for each layer.

Example:
    Creating a registry entry for a line layer:
        >>> from meshstore.db.models import LayerDefinition
        >>> layer = LayerDefinition(
        ...     layer_name="roads",
        ...     table_name="roads",
        ...     geometry_kind="line",
        ...     mesh_map_table="roads_mesh_map",
        ...     source_file="roads.geojson",
        ... )
"""

from __future__ import annotations

import dataclasses
import datetime
from typing import Any, Literal

GeometryKind = Literal["point", "line", "polygon"]

# Generic cross-layer tables per kind.
FEATURE_TABLES: dict[GeometryKind, str] = {
    "point": "point_features",
    "line": "line_features",
    "polygon": "polygon_features",
}
MESH_MAP_TABLES: dict[GeometryKind, str] = {
    "line": "line_mesh_map",
    "polygon": "polygon_mesh_map",
}
# Measure/ratio column names of the mesh map tables.
MEASURE_COLUMNS: dict[GeometryKind, tuple[str, str]] = {
    "line": ("length_m", "length_ratio"),
    "polygon": ("area_m2", "area_ratio"),
}


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(tz=datetime.UTC)


@dataclasses.dataclass
class LayerDefinition:
    """Registry entry for one ingested layer.

    A layer is one geometry kind extracted from one source file. The layer
    name is the registry key; table names are derived from it and never
    taken from user input directly.

    Attributes:
        layer_name: Unique, normalised layer name.
        table_name: Dynamic per-layer table holding whole features.
        geometry_kind: "point", "line" or "polygon".
        mesh_map_table: Dynamic per-layer mesh decomposition table, None
            for point layers.
        source_file: Base name of the file the layer was read from.
        created_at: Timestamp when the layer was first registered.
    """

    layer_name: str
    table_name: str
    geometry_kind: GeometryKind
    mesh_map_table: str | None
    source_file: str
    created_at: datetime.datetime = dataclasses.field(default_factory=_utcnow)


@dataclasses.dataclass
class MeshIndexEntry:
    """Presence flags for one 250m mesh cell.

    Entries are created on first reference and never deleted.
    """

    mesh_id: str
    has_points: bool = False
    has_lines: bool = False
    has_polygons: bool = False
    layer_presence: dict[str, bool] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass
class FeatureRow:
    """Whole-feature row, shared by the generic and per-layer tables."""

    mesh_id: str
    geometry: dict[str, Any]
    properties: dict[str, Any]
    source_layer: str
    id: int | None = None


@dataclasses.dataclass
class PieceRow:
    """Portion of a line/polygon feature inside one mesh cell.

    ``measure`` is metres for lines and square metres for polygons;
    ``ratio`` is the piece's share of the whole feature, in [0, 1].
    """

    feature_id: int
    mesh_id: str
    geometry: dict[str, Any]
    properties: dict[str, Any]
    measure: float
    ratio: float
    source_layer: str
    id: int | None = None


@dataclasses.dataclass
class MeshFeature:
    """Feature returned by a mesh lookup.

    For lines and polygons ``mesh_id`` is the looked-up cell and ``ratio``
    the share of the feature inside it.
    """

    id: int
    mesh_id: str
    source_layer: str
    geometry: dict[str, Any]
    properties: dict[str, Any]
    ratio: float | None = None
