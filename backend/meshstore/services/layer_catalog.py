"""Layer naming and table identifier rules.

Layer names come from input file names, which are untrusted. They are
normalised to ``[a-z][a-z0-9_]*`` before anything else sees them, and every
dynamic table name is derived from a normalised layer name plus a fixed
suffix. ``validate_identifier`` is the allow-list check applied before any
schema operation; the layer registry is the only place that maps a layer
name to its tables.

Example:
    >>> from meshstore.services import layer_catalog
    >>> layer_catalog.normalize_layer_name("Tokyo Roads (2024).geojson")
    'tokyo_roads_2024_geojson'
    >>> defs = layer_catalog.build_layer_definitions(
    ...     "stations.geojson", ["point", "line"]
    ... )
    >>> [d.layer_name for d in defs]
    ['stations_points', 'stations_lines']
"""

from __future__ import annotations

import hashlib
import pathlib
import re
from typing import TYPE_CHECKING

from meshstore.core import errors
from meshstore.db import models as db_models

if TYPE_CHECKING:
    from collections.abc import Iterable

# Leaves room for the kind and mesh map suffixes within Postgres' 63 byte
# identifier limit.
MAX_BASE_NAME_LENGTH = 40
MAX_IDENTIFIER_LENGTH = 63

MESH_MAP_SUFFIX = "_mesh_map"
STEM_DIGEST_LENGTH = 8
KIND_SUFFIXES: dict[db_models.GeometryKind, str] = {
    "point": "_points",
    "line": "_lines",
    "polygon": "_polygons",
}

RESERVED_TABLES = frozenset(
    {
        "mesh_index",
        "layer_registry",
        *db_models.FEATURE_TABLES.values(),
        *db_models.MESH_MAP_TABLES.values(),
    }
)

_IDENTIFIER_RE = re.compile(r"^[a-z][a-z0-9_]*$")


def normalize_layer_name(raw_name: str) -> str:
    """Turn an arbitrary string into a safe base layer name.

    Lower-cases, collapses runs of other characters to ``_``, trims
    underscores, prefixes ``layer_`` when the result does not start with a
    letter and truncates to MAX_BASE_NAME_LENGTH.
    """
    base = re.sub(r"[^a-z0-9]+", "_", raw_name.lower()).strip("_")
    if not base:
        return "layer"
    if not base[0].isalpha():
        base = f"layer_{base}"
    return base[:MAX_BASE_NAME_LENGTH].rstrip("_")


def validate_identifier(name: str) -> str:
    """Allow-list check for a dynamic table identifier.

    Raises:
        InvalidLayerName: If ``name`` is not a lower-case identifier, is too
            long, or collides with one of the fixed tables.
    """
    if (
        not _IDENTIFIER_RE.match(name)
        or len(name) > MAX_IDENTIFIER_LENGTH
        or name in RESERVED_TABLES
    ):
        raise errors.InvalidLayerName(f"Invalid layer identifier: {name!r}")
    return name


def _stem_digest(stem: str) -> str:
    return hashlib.sha1(stem.encode("utf-8")).hexdigest()[:STEM_DIGEST_LENGTH]


def base_name_for(source_file: str) -> str:
    """Normalised base layer name for an input file name.

    Stems with non-ASCII characters lose them in normalisation, so the
    name gets a short digest of the stem to keep e.g. ``道路.geojson`` and
    ``建物.geojson`` apart.
    """
    stem = pathlib.PurePath(source_file).stem
    base = normalize_layer_name(stem)
    if not stem.isascii():
        keep = MAX_BASE_NAME_LENGTH - STEM_DIGEST_LENGTH - 1
        base = f"{base[:keep].rstrip('_')}_{_stem_digest(stem)}"
    if base in RESERVED_TABLES:
        base = f"layer_{base}"
    # Must not look like another layer's mesh map table.
    if base.endswith(MESH_MAP_SUFFIX):
        base = base[: MAX_BASE_NAME_LENGTH - len("_layer")].rstrip("_")
        base = f"{base}_layer"
    return base


def build_layer_definitions(
    source_file: str,
    kinds: Iterable[db_models.GeometryKind],
) -> list[db_models.LayerDefinition]:
    """Describe the layers one input file produces.

    Args:
        source_file: File base name, e.g. ``"roads.geojson"``.
        kinds: Geometry kinds present in the file (at least one feature).

    Returns:
        One LayerDefinition per kind. When the file yields more than one
        kind each layer name gets a ``_points``/``_lines``/``_polygons``
        suffix; otherwise the bare base name is used.
    """
    present = list(dict.fromkeys(kinds))
    base = base_name_for(source_file)
    use_suffix = len(present) > 1

    definitions: list[db_models.LayerDefinition] = []
    for kind in present:
        layer_name = base + KIND_SUFFIXES[kind] if use_suffix else base
        table_name = validate_identifier(layer_name)
        mesh_map_table = (
            None
            if kind == "point"
            else validate_identifier(table_name + MESH_MAP_SUFFIX)
        )
        definitions.append(
            db_models.LayerDefinition(
                layer_name=layer_name,
                table_name=table_name,
                geometry_kind=kind,
                mesh_map_table=mesh_map_table,
                source_file=source_file,
            )
        )
    return definitions
