"""Tests for layer name normalisation and table identifiers."""

from __future__ import annotations

import pytest

from meshstore.core import errors
from meshstore.services import layer_catalog


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Tokyo Roads (2024).geojson", "tokyo_roads_2024_geojson"),
        ("roads", "roads"),
        ("__Rivers__", "rivers"),
        ("2024_stations", "layer_2024_stations"),
        ("!!!", "layer"),
        ("東京", "layer"),
    ],
)
def test_normalize_layer_name(raw: str, expected: str) -> None:
    """Test names are lower-case identifiers."""
    assert layer_catalog.normalize_layer_name(raw) == expected


def test_normalize_layer_name_truncates() -> None:
    """Test long names are cut to the base name limit."""
    name = layer_catalog.normalize_layer_name("a" * 100)
    assert len(name) == layer_catalog.MAX_BASE_NAME_LENGTH


def test_single_kind_has_no_suffix() -> None:
    """Test a file producing one kind gets the bare base name."""
    (layer,) = layer_catalog.build_layer_definitions("Roads.geojson", ["line"])
    assert layer.layer_name == "roads"
    assert layer.table_name == "roads"
    assert layer.mesh_map_table == "roads_mesh_map"
    assert layer.source_file == "Roads.geojson"


def test_multiple_kinds_are_suffixed() -> None:
    """Test each kind gets its own suffixed layer."""
    layers = layer_catalog.build_layer_definitions(
        "stations.geojson", ["point", "line", "polygon"]
    )
    assert [layer.layer_name for layer in layers] == [
        "stations_points",
        "stations_lines",
        "stations_polygons",
    ]
    assert layers[0].mesh_map_table is None
    assert layers[2].mesh_map_table == "stations_polygons_mesh_map"


def test_reserved_names_are_prefixed() -> None:
    """Test file names that collide with fixed tables are renamed."""
    (layer,) = layer_catalog.build_layer_definitions(
        "mesh_index.geojson", ["point"]
    )
    assert layer.layer_name == "layer_mesh_index"


def test_mesh_map_lookalike_is_renamed() -> None:
    """Test a base name ending in _mesh_map cannot shadow a mesh map."""
    assert layer_catalog.base_name_for("roads_mesh_map.json") == (
        "roads_mesh_map_layer"
    )


def test_longest_names_fit_identifier_limit() -> None:
    """Test suffixed names of a maximal base stay valid identifiers."""
    layers = layer_catalog.build_layer_definitions(
        "x" * 200 + ".geojson", ["line", "polygon"]
    )
    for layer in layers:
        assert layer.mesh_map_table is not None
        assert len(layer.mesh_map_table) <= layer_catalog.MAX_IDENTIFIER_LENGTH


@pytest.mark.parametrize(
    "name",
    ["Roads", "1roads", "roads; DROP TABLE x", "line_features", "a" * 64, ""],
)
def test_validate_identifier_rejects(name: str) -> None:
    """Test unsafe or reserved identifiers raise InvalidLayerName."""
    with pytest.raises(errors.InvalidLayerName):
        layer_catalog.validate_identifier(name)


def test_non_ascii_names_keep_a_stable_digest() -> None:
    """Test stems lost to normalisation are told apart by a digest."""
    road = layer_catalog.base_name_for("道路.geojson")
    building = layer_catalog.base_name_for("建物.geojson")
    assert road != building
    assert road.startswith("layer_")
    assert road == layer_catalog.base_name_for("道路.geojson")
    assert len(road) == len("layer_") + layer_catalog.STEM_DIGEST_LENGTH
    layer_catalog.validate_identifier(road)


def test_long_non_ascii_name_fits_base_limit() -> None:
    """Test the digest stays inside the base name limit."""
    name = layer_catalog.base_name_for("river_" * 20 + "川.geojson")
    assert len(name) <= layer_catalog.MAX_BASE_NAME_LENGTH
    assert name.startswith("river_river")
