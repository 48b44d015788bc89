"""API endpoint tests for the layer catalog.

The store dependency is always injected using dependency overrides.
"""

from __future__ import annotations

from fastapi import testclient

from meshstore import main
from meshstore.api import layers as api_layers
from meshstore.core import errors
from meshstore.db import database
from meshstore.db import models as db_models


def _client(store: database.MeshStoreProtocol) -> testclient.TestClient:
    app = main.create_app()
    app.dependency_overrides[api_layers._get_store] = lambda: store
    return testclient.TestClient(app)


def test_list_layers_empty() -> None:
    """Test listing layers when the registry is empty."""
    response = _client(database.InMemoryMeshStore()).get("/api/layers")
    assert response.status_code == 200
    assert response.json() == []


def test_list_layers_multiple() -> None:
    """Test listing registered layers ordered by name."""
    store = database.InMemoryMeshStore()
    store.upsert_layer(
        db_models.LayerDefinition(
            layer_name="stations",
            table_name="stations",
            geometry_kind="point",
            mesh_map_table=None,
            source_file="stations.geojson",
        )
    )
    store.upsert_layer(
        db_models.LayerDefinition(
            layer_name="rivers",
            table_name="rivers",
            geometry_kind="line",
            mesh_map_table="rivers_mesh_map",
            source_file="rivers.geojson",
        )
    )

    response = _client(store).get("/api/layers")
    layers = response.json()
    assert [layer["layerName"] for layer in layers] == ["rivers", "stations"]
    assert layers[0]["meshMapTable"] == "rivers_mesh_map"
    assert layers[0]["geometryType"] == "line"
    assert layers[1]["meshMapTable"] is None
    assert layers[1]["sourceFile"] == "stations.geojson"
    assert "createdAt" in layers[1]


def test_list_layers_store_failure() -> None:
    """Test store errors become a 500 response."""

    class BrokenStore(database.InMemoryMeshStore):
        def all_layers(self) -> list[db_models.LayerDefinition]:
            raise errors.StoreError("connection lost")

    response = _client(BrokenStore()).get("/api/layers")
    assert response.status_code == 500
