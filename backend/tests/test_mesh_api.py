"""API endpoint tests for mesh lookup and cell bounds.

The store dependency is replaced with an InMemoryMeshStore populated by the
ingestion pipeline, and settings are injected through dependency overrides
where a test needs non-default limits.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any

import pytest
from fastapi import testclient

from meshstore import main
from meshstore.api import mesh as api_mesh
from meshstore.core import config, errors
from meshstore.db import database
from meshstore.services import ingest_layers, mesh_codec

if TYPE_CHECKING:
    import pathlib

POINT_MESH = mesh_codec.mesh_code(35.681, 139.767)


@pytest.fixture
def store(tmp_path: pathlib.Path) -> database.InMemoryMeshStore:
    """Store holding one point layer and one line layer."""
    (tmp_path / "tokyo.geojson").write_text(
        json.dumps(
            {
                "type": "FeatureCollection",
                "features": [
                    {
                        "type": "Feature",
                        "geometry": {
                            "type": "Point",
                            "coordinates": [139.767, 35.681],
                        },
                        "properties": {"name": "Tokyo Station"},
                    },
                    {
                        "type": "Feature",
                        "geometry": {
                            "type": "LineString",
                            "coordinates": [
                                [139.759, 35.678],
                                [139.771, 35.688],
                            ],
                        },
                        "properties": {"name": "Line"},
                    },
                ],
            }
        ),
        encoding="utf-8",
    )
    mesh_store = database.InMemoryMeshStore()
    ingest_layers.LayerIngestionPipeline(mesh_store).ingest_directory(tmp_path)
    return mesh_store


@pytest.fixture
def client(
    store: database.InMemoryMeshStore,
) -> Iterator[testclient.TestClient]:
    """Test client with the store dependency overridden."""
    app = main.create_app()
    app.dependency_overrides[api_mesh._get_store] = lambda: store
    try:
        yield testclient.TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_lookup_point_mesh(client: testclient.TestClient) -> None:
    """Test a cell holding the point reports it with its layer."""
    response = client.post("/api/mesh/lookup", json={"meshIds": [POINT_MESH]})
    assert response.status_code == 200
    (mesh,) = response.json()["meshes"]
    assert mesh["meshId"] == POINT_MESH
    assert mesh["presence"]["points"] is True
    assert mesh["layers"]["tokyo_points"] is True
    (point,) = mesh["points"]
    assert point["sourceLayer"] == "tokyo_points"
    assert point["properties"] == {"name": "Tokyo Station"}
    assert point["geometry"]["type"] == "Point"


def test_lookup_line_pieces(
    client: testclient.TestClient, store: database.InMemoryMeshStore
) -> None:
    """Test every cell crossed by the line returns it with a ratio."""
    piece_meshes = [row.mesh_id for row in store.rows("line_mesh_map")]
    response = client.post("/api/mesh/lookup", json={"meshIds": piece_meshes})
    meshes = response.json()["meshes"]
    assert [mesh["meshId"] for mesh in meshes] == piece_meshes
    ratios = [mesh["lines"][0]["ratio"] for mesh in meshes]
    assert sum(ratios) == pytest.approx(1.0, rel=1e-6)
    assert all(mesh["presence"]["lines"] for mesh in meshes)
    assert all(
        mesh["lines"][0]["geometry"]["type"] == "LineString" for mesh in meshes
    )


def test_lookup_unknown_and_duplicate_ids(client: testclient.TestClient) -> None:
    """Test unknown ids come back empty and duplicates collapse."""
    response = client.post(
        "/api/mesh/lookup",
        json={"meshIds": ["3036000011", POINT_MESH, "3036000011"]},
    )
    meshes = response.json()["meshes"]
    assert [mesh["meshId"] for mesh in meshes] == ["3036000011", POINT_MESH]
    assert meshes[0] == {
        "meshId": "3036000011",
        "presence": {"points": False, "lines": False, "polygons": False},
        "layers": {},
        "points": [],
        "lines": [],
        "polygons": [],
    }


def test_lookup_empty_list(client: testclient.TestClient) -> None:
    """Test an empty request returns no meshes."""
    response = client.post("/api/mesh/lookup", json={"meshIds": []})
    assert response.status_code == 200
    assert response.json() == {"meshes": []}


@pytest.mark.parametrize(
    "body",
    [{"meshIds": "5339461132"}, {"meshIds": [1, 2]}, {"ids": []}, [], None],
)
def test_lookup_rejects_bad_payload(
    client: testclient.TestClient, body: object
) -> None:
    """Test malformed bodies are rejected with 400."""
    response = client.post("/api/mesh/lookup", json=body)
    assert response.status_code == 400
    assert response.json()["detail"] == "meshIds must be an array of strings"


def test_lookup_limit(client: testclient.TestClient) -> None:
    """Test requests over max_lookup_mesh_ids are rejected."""
    limited = config.Settings(max_lookup_mesh_ids=1)
    client.app.dependency_overrides[config.get_settings] = lambda: limited  # type: ignore[attr-defined]
    response = client.post(
        "/api/mesh/lookup", json={"meshIds": [POINT_MESH, "3036000011"]}
    )
    assert response.status_code == 400


def test_lookup_store_failure() -> None:
    """Test store errors become a 500 response."""

    class BrokenStore(database.InMemoryMeshStore):
        def get_mesh_entries(self, mesh_ids: list[str]) -> list[Any]:
            raise errors.StoreError("connection lost")

    app = main.create_app()
    app.dependency_overrides[api_mesh._get_store] = BrokenStore
    try:
        response = testclient.TestClient(app).post(
            "/api/mesh/lookup", json={"meshIds": [POINT_MESH]}
        )
    finally:
        app.dependency_overrides.clear()
    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to fetch mesh data"


def test_mesh_bbox(client: testclient.TestClient) -> None:
    """Test the bbox endpoint decodes a mesh id."""
    response = client.get(f"/api/mesh/{POINT_MESH}/bbox")
    assert response.status_code == 200
    body = response.json()
    assert body["meshId"] == POINT_MESH
    min_lon, min_lat, max_lon, max_lat = body["bbox"]
    assert min_lon <= 139.767 < max_lon
    assert min_lat <= 35.681 < max_lat


def test_mesh_bbox_invalid(client: testclient.TestClient) -> None:
    """Test malformed mesh ids are not found."""
    response = client.get("/api/mesh/not-a-mesh/bbox")
    assert response.status_code == 404
