"""Tests for the FastAPI main application factory and health checks.

This module validates that:
    - The FastAPI app is correctly instantiated via main.create_app,
    - OpenAPI metadata (title, version) matches the project contract,
    - The mesh and layer routers are registered,
    - The /health endpoint returns the expected response.
"""

from __future__ import annotations

from fastapi import testclient

from meshstore import main


def test_create_app() -> None:
    """Test that create_app returns a configured FastAPI instance."""
    app = main.create_app()
    assert app.title == "Mesh Store"
    assert app.version == "0.1.0"


def test_routes_registered() -> None:
    """Test that the API routes are part of the application."""
    paths = {getattr(route, "path", None) for route in main.create_app().routes}
    assert {
        "/health",
        "/api/mesh/lookup",
        "/api/mesh/{mesh_id}/bbox",
        "/api/layers",
    } <= paths


def test_health_endpoint() -> None:
    """Test the health check endpoint returns ok status."""
    client = testclient.TestClient(main.create_app())
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
