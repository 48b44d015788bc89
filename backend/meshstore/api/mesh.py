"""Mesh lookup API endpoints.

This module provides REST API endpoints for reading the mesh store by
250m mesh identifier: presence flags, per-layer presence and feature
payloads for a set of mesh ids, and the geographic bounds of one cell.

Example:
    Look up two cells:
        >>> response = client.post(
        ...     "/api/mesh/lookup",
        ...     json={"meshIds": ["5339452211", "5339452212"]},
        ... )
        >>> response.json()["meshes"][0]["presence"]
        >>> # {"points": True, "lines": False, "polygons": False}

    Get the bounds of a cell:
        >>> client.get("/api/mesh/5339452211/bbox").json()
        >>> # {"meshId": "5339452211", "bbox": [139.75, 35.675, ...]}
"""

from __future__ import annotations

import logging
from typing import Any

import fastapi
import pydantic

from meshstore.core import config, errors
from meshstore.db import database
from meshstore.db import models as db_models
from meshstore.services import geojson_reader, mesh_codec

logger = logging.getLogger(__name__)

router = fastapi.APIRouter(prefix="/api/mesh", tags=["mesh"])

_PAYLOAD_KEYS: dict[db_models.GeometryKind, str] = {
    "point": "points",
    "line": "lines",
    "polygon": "polygons",
}


class MeshLookupRequest(pydantic.BaseModel):
    """Body of a lookup request: ``{"meshIds": ["5339452211", ...]}``."""

    model_config = pydantic.ConfigDict(populate_by_name=True)

    mesh_ids: list[pydantic.StrictStr] = pydantic.Field(alias="meshIds")


def _get_store(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> database.MeshStoreProtocol:
    """Resolve the mesh store dependency.

    Args:
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        MeshStoreProtocol implementation (PostgresMeshStore in production).
    """
    return database.get_mesh_store(settings)


def _feature_payload(feature: db_models.MeshFeature) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": feature.id,
        "meshId": feature.mesh_id,
        "sourceLayer": feature.source_layer,
        "geometry": feature.geometry,
        "properties": feature.properties,
    }
    if feature.ratio is not None:
        payload["ratio"] = feature.ratio
    return payload


def _empty_mesh(mesh_id: str) -> dict[str, Any]:
    return {
        "meshId": mesh_id,
        "presence": {"points": False, "lines": False, "polygons": False},
        "layers": {},
        "points": [],
        "lines": [],
        "polygons": [],
    }


def lookup_meshes(
    store: database.MeshStoreProtocol,
    mesh_ids: list[str],
) -> list[dict[str, Any]]:
    """Assemble the lookup response for a de-duplicated list of mesh ids.

    Meshes come back in request order; ids without an index row are
    reported with every flag false and no features.
    """
    meshes = {mesh_id: _empty_mesh(mesh_id) for mesh_id in mesh_ids}
    for entry in store.get_mesh_entries(mesh_ids):
        mesh = meshes[entry.mesh_id]
        mesh["presence"] = {
            "points": entry.has_points,
            "lines": entry.has_lines,
            "polygons": entry.has_polygons,
        }
        mesh["layers"] = dict(entry.layer_presence)

    for kind in geojson_reader.GEOMETRY_KINDS:
        key = _PAYLOAD_KEYS[kind]
        for feature in store.lookup_features(kind, mesh_ids):
            mesh = meshes.get(feature.mesh_id)
            if mesh is not None:
                mesh[key].append(_feature_payload(feature))
    return list(meshes.values())


@router.post("/lookup")
def lookup(
    payload: Any = fastapi.Body(None),  # noqa: B008
    store: database.MeshStoreProtocol = fastapi.Depends(_get_store),  # noqa: B008
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> dict[str, list[dict[str, Any]]]:
    """Return presence flags and features for a set of mesh ids.

    Args:
        payload: JSON body ``{"meshIds": [...]}``.
        store: Mesh store (injected via FastAPI Depends).
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        ``{"meshes": [...]}`` with one entry per distinct requested id,
        each holding ``meshId``, ``presence``, ``layers`` and the
        ``points``/``lines``/``polygons`` feature payloads. Line and
        polygon payloads carry the ``ratio`` of the feature inside the
        cell.

    Raises:
        HTTPException: 400 if ``meshIds`` is not a list of strings or has
            more distinct ids than allowed, 500 if the store fails.
    """
    try:
        request = MeshLookupRequest.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise fastapi.HTTPException(
            status_code=400,
            detail="meshIds must be an array of strings",
        ) from exc

    mesh_ids = list(dict.fromkeys(request.mesh_ids))
    if not mesh_ids:
        return {"meshes": []}
    if len(mesh_ids) > settings.max_lookup_mesh_ids:
        raise fastapi.HTTPException(
            status_code=400,
            detail=(
                f"At most {settings.max_lookup_mesh_ids} mesh ids "
                "per request"
            ),
        )

    try:
        meshes = lookup_meshes(store, mesh_ids)
    except errors.StoreError as exc:
        logger.exception("Mesh lookup failed")
        raise fastapi.HTTPException(
            status_code=500,
            detail="Failed to fetch mesh data",
        ) from exc
    return {"meshes": meshes}


@router.get("/{mesh_id}/bbox")
def get_mesh_bbox(mesh_id: str) -> dict[str, Any]:
    """Get the bounds of a 250m mesh cell.

    Args:
        mesh_id: 10 character mesh code.

    Returns:
        ``{"meshId": ..., "bbox": [min_lon, min_lat, max_lon, max_lat]}``.

    Raises:
        HTTPException: If the mesh id is malformed (404 status code).
    """
    try:
        bbox = mesh_codec.cell_bbox(mesh_id)
    except errors.InvalidMeshId as exc:
        raise fastapi.HTTPException(
            status_code=404,
            detail="Mesh not found",
        ) from exc
    return {"meshId": mesh_id, "bbox": list(bbox)}
