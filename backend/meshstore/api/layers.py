"""Layer catalog API endpoints.

Lists the layer registry: one entry per ingested layer with its tables,
geometry kind and source file.

Example:
    >>> response = client.get("/api/layers")
    >>> response.json()
    >>> # [{"layerName": "roads", "tableName": "roads",
    >>> #   "geometryType": "line", "meshMapTable": "roads_mesh_map",
    >>> #   "sourceFile": "roads.geojson", "createdAt": "..."}]
"""

from __future__ import annotations

import logging
from typing import Any

import fastapi

from meshstore.core import config, errors
from meshstore.db import database
from meshstore.db import models as db_models

logger = logging.getLogger(__name__)

router = fastapi.APIRouter(prefix="/api/layers", tags=["layers"])


def _get_store(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> database.MeshStoreProtocol:
    return database.get_mesh_store(settings)


def _layer_payload(layer: db_models.LayerDefinition) -> dict[str, Any]:
    return {
        "layerName": layer.layer_name,
        "tableName": layer.table_name,
        "geometryType": layer.geometry_kind,
        "meshMapTable": layer.mesh_map_table,
        "sourceFile": layer.source_file,
        "createdAt": layer.created_at.isoformat(),
    }


@router.get("")
def list_layers(
    store: database.MeshStoreProtocol = fastapi.Depends(_get_store),  # noqa: B008
) -> list[dict[str, Any]]:
    """List all registered layers, ordered by layer name.

    Raises:
        HTTPException: If the store cannot be read (500 status code).
    """
    try:
        layers = list(store.all_layers())
    except errors.StoreError as exc:
        logger.exception("Listing layers failed")
        raise fastapi.HTTPException(
            status_code=500,
            detail="Failed to list layers",
        ) from exc
    return [_layer_payload(layer) for layer in layers]
