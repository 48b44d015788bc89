"""Incremental maintenance of the mesh presence index.

Every mesh cell referenced by stored data has one ``mesh_index`` row with
three per-kind flags and a per-layer presence map. Ingestion updates only
the cells a layer touched before or after its rows were replaced;
``reconcile`` rebuilds everything from the feature tables and is meant as
an occasional consistency check, not part of normal ingestion.

Example:
    >>> from meshstore.db.database import InMemoryMeshStore
    >>> from meshstore.services.mesh_presence import MeshPresenceIndex
    >>> index = MeshPresenceIndex(InMemoryMeshStore())
    >>> index.ensure(["5339452211"])
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from meshstore.utils import batching

if TYPE_CHECKING:
    from collections.abc import Iterable

    from meshstore.db import database

logger = logging.getLogger(__name__)


def _ordered(mesh_ids: Iterable[str]) -> list[str]:
    return sorted(set(mesh_ids))


class MeshPresenceIndex:
    """Keeps ``mesh_index`` in step with the feature tables.

    Args:
        store: Store the index lives in.
        chunk_size: Maximum mesh ids sent per statement.
    """

    def __init__(
        self,
        store: database.MeshStoreProtocol,
        chunk_size: int = batching.DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.store = store
        self.chunk_size = chunk_size

    def ensure(self, mesh_ids: Iterable[str]) -> None:
        """Create index rows for ids not seen before; existing rows untouched."""
        for batch in batching.chunked(_ordered(mesh_ids), self.chunk_size):
            self.store.ensure_mesh_ids(batch)

    def set_layer_presence(
        self,
        layer_name: str,
        mesh_ids: Iterable[str],
        present: bool,
    ) -> None:
        """Set or clear ``layer_name`` in the presence map of each cell."""
        for batch in batching.chunked(_ordered(mesh_ids), self.chunk_size):
            self.store.set_layer_presence(layer_name, batch, present)

    def refresh(self, mesh_ids: Iterable[str]) -> None:
        """Recompute the per-kind flags of exactly these cells."""
        for batch in batching.chunked(_ordered(mesh_ids), self.chunk_size):
            self.store.refresh_mesh_flags(batch)

    def apply_layer_delta(
        self,
        layer_name: str,
        old_mesh_ids: set[str],
        new_mesh_ids: set[str],
    ) -> set[str]:
        """Bring the index up to date after a layer's rows changed.

        Args:
            layer_name: Layer whose rows were replaced or removed.
            old_mesh_ids: Cells the layer touched before the change.
            new_mesh_ids: Cells it touches now (empty when removed).

        Returns:
            The affected cells (union of old and new).
        """
        affected = old_mesh_ids | new_mesh_ids
        self.set_layer_presence(layer_name, old_mesh_ids - new_mesh_ids, False)
        self.set_layer_presence(layer_name, new_mesh_ids, True)
        self.refresh(affected)
        logger.debug(
            "Layer %s: %d cells added, %d cleared, %d refreshed",
            layer_name,
            len(new_mesh_ids - old_mesh_ids),
            len(old_mesh_ids - new_mesh_ids),
            len(affected),
        )
        return affected

    def reconcile(self) -> int:
        """Reset and rebuild every flag and presence map from stored rows.

        Returns:
            Number of index rows checked.
        """
        with self.store.transaction():
            total = self.store.reconcile_mesh_index()
        logger.info("Reconciled %d mesh index rows", total)
        return total
