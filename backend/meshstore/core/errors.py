"""Exception hierarchy for ingestion and lookup.

Input and geometry problems are recovered close to where they are raised
(the file or feature is skipped and logged). StoreError is not recoverable
inside a file: it aborts that file's ingestion and marks the run as failed.

Example:
    Handle a failed file without stopping the run:
        >>> from meshstore.core import errors
        >>> try:
        ...     pipeline.ingest_file(path)
        ... except errors.StoreError as exc:
        ...     print(f"store failure: {exc}")
"""

from __future__ import annotations


class MeshStoreError(RuntimeError):
    """Base class for errors raised by the mesh store."""


class InputError(MeshStoreError):
    """Unreadable or malformed GeoJSON file or feature."""


class GeometryDegenerate(MeshStoreError):
    """Geometry whose length or area is zero or not finite."""


class CapacityExceeded(MeshStoreError):
    """Candidate mesh cells for one feature exceed the configured guard.

    Attributes:
        total: Number of cells the feature's bounding box snaps to.
        limit: Configured maximum.
    """

    def __init__(self, total: int, limit: int) -> None:
        super().__init__(f"{total} mesh cells exceeds limit of {limit}")
        self.total = total
        self.limit = limit


class StoreError(MeshStoreError):
    """Database failure: constraint violation, lost connection, etc."""


class InvalidLayerName(ValueError):
    """Layer or table identifier that fails the allow-list check."""


class InvalidMeshId(ValueError):
    """String that is not a 10-character 250m mesh code."""
