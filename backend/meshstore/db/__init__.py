"""Store interface, implementations and record types.

The ingestion services and the API depend only on MeshStoreProtocol from
meshstore.db.database; get_mesh_store() returns the PostgreSQL
implementation, and InMemoryMeshStore backs tests and local runs.

Example:
    Use in a service or FastAPI dependency:
        >>> from meshstore.db import database
        >>> store = database.get_mesh_store(settings)
"""
