"""API router subpackage for the mesh store.

Each module exposes its own APIRouter for composition in the application's
main FastAPI instance.

Submodules:
    - mesh: Lookup of presence flags and features by mesh identifier,
      and cell bounds for a mesh identifier.
    - layers: Listing of the layer registry.
"""
