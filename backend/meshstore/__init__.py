"""Mesh-indexed layer store for point, line and polygon GeoJSON data.

Geometry is partitioned onto the fixed national 250m grid (JIS quarter
mesh) at ingestion time, so that spatial queries at serving time become
exact lookups by mesh identifier.

- Ingests directories of GeoJSON files as independently replaceable layers
- Clips lines and polygons per mesh cell with geodesic length/area ratios
- Maintains a per-cell presence index, updated incrementally per layer
- Serves mesh lookups and the layer catalog over a FastAPI application

See the module docstrings of meshstore.services for the ingestion steps.
"""
