"""JIS 250m ("quarter") mesh code computation.

Japan's standard regional mesh subdivides a degree-based primary grid
(40' latitude x 1 degree longitude) into secondary cells (5' x 7.5'),
tertiary "1km" cells (30" x 45"), half cells (15" x 22.5") and finally
quarter cells (7.5" x 11.25", roughly 250m). The code of a quarter cell is a
10 character string::

    pp qq r s t u h k
    |  |  | | | | | +-- quarter digit (1-4) inside the half cell
    |  |  | | | | +---- half digit (1-4) inside the 1km cell
    |  |  | | +-+------ tertiary row/column (0-9)
    |  |  +-+---------- secondary row/column (0-7)
    |  +--------------- floor(lon) - 100
    +------------------ floor(lat * 1.5)

Quadrant digits are ``lat_half * 2 + lon_half + 1``: 1 south-west, 2
south-east, 3 north-west, 4 north-east.

Cells are half-open: a coordinate exactly on a grid line belongs to the cell
whose lower/left edge it is.

Example:
    >>> from meshstore.services import mesh_codec
    >>> mesh_code = mesh_codec.mesh_code(35.681, 139.767)
    >>> len(mesh_code)
    10
    >>> lon0, lat0, lon1, lat1 = mesh_codec.cell_bbox(mesh_code)
"""

from __future__ import annotations

import math
import re

from meshstore.core import errors

BBox = tuple[float, float, float, float]

MESH_CODE_LENGTH = 10

# Cell sizes in arc-seconds.
TERTIARY_LAT_SEC = 30.0
TERTIARY_LON_SEC = 45.0
HALF_LAT_SEC = 15.0
HALF_LON_SEC = 22.5
QUARTER_LAT_SEC = 7.5
QUARTER_LON_SEC = 11.25

# Largest offsets still inside a 1km cell once clamped.
_MAX_LAT_SEC_IN_1KM = 29.999999
_MAX_LON_SEC_IN_1KM = 44.999999

_MESH_CODE_RE = re.compile(r"^\d{4}[0-7]{2}\d{2}[1-4]{2}$")


def _clamp(value: int, upper: int) -> int:
    return min(upper, max(0, value))


def mesh_code(lat: float, lon: float) -> str:
    """Return the 10 character 250m mesh code containing a coordinate.

    Ingestion and lookup both derive cell membership from this function.

    Args:
        lat: Latitude in decimal degrees (WGS84).
        lon: Longitude in decimal degrees (WGS84).

    Returns:
        Mesh code string such as ``"5339453724"``.
    """
    p = math.floor(lat * 1.5)
    lon_deg = math.floor(lon)
    q = lon_deg - 100

    lat_minutes = lat * 60
    lon_minutes = lon * 60
    r = _clamp(math.floor((lat_minutes - p * 40) / 5), 7)
    s = _clamp(math.floor((lon_minutes - lon_deg * 60) / 7.5), 7)
    t = _clamp(math.floor((lat_minutes - p * 40 - r * 5) * 60 / 30), 9)
    u = _clamp(math.floor((lon_minutes - lon_deg * 60 - s * 7.5) * 60 / 45), 9)

    lat_base_sec = p * 2400 + r * 300 + t * 30
    lon_base_sec = lon_deg * 3600 + s * 450 + u * 45
    lat_sec_in_1km = min(
        _MAX_LAT_SEC_IN_1KM, max(0.0, lat * 3600 - lat_base_sec)
    )
    lon_sec_in_1km = min(
        _MAX_LON_SEC_IN_1KM, max(0.0, lon * 3600 - lon_base_sec)
    )

    lat_half = math.floor(lat_sec_in_1km / HALF_LAT_SEC)
    lon_half = math.floor(lon_sec_in_1km / HALF_LON_SEC)
    half_digit = lat_half * 2 + lon_half + 1

    lat_sec_in_half = lat_sec_in_1km - lat_half * HALF_LAT_SEC
    lon_sec_in_half = lon_sec_in_1km - lon_half * HALF_LON_SEC
    lat_quarter = math.floor(lat_sec_in_half / QUARTER_LAT_SEC)
    lon_quarter = math.floor(lon_sec_in_half / QUARTER_LON_SEC)
    quarter_digit = lat_quarter * 2 + lon_quarter + 1

    return f"{p:02d}{q:02d}{r}{s}{t}{u}{half_digit}{quarter_digit}"


def validate_mesh_id(mesh_id: str) -> str:
    """Check that a string is a well-formed 250m mesh code.

    Raises:
        InvalidMeshId: If the value is not 10 digits in the mesh layout.
    """
    if not isinstance(mesh_id, str) or not _MESH_CODE_RE.match(mesh_id):
        raise errors.InvalidMeshId(f"Invalid mesh id: {mesh_id!r}")
    return mesh_id


def cell_bbox(mesh_id: str) -> BBox:
    """Decode a 250m mesh code to its cell bounds.

    Args:
        mesh_id: 10 character mesh code.

    Returns:
        ``(min_lon, min_lat, max_lon, max_lat)`` in decimal degrees.

    Raises:
        InvalidMeshId: If ``mesh_id`` is malformed.
    """
    validate_mesh_id(mesh_id)
    p = int(mesh_id[0:2])
    q = int(mesh_id[2:4])
    r, s, t, u = (int(c) for c in mesh_id[4:8])
    half = int(mesh_id[8]) - 1
    quarter = int(mesh_id[9]) - 1

    lat_sec = (
        p * 2400
        + r * 300
        + t * TERTIARY_LAT_SEC
        + (half // 2) * HALF_LAT_SEC
        + (quarter // 2) * QUARTER_LAT_SEC
    )
    lon_sec = (
        (q + 100) * 3600
        + s * 450
        + u * TERTIARY_LON_SEC
        + (half % 2) * HALF_LON_SEC
        + (quarter % 2) * QUARTER_LON_SEC
    )
    return (
        lon_sec / 3600,
        lat_sec / 3600,
        (lon_sec + QUARTER_LON_SEC) / 3600,
        (lat_sec + QUARTER_LAT_SEC) / 3600,
    )
