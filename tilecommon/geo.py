from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple
import math
import numpy as np

from tilecommon.types import BBox


TILE_SIZE = 256

GEODETIC = "EPSG:4326"
WEB_MERCATOR = "EPSG:3857"
PROJECTIONS = (GEODETIC, WEB_MERCATOR)

# --- grid constants ---
_FIRST_RES_4326 = 1.40625              # deg/pixel at zoom 0 (x256 = 360 deg)
_FIRST_RES_3857 = 156543.03392804097   # m/pixel at zoom 0 (x256 = equator length)
ORIGIN_4326 = (-180.0, 90.0)

# --- spherical mercator constants ---
EARTH_RADIUS_M = 6378137.0
MAX_EXTENT_M = 20037508.342789244      # pi * R
MAX_LAT_DEG = 85.0511287798066         # latitude mapped to +MAX_EXTENT_M

# --- GCJ-02 (Krasovsky 1940 ellipsoid) ---
_GCJ_A = 6378245.0
_GCJ_EE = 0.006693421622965823


# -------------------------
# Resolutions
# -------------------------
def res_4326(zoom: int) -> float:
    """Degrees per pixel of the geodetic grid at `zoom`."""
    return _FIRST_RES_4326 / math.pow(2, zoom)


def res_3857(zoom: int) -> float:
    """Metres per pixel of the web-mercator grid at `zoom`."""
    return _FIRST_RES_3857 / math.pow(2, zoom)


# -------------------------
# Geodetic grid (rows grow northward from the southern edge)
# -------------------------
def tile_bbox_4326(col: int, row: int, zoom: int) -> BBox:
    size = res_4326(zoom) * TILE_SIZE
    col = math.floor(col)
    row = math.floor(row)
    xmin = ORIGIN_4326[0] + col * size
    ymin = -ORIGIN_4326[1] + row * size
    return (xmin, ymin, xmin + size, ymin + size)


def tile_index_4326(lon: float, lat: float, zoom: int) -> Tuple[int, int]:
    """(col, row) of the geodetic tile containing lon/lat; inverse of tile_bbox_4326()."""
    size = res_4326(zoom) * TILE_SIZE
    col = math.floor((lon - ORIGIN_4326[0]) / size)
    row = math.floor((lat + ORIGIN_4326[1]) / size)
    return int(col), int(row)


def bbox_to_tile_4326(bbox: BBox, zoom: int) -> Tuple[int, int, int]:
    """Tile whose geodetic bbox is `bbox` (looked up through its centre)."""
    minx, miny, maxx, maxy = bbox
    col, row = tile_index_4326(0.5 * (minx + maxx), 0.5 * (miny + maxy), zoom)
    return col, row, int(zoom)


def geodetic_grid_size(zoom: int) -> Tuple[int, int]:
    """(cols, rows) of the geodetic grid; zoom 0 is a single 360x360 deg tile."""
    return 2 ** zoom, max(1, 2 ** zoom // 2)


# -------------------------
# Web-mercator grid (XYZ rows from the top)
# -------------------------
def mercator_forward(lon, lat):
    """
    lon/lat (deg) -> spherical mercator metres. Accepts scalars or arrays.
    Latitudes are clipped to +-MAX_LAT_DEG so the output stays inside the square world.
    """
    lon = np.asarray(lon, dtype=float)
    lat = np.clip(np.asarray(lat, dtype=float), -MAX_LAT_DEG, MAX_LAT_DEG)
    x = EARTH_RADIUS_M * np.radians(lon)
    y = EARTH_RADIUS_M * np.log(np.tan(np.pi * 0.25 + 0.5 * np.radians(lat)))
    x = np.clip(x, -MAX_EXTENT_M, MAX_EXTENT_M)
    y = np.clip(y, -MAX_EXTENT_M, MAX_EXTENT_M)
    return x, y


def mercator_inverse(x, y):
    """Spherical mercator metres -> lon/lat (deg). Accepts scalars or arrays."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    lon = np.degrees(x / EARTH_RADIUS_M)
    lat = np.degrees(0.5 * np.pi - 2.0 * np.arctan(np.exp(-y / EARTH_RADIUS_M)))
    return lon, lat


def mercator_tile_size_m(zoom: int) -> float:
    return res_3857(zoom) * TILE_SIZE


def mercator_tile_bbox_m(x: int, y: int, zoom: int) -> BBox:
    size = 2.0 * MAX_EXTENT_M / math.pow(2, zoom)
    minx = -MAX_EXTENT_M + x * size
    maxy = MAX_EXTENT_M - y * size
    return (minx, maxy - size, minx + size, maxy)


def _x_to_lon(x: float, world: float) -> float:
    return x / world * 360.0 - 180.0


def _y_to_lat(y: float, world: float) -> float:
    n = math.pi - 2.0 * math.pi * (y / world)
    return math.degrees(math.atan(math.sinh(n)))


def mercator_tile_bbox(x: int, y: int, zoom: int) -> BBox:
    """lon/lat bbox of an XYZ web-mercator tile."""
    world = float(2 ** int(zoom))
    west = _x_to_lon(x, world)
    east = _x_to_lon(x + 1, world)
    north = _y_to_lat(y, world)
    south = _y_to_lat(y + 1, world)
    return (west, south, east, north)


# -------------------------
# National offset (GCJ-02)
# -------------------------
def _out_of_china(lon: np.ndarray, lat: np.ndarray) -> np.ndarray:
    return ~((lon >= 72.004) & (lon <= 137.8347) & (lat >= 0.8293) & (lat <= 55.8271))


def _gcj_dlat(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    ret = -100.0 + 2.0 * x + 3.0 * y + 0.2 * y * y + 0.1 * x * y + 0.2 * np.sqrt(np.abs(x))
    ret += (20.0 * np.sin(6.0 * x * np.pi) + 20.0 * np.sin(2.0 * x * np.pi)) * 2.0 / 3.0
    ret += (20.0 * np.sin(y * np.pi) + 40.0 * np.sin(y / 3.0 * np.pi)) * 2.0 / 3.0
    ret += (160.0 * np.sin(y / 12.0 * np.pi) + 320.0 * np.sin(y * np.pi / 30.0)) * 2.0 / 3.0
    return ret


def _gcj_dlon(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    ret = 300.0 + x + 2.0 * y + 0.1 * x * x + 0.1 * x * y + 0.1 * np.sqrt(np.abs(x))
    ret += (20.0 * np.sin(6.0 * x * np.pi) + 20.0 * np.sin(2.0 * x * np.pi)) * 2.0 / 3.0
    ret += (20.0 * np.sin(x * np.pi) + 40.0 * np.sin(x / 3.0 * np.pi)) * 2.0 / 3.0
    ret += (150.0 * np.sin(x / 12.0 * np.pi) + 300.0 * np.sin(x / 30.0 * np.pi)) * 2.0 / 3.0
    return ret


def gcj02_from_wgs84(lon, lat):
    """
    WGS84 lon/lat -> GCJ-02 lon/lat. Accepts scalars or arrays.
    Points outside mainland China are returned unchanged.
    """
    lon = np.asarray(lon, dtype=float)
    lat = np.asarray(lat, dtype=float)
    dlat = _gcj_dlat(lon - 105.0, lat - 35.0)
    dlon = _gcj_dlon(lon - 105.0, lat - 35.0)
    rad_lat = np.radians(lat)
    magic = 1.0 - _GCJ_EE * np.sin(rad_lat) ** 2
    sqrt_magic = np.sqrt(magic)
    dlat = (dlat * 180.0) / ((_GCJ_A * (1.0 - _GCJ_EE)) / (magic * sqrt_magic) * np.pi)
    dlon = (dlon * 180.0) / (_GCJ_A / sqrt_magic * np.cos(rad_lat) * np.pi)
    outside = _out_of_china(lon, lat)
    return np.where(outside, lon, lon + dlon), np.where(outside, lat, lat + dlat)


# -------------------------
# BBox helpers
# -------------------------
def bbox_to_points(bbox: Sequence[float]) -> List[Tuple[float, float]]:
    minx, miny, maxx, maxy = bbox
    return [(minx, miny), (minx, maxy), (maxx, maxy), (maxx, miny)]


def points_to_bbox(points: Iterable[Sequence[float]]) -> BBox:
    pts = np.asarray(list(points), dtype=float).reshape(-1, 2)
    return (float(pts[:, 0].min()), float(pts[:, 1].min()), float(pts[:, 0].max()), float(pts[:, 1].max()))


def bbox_of_bbox_list(bboxes: Iterable[Sequence[float]]) -> BBox:
    arr = np.asarray(list(bboxes), dtype=float).reshape(-1, 4)
    return (float(arr[:, 0].min()), float(arr[:, 1].min()), float(arr[:, 2].max()), float(arr[:, 3].max()))


def forward_bbox(bbox: Sequence[float]) -> BBox:
    """Mercator bbox of the forward-projected corners of a lon/lat bbox."""
    pts = np.asarray(bbox_to_points(bbox), dtype=float)
    x, y = mercator_forward(pts[:, 0], pts[:, 1])
    return points_to_bbox(np.column_stack([x, y]))


def bbox_contains(outer: Sequence[float], inner: Sequence[float], eps: float = 1e-9) -> bool:
    return (
        outer[0] <= inner[0] + eps
        and outer[1] <= inner[1] + eps
        and outer[2] >= inner[2] - eps
        and outer[3] >= inner[3] - eps
    )


def bbox_is_degenerate(bbox: Sequence[float]) -> bool:
    minx, miny, maxx, maxy = bbox
    if not all(math.isfinite(v) for v in bbox):
        return True
    return maxx <= minx or maxy <= miny
