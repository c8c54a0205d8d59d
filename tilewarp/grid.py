from __future__ import annotations

"""
Grid planning: which source tiles cover a requested tile of the other grid.

Two directions are supported, named after the *source* grid:
  - EPSG:4326 source, requested tile is an XYZ web-mercator tile
  - EPSG:3857 source, requested tile is a geodetic tile (rows counted from the south)
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from tilecommon.geo import (
    GEODETIC,
    MAX_EXTENT_M,
    ORIGIN_4326,
    PROJECTIONS,
    TILE_SIZE,
    WEB_MERCATOR,
    bbox_is_degenerate,
    bbox_of_bbox_list,
    bbox_to_points,
    forward_bbox,
    gcj02_from_wgs84,
    geodetic_grid_size,
    mercator_inverse,
    mercator_tile_bbox,
    mercator_tile_bbox_m,
    mercator_tile_size_m,
    points_to_bbox,
    res_4326,
    tile_bbox_4326,
)
from tilecommon.types import BBox, TileCoord
from tilewarp.errors import ParameterValidationError


@dataclass
class TilePlan:
    """
    Coverage of one requested tile.

    target_bbox is always lon/lat, reprojected_bbox always mercator metres; both already
    carry the national offset when it is enabled. source_tiles_bbox is the extent of the
    mosaic built from `tiles`, in the source grid's units.
    """
    tiles: List[TileCoord]
    source_tiles_bbox: BBox
    target_bbox: BBox
    reprojected_bbox: BBox
    x: int
    y: int
    z: int
    source_projection: str

    @property
    def source_footprint(self) -> BBox:
        """Requested tile expressed in the source grid's coordinate space."""
        return self.target_bbox if self.source_projection == GEODETIC else self.reprojected_bbox

    @property
    def output_frame(self) -> BBox:
        """The requested tile's own one-tile reference frame (target grid units)."""
        return self.reprojected_bbox if self.source_projection == GEODETIC else self.target_bbox

    @property
    def rows_from_top(self) -> bool:
        """Source rows are XYZ (top origin) for mercator, south origin for geodetic."""
        return self.source_projection == WEB_MERCATOR


def other_projection(projection: str) -> str:
    return WEB_MERCATOR if projection == GEODETIC else GEODETIC


def apply_national_offset(bbox: BBox, target_projection: str, enabled: bool) -> BBox:
    """
    Shift a bbox into GCJ-02. `target_projection` is the unit of `bbox`.

    Corners are moved individually and the result is their bounding box. Mercator boxes go
    through lon/lat and back; the reconversion uses the (minx, miny, maxx, maxy) corners.
    """
    if not enabled:
        return bbox
    pts = np.asarray(bbox_to_points(bbox), dtype=float)
    lon, lat = pts[:, 0], pts[:, 1]
    if target_projection == WEB_MERCATOR:
        lon, lat = mercator_inverse(lon, lat)
    glon, glat = gcj02_from_wgs84(lon, lat)
    minx, miny, maxx, maxy = points_to_bbox(np.column_stack([glon, glat]))
    if target_projection == GEODETIC:
        return (minx, miny, maxx, maxy)
    return forward_bbox((minx, miny, maxx, maxy))


def _index_range(lo: float, hi: float, size: float, limit: int) -> Tuple[int, int]:
    """
    Tile indices touched by [lo, hi] measured from the grid origin.
    Half-open on the max edge: a box ending exactly on a tile boundary does not pull in
    the next tile. Clipped to [0, limit).
    """
    start = math.floor(lo / size)
    end = math.ceil(hi / size) - 1
    return max(start, 0), min(end, limit - 1)


def _finite(bbox: BBox) -> bool:
    return all(math.isfinite(v) for v in bbox)


def plan_geodetic_source(x: int, y: int, z: int, zoom_offset: int = 0, national_offset: bool = False) -> Optional[TilePlan]:
    """Geodetic tiles covering the XYZ mercator tile (x, y, z)."""
    src_z = z + zoom_offset
    target_bbox = apply_national_offset(mercator_tile_bbox(x, y, z), GEODETIC, national_offset)
    if bbox_is_degenerate(target_bbox):
        return None
    minx, miny, maxx, maxy = target_bbox
    size = res_4326(src_z) * TILE_SIZE
    n_cols, n_rows = geodetic_grid_size(src_z)
    ox, oy = ORIGIN_4326
    mincol, maxcol = _index_range(minx - ox, maxx - ox, size, n_cols)
    minrow, maxrow = _index_range(miny + oy, maxy + oy, size, n_rows)
    if maxcol < mincol or maxrow < minrow:
        return None

    tiles = [TileCoord(col, row, src_z) for row in range(minrow, maxrow + 1) for col in range(mincol, maxcol + 1)]
    source_tiles_bbox = (
        ox + mincol * size,
        -oy + minrow * size,
        ox + (maxcol + 1) * size,
        -oy + (maxrow + 1) * size,
    )
    return TilePlan(
        tiles=tiles,
        source_tiles_bbox=source_tiles_bbox,
        target_bbox=target_bbox,
        reprojected_bbox=forward_bbox(target_bbox),
        x=x,
        y=y,
        z=z,
        source_projection=GEODETIC,
    )


def plan_mercator_source(x: int, y: int, z: int, zoom_offset: int = 0, national_offset: bool = False) -> Optional[TilePlan]:
    """XYZ mercator tiles covering the geodetic tile (x, y, z)."""
    src_z = z + zoom_offset
    tile_bbox = tile_bbox_4326(x, y, z)
    target_bbox = apply_national_offset(tile_bbox, GEODETIC, national_offset)
    mbbox = apply_national_offset(forward_bbox(tile_bbox), WEB_MERCATOR, national_offset)
    if not _finite(target_bbox) or bbox_is_degenerate(mbbox):
        return None
    minx, miny, maxx, maxy = mbbox
    size = mercator_tile_size_m(src_z)
    n = 2 ** src_z
    mincol, maxcol = _index_range(minx + MAX_EXTENT_M, maxx + MAX_EXTENT_M, size, n)
    minrow, maxrow = _index_range(MAX_EXTENT_M - maxy, MAX_EXTENT_M - miny, size, n)
    if maxcol < mincol or maxrow < minrow:
        return None

    tiles = [TileCoord(col, row, src_z) for row in range(minrow, maxrow + 1) for col in range(mincol, maxcol + 1)]
    source_tiles_bbox = bbox_of_bbox_list(mercator_tile_bbox_m(t.col, t.row, t.zoom) for t in tiles)
    return TilePlan(
        tiles=tiles,
        source_tiles_bbox=source_tiles_bbox,
        target_bbox=target_bbox,
        reprojected_bbox=mbbox,
        x=x,
        y=y,
        z=z,
        source_projection=WEB_MERCATOR,
    )


def is_valid_tile(projection: str, tile: TileCoord) -> bool:
    """True when the tile exists in the grid of `projection`."""
    col, row, zoom = tile
    if zoom < 0:
        return False
    if projection == GEODETIC:
        n_cols, n_rows = geodetic_grid_size(zoom)
    else:
        n_cols = n_rows = 2 ** zoom
    return 0 <= col < n_cols and 0 <= row < n_rows


class GridPlanner:
    """Stateless facade over the planning functions, injected into the orchestrator."""

    def plan(
        self,
        source_projection: str,
        x: int,
        y: int,
        z: int,
        zoom_offset: int = 0,
        national_offset: bool = False,
    ) -> Optional[TilePlan]:
        """
        Returns None for "no coverage": a degenerate footprint (e.g. a geodetic tile beyond
        the mercator latitude limit), an inverted index range, or a footprint outside the
        source grid.
        """
        if source_projection not in PROJECTIONS:
            raise ParameterValidationError(f"unsupported projection: {source_projection}")
        zoom_offset = int(zoom_offset or 0)
        if z + zoom_offset < 0:
            raise ParameterValidationError(f"zoom {z} with zoom_offset {zoom_offset} is below zero")
        if source_projection == GEODETIC:
            return plan_geodetic_source(x, y, z, zoom_offset, national_offset)
        return plan_mercator_source(x, y, z, zoom_offset, national_offset)

    def is_valid_tile(self, projection: str, tile: TileCoord) -> bool:
        return is_valid_tile(projection, tile)

    def target_tile_bbox(self, target_projection: str, x: int, y: int, z: int) -> BBox:
        """Un-offset bbox of the requested tile in its own grid units (for mask clipping)."""
        if target_projection == GEODETIC:
            return tile_bbox_4326(x, y, z)
        return mercator_tile_bbox_m(x, y, z)
