from __future__ import annotations

from typing import Optional, Sequence

import cv2
import numpy as np

from tilecommon.geo import TILE_SIZE
from tilecommon.types import Raster, TileCoord


DEBUG_COLOR = (255, 0, 0, 255)   # RGBA


def blank_tile(size: int = TILE_SIZE) -> Raster:
    """The designated empty result: fully transparent size x size."""
    return Raster.blank(size, size)


def fit_tile(raster: Raster, size: int) -> Raster:
    if raster.width == size and raster.height == size:
        return raster
    interp = cv2.INTER_AREA if raster.width > size else cv2.INTER_LINEAR
    return Raster(cv2.resize(raster.data, (size, size), interpolation=interp))


def merge_layers(rasters: Sequence[Raster]) -> Raster:
    """
    Source-over composite of layer rasters, first layer at the bottom.
    Layers are brought to the first layer's size.
    """
    if not rasters:
        raise ValueError("merge_layers needs at least one raster")
    base = rasters[0]
    if len(rasters) == 1:
        return base.copy()
    h, w = base.shape
    dst = base.data.astype(np.float32) / 255.0
    for layer in rasters[1:]:
        src = layer.data
        if layer.shape != (h, w):
            src = cv2.resize(src, (w, h), interpolation=cv2.INTER_LINEAR)
        src = src.astype(np.float32) / 255.0
        sa = src[..., 3:4]
        da = dst[..., 3:4]
        out_a = sa + da * (1.0 - sa)
        rgb = src[..., :3] * sa + dst[..., :3] * da * (1.0 - sa)
        rgb = np.divide(rgb, out_a, out=np.zeros_like(rgb), where=out_a > 0)
        dst = np.concatenate([rgb, out_a], axis=-1)
    return Raster(np.clip(dst * 255.0 + 0.5, 0, 255).astype(np.uint8))


class Compositor:
    """Lays fetched tile rasters out into one contiguous mosaic."""

    def __init__(self, tile_size: int = TILE_SIZE):
        self.tile_size = int(tile_size)

    def layout(
        self,
        tiles: Sequence[TileCoord],
        rasters: Sequence[Optional[Raster]],
        *,
        rows_from_top: bool = True,
        debug: bool = False,
    ) -> Raster:
        """
        Mosaic of (rows * tile_size) x (cols * tile_size).

        rasters[i] belongs to tiles[i]; None (failed fetch) leaves a transparent cell.
        With rows_from_top=False (geodetic, south-origin rows) the highest row is drawn at
        the top of the mosaic.
        """
        if len(tiles) != len(rasters):
            raise ValueError("tiles and rasters must have the same length")
        T = self.tile_size
        if not tiles:
            return blank_tile(T)
        mincol = min(t.col for t in tiles)
        maxcol = max(t.col for t in tiles)
        minrow = min(t.row for t in tiles)
        maxrow = max(t.row for t in tiles)
        mosaic = Raster.blank((maxcol - mincol + 1) * T, (maxrow - minrow + 1) * T)

        for tile, raster in zip(tiles, rasters):
            ox = (tile.col - mincol) * T
            oy = (tile.row - minrow) * T if rows_from_top else (maxrow - tile.row) * T
            if raster is not None:
                mosaic.paste(fit_tile(raster, T), ox, oy)
            if debug:
                self._debug_cell(mosaic, tile, ox, oy)
        return mosaic

    def _debug_cell(self, mosaic: Raster, tile: TileCoord, ox: int, oy: int) -> None:
        T = self.tile_size
        cv2.rectangle(mosaic.data, (ox, oy), (ox + T - 1, oy + T - 1), DEBUG_COLOR, 1)
        label = f"{tile.col},{tile.row},{tile.zoom}"
        cv2.putText(mosaic.data, label, (ox + 6, oy + 18), cv2.FONT_HERSHEY_SIMPLEX, 0.5, DEBUG_COLOR, 1, cv2.LINE_AA)
