from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import cv2

from tilecommon.geo import TILE_SIZE
from tilecommon.types import Raster, TileCoord
from tilecommon.utils import js_round
from tilewarp.errors import ParameterValidationError


@dataclass(frozen=True)
class OverzoomWindow:
    """
    Where a requested tile sits inside its ancestor when the source has no data at the
    requested zoom.

    ancestor: tile at the request's zoom minus `levels`, rendered through the normal pipeline.
    dx, dy, w, h: the requested tile's window inside the ancestor raster, as fractions.
    """
    ancestor: TileCoord
    levels: int
    dx: float
    dy: float
    w: float
    h: float

    @classmethod
    def resolve(
        cls,
        x: int,
        y: int,
        z: int,
        source_zoom: int,
        max_available_zoom: Optional[int],
        rows_from_top: bool = True,
    ) -> Optional["OverzoomWindow"]:
        """
        None when source_zoom does not exceed max_available_zoom.
        rows_from_top describes the requested tile's grid; south-origin rows mirror dy.
        """
        if max_available_zoom is None or source_zoom <= max_available_zoom:
            return None
        k = int(source_zoom - max_available_zoom)
        if k > z:
            raise ParameterValidationError(
                f"zoom {z} cannot be over-zoomed {k} levels (max_available_zoom={max_available_zoom})"
            )
        n = 2 ** k
        ax, ay = x >> k, y >> k
        start_x, start_y = ax << k, ay << k
        dx = (x - start_x) / n
        if rows_from_top:
            dy = (y - start_y) / n
        else:
            dy = (start_y + n - 1 - y) / n
        return cls(ancestor=TileCoord(ax, ay, z - k), levels=k, dx=dx, dy=dy, w=1.0 / n, h=1.0 / n)

    def slice(self, raster: Raster, tile_size: int = TILE_SIZE) -> Raster:
        """Crop the window out of the ancestor raster and upscale it to tile_size."""
        W, H = raster.width, raster.height
        x0 = int(js_round(self.dx * W))
        y0 = int(js_round(self.dy * H))
        cw = max(1, int(js_round(self.w * W)))
        ch = max(1, int(js_round(self.h * H)))
        window = raster.crop(x0, y0, cw, ch)
        out = cv2.resize(window.data, (tile_size, tile_size), interpolation=cv2.INTER_LINEAR)
        window.release()
        return Raster(out)
