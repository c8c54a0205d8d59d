from __future__ import annotations

"""
Two-pass resampler.

Pass 1 projects every pixel of the (cropped) source mosaic into the target grid's units.
Pass 2 rasterises those samples column by column: each sample is stretched vertically
between its projected top-left corner and the point one source pixel below it. This is
an approximation of a true 2-D warp that is exact in x for both grid pairs (longitude is
linear in both projections) and only stretches in y.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from tilecommon.geo import GEODETIC, TILE_SIZE, mercator_forward, mercator_inverse
from tilecommon.types import BBox, Raster
from tilecommon.utils import js_round
from tilewarp.grid import TilePlan


log = logging.getLogger(__name__)

MAX_CANVAS_PIXELS = 4096 * 4096
DEBUG_FRAME_COLOR = (255, 0, 0, 255)   # RGBA

_NAN_BBOX: BBox = (math.nan, math.nan, math.nan, math.nan)


@dataclass
class PixelSamples:
    """
    Pass-1 output in struct-of-arrays form.

    top/bottom: (N, 2) projected top-left corner of each source pixel and the point one
    source pixel below it. rgba: (N, 4) uint8. extent: min/max of the top points.
    """
    top: np.ndarray
    bottom: np.ndarray
    rgba: np.ndarray
    extent: BBox

    def __len__(self) -> int:
        return int(self.top.shape[0])

    @classmethod
    def empty(cls) -> "PixelSamples":
        return cls(
            top=np.empty((0, 2), dtype=float),
            bottom=np.empty((0, 2), dtype=float),
            rgba=np.empty((0, 4), dtype=np.uint8),
            extent=_NAN_BBOX,
        )


class Resampler:
    def __init__(self, tile_size: int = TILE_SIZE, max_canvas_pixels: int = MAX_CANVAS_PIXELS):
        self.tile_size = int(tile_size)
        self.max_canvas_pixels = int(max_canvas_pixels)

    # ----------------------------
    # Pass 1
    # ----------------------------
    def project_pixels(self, mosaic: Raster, mosaic_bbox: BBox, footprint: BBox, source_projection: str) -> PixelSamples:
        """
        Crop the mosaic to the footprint plus one source pixel per side and project every
        pixel of the crop. Source geodetic -> forward (to metres); source mercator ->
        inverse (to lon/lat).
        """
        h, w = mosaic.shape
        if w == 0 or h == 0:
            return PixelSamples.empty()
        minx, miny, maxx, maxy = mosaic_bbox
        ax = (maxx - minx) / w
        ay = (maxy - miny) / h
        fminx, fminy, fmaxx, fmaxy = footprint

        x1 = math.floor((fminx - ax - minx) / ax)
        x2 = math.ceil((fmaxx + ax - minx) / ax)
        y1 = math.floor((maxy - (fmaxy + ay)) / ay)
        y2 = math.ceil((maxy - (fminy - ay)) / ay)
        cw, ch = x2 - x1, y2 - y1
        if cw <= 0 or ch <= 0:
            return PixelSamples.empty()

        crop = mosaic.crop(x1, y1, cw, ch)
        xs = minx + (x1 + np.arange(cw, dtype=float)) * ax
        ys = maxy - (y1 + np.arange(ch, dtype=float)) * ay
        X, Y = np.meshgrid(xs, ys)
        X = X.ravel()
        Y = Y.ravel()

        project = mercator_forward if source_projection == GEODETIC else mercator_inverse
        tx, ty = project(X, Y)
        bx, by = project(X, Y - ay)
        top = np.column_stack([tx, ty])
        bottom = np.column_stack([bx, by])
        rgba = crop.data.reshape(-1, 4).copy()
        crop.release()

        finite = np.isfinite(top).all(axis=1) & np.isfinite(bottom).all(axis=1)
        if not finite.all():
            top, bottom, rgba = top[finite], bottom[finite], rgba[finite]
        if top.shape[0] == 0:
            return PixelSamples.empty()

        extent = (
            float(top[:, 0].min()),
            float(top[:, 1].min()),
            float(top[:, 0].max()),
            float(top[:, 1].max()),
        )
        return PixelSamples(top=top, bottom=bottom, rgba=rgba, extent=extent)

    # ----------------------------
    # Pass 2
    # ----------------------------
    def warp(self, samples: PixelSamples, frame: BBox) -> Optional[Raster]:
        """
        Rasterise samples onto a canvas covering samples.extent at the frame's resolution
        (frame = one tile), then cut the tile_size window at the frame's position.
        Returns None when the canvas would be degenerate.
        """
        T = self.tile_size
        if len(samples) == 0:
            return None
        xmin, ymin, xmax, ymax = frame
        ax = (xmax - xmin) / T
        ay = (ymax - ymin) / T
        minx, miny, maxx, maxy = samples.extent
        with np.errstate(divide="ignore", invalid="ignore"):
            fw = float((maxx - minx) / ax) if ax else math.nan
            fh = float((maxy - miny) / ay) if ay else math.nan
        if not (math.isfinite(fw) and math.isfinite(fh)) or fw <= 0 or fh <= 0:
            log.debug("Degenerate warp canvas", extra={"extra": {"width": fw, "height": fh}})
            return None
        # A sample on the far edge of the extent lands on index ceil(fw), so that column
        # (and row) must exist for the crop window to stay on the canvas.
        width, height = math.ceil(fw) + 1, math.ceil(fh) + 1
        if width * height > self.max_canvas_pixels:
            log.debug("Warp canvas too large", extra={"extra": {"width": width, "height": height}})
            return None

        # Fully transparent samples (guard padding, failed tiles) would only erase pixels
        # on the empty canvas; they still count for the extent above.
        visible = samples.rgba[:, 3] > 0
        top = samples.top[visible]
        bottom = samples.bottom[visible]
        rgba = samples.rgba[visible]

        cols = np.minimum(js_round((top[:, 0] - minx) / ax), width - 1).astype(np.int64)
        row0 = np.minimum(js_round((maxy - top[:, 1]) / ay), height - 1).astype(np.int64)
        row1 = np.minimum(js_round((maxy - bottom[:, 1]) / ay), height - 1).astype(np.int64)
        cols = np.maximum(cols, 0)
        row0 = np.maximum(row0, 0)
        row1 = np.maximum(row1, row0)

        # Expand every sample into its vertical span, in sample order.
        spans = row1 - row0 + 1
        owner = np.repeat(np.arange(rgba.shape[0]), spans)
        starts = np.cumsum(spans) - spans
        rows = row0[owner] + (np.arange(owner.size) - starts[owner])
        flat = rows * width + cols[owner]

        # Later samples win: keep the last write to each canvas pixel.
        _, last = np.unique(flat[::-1], return_index=True)
        keep = owner.size - 1 - last

        canvas = np.zeros((height * width, 4), dtype=np.uint8)
        canvas[flat[keep]] = rgba[owner[keep]]
        warped = Raster(canvas.reshape(height, width, 4))

        px = int(js_round((xmin - minx) / ax))
        py = int(js_round((maxy - ymax) / ay))
        tile = warped.crop(px, py, T, T)
        warped.release()
        return tile

    # ----------------------------
    # Post-processing
    # ----------------------------
    def repair_seams(self, tile: Raster) -> Raster:
        """Fill single blank columns/rows left by the per-column stretch. Works in place."""
        if tile.width < 2 or tile.height < 2:
            return tile
        data = tile.data
        if tile.column_is_blank(0):
            data[:, 0] = data[:, 1]
        if tile.column_is_blank(tile.width - 1):
            data[:, -1] = data[:, -2]
        if tile.row_is_blank(tile.height - 1):
            data[-1, :] = data[-2, :]

        blank = ~data[..., 3].any(axis=0)
        for col in np.flatnonzero(blank[1:-1]) + 1:
            if not blank[col + 1]:
                data[:, col] = data[:, col + 1]
            elif not blank[col - 1]:
                data[:, col] = data[:, col - 1]
        return tile

    def draw_debug_frame(self, tile: Raster) -> Raster:
        cv2.rectangle(tile.data, (0, 0), (tile.width - 1, tile.height - 1), DEBUG_FRAME_COLOR, 1)
        return tile

    def resample(self, mosaic: Raster, plan: TilePlan, *, debug: bool = False) -> Optional[Raster]:
        """Both passes plus seam repair for a planned tile. The mosaic is released."""
        samples = self.project_pixels(mosaic, plan.source_tiles_bbox, plan.source_footprint, plan.source_projection)
        mosaic.release()
        tile = self.warp(samples, plan.output_frame)
        if tile is None:
            return None
        self.repair_seams(tile)
        if debug:
            self.draw_debug_frame(tile)
        return tile
