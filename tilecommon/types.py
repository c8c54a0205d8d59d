from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple, Tuple
import numpy as np


BBox = Tuple[float, float, float, float]   # (minx, miny, maxx, maxy)
RGBA = Tuple[int, int, int, int]


class TileCoord(NamedTuple):
    """Tile address. col/row may be out of range after offset arithmetic; validate before use."""
    col: int
    row: int
    zoom: int


@dataclass(slots=True)
class Raster:
    """
    A 2-D RGBA raster.

    Attributes:
        data: np.ndarray of shape (H, W, 4), dtype uint8, row-major, RGBA order.
              Alpha 0 means "no data".
    """
    data: np.ndarray

    def __post_init__(self) -> None:
        if not isinstance(self.data, np.ndarray):
            raise TypeError("data must be a numpy ndarray")
        if self.data.ndim != 3 or self.data.shape[2] != 4:
            raise ValueError("data must be (H, W, 4) RGBA")
        if self.data.dtype != np.uint8:
            self.data = np.clip(self.data, 0, 255).astype(np.uint8)

    @classmethod
    def blank(cls, width: int, height: int) -> "Raster":
        """Fully transparent raster."""
        return cls(np.zeros((int(height), int(width), 4), dtype=np.uint8))

    @classmethod
    def filled(cls, width: int, height: int, rgba: RGBA) -> "Raster":
        data = np.empty((int(height), int(width), 4), dtype=np.uint8)
        data[...] = np.asarray(rgba, dtype=np.uint8)
        return cls(data)

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.height, self.width)

    def get_pixel(self, x: int, y: int) -> RGBA:
        r, g, b, a = self.data[y, x]
        return (int(r), int(g), int(b), int(a))

    def set_pixel(self, x: int, y: int, rgba: RGBA) -> None:
        self.data[y, x] = rgba

    def copy(self) -> "Raster":
        return Raster(self.data.copy())

    def crop(self, x: int, y: int, width: int, height: int) -> "Raster":
        """
        Copy the (x, y, width, height) window. Parts of the window outside this raster
        come back transparent (like drawing an image onto a cleared canvas).
        """
        out = np.zeros((int(height), int(width), 4), dtype=np.uint8)
        sx0, sy0 = max(0, x), max(0, y)
        sx1, sy1 = min(self.width, x + width), min(self.height, y + height)
        if sx1 > sx0 and sy1 > sy0:
            out[sy0 - y: sy1 - y, sx0 - x: sx1 - x] = self.data[sy0:sy1, sx0:sx1]
        return Raster(out)

    def paste(self, other: "Raster", x: int, y: int) -> None:
        """Overwrite the window at (x, y) with `other`, clipped to this raster."""
        dx0, dy0 = max(0, x), max(0, y)
        dx1, dy1 = min(self.width, x + other.width), min(self.height, y + other.height)
        if dx1 > dx0 and dy1 > dy0:
            self.data[dy0:dy1, dx0:dx1] = other.data[dy0 - y: dy1 - y, dx0 - x: dx1 - x]

    def column_is_blank(self, col: int) -> bool:
        return not bool(self.data[:, col, 3].any())

    def row_is_blank(self, row: int) -> bool:
        return not bool(self.data[row, :, 3].any())

    def is_blank(self) -> bool:
        return not bool(self.data[..., 3].any())

    def release(self) -> None:
        """Drop the pixel buffer; the raster must not be used afterwards."""
        self.data = np.zeros((0, 0, 4), dtype=np.uint8)
