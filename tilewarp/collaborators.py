from __future__ import annotations

"""
Interfaces of the collaborators the pipeline hands work to, plus the default encoder.
"""

from typing import Protocol

import cv2

from tilecommon.types import BBox, Raster
from tilewarp.errors import OutputEncodingError


class OutputEncoder(Protocol):
    media_type: str

    def encode(self, raster: Raster) -> bytes:
        ...


class MaskClipper(Protocol):
    def __call__(self, raster: Raster, tile_bbox: BBox, projection: str, tile_size: int, mask_id: str) -> Raster:
        ...


class PngEncoder:
    """RGBA raster -> PNG bytes (OpenCV)."""

    media_type = "image/png"

    def __init__(self, compression: int = 3):
        self.compression = int(compression)

    def encode(self, raster: Raster) -> bytes:
        if raster.width == 0 or raster.height == 0:
            raise OutputEncodingError("cannot encode an empty raster")
        bgra = cv2.cvtColor(raster.data, cv2.COLOR_RGBA2BGRA)
        try:
            ok, buf = cv2.imencode(".png", bgra, [cv2.IMWRITE_PNG_COMPRESSION, self.compression])
        except cv2.error as e:
            raise OutputEncodingError(f"png encoding failed: {e}") from e
        if not ok:
            raise OutputEncodingError("png encoding failed")
        return buf.tobytes()
