from __future__ import annotations

"""
Terrain tiles: decode elevation encodings to height grids and colour them through a
height ramp.

Image encodings (terrarium, terrain-rgb, gray) are decoded here. Binary encodings
(quantized mesh, LERC, ...) are injected as `buffer_decoders`:
    decoder(payload: bytes, tile_size: int) -> np.ndarray (H, W) float heights, NaN = no data
"""

import json
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from tilecommon.geo import TILE_SIZE
from tilecommon.types import Raster
from tilewarp.compositor import merge_layers
from tilewarp.errors import ParameterValidationError
from tilewarp.fetch import as_template_list

BufferDecoder = Callable[[bytes, int], np.ndarray]

DEFAULT_RAMP: List[List[Any]] = [
    [-500, "#1d3f6e"],
    [0, "#3c7a3a"],
    [500, "#9bbf5a"],
    [1500, "#d8c27a"],
    [3000, "#a1703f"],
    [5000, "#ffffff"],
]


# ----------------------------
# Colour ramps
# ----------------------------
def _parse_color(color: Union[str, Sequence[float]]) -> Tuple[float, float, float, float]:
    if isinstance(color, str):
        s = color.strip().lstrip("#")
        if len(s) not in (6, 8):
            raise ParameterValidationError(f"bad colour {color!r}")
        vals = [int(s[i:i + 2], 16) for i in range(0, len(s), 2)]
        if len(vals) == 3:
            vals.append(255)
        return tuple(float(v) for v in vals)  # type: ignore[return-value]
    vals = [float(v) for v in color]
    if len(vals) == 3:
        vals.append(255.0)
    if len(vals) != 4:
        raise ParameterValidationError(f"bad colour {color!r}")
    return tuple(vals)  # type: ignore[return-value]


class ColorRamp:
    """Piecewise-linear height -> RGBA ramp. Heights outside the stops clamp to the end colours."""

    def __init__(self, stops: Sequence[Sequence[Any]]):
        if not stops or len(stops) < 2:
            raise ParameterValidationError("a colour ramp needs at least two stops")
        parsed = sorted(((float(h), _parse_color(c)) for h, c in stops), key=lambda s: s[0])
        self.heights = np.array([h for h, _ in parsed], dtype=float)
        self.colors = np.array([c for _, c in parsed], dtype=float)

    def get_color(self, height: float) -> Tuple[int, int, int, int]:
        r, g, b, a = (int(round(np.interp(height, self.heights, self.colors[:, i]))) for i in range(4))
        return (r, g, b, a)

    def colorize(self, heights: np.ndarray) -> Raster:
        """(H, W) heights -> RGBA raster; NaN heights become transparent."""
        h = np.asarray(heights, dtype=float)
        valid = np.isfinite(h)
        filled = np.where(valid, h, self.heights[0])
        out = np.zeros(h.shape + (4,), dtype=np.uint8)
        for i in range(4):
            out[..., i] = np.clip(np.interp(filled, self.heights, self.colors[:, i]) + 0.5, 0, 255).astype(np.uint8)
        out[~valid] = 0
        return Raster(out)


class ColorRampCache:
    """
    Ramps keyed by their JSON stop list. Entries live until `reset()`; create one cache per
    renderer (or per test) rather than sharing a global.
    """

    def __init__(self) -> None:
        self._ramps: Dict[str, ColorRamp] = {}

    def __len__(self) -> int:
        return len(self._ramps)

    def get(self, stops: Sequence[Sequence[Any]]) -> ColorRamp:
        key = json.dumps(stops, sort_keys=True)
        ramp = self._ramps.get(key)
        if ramp is None:
            ramp = ColorRamp(stops)
            self._ramps[key] = ramp
        return ramp

    def reset(self) -> None:
        self._ramps.clear()


# ----------------------------
# Image height encodings
# ----------------------------
def _channels(raster: Raster) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    d = raster.data.astype(np.float64)
    return d[..., 0], d[..., 1], d[..., 2], raster.data[..., 3]


def decode_terrarium(raster: Raster) -> np.ndarray:
    """Mapzen terrarium: (R * 256 + G + B / 256) - 32768 metres."""
    r, g, b, a = _channels(raster)
    h = r * 256.0 + g + b / 256.0 - 32768.0
    return np.where(a > 0, h, np.nan)


def decode_terrain_rgb(raster: Raster) -> np.ndarray:
    """Mapbox terrain-rgb: -10000 + (R * 65536 + G * 256 + B) * 0.1 metres."""
    r, g, b, a = _channels(raster)
    h = -10000.0 + (r * 65536.0 + g * 256.0 + b) * 0.1
    return np.where(a > 0, h, np.nan)


def decode_gray(raster: Raster, min_height: float = 0.0, max_height: float = 8848.0) -> np.ndarray:
    """Gray heightmap: red channel 0..255 scaled onto [min_height, max_height]."""
    r, _, _, a = _channels(raster)
    h = min_height + (r / 255.0) * (max_height - min_height)
    return np.where(a > 0, h, np.nan)


IMAGE_ENCODINGS = ("terrarium", "mapzen", "terrain-rgb", "mapbox", "gray", "qgis-gray")


def decode_image_heights(raster: Raster, encoding: str, min_height: float = 0.0, max_height: float = 8848.0) -> np.ndarray:
    if encoding in ("terrarium", "mapzen"):
        return decode_terrarium(raster)
    if encoding in ("terrain-rgb", "mapbox"):
        return decode_terrain_rgb(raster)
    if encoding in ("gray", "qgis-gray"):
        return decode_gray(raster, min_height, max_height)
    raise ParameterValidationError(f"unsupported terrain encoding: {encoding}")


# ----------------------------
# Renderer
# ----------------------------
class TerrainRenderer:
    def __init__(
        self,
        fetch_cache,
        ramp_cache: Optional[ColorRampCache] = None,
        buffer_decoders: Optional[Mapping[str, BufferDecoder]] = None,
        tile_size: int = TILE_SIZE,
    ):
        """
        Params:
            fetch_cache: FetchCache shared with the reprojector
            ramp_cache: colour ramp cache (a private one is created when omitted)
            buffer_decoders: encoding name -> decoder for binary terrain payloads
            tile_size: tile size handed to buffer decoders
        """
        self.fetch_cache = fetch_cache
        self.ramp_cache = ramp_cache or ColorRampCache()
        self.buffer_decoders: Dict[str, BufferDecoder] = dict(buffer_decoders or {})
        self.tile_size = int(tile_size)

    @property
    def encodings(self) -> List[str]:
        return list(IMAGE_ENCODINGS) + sorted(self.buffer_decoders)

    async def heights(
        self,
        url: Union[str, Sequence[str]],
        encoding: str,
        *,
        task_id: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        disable_cache: bool = False,
        min_height: float = 0.0,
        max_height: float = 8848.0,
    ) -> np.ndarray:
        urls = as_template_list(url)
        if not urls:
            raise ParameterValidationError("terrain url is required")
        opts = dict(task_id=task_id, headers=headers, timeout=timeout, disable_cache=disable_cache)

        if encoding in self.buffer_decoders:
            # Binary encodings carry one tile per payload.
            payload = await self.fetch_cache.retrieve_buffer(urls[0], **opts)
            return self.buffer_decoders[encoding](payload, self.tile_size)
        if encoding not in IMAGE_ENCODINGS:
            raise ParameterValidationError(f"unsupported terrain encoding: {encoding}")

        layers = []
        for u in urls:
            layers.append(await self.fetch_cache.retrieve(u, **opts))
        raster = merge_layers(layers) if len(layers) > 1 else layers[0]
        heights = decode_image_heights(raster, encoding, min_height, max_height)
        raster.release()
        for layer in layers:
            layer.release()
        return heights

    async def render(
        self,
        url: Union[str, Sequence[str]],
        encoding: str,
        *,
        task_id: str,
        ramp: Optional[Sequence[Sequence[Any]]] = None,
        **options: Any,
    ) -> Raster:
        """Fetch, decode and colour one terrain tile."""
        heights = await self.heights(url, encoding, task_id=task_id, **options)
        return self.ramp_cache.get(ramp or DEFAULT_RAMP).colorize(heights)
