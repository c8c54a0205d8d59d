from __future__ import annotations

"""
Source tile retrieval: URL templates, the HTTP transport, payload decoding and the
two LRU caches (decoded rasters, raw buffers) with grouped cancellation.

Usage:
    cache = FetchCache(RequestsTransport())
    raster = await cache.retrieve(url, task_id="map-1", timeout=5.0)
    cache.cancel_task("map-1")   # aborts every in-flight retrieval of that task
"""

import asyncio
import logging
from typing import Dict, List, Optional, Protocol, Sequence, Union

import cv2
import numpy as np
import requests

from tilecommon.geo import GEODETIC, WEB_MERCATOR, geodetic_grid_size
from tilecommon.types import Raster
from tilewarp.cancel import CancellationRegistry
from tilewarp.errors import (
    FetchNetworkError,
    FetchTimeoutError,
    ParameterValidationError,
    TileDecodeError,
)
from tilewarp.lru import LRUCache


log = logging.getLogger(__name__)

LRU_COUNT = 200

DEFAULT_HEADERS: Dict[str, str] = {
    "Accept": "image/avif,image/webp,image/png,image/*;q=0.8,*/*;q=0.5",
    "User-Agent": "tilewarp/0.3 (+https://github.com/tilewarp/tilewarp)",
}


# ----------------------------
# URL templates
# ----------------------------
def as_template_list(url_template: Union[str, Sequence[str], None]) -> List[str]:
    if not url_template:
        return []
    if isinstance(url_template, str):
        return [url_template]
    return [str(t) for t in url_template if t]


def validate_subdomains(template: str, subdomains: Optional[Sequence[str]]) -> bool:
    """A template with a {s} placeholder needs at least one subdomain."""
    if "{s}" not in template:
        return True
    return bool(subdomains)


def build_tile_url(
    template: str,
    x: int,
    y: int,
    z: int,
    subdomains: Optional[Sequence[str]] = None,
    projection: str = WEB_MERCATOR,
) -> str:
    """
    Fill {x} {y} {z} {-y} {s}.
    {-y} is the row counted from the opposite edge: TMS rows for an XYZ mercator grid,
    north-origin rows for the geodetic grid.
    """
    rows = geodetic_grid_size(z)[1] if projection == GEODETIC else 2 ** z
    url = (
        template.replace("{x}", str(x))
        .replace("{-y}", str(rows - 1 - y))
        .replace("{y}", str(y))
        .replace("{z}", str(z))
    )
    if "{s}" in url:
        if not subdomains:
            raise ParameterValidationError("url template uses {s} but no subdomains were given")
        url = url.replace("{s}", str(subdomains[(x + y) % len(subdomains)]))
    return url


# ----------------------------
# Decoding
# ----------------------------
def decode_raster(data: bytes, url: str = "") -> Raster:
    """PNG/JPEG/WebP bytes -> RGBA Raster. Gray, BGR, BGRA and 16-bit payloads are normalised."""
    arr = np.frombuffer(data or b"", dtype=np.uint8)
    if arr.size == 0:
        raise TileDecodeError("empty payload", url)
    try:
        img = cv2.imdecode(arr, cv2.IMREAD_UNCHANGED)
    except cv2.error as e:
        raise TileDecodeError(f"cannot decode image: {e}", url) from e
    if img is None:
        raise TileDecodeError("payload is not a decodable image", url)

    if img.dtype == np.uint16:
        img = (img >> 8).astype(np.uint8)
    elif img.dtype != np.uint8:
        img = np.clip(img, 0, 255).astype(np.uint8)

    if img.ndim == 2:
        rgba = cv2.cvtColor(img, cv2.COLOR_GRAY2RGBA)
    elif img.shape[2] == 3:
        rgba = cv2.cvtColor(img, cv2.COLOR_BGR2RGBA)
    elif img.shape[2] == 4:
        rgba = cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA)
    else:
        raise TileDecodeError(f"unsupported channel count {img.shape[2]}", url)
    return Raster(rgba)


# ----------------------------
# Transport
# ----------------------------
class Transport(Protocol):
    async def get(self, url: str, headers: Optional[Dict[str, str]] = None, timeout: Optional[float] = None) -> bytes:
        ...


class RequestsTransport:
    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 30.0):
        """
        Network collaborator backed by requests.

        Params:
            session: optional requests.Session for connection reuse
            timeout: socket timeout (s) used when the call does not give one
        """
        self.session = session or requests.Session()
        self.timeout = float(timeout)

    async def get(self, url: str, headers: Optional[Dict[str, str]] = None, timeout: Optional[float] = None) -> bytes:
        # Blocking I/O runs in a worker thread; awaiting it is the cancellation point.
        return await asyncio.to_thread(self._get, url, dict(headers or {}), timeout or self.timeout)

    def _get(self, url: str, headers: Dict[str, str], timeout: float) -> bytes:
        try:
            r = self.session.get(url, headers=headers, timeout=timeout)
        except requests.RequestException as e:
            raise FetchNetworkError(f"request failed: {e}", url) from e
        if r.status_code != 200 or not r.content:
            log.warning("Tile request failed: %s %s", r.status_code, url)
            raise FetchNetworkError(f"bad response {r.status_code}", url)
        return r.content


# ----------------------------
# Caches
# ----------------------------
def _release_raster(raster: Raster) -> None:
    raster.release()


class FetchCache:
    """
    Raster and buffer LRU caches in front of a transport, plus the cancellation groups
    of every retrieval in flight.

    Cached payloads are never handed out: rasters are copied on the way in and out.
    Buffers are immutable bytes, so the cached object itself is returned.
    """

    def __init__(
        self,
        transport: Optional[Transport] = None,
        *,
        raster_capacity: int = LRU_COUNT,
        buffer_capacity: int = LRU_COUNT,
        registry: Optional[CancellationRegistry] = None,
        default_headers: Optional[Dict[str, str]] = None,
    ):
        self.transport: Transport = transport or RequestsTransport()
        self.rasters: LRUCache[Raster] = LRUCache(raster_capacity, _release_raster)
        self.buffers: LRUCache[bytes] = LRUCache(buffer_capacity)
        self.registry = registry or CancellationRegistry()
        self.default_headers: Dict[str, str] = dict(DEFAULT_HEADERS if default_headers is None else default_headers)
        self.hits = 0
        self.misses = 0

    # -------- public API --------

    async def retrieve(
        self,
        url: str,
        *,
        task_id: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        disable_cache: bool = False,
    ) -> Raster:
        """Decoded raster for `url`; the caller owns the returned copy."""
        self._require_task(task_id)
        cached = self.rasters.get(url)
        if cached is not None:
            self.hits += 1
            return cached.copy()
        self.misses += 1
        data = await self._fetch(url, task_id, headers, timeout)
        raster = decode_raster(data, url)
        if not disable_cache:
            self.rasters.add(url, raster.copy())
        return raster

    async def retrieve_buffer(
        self,
        url: str,
        *,
        task_id: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        disable_cache: bool = False,
    ) -> bytes:
        """Raw payload for `url` (terrain encodings that are not images)."""
        self._require_task(task_id)
        cached = self.buffers.get(url)
        if cached is not None:
            self.hits += 1
            return cached
        self.misses += 1
        data = await self._fetch(url, task_id, headers, timeout)
        if not data:
            raise TileDecodeError("buffer is empty", url)
        if not disable_cache:
            self.buffers.add(url, bytes(data))
        return bytes(data)

    def cancel_task(self, task_id: str) -> int:
        return self.registry.cancel_task(task_id)

    def reset(self) -> None:
        """Dispose cached payloads and cancel everything in flight."""
        self.rasters.reset()
        self.buffers.reset()
        self.registry.reset()
        self.hits = 0
        self.misses = 0

    def stats(self) -> Dict[str, int]:
        return {
            "rasters": len(self.rasters),
            "buffers": len(self.buffers),
            "hits": self.hits,
            "misses": self.misses,
            "task_groups": self.registry.group_count,
        }

    # -------- internals --------

    @staticmethod
    def _require_task(task_id: str) -> None:
        if not task_id:
            raise ParameterValidationError("task_id is required")

    async def _fetch(
        self,
        url: str,
        task_id: str,
        headers: Optional[Dict[str, str]],
        timeout: Optional[float],
    ) -> bytes:
        loop = asyncio.get_running_loop()
        token = self.registry.register(task_id)
        timer = None
        if timeout and timeout > 0:
            timer = loop.call_later(timeout, token.cancel, FetchTimeoutError(f"no response within {timeout}s", url))
        merged = {**self.default_headers, **(headers or {})}
        future = asyncio.ensure_future(self.transport.get(url, headers=merged, timeout=timeout))
        token.bind(future)
        try:
            return await future
        except asyncio.CancelledError:
            if token.reason is None:
                # The caller itself was cancelled, not the token.
                raise
            reason = token.reason
            reason.url = url
            raise reason from None
        finally:
            if timer is not None:
                timer.cancel()
            self.registry.settle(token)
