from __future__ import annotations

"""
Per-request sequencing:

    validate -> overzoom resolve -> plan -> fetch tiles one by one -> layout
             -> resample (pass 1, pass 2, seam repair) -> overzoom slice -> mask -> encode

Structural dead ends (no coverage, degenerate warp) resolve to the blank tile. Single
tile failures become transparent cells. Validation errors, cancellation/timeouts and
encoder failures reach the caller.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from tilecommon.geo import TILE_SIZE, WEB_MERCATOR
from tilecommon.types import Raster, TileCoord
from tilecommon.utils import RunningStats
from tilewarp.collaborators import MaskClipper, OutputEncoder, PngEncoder
from tilewarp.compositor import Compositor, blank_tile, merge_layers
from tilewarp.errors import FetchNetworkError, OutputEncodingError, TileDecodeError
from tilewarp.fetch import LRU_COUNT, FetchCache, RequestsTransport, Transport, build_tile_url
from tilewarp.grid import GridPlanner, TilePlan
from tilewarp.overzoom import OverzoomWindow
from tilewarp.request import ReprojectRequest
from tilewarp.resampler import MAX_CANVAS_PIXELS, Resampler


log = logging.getLogger(__name__)


class TileReprojector:
    def __init__(
        self,
        fetch_cache: FetchCache,
        planner: Optional[GridPlanner] = None,
        compositor: Optional[Compositor] = None,
        resampler: Optional[Resampler] = None,
        encoder: Optional[OutputEncoder] = None,
        mask_clipper: Optional[MaskClipper] = None,
    ):
        self.fetch_cache = fetch_cache
        self.planner = planner or GridPlanner()
        self.compositor = compositor or Compositor()
        self.resampler = resampler or Resampler(tile_size=self.compositor.tile_size)
        self.encoder: OutputEncoder = encoder or PngEncoder()
        self.mask_clipper = mask_clipper
        self.timings_ms = RunningStats()
        self.counters: Dict[str, int] = {"requests": 0, "blank": 0, "tile_failures": 0, "overzoom": 0}

    @classmethod
    def from_config(
        cls,
        config: Dict[str, Any],
        transport: Optional[Transport] = None,
        fetch_cache: Optional[FetchCache] = None,
        **kwargs: Any,
    ) -> "TileReprojector":
        """Wire the default components from a loaded config (see tilewarp.config)."""
        cache_cfg = config.get("cache", {})
        fetch_cfg = config.get("fetch", {})
        rp_cfg = config.get("reproject", {})
        if fetch_cache is None:
            fetch_cache = FetchCache(
                transport or RequestsTransport(timeout=float(fetch_cfg.get("request_timeout_s", 30.0))),
                raster_capacity=int(cache_cfg.get("raster_capacity", LRU_COUNT)),
                buffer_capacity=int(cache_cfg.get("buffer_capacity", LRU_COUNT)),
                default_headers=fetch_cfg.get("headers"),
            )
        tile_size = int(rp_cfg.get("tile_size", TILE_SIZE))
        return cls(
            fetch_cache,
            compositor=Compositor(tile_size),
            resampler=Resampler(tile_size, int(rp_cfg.get("max_canvas_pixels", MAX_CANVAS_PIXELS))),
            **kwargs,
        )

    @property
    def tile_size(self) -> int:
        return self.resampler.tile_size

    # -------- public API --------

    async def reproject(self, request: ReprojectRequest) -> Raster:
        """The requested tile as an RGBA raster (blank when nothing covers it)."""
        request.validate()
        self.counters["requests"] += 1
        t0 = time.perf_counter()

        window = OverzoomWindow.resolve(
            request.x,
            request.y,
            request.z,
            request.source_zoom,
            request.max_available_zoom,
            rows_from_top=request.target_projection == WEB_MERCATOR,
        )
        if window is None:
            x, y, z = request.x, request.y, request.z
        else:
            self.counters["overzoom"] += 1
            x, y, z = window.ancestor

        plan = self.planner.plan(request.projection, x, y, z, request.zoom_offset, request.national_offset)
        if plan is None:
            log.debug("No source coverage", extra={"extra": {"task_id": request.task_id, "tile": [x, y, z]}})
            return self._blank()
        log.debug(
            "Planned tile",
            extra={"extra": {"task_id": request.task_id, "tile": [x, y, z], "source_tiles": len(plan.tiles)}},
        )

        rasters = await self._fetch_tiles(plan, request)
        mosaic = self.compositor.layout(plan.tiles, rasters, rows_from_top=plan.rows_from_top, debug=request.debug)
        for r in rasters:
            if r is not None:
                r.release()

        tile = self.resampler.resample(mosaic, plan, debug=request.debug)
        if tile is None:
            return self._blank()

        if window is not None:
            sliced = window.slice(tile, self.tile_size)
            tile.release()
            tile = sliced

        if request.mask_id and self.mask_clipper is not None:
            bbox = self.planner.target_tile_bbox(request.target_projection, request.x, request.y, request.z)
            tile = self.mask_clipper(tile, bbox, request.target_projection, self.tile_size, request.mask_id)

        self.timings_ms.add((time.perf_counter() - t0) * 1000.0)
        return tile

    async def render(self, request: ReprojectRequest) -> bytes:
        """`reproject` followed by the output encoder."""
        tile = await self.reproject(request)
        try:
            return self.encoder.encode(tile)
        except OutputEncodingError:
            raise
        except Exception as e:
            raise OutputEncodingError(f"output encoding failed: {e}") from e
        finally:
            tile.release()

    def cancel_task(self, task_id: str) -> int:
        return self.fetch_cache.cancel_task(task_id)

    def stats(self) -> Dict[str, Any]:
        return {**self.counters, "timings_ms": self.timings_ms.to_dict(), "cache": self.fetch_cache.stats()}

    # -------- internals --------

    def _blank(self) -> Raster:
        self.counters["blank"] += 1
        return blank_tile(self.tile_size)

    async def _fetch_tiles(self, plan: TilePlan, request: ReprojectRequest) -> List[Optional[Raster]]:
        """Fetch the planned tiles strictly one at a time, in plan order."""
        rasters: List[Optional[Raster]] = []
        i = 0
        try:
            while i < len(plan.tiles):
                rasters.append(await self._fetch_tile(plan.tiles[i], plan.source_projection, request))
                i += 1
        except BaseException:
            # Aborted (cancel/timeout): drop what was already fetched.
            for r in rasters:
                if r is not None:
                    r.release()
            raise
        return rasters

    async def _fetch_tile(self, tile: TileCoord, projection: str, request: ReprojectRequest) -> Optional[Raster]:
        if not self.planner.is_valid_tile(projection, tile):
            return None
        layers: List[Raster] = []
        for template in request.templates:
            url = build_tile_url(template, tile.col, tile.row, tile.zoom, request.subdomains, projection)
            try:
                layers.append(
                    await self.fetch_cache.retrieve(
                        url,
                        task_id=request.task_id,
                        headers=request.headers or None,
                        timeout=request.timeout,
                        disable_cache=request.disable_cache,
                    )
                )
            except (FetchNetworkError, TileDecodeError) as e:
                self.counters["tile_failures"] += 1
                fields = {"task_id": request.task_id, "url": e.url or url, "tile": list(tile)}
                if request.error_log:
                    log.error("Source tile failed: %s", e, exc_info=True, extra={"extra": fields})
                else:
                    log.debug("Source tile failed: %s", e, extra={"extra": fields})
        if not layers:
            return None
        if len(layers) == 1:
            return layers[0]
        merged = merge_layers(layers)
        for layer in layers:
            layer.release()
        return merged
