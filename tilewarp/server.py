from __future__ import annotations

from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from tilecommon.logging_setup import get_logger, setup_logging
from tilewarp.config import load_config
from tilewarp.errors import (
    FetchCancelledError,
    FetchNetworkError,
    FetchTimeoutError,
    OutputEncodingError,
    ParameterValidationError,
    TileDecodeError,
)
from tilewarp.fetch import FetchCache, as_template_list, build_tile_url
from tilewarp.orchestrator import TileReprojector
from tilewarp.request import ReprojectRequest
from tilewarp.terrain import TerrainRenderer

log = get_logger("tilewarp.server")


def _error(status: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse({"error": error, "detail": detail}, status_code=status)


def _abort_response(e: Exception) -> JSONResponse:
    """Map the errors that reach the caller to HTTP status codes."""
    if isinstance(e, ParameterValidationError):
        return _error(400, "invalid_parameters", str(e))
    if isinstance(e, FetchTimeoutError):
        return _error(504, "timeout", str(e))
    if isinstance(e, FetchCancelledError):
        return _error(409, "cancelled", str(e))
    if isinstance(e, OutputEncodingError):
        return _error(500, "encoding_failed", str(e))
    return _error(502, "upstream_failed", str(e))


def create_app(config: Optional[Dict[str, Any]] = None, fetch_cache: Optional[FetchCache] = None) -> FastAPI:
    """
    Build the tile API.

    Params:
        config: loaded config (tilewarp.config.load_config() when omitted)
        fetch_cache: shared FetchCache (tests inject one with a fake transport)
    """
    P = config if config is not None else load_config()
    setup_logging(P.get("logging", {}).get("level"), force=True)

    sources: Dict[str, Dict[str, Any]] = P.get("sources", {}) or {}
    fetch_cfg = P.get("fetch", {})
    timeout_s = fetch_cfg.get("timeout_s")
    error_log = bool(fetch_cfg.get("error_log", False))

    reprojector = TileReprojector.from_config(P, fetch_cache=fetch_cache)
    terrain = TerrainRenderer(reprojector.fetch_cache, tile_size=reprojector.tile_size)

    app = FastAPI(title="tilewarp", version="0.3.0")
    app.state.reprojector = reprojector
    app.state.terrain = terrain

    # (Optional) CORS for map clients on other origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _source(name: str) -> Dict[str, Any]:
        cfg = sources.get(name)
        if cfg is None:
            raise HTTPException(status_code=404, detail=f"unknown source: {name}")
        return cfg

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "sources": sorted(sources),
            "cache": reprojector.fetch_cache.stats(),
        }

    @app.get("/stats")
    def stats():
        return reprojector.stats()

    @app.get("/tiles/{source}/{z}/{x}/{y}.png")
    async def tile(
        source: str,
        z: int,
        x: int,
        y: int,
        task_id: Optional[str] = Query(None),
        debug: bool = Query(False),
        nocache: bool = Query(False),
    ):
        """Reprojected tile as PNG. Rows follow the target grid (XYZ for mercator, south-origin for geodetic)."""
        cfg = _source(source)
        try:
            req = ReprojectRequest.from_source(
                cfg,
                x,
                y,
                z,
                task_id=task_id,
                debug=debug,
                disable_cache=nocache,
                timeout=timeout_s,
                error_log=error_log,
            )
            png = await reprojector.render(req)
        except (ParameterValidationError, FetchCancelledError, OutputEncodingError) as e:
            return _abort_response(e)
        headers = {
            "Cache-Control": "no-store" if nocache else "public, max-age=60",
            "X-Source-Projection": req.projection,
            "X-Target-Projection": req.target_projection,
        }
        return Response(content=png, media_type=reprojector.encoder.media_type, headers=headers)

    @app.get("/terrain/{source}/{z}/{x}/{y}.png")
    async def terrain_tile(
        source: str,
        z: int,
        x: int,
        y: int,
        task_id: Optional[str] = Query(None),
        nocache: bool = Query(False),
    ):
        """Coloured terrain tile; the source must declare `terrain_encoding`."""
        cfg = _source(source)
        encoding = cfg.get("terrain_encoding")
        if not encoding:
            raise HTTPException(status_code=404, detail=f"source {source} has no terrain encoding")
        try:
            req = ReprojectRequest.from_source(cfg, x, y, z, task_id=task_id).validate()
            urls = [
                build_tile_url(t, x, y, z, req.subdomains, req.projection) for t in as_template_list(req.url_template)
            ]
            raster = await terrain.render(
                urls,
                encoding,
                task_id=req.task_id,
                ramp=cfg.get("terrain_ramp"),
                headers=req.headers or None,
                timeout=timeout_s,
                disable_cache=nocache,
            )
            png = reprojector.encoder.encode(raster)
        except (ParameterValidationError, FetchCancelledError, OutputEncodingError, FetchNetworkError, TileDecodeError) as e:
            return _abort_response(e)
        return Response(content=png, media_type=reprojector.encoder.media_type)

    @app.delete("/tasks/{task_id}")
    def cancel_task(task_id: str):
        n = reprojector.cancel_task(task_id)
        return {"task_id": task_id, "cancelled": n}

    log.info("tilewarp app ready", extra={"extra": {"sources": sorted(sources)}})
    return app


app = create_app()


# -------- local dev entrypoint --------
if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
