#!/usr/bin/env python3
"""
Reproject a single tile from the command line and write it as PNG.

The x/y/z arguments address the tile in the *target* grid, i.e. the grid other than
--projection (the grid the source tiles are published in).

Examples:
  # geodetic source -> web-mercator tile 3/6/3
  python scripts/reproject_tile.py --url "https://example.com/wmts/{z}/{-y}/{x}.png" \
      --projection EPSG:4326 --x 6 --y 3 --z 3 --out tile.png
  # GCJ-02 shifted mercator source -> geodetic tile, with debug overlay
  python scripts/reproject_tile.py --url "https://webrd0{s}.example.com/{z}/{x}/{y}" --subdomains 1 2 3 4 \
      --projection EPSG:3857 --x 26 --y 11 --z 4 --zoom-offset 1 --gcj02 --debug --out tile.png
"""
from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

from tilecommon.geo import PROJECTIONS
from tilecommon.logging_setup import get_logger, setup_logging
from tilewarp.config import load_config
from tilewarp.orchestrator import TileReprojector
from tilewarp.request import ReprojectRequest

log = get_logger("tilewarp.cli")


async def run(args: argparse.Namespace) -> bytes:
    P = load_config(args.config)
    reprojector = TileReprojector.from_config(P)
    req = ReprojectRequest(
        x=args.x,
        y=args.y,
        z=args.z,
        url_template=args.url,
        projection=args.projection,
        subdomains=args.subdomains,
        zoom_offset=args.zoom_offset,
        national_offset=args.gcj02,
        debug=args.debug,
        error_log=True,
        timeout=args.timeout,
        max_available_zoom=args.max_zoom,
    )
    return await reprojector.render(req)


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--url", nargs="+", required=True, help="Source URL template(s); several are composited as layers")
    ap.add_argument("--projection", required=True, choices=PROJECTIONS, help="Grid of the source tiles")
    ap.add_argument("--x", type=int, required=True)
    ap.add_argument("--y", type=int, required=True)
    ap.add_argument("--z", type=int, required=True)
    ap.add_argument("--subdomains", nargs="*", default=[], help="Values for the {s} placeholder")
    ap.add_argument("--zoom-offset", type=int, default=0, help="Source zoom = z + offset")
    ap.add_argument("--max-zoom", type=int, default=None, help="Deepest zoom the source serves (enables overzoom)")
    ap.add_argument("--gcj02", action="store_true", help="Apply the GCJ-02 national offset")
    ap.add_argument("--debug", action="store_true", help="Draw tile borders and labels")
    ap.add_argument("--timeout", type=float, default=10.0, help="Per-tile timeout (s)")
    ap.add_argument("--config", default=None, help="Config YAML (default: $TILEWARP_CONFIG or config/params.yaml)")
    ap.add_argument("--out", required=True, help="Output PNG path")
    ap.add_argument("--log-level", default=None)
    args = ap.parse_args()

    setup_logging(args.log_level, force=True)
    png = asyncio.run(run(args))
    out = Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(png)
    log.info("Wrote tile", extra={"extra": {"path": str(out), "bytes": len(png)}})


if __name__ == "__main__":
    main()
