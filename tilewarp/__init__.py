"""
tilewarp: map tile reprojection between EPSG:4326 and EPSG:3857

- Plans which source tiles cover a requested tile of the other grid (optionally GCJ-02 shifted)
- Fetches them through a cancellable, LRU-cached transport
- Mosaics, resamples and seam-repairs them into one target tile
- Serves /tiles, /terrain, /stats, /health (see tilewarp.server)
"""

from tilewarp.errors import (
    FetchCancelledError,
    FetchError,
    FetchNetworkError,
    FetchTimeoutError,
    OutputEncodingError,
    ParameterValidationError,
    TileDecodeError,
    TileWarpError,
)
from tilewarp.fetch import FetchCache, RequestsTransport
from tilewarp.grid import GridPlanner, TilePlan
from tilewarp.orchestrator import TileReprojector
from tilewarp.request import ReprojectRequest

__all__ = [
    "FetchCache",
    "RequestsTransport",
    "GridPlanner",
    "TilePlan",
    "TileReprojector",
    "ReprojectRequest",
    "TileWarpError",
    "ParameterValidationError",
    "FetchError",
    "FetchNetworkError",
    "FetchCancelledError",
    "FetchTimeoutError",
    "TileDecodeError",
    "OutputEncodingError",
]
