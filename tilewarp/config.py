from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from tilecommon.geo import TILE_SIZE
from tilewarp.fetch import DEFAULT_HEADERS, LRU_COUNT
from tilewarp.resampler import MAX_CANVAS_PIXELS

CONFIG_ENV = "TILEWARP_CONFIG"
DEFAULT_CONFIG_PATH = "config/params.yaml"

DEFAULTS: Dict[str, Any] = {
    "cache": {"raster_capacity": LRU_COUNT, "buffer_capacity": LRU_COUNT},
    "fetch": {
        "timeout_s": 10.0,           # whole retrieval, enforced by the cancellation timer
        "request_timeout_s": 30.0,   # socket timeout of the HTTP transport
        "headers": dict(DEFAULT_HEADERS),
        "error_log": False,
    },
    "reproject": {"tile_size": TILE_SIZE, "max_canvas_pixels": MAX_CANVAS_PIXELS},
    "logging": {"level": "INFO"},
    "sources": {},
}


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge `override` into a copy of `base`; non-dict values replace."""
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = deep_merge(out[k], v)
        else:
            out[k] = copy.deepcopy(v)
    return out


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load YAML config over DEFAULTS.
    Path precedence: explicit arg, env TILEWARP_CONFIG, config/params.yaml. A missing file
    yields the defaults.
    """
    path = path or os.environ.get(CONFIG_ENV) or DEFAULT_CONFIG_PATH
    if not Path(path).exists():
        return copy.deepcopy(DEFAULTS)
    with open(path, "r") as f:
        loaded = yaml.safe_load(f) or {}
    if not isinstance(loaded, dict):
        raise ValueError(f"config {path} must be a mapping, got {type(loaded).__name__}")
    return deep_merge(DEFAULTS, loaded)
