"""
Shared fixtures: an in-memory transport and PNG payload helpers.
"""

import asyncio
import io
import os
import sys
from typing import Callable, Dict, List, Optional, Tuple, Union

import pytest
from PIL import Image

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.append(project_root)

from tilewarp.errors import FetchNetworkError


def solid_png(rgba: Tuple[int, int, int, int] = (255, 0, 0, 255), size: int = 256) -> bytes:
    """PNG bytes of a single-colour RGBA tile."""
    img = Image.new("RGBA", (size, size), rgba)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def png_from_array(arr) -> bytes:
    """PNG bytes of an (H, W, 3|4) uint8 array (RGB/RGBA order)."""
    buf = io.BytesIO()
    Image.fromarray(arr).save(buf, format="PNG")
    return buf.getvalue()


Responder = Union[bytes, Exception, Callable[[str], bytes]]


class FakeTransport:
    """
    Transport double.

    responses: url -> bytes | Exception | callable(url) -> bytes
    default: used for URLs not in `responses` (None -> FetchNetworkError)
    delay: seconds to sleep before answering (lets tests cancel or time out in-flight calls)
    """

    def __init__(self, responses: Optional[Dict[str, Responder]] = None, default: Optional[Responder] = None, delay: float = 0.0):
        self.responses: Dict[str, Responder] = dict(responses or {})
        self.default = default
        self.delay = delay
        self.calls: List[str] = []
        self.headers: List[Dict[str, str]] = []

    async def get(self, url, headers=None, timeout=None) -> bytes:
        self.calls.append(url)
        self.headers.append(dict(headers or {}))
        if self.delay:
            await asyncio.sleep(self.delay)
        resp = self.responses.get(url, self.default)
        if resp is None:
            raise FetchNetworkError("bad response 404", url)
        if isinstance(resp, Exception):
            raise resp
        if callable(resp):
            return resp(url)
        return resp


@pytest.fixture
def red_png() -> bytes:
    return solid_png((255, 0, 0, 255))


@pytest.fixture
def red_transport(red_png) -> FakeTransport:
    """Every URL answers with an opaque red tile."""
    return FakeTransport(default=red_png)
