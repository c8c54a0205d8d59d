"""
End-to-end reprojection through TileReprojector with an in-memory transport
"""

import asyncio
import io

import numpy as np
import pytest
from PIL import Image

from tests.conftest import FakeTransport, solid_png
from tilecommon.geo import GEODETIC, WEB_MERCATOR
from tilecommon.types import Raster
from tilewarp.errors import FetchCancelledError, FetchTimeoutError, OutputEncodingError, ParameterValidationError
from tilewarp.fetch import FetchCache
from tilewarp.orchestrator import TileReprojector
from tilewarp.request import ReprojectRequest

RED = np.array((255, 0, 0, 255), dtype=np.uint8)
BLUE = np.array((0, 0, 255, 255), dtype=np.uint8)

MERCATOR_TEMPLATE = "m/{z}/{x}/{y}.png"
GEODETIC_TEMPLATE = "g/{z}/{x}/{y}.png"


def _run(coro):
    return asyncio.run(coro)


def _from_mercator(x, y, z, **kw):
    """Geodetic tile built from mercator source tiles."""
    return ReprojectRequest(x=x, y=y, z=z, url_template=MERCATOR_TEMPLATE, projection=WEB_MERCATOR, **kw)


def _from_geodetic(x, y, z, **kw):
    """Mercator tile built from geodetic source tiles."""
    kw.setdefault("url_template", GEODETIC_TEMPLATE)
    return ReprojectRequest(x=x, y=y, z=z, projection=GEODETIC, **kw)


class TestGeodeticTarget:
    def test_full_tile(self, red_transport):
        """Test a geodetic tile inside the mercator band is fully covered"""
        rp = TileReprojector(FetchCache(red_transport))
        tile = _run(rp.reproject(_from_mercator(2, 1, 3)))
        assert tile.shape == (256, 256)
        assert np.all(tile.data == RED)
        assert red_transport.calls
        assert all(u.startswith("m/3/") for u in red_transport.calls)

    def test_polar_rows_stay_transparent(self, red_transport):
        """Mercator stops at +-85.05 deg; the geodetic rows beyond it have no source."""
        rp = TileReprojector(FetchCache(red_transport))
        tile = _run(rp.reproject(_from_mercator(0, 0, 2)))
        assert tile.shape == (256, 256)
        # 90 deg over 256 rows: lat -84.4 is row 240
        assert np.all(tile.data[:240] == RED)
        assert not tile.data[245:, :, 3].any()

    def test_no_coverage_is_blank(self, red_transport):
        """Test no coverage gives a blank tile without fetching"""
        rp = TileReprojector(FetchCache(red_transport))
        tile = _run(rp.reproject(_from_mercator(0, 5, 2)))
        assert tile.shape == (256, 256)
        assert tile.is_blank()
        assert red_transport.calls == []
        assert rp.counters["blank"] == 1

    def test_failed_tile_becomes_transparent_cell(self, red_png):
        """Test a failed source tile leaves a transparent area"""
        # mercator row 5 at zoom 3 spans lat -41..-66.5
        transport = FakeTransport({"m/3/2/5.png": None}, default=red_png)
        rp = TileReprojector(FetchCache(transport))
        tile = _run(rp.reproject(_from_mercator(2, 1, 3)))
        assert rp.counters["tile_failures"] == 1
        assert np.all(tile.data[:230] == RED)
        assert not tile.data[236:, :, 3].any()

    def test_cached_tiles_not_refetched(self, red_transport):
        """Test cached source tiles are not fetched again"""
        rp = TileReprojector(FetchCache(red_transport))
        _run(rp.reproject(_from_mercator(2, 1, 3)))
        n = len(red_transport.calls)
        _run(rp.reproject(_from_mercator(2, 1, 3)))
        assert len(red_transport.calls) == n
        assert rp.stats()["cache"]["hits"] == n


class TestMercatorTarget:
    def test_full_tile(self, red_transport):
        """Test a mercator tile from geodetic sources is fully covered"""
        rp = TileReprojector(FetchCache(red_transport))
        tile = _run(rp.reproject(_from_geodetic(1, 1, 2)))
        assert tile.shape == (256, 256)
        assert np.all(tile.data == RED)
        assert red_transport.calls == ["g/2/1/1.png"]

    def test_layers_merged(self, red_png):
        """Test layer templates are merged in order"""
        transport = FakeTransport({"b/2/1/1.png": solid_png((0, 0, 255, 255))}, default=red_png)
        rp = TileReprojector(FetchCache(transport))
        tile = _run(rp.reproject(_from_geodetic(1, 1, 2, url_template=["a/{z}/{x}/{y}.png", "b/{z}/{x}/{y}.png"])))
        assert transport.calls == ["a/2/1/1.png", "b/2/1/1.png"]
        assert np.all(tile.data == BLUE)

    def test_overzoom_fetches_ancestor_only(self, red_transport):
        """Test overzoom fetches only at the ancestor zoom"""
        rp = TileReprojector(FetchCache(red_transport))
        tile = _run(rp.reproject(_from_geodetic(5, 5, 4, max_available_zoom=2)))
        assert tile.shape == (256, 256)
        assert np.all(tile.data == RED)
        assert red_transport.calls == ["g/2/1/1.png"]
        assert rp.counters["overzoom"] == 1

    def test_overzoom_beyond_zoom_zero(self, red_transport):
        """Test overzoom past zoom 0 is rejected"""
        rp = TileReprojector(FetchCache(red_transport))
        with pytest.raises(ParameterValidationError):
            _run(rp.reproject(_from_geodetic(0, 0, 1, max_available_zoom=0, zoom_offset=2)))


class TestZoomOffset:
    """Source zoom one level finer or coarser than the requested tile"""

    @pytest.mark.parametrize("x, y, z", [(5, 2, 4), (2, 1, 3)])
    def test_finer_mercator_source_covers_geodetic_tile(self, red_transport, x, y, z):
        """Test a geodetic tile from mercator sources one zoom finer"""
        rp = TileReprojector(FetchCache(red_transport))
        tile = _run(rp.reproject(_from_mercator(x, y, z, zoom_offset=1)))
        assert np.all(tile.data == RED)
        assert all(u.startswith(f"m/{z + 1}/") for u in red_transport.calls)

    @pytest.mark.parametrize("x, y, z", [(1, 0, 2), (7, 0, 3), (15, 5, 4)])
    def test_coarser_geodetic_source_covers_mercator_tile(self, red_transport, x, y, z):
        """Test a mercator tile from geodetic sources one zoom coarser"""
        rp = TileReprojector(FetchCache(red_transport))
        tile = _run(rp.reproject(_from_geodetic(x, y, z, zoom_offset=-1)))
        assert np.all(tile.data == RED)
        assert all(u.startswith(f"g/{z - 1}/") for u in red_transport.calls)


class TestAbort:
    def test_cancel_is_scoped_to_task(self, red_png):
        """Test cancelling one task leaves the other request alone"""
        transport = FakeTransport(default=red_png, delay=0.2)
        rp = TileReprojector(FetchCache(transport))

        async def main():
            t = asyncio.ensure_future(rp.reproject(_from_mercator(2, 1, 3, task_id="T")))
            u = asyncio.ensure_future(rp.reproject(_from_mercator(2, 1, 3, task_id="U")))
            await asyncio.sleep(0.05)
            assert rp.cancel_task("T") == 1
            return await asyncio.gather(t, u, return_exceptions=True)

        t_result, u_result = _run(main())
        assert isinstance(t_result, FetchCancelledError)
        assert not isinstance(t_result, FetchTimeoutError)
        assert isinstance(u_result, Raster)
        assert np.all(u_result.data == RED)

    def test_timeout(self, red_png):
        """Test a slow source aborts with a timeout"""
        transport = FakeTransport(default=red_png, delay=1.0)
        rp = TileReprojector(FetchCache(transport))
        with pytest.raises(FetchTimeoutError):
            _run(rp.reproject(_from_mercator(2, 1, 3, timeout=0.05)))
        assert rp.fetch_cache.registry.group_count == 0


class TestRender:
    def test_png_bytes(self, red_transport):
        """Test render returns PNG bytes"""
        rp = TileReprojector(FetchCache(red_transport))
        png = _run(rp.render(_from_mercator(2, 1, 3)))
        img = Image.open(io.BytesIO(png))
        assert img.size == (256, 256)
        assert img.convert("RGBA").getpixel((128, 128)) == (255, 0, 0, 255)

    def test_encoder_failure(self, red_transport):
        """Test encoder failures surface as OutputEncodingError"""
        class BrokenEncoder:
            media_type = "image/png"

            def encode(self, raster):
                raise RuntimeError("disk full")

        rp = TileReprojector(FetchCache(red_transport), encoder=BrokenEncoder())
        with pytest.raises(OutputEncodingError):
            _run(rp.render(_from_mercator(2, 1, 3)))

    def test_mask_clipper_only_with_mask_id(self, red_transport):
        """Test the mask clipper runs only with a mask id"""
        calls = []

        def clipper(raster, tile_bbox, projection, tile_size, mask_id):
            calls.append((tile_bbox, projection, tile_size, mask_id))
            raster.data[:, :128] = 0
            return raster

        rp = TileReprojector(FetchCache(red_transport), mask_clipper=clipper)
        _run(rp.reproject(_from_mercator(2, 1, 3)))
        assert calls == []

        tile = _run(rp.reproject(_from_mercator(2, 1, 3, mask_id="coast")))
        assert len(calls) == 1
        bbox, projection, tile_size, mask_id = calls[0]
        assert bbox == pytest.approx((-90.0, -45.0, -45.0, 0.0))
        assert (projection, tile_size, mask_id) == (GEODETIC, 256, "coast")
        assert not tile.data[:, :128, 3].any()
        assert np.all(tile.data[:, 128:] == RED)
