"""
Unit tests for terrain decoding and colour ramps
"""

import asyncio

import numpy as np
import pytest

from tests.conftest import FakeTransport, png_from_array
from tilecommon.types import Raster
from tilewarp.errors import ParameterValidationError
from tilewarp.fetch import FetchCache
from tilewarp.terrain import (
    ColorRamp,
    ColorRampCache,
    TerrainRenderer,
    decode_gray,
    decode_terrain_rgb,
    decode_terrarium,
)


def _raster(rgb, alpha=255, size=2):
    data = np.zeros((size, size, 4), dtype=np.uint8)
    data[..., :3] = rgb
    data[..., 3] = alpha
    return Raster(data)


class TestDecoders:
    def test_terrarium_sea_level(self):
        """Test terrarium sea level"""
        h = decode_terrarium(_raster((128, 0, 0)))
        assert np.allclose(h, 0.0)

    def test_terrarium_value(self):
        """Test a terrarium height"""
        h = decode_terrarium(_raster((129, 244, 128)))
        assert h[0, 0] == pytest.approx(256 + 244 + 0.5)

    def test_terrain_rgb(self):
        """Test terrain-rgb decoding"""
        # -10000 + (1 * 65536 + 134 * 256 + 160) * 0.1 = 0.0
        h = decode_terrain_rgb(_raster((1, 134, 160)))
        assert h[0, 0] == pytest.approx(0.0, abs=1e-6)

    def test_gray(self):
        """Test gray heightmap scaling"""
        h = decode_gray(_raster((255, 255, 255)), 100.0, 200.0)
        assert h[1, 1] == pytest.approx(200.0)

    def test_transparent_is_nan(self):
        """Test transparent pixels have no height"""
        assert np.isnan(decode_terrarium(_raster((128, 0, 0), alpha=0))).all()


class TestColorRamp:
    def test_interpolates(self):
        """Test ramp interpolation and clamping"""
        ramp = ColorRamp([[0, [0, 0, 0]], [100, [200, 100, 0, 255]]])
        assert ramp.get_color(50) == (100, 50, 0, 255)
        assert ramp.get_color(-10) == (0, 0, 0, 255)
        assert ramp.get_color(1000) == (200, 100, 0, 255)

    def test_hex_colours_and_order(self):
        """Test hex colours and unsorted stops"""
        ramp = ColorRamp([[100, "#ffffff"], [0, "#000000"]])
        assert ramp.get_color(100) == (255, 255, 255, 255)

    def test_colorize_nan_transparent(self):
        """Test NaN heights colour as transparent"""
        ramp = ColorRamp([[0, "#000000"], [10, "#ff0000"]])
        out = ramp.colorize(np.array([[5.0, np.nan]]))
        assert out.get_pixel(0, 0) == (128, 0, 0, 255)
        assert out.get_pixel(1, 0) == (0, 0, 0, 0)

    def test_needs_two_stops(self):
        """Test a ramp needs two stops"""
        with pytest.raises(ParameterValidationError):
            ColorRamp([[0, "#000000"]])

    def test_cache_keyed_by_stops(self):
        """Test the ramp cache is keyed by stops"""
        cache = ColorRampCache()
        a = cache.get([[0, "#000000"], [1, "#ffffff"]])
        b = cache.get([[0, "#000000"], [1, "#ffffff"]])
        c = cache.get([[0, "#000000"], [2, "#ffffff"]])
        assert a is b
        assert a is not c
        assert len(cache) == 2
        cache.reset()
        assert len(cache) == 0


class TestTerrainRenderer:
    def test_terrarium_tile(self):
        """Test rendering a terrarium tile"""
        arr = np.zeros((4, 4, 3), dtype=np.uint8)
        arr[..., 0] = 128   # sea level
        transport = FakeTransport({"t/1/0/0.png": png_from_array(arr)})
        renderer = TerrainRenderer(FetchCache(transport))
        ramp = [[-1, "#000000"], [0, "#00ff00"], [1, "#ffffff"]]
        out = asyncio.run(renderer.render("t/1/0/0.png", "terrarium", task_id="T", ramp=ramp))
        assert out.shape == (4, 4)
        assert out.get_pixel(0, 0) == (0, 255, 0, 255)

    def test_buffer_decoder(self):
        """Test an injected buffer decoder"""
        def decode(payload, tile_size):
            return np.full((tile_size, tile_size), float(payload[0]))

        transport = FakeTransport({"q": bytes([7])})
        renderer = TerrainRenderer(FetchCache(transport), buffer_decoders={"mesh": decode}, tile_size=8)
        out = asyncio.run(renderer.render("q", "mesh", task_id="T", ramp=[[0, "#000000"], [7, "#0000ff"]]))
        assert out.shape == (8, 8)
        assert out.get_pixel(3, 3) == (0, 0, 255, 255)
        assert "mesh" in renderer.encodings

    def test_unknown_encoding(self):
        """Test an unknown encoding is rejected"""
        renderer = TerrainRenderer(FetchCache(FakeTransport()))
        with pytest.raises(ParameterValidationError):
            asyncio.run(renderer.render("u", "lerc", task_id="T"))
