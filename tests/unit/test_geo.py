"""
Unit tests for grid math, projections and the GCJ-02 offset
"""

import math

import numpy as np
import pytest

from tilecommon.geo import (
    MAX_EXTENT_M,
    MAX_LAT_DEG,
    bbox_contains,
    bbox_is_degenerate,
    bbox_to_tile_4326,
    forward_bbox,
    gcj02_from_wgs84,
    geodetic_grid_size,
    mercator_forward,
    mercator_inverse,
    mercator_tile_bbox,
    mercator_tile_bbox_m,
    res_3857,
    res_4326,
    tile_bbox_4326,
    tile_index_4326,
)
from tilecommon.types import Raster
from tilecommon.utils import RunningStats, js_round


class TestResolutions:
    """Grid resolutions"""

    def test_res_4326_zoom0_spans_360(self):
        """Test geodetic zoom 0 spans 360 degrees"""
        assert res_4326(0) * 256 == 360.0

    def test_res_3857_zoom0_is_equator(self):
        """Test mercator zoom 0 spans the equator"""
        assert res_3857(0) * 256 == pytest.approx(40075016.68, abs=0.01)

    def test_resolutions_halve_per_zoom(self):
        """Test resolutions halve with each zoom"""
        for z in range(10):
            assert res_4326(z + 1) == pytest.approx(res_4326(z) / 2)
            assert res_3857(z + 1) == pytest.approx(res_3857(z) / 2)


class TestGeodeticGrid:
    """EPSG:4326 tile grid with south-origin rows"""

    def test_tile_bbox_origin(self):
        """Test the geodetic origin tile bbox"""
        assert tile_bbox_4326(0, 0, 1) == (-180.0, -90.0, 0.0, 90.0)
        assert tile_bbox_4326(1, 0, 1) == (0.0, -90.0, 180.0, 90.0)

    def test_rows_grow_northward(self):
        """Test geodetic rows count from the south"""
        south = tile_bbox_4326(0, 0, 2)
        north = tile_bbox_4326(0, 1, 2)
        assert north[1] == south[3]
        assert north[3] == 90.0

    def test_bbox_round_trip(self):
        """Test bbox to tile and back"""
        for z in range(0, 9):
            cols, rows = geodetic_grid_size(z)
            for col in range(0, cols, max(1, cols // 7)):
                for row in range(0, rows, max(1, rows // 5)):
                    assert bbox_to_tile_4326(tile_bbox_4326(col, row, z), z) == (col, row, z)

    def test_tile_index_of_corner(self):
        """Test tile index of a corner point"""
        minx, miny, _, _ = tile_bbox_4326(5, 3, 4)
        assert tile_index_4326(minx + 1e-9, miny + 1e-9, 4) == (5, 3)

    def test_grid_size(self):
        """Test geodetic grid size per zoom"""
        assert geodetic_grid_size(0) == (1, 1)
        assert geodetic_grid_size(1) == (2, 1)
        assert geodetic_grid_size(3) == (8, 4)


class TestMercator:
    """Spherical web-mercator"""

    def test_forward_inverse_round_trip(self):
        """Test forward then inverse projection"""
        lon = np.array([-179.0, -77.058, 0.0, 116.39, 179.9])
        lat = np.array([-80.0, 38.872, 0.0, 39.9, 84.0])
        x, y = mercator_forward(lon, lat)
        lon2, lat2 = mercator_inverse(x, y)
        np.testing.assert_allclose(lon2, lon, atol=1e-9)
        np.testing.assert_allclose(lat2, lat, atol=1e-9)

    def test_forward_clamps_poles(self):
        """Test forward projection clamps the poles"""
        x, y = mercator_forward(180.0, 90.0)
        assert float(x) == pytest.approx(MAX_EXTENT_M)
        assert float(y) == pytest.approx(MAX_EXTENT_M)
        _, y = mercator_forward(0.0, -90.0)
        assert float(y) == pytest.approx(-MAX_EXTENT_M)

    def test_world_tile(self):
        """Test the zoom 0 mercator tile"""
        assert mercator_tile_bbox_m(0, 0, 0) == pytest.approx((-MAX_EXTENT_M, -MAX_EXTENT_M, MAX_EXTENT_M, MAX_EXTENT_M))
        west, south, east, north = mercator_tile_bbox(0, 0, 0)
        assert (west, east) == (-180.0, 180.0)
        assert north == pytest.approx(MAX_LAT_DEG)
        assert south == pytest.approx(-MAX_LAT_DEG)

    def test_lonlat_and_metre_bboxes_agree(self):
        """Test lon/lat and metre tile bboxes agree"""
        for x, y, z in [(0, 0, 1), (3, 5, 4), (105, 48, 7)]:
            assert forward_bbox(mercator_tile_bbox(x, y, z)) == pytest.approx(mercator_tile_bbox_m(x, y, z), abs=1e-6)


class TestGcj02:
    """National offset"""

    def test_outside_china_unchanged(self):
        """Test GCJ-02 leaves points outside China alone"""
        lon, lat = gcj02_from_wgs84(-77.058, 38.872)
        assert float(lon) == -77.058
        assert float(lat) == 38.872

    def test_inside_china_shifted(self):
        """Test GCJ-02 shifts points inside China"""
        lon, lat = gcj02_from_wgs84(116.397428, 39.90923)
        dlon = float(lon) - 116.397428
        dlat = float(lat) - 39.90923
        # Beijing moves a few hundred metres to the north-east.
        assert 0.002 < dlon < 0.01
        assert 0.0 < dlat < 0.01

    def test_vectorised(self):
        """Test GCJ-02 on arrays"""
        lon, lat = gcj02_from_wgs84(np.array([116.4, 0.0]), np.array([39.9, 0.0]))
        assert lon.shape == (2,)
        assert lon[1] == 0.0 and lat[1] == 0.0


class TestBBoxHelpers:
    def test_contains(self):
        """Test bbox containment"""
        assert bbox_contains((0, 0, 10, 10), (1, 1, 9, 9))
        assert bbox_contains((0, 0, 10, 10), (0, 0, 10, 10))
        assert not bbox_contains((0, 0, 10, 10), (-1, 0, 10, 10))

    def test_degenerate(self):
        """Test degenerate bbox detection"""
        assert bbox_is_degenerate((0, 0, 0, 10))
        assert bbox_is_degenerate((0, 0, math.nan, 10))
        assert not bbox_is_degenerate((0, 0, 1, 1))


class TestRaster:
    """RGBA raster abstraction"""

    def test_blank_and_pixels(self):
        """Test blank rasters and pixel access"""
        r = Raster.blank(4, 3)
        assert (r.width, r.height) == (4, 3)
        assert r.is_blank()
        r.set_pixel(2, 1, (1, 2, 3, 255))
        assert r.get_pixel(2, 1) == (1, 2, 3, 255)
        assert not r.is_blank()
        assert r.column_is_blank(0) and not r.column_is_blank(2)
        assert r.row_is_blank(0) and not r.row_is_blank(1)

    def test_crop_pads_transparent(self):
        """Test crops outside the raster are transparent"""
        r = Raster.filled(4, 4, (255, 0, 0, 255))
        c = r.crop(-1, -1, 3, 3)
        assert c.get_pixel(0, 0) == (0, 0, 0, 0)
        assert c.get_pixel(1, 1) == (255, 0, 0, 255)
        assert c.get_pixel(2, 2) == (255, 0, 0, 255)

    def test_rejects_bad_shape(self):
        """Test rasters must be HxWx4 uint8"""
        with pytest.raises(ValueError):
            Raster(np.zeros((4, 4, 3), dtype=np.uint8))

    def test_release(self):
        """Test release drops the buffer"""
        r = Raster.filled(2, 2, (1, 1, 1, 1))
        r.release()
        assert r.shape == (0, 0)


class TestUtils:
    def test_js_round_half_up(self):
        """Test rounding goes half up"""
        assert float(js_round(0.5)) == 1.0
        assert float(js_round(1.5)) == 2.0
        assert float(js_round(2.5)) == 3.0
        assert float(js_round(-0.5)) == 0.0

    def test_running_stats(self):
        """Test running mean, std and max"""
        s = RunningStats()
        for v in (1.0, 2.0, 3.0):
            s.add(v)
        assert s.n == 3
        assert s.mean == pytest.approx(2.0)
        assert s.std == pytest.approx(1.0)
        assert s.max == 3.0
