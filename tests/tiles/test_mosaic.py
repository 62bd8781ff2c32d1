"""Tests for tiles.mosaic module."""

import base64
from io import BytesIO

import pytest
from PIL import Image

from domain.models import Point2
from geo.projection import (
    ViewTransform,
    pixel_xy_to_latlng,
    project_to_container_space,
    tile_corner_geo,
)
from shared.constants import Crs
from tiles.mosaic import (
    build_mosaic,
    encode_data_url,
    mosaic_scale,
    plan_tiles,
    to_data_url,
)


def _transform_at_tile(tx, ty, zoom, width=512, height=256, dx=0.0, dy=0.0):
    lat, lng = pixel_xy_to_latlng(tx * 256 + 128 + dx, ty * 256 + 128 + dy, zoom)
    return ViewTransform(origin_geo=Point2(lng, lat), zoom=zoom, width_px=width, height_px=height)


class FakeFetcher:
    def __init__(self, color=(200, 0, 0), missing=()):
        self.color = color
        self.missing = set(missing)
        self.requested = []

    async def fetch_many(self, tiles, *, zoom, on_progress=None):
        keys = list(tiles)
        self.requested.append((zoom, keys))
        return {
            xy: Image.new('RGB', (256, 256), self.color)
            for xy in keys
            if xy not in self.missing
        }


class TestPlanTiles:
    """Tests for plan_tiles geometry."""

    def test_mosaic_scale(self):
        t = _transform_at_tile(10, 10, 5)
        assert mosaic_scale(t, 7, 4) == pytest.approx(1.0)
        assert mosaic_scale(t, 5, 2) == pytest.approx(2.0)

    def test_covers_viewport_with_overlap(self):
        t = _transform_at_tile(10, 10, 5)
        placements = plan_tiles(t, 5, 1)
        # Вид 512x256 со сдвигом на полтайла: 3x2 тайла
        assert len(placements) == 6
        assert all(257 <= p.width <= 259 and 257 <= p.height <= 259 for p in placements)
        assert min(p.left for p in placements) in (-129, -128)
        assert max(p.left + p.width for p in placements) >= 512

    def test_rows_outside_world_skipped(self):
        t = _transform_at_tile(0, 0, 1, dy=-300)
        placements = plan_tiles(t, 1, 1)
        assert all(0 <= p.y < 2 for p in placements)

    def test_supersample_scales_rects(self):
        t = _transform_at_tile(10, 10, 5)
        placements = plan_tiles(t, 7, 4)
        # Зум +2 при суперсэмплинге 4: тайл занимает 256 px холста
        assert all(257 <= p.width <= 259 for p in placements)


class TestBuildMosaic:
    """Tests for build_mosaic."""

    @pytest.mark.asyncio
    async def test_surface_size_and_fill(self):
        t = _transform_at_tile(10, 10, 5)
        fetcher = FakeFetcher()
        result = await build_mosaic(
            t, fetcher, export_zoom=5, supersample=2, background='#ffffff'
        )
        assert result.image.size == (1024, 512)
        assert result.tiles_failed == 0
        assert result.image.getpixel((500, 250)) == (200, 0, 0)

    @pytest.mark.asyncio
    async def test_failed_tile_leaves_background(self):
        t = _transform_at_tile(10, 10, 5)
        fetcher = FakeFetcher(missing={(10, 10)})
        result = await build_mosaic(
            t, fetcher, export_zoom=5, supersample=1, background='#0a0a0a'
        )
        assert result.tiles_failed == 1
        assert result.image.getpixel((10, 10)) == (10, 10, 10)

    @pytest.mark.asyncio
    async def test_x_wraps(self):
        t = _transform_at_tile(0, 1, 1, width=512, height=256)
        fetcher = FakeFetcher()
        await build_mosaic(t, fetcher, export_zoom=1, supersample=1, background='#fff')
        _, keys = fetcher.requested[0]
        assert all(0 <= x < 2 for x, _ in keys)

    @pytest.mark.asyncio
    async def test_invert(self):
        t = _transform_at_tile(10, 10, 5)
        fetcher = FakeFetcher(color=(255, 255, 255))
        result = await build_mosaic(
            t, fetcher, export_zoom=5, supersample=1, background='#0a0a0a', invert=True
        )
        assert result.image.getpixel((300, 100)) == (0, 0, 0)


class TestDataUrl:
    def test_jpeg_data_url(self):
        url = to_data_url(Image.new('RGB', (4, 4), (1, 2, 3)))
        assert url.startswith('data:image/jpeg;base64,')
        raw = base64.b64decode(url.split(',', 1)[1])
        assert Image.open(BytesIO(raw)).format == 'JPEG'

    @pytest.mark.asyncio
    async def test_encode_off_loop(self):
        url = await encode_data_url(Image.new('RGB', (4, 4), (1, 2, 3)), 70)
        assert url.startswith('data:image/jpeg;base64,')


class TestRasterVectorAlignment:
    """Tile rectangles and vector paths share one projection per view."""

    @pytest.mark.parametrize('crs', [Crs.EPSG3857, Crs.EPSG3395])
    def test_tile_corner_matches_container_point(self, crs):
        t = ViewTransform(
            origin_geo=Point2(37.0, 56.0), zoom=8, width_px=400, height_px=300, crs=crs
        )
        supersample = 2
        placements = plan_tiles(t, 10, supersample)
        for p in placements:
            corner = tile_corner_geo(p.x, p.y, 10, t)
            c = project_to_container_space(corner, t)
            assert abs(p.left - c.x * supersample) <= 1
            assert abs(p.top - c.y * supersample) <= 1

    def test_yandex_rows_differ_from_osm(self):
        osm = ViewTransform(origin_geo=Point2(37.0, 56.0), zoom=8, width_px=400, height_px=300)
        yandex = ViewTransform(
            origin_geo=Point2(37.0, 56.0),
            zoom=8,
            width_px=400,
            height_px=300,
            crs=Crs.EPSG3395,
        )
        rows_osm = {p.y for p in plan_tiles(osm, 10, 1)}
        rows_yandex = {p.y for p in plan_tiles(yandex, 10, 1)}
        assert min(rows_yandex) > min(rows_osm)
