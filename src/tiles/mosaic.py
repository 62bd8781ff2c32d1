"""
Сборка растровой подложки экспорта из XYZ-тайлов.

Тайлы загружаются на повышенном зуме и рисуются на холст размера
вид × суперсэмплинг. Отказавший тайл оставляет пятно цвета фона.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import math
from dataclasses import dataclass
from io import BytesIO
from typing import TYPE_CHECKING

from PIL import Image, ImageColor, ImageOps

from geo.projection import project_to_tile_space, tile_corner_geo, tile_index_range
from shared.constants import EXPORT_JPEG_QUALITY, TILE_SEAM_OVERLAP_PX
from shared.diagnostics import log_memory_usage
from shared.progress import ConsoleProgress, publish_warning

if TYPE_CHECKING:
    from geo.projection import ViewTransform
    from tiles.fetcher import TileFetcher

logger = logging.getLogger(__name__)


@dataclass
class MosaicResult:
    image: Image.Image
    export_zoom: int
    tiles_total: int
    tiles_failed: int


@dataclass(frozen=True)
class TilePlacement:
    """Тайл (x, y) в индексах без wrap и его прямоугольник на холсте."""

    x: int
    y: int
    left: int
    top: int
    width: int
    height: int


def mosaic_scale(transform: ViewTransform, export_zoom: int, supersample: int) -> float:
    """Пикселей холста на один мировой пиксель зума экспорта."""
    return float(supersample) / float(2 ** (export_zoom - transform.zoom))


def plan_tiles(
    transform: ViewTransform,
    export_zoom: int,
    supersample: int,
    *,
    overlap_px: int = TILE_SEAM_OVERLAP_PX,
) -> list[TilePlacement]:
    """
    Прямоугольники назначения для всех тайлов, покрывающих вид.

    Угол каждого тайла проецируется в тайловое пространство вида и
    масштабируется до пикселей холста. Строки за пределами мира (y < 0 или
    y >= 2**z) пропускаются. Каждый прямоугольник расширен на overlap_px,
    чтобы округление не давало швов.
    """
    x_min, y_min, x_max, y_max = tile_index_range(transform, export_zoom)
    n = 2**export_zoom
    k = mosaic_scale(transform, export_zoom, supersample)
    size = float(transform.pixels_per_tile) * k
    out: list[TilePlacement] = []
    for ty in range(y_min, y_max + 1):
        if ty < 0 or ty >= n:
            continue
        for tx in range(x_min, x_max + 1):
            corner = project_to_tile_space(
                tile_corner_geo(tx, ty, export_zoom, transform), transform, export_zoom
            )
            left_f = corner.x * k
            top_f = corner.y * k
            left = math.floor(left_f)
            top = math.floor(top_f)
            right = math.ceil(left_f + size)
            bottom = math.ceil(top_f + size)
            out.append(
                TilePlacement(
                    x=tx,
                    y=ty,
                    left=left,
                    top=top,
                    width=right - left + overlap_px,
                    height=bottom - top + overlap_px,
                )
            )
    return out


def _paste_tiles(
    size: tuple[int, int],
    background: str,
    placements: list[TilePlacement],
    tiles: dict[tuple[int, int], Image.Image],
    n: int,
    *,
    invert: bool,
) -> tuple[Image.Image, int]:
    canvas = Image.new('RGB', size, ImageColor.getrgb(background))
    progress = ConsoleProgress(total=len(placements), label='Сборка мозаики')
    failed = 0
    for p in placements:
        img = tiles.get((p.x % n, p.y))
        if img is None:
            failed += 1
            progress.step_sync(1)
            continue
        if invert:
            img = ImageOps.invert(img.convert('RGB'))
        if img.size != (p.width, p.height):
            img = img.resize((p.width, p.height), Image.Resampling.LANCZOS)
        canvas.paste(img, (p.left, p.top))
        progress.step_sync(1)
    return canvas, failed


async def build_mosaic(
    transform: ViewTransform,
    fetcher: TileFetcher,
    *,
    export_zoom: int,
    supersample: int,
    background: str,
    invert: bool = False,
) -> MosaicResult:
    """
    Загружает тайлы и собирает холст ``width_px*supersample × height_px*supersample``.

    Фон заливается до отрисовки тайлов. При invert тайлы инвертируются по
    отдельности, поэтому фон в пропусках не меняется. Сборка холста идёт в
    рабочем потоке, чтобы отмена экспорта не ждала её окончания.
    """
    size = (transform.width_px * supersample, transform.height_px * supersample)
    placements = plan_tiles(transform, export_zoom, supersample)
    n = 2**export_zoom
    keys = sorted({(p.x % n, p.y) for p in placements})
    logger.info(
        'Мозаика: z=%d, %s, тайлов %d, холст %dx%d',
        export_zoom,
        transform.crs.value,
        len(keys),
        *size,
    )

    progress = ConsoleProgress(total=len(keys), label='Загрузка тайлов')
    tiles = await fetcher.fetch_many(keys, zoom=export_zoom, on_progress=progress.step)

    log_memory_usage('before mosaic canvas')
    canvas, failed = await asyncio.to_thread(
        _paste_tiles, size, background, placements, tiles, n, invert=invert
    )
    log_memory_usage('after mosaic canvas')
    if failed:
        publish_warning(f'Мозаика: пропущено тайлов: {failed} из {len(placements)}')
    return MosaicResult(
        image=canvas,
        export_zoom=export_zoom,
        tiles_total=len(placements),
        tiles_failed=failed,
    )


def encode_jpeg(img: Image.Image, quality: int = EXPORT_JPEG_QUALITY) -> bytes:
    buf = BytesIO()
    img.convert('RGB').save(buf, format='JPEG', quality=int(quality), optimize=True)
    return buf.getvalue()


def to_data_url(img: Image.Image, quality: int = EXPORT_JPEG_QUALITY) -> str:
    """JPEG в base64 data URL для встраивания в SVG."""
    data = base64.b64encode(encode_jpeg(img, quality)).decode('ascii')
    return f'data:image/jpeg;base64,{data}'


async def encode_data_url(img: Image.Image, quality: int = EXPORT_JPEG_QUALITY) -> str:
    """to_data_url в рабочем потоке: кодирование большого холста не блокирует цикл."""
    return await asyncio.to_thread(to_data_url, img, quality)
