from __future__ import annotations

import asyncio
import contextlib
import logging
from http import HTTPStatus
from io import BytesIO
from typing import TYPE_CHECKING

import aiohttp
from PIL import Image, UnidentifiedImageError

from shared.constants import (
    DOWNLOAD_CONCURRENCY,
    HTTP_5XX_MAX,
    HTTP_5XX_MIN,
    HTTP_BACKOFF_FACTOR,
    TILE_RETRIES,
    TILE_SUBDOMAINS,
    TILE_TIMEOUT_S,
)
from shared.errors import TileFailure

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Sequence

logger = logging.getLogger(__name__)


def tile_url(
    template: str,
    z: int,
    x: int,
    y: int,
    subdomains: Sequence[str] = TILE_SUBDOMAINS,
) -> str:
    """Подставляет {z} {x} {y} и {s}; поддомен чередуется по (x + y)."""
    url = template.replace('{z}', str(z)).replace('{x}', str(x)).replace('{y}', str(y))
    if '{s}' in url and subdomains:
        url = url.replace('{s}', subdomains[(x + y) % len(subdomains)])
    return url


def _release(resp: object) -> None:
    # Освобождение ресурсов ответа для обоих типов (aiohttp и CachedResponse)
    try:
        close = getattr(resp, 'close', None)
        if callable(close):
            close()
        release = getattr(resp, 'release', None)
        if callable(release):
            release()
    except Exception as e:
        logger.debug('Failed to cleanup HTTP response: %s', e, exc_info=True)


async def async_fetch_tile(
    client: aiohttp.ClientSession,
    url: str,
    *,
    async_timeout: float = TILE_TIMEOUT_S,
    retries: int = TILE_RETRIES,
    backoff: float = HTTP_BACKOFF_FACTOR,
) -> Image.Image:
    """
    Загружает один тайл и возвращает PIL.Image (RGB).

    - 404 и 401/403 не повторяются;
    - 429/5xx и сетевые ошибки повторяются с экспоненциальной задержкой;
    - любой отказ поднимается как TileFailure.
    """
    last_exc: Exception | None = None
    for attempt in range(max(1, retries)):
        try:
            timeout = aiohttp.ClientTimeout(total=async_timeout)
            resp = await client.get(url, timeout=timeout)
            try:
                sc = resp.status
                if sc == HTTPStatus.OK:
                    data = await resp.read()
                    # Контент может быть png, jpg или webp; приводим к RGB
                    return Image.open(BytesIO(data)).convert('RGB')
                if sc in (
                    HTTPStatus.UNAUTHORIZED,
                    HTTPStatus.FORBIDDEN,
                    HTTPStatus.NOT_FOUND,
                ):
                    msg = f'HTTP {sc} для тайла {url}'
                    raise TileFailure(msg)
                if sc == HTTPStatus.TOO_MANY_REQUESTS or HTTP_5XX_MIN <= sc < HTTP_5XX_MAX:
                    last_exc = TileFailure(f'HTTP {sc} для тайла {url}')
                else:
                    last_exc = TileFailure(f'Неожиданный ответ HTTP {sc} для {url}')
            finally:
                _release(resp)
        except TileFailure:
            raise
        except (TimeoutError, aiohttp.ClientError, UnidentifiedImageError, OSError) as e:
            last_exc = e
        if attempt + 1 < retries:
            await asyncio.sleep(backoff**attempt)
    msg = f'Не удалось загрузить тайл {url}: {last_exc}'
    raise TileFailure(msg)


class TileFetcher:
    """
    Параллельная загрузка тайлов с семафором и таймаутом на тайл.

    Отказавшие тайлы не прерывают пакет: они пропускаются и учитываются
    в статистике.
    """

    def __init__(
        self,
        get_tile_image: Callable[[int, int, int], Awaitable[Image.Image]],
        *,
        concurrency: int = DOWNLOAD_CONCURRENCY,
        tile_timeout_s: float = TILE_TIMEOUT_S,
    ):
        self._get = get_tile_image
        self._sem = asyncio.Semaphore(concurrency)
        self._timeout = tile_timeout_s
        self.fetched = 0
        self.failed = 0

    @classmethod
    def for_template(
        cls,
        client: aiohttp.ClientSession,
        template: str,
        **kwargs: float,
    ) -> TileFetcher:
        async def _get(x: int, y: int, z: int) -> Image.Image:
            return await async_fetch_tile(client, tile_url(template, z, x, y))

        return cls(_get, **kwargs)  # type: ignore[arg-type]

    @property
    def stats(self) -> dict[str, int]:
        return {'fetched': self.fetched, 'failed': self.failed}

    async def _fetch_one(self, x: int, y: int, zoom: int) -> Image.Image:
        async with self._sem:
            try:
                return await asyncio.wait_for(self._get(x, y, zoom), self._timeout)
            except TimeoutError:
                msg = f'Таймаут тайла z/x/y={zoom}/{x}/{y}'
                raise TileFailure(msg) from None

    async def fetch_many(
        self,
        tiles: Iterable[tuple[int, int]],
        *,
        zoom: int,
        on_progress: Callable[[int], Awaitable[None]] | None = None,
    ) -> dict[tuple[int, int], Image.Image]:
        """Загружает тайлы (x, y) параллельно; результат по ключу (x, y)."""
        keys = list(tiles)

        async def _worker(xy: tuple[int, int]) -> Image.Image:
            try:
                return await self._fetch_one(xy[0], xy[1], zoom)
            finally:
                if on_progress is not None:
                    with contextlib.suppress(Exception):
                        await on_progress(1)

        results = await asyncio.gather(
            *(_worker(xy) for xy in keys), return_exceptions=True
        )
        out: dict[tuple[int, int], Image.Image] = {}
        for xy, res in zip(keys, results, strict=True):
            if isinstance(res, asyncio.CancelledError):
                raise res
            if isinstance(res, BaseException):
                self.failed += 1
                logger.debug('Тайл %s пропущен: %s', xy, res)
                continue
            self.fetched += 1
            out[xy] = res
        return out
