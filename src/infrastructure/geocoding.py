"""
Геокодирование: Photon, при ошибке Nominatim.

Используется только для выбора объекта, границу которого затем запрашиваем
у Overpass.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any

import aiohttp
from pydantic import BaseModel

from shared.constants import (
    GEOCODER_LANG,
    GEOCODER_LIMIT,
    GEOCODER_TIMEOUT_S,
    HTTP_USER_AGENT,
    NOMINATIM_SEARCH_URL,
    PHOTON_LIMIT,
    PHOTON_SEARCH_URL,
)
from shared.errors import FetchFailure

logger = logging.getLogger(__name__)

_PHOTON_TYPES = {'N': 'node', 'W': 'way', 'R': 'relation'}


class GeocodeCandidate(BaseModel):
    """Кандидат поиска; bbox = (west, south, east, north), если известен."""

    model_config = {'extra': 'ignore'}

    name: str
    display_name: str
    lat: float
    lon: float
    osm_id: int | None = None
    osm_type: str | None = None
    bbox: tuple[float, float, float, float] | None = None


def parse_photon(data: dict[str, Any]) -> list[GeocodeCandidate]:
    out: list[GeocodeCandidate] = []
    for item in data.get('features') or []:
        p = item.get('properties') or {}
        coords = (item.get('geometry') or {}).get('coordinates') or []
        if len(coords) < 2:  # noqa: PLR2004
            continue
        label = ', '.join(
            str(p[k]) for k in ('name', 'city', 'state', 'country') if p.get(k)
        )
        bbox = None
        extent = p.get('extent')
        if extent and len(extent) == 4:  # noqa: PLR2004
            # Photon: [minLon, maxLat, maxLon, minLat]
            bbox = (
                float(extent[0]),
                float(extent[3]),
                float(extent[2]),
                float(extent[1]),
            )
        osm_id = p.get('osm_id')
        out.append(
            GeocodeCandidate(
                name=str(p.get('name') or label.split(',')[0]),
                display_name=label,
                lat=float(coords[1]),
                lon=float(coords[0]),
                osm_id=int(osm_id) if osm_id is not None else None,
                osm_type=_PHOTON_TYPES.get(str(p.get('osm_type')), 'node'),
                bbox=bbox,
            )
        )
    return out


def parse_nominatim(data: list[dict[str, Any]]) -> list[GeocodeCandidate]:
    out: list[GeocodeCandidate] = []
    for item in data:
        display = str(item.get('display_name') or '')
        bbox = None
        bb = item.get('boundingbox')
        if bb and len(bb) == 4:  # noqa: PLR2004
            # Nominatim: [south, north, west, east] строками
            bbox = (float(bb[2]), float(bb[0]), float(bb[3]), float(bb[1]))
        osm_id = item.get('osm_id')
        out.append(
            GeocodeCandidate(
                name=str(item.get('name') or display.split(',')[0]),
                display_name=display,
                lat=float(item['lat']),
                lon=float(item['lon']),
                osm_id=int(osm_id) if osm_id is not None else None,
                osm_type=item.get('osm_type'),
                bbox=bbox,
            )
        )
    return out


class Geocoder:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        timeout_s: float = GEOCODER_TIMEOUT_S,
    ) -> None:
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)

    async def _get_json(self, url: str, params: dict[str, Any]) -> Any:
        async with self._session.get(
            url,
            params=params,
            timeout=self._timeout,
            headers={'User-Agent': HTTP_USER_AGENT},
        ) as resp:
            if resp.status != HTTPStatus.OK:
                msg = f'HTTP {resp.status} от {url}'
                raise FetchFailure(msg)
            return await resp.json(content_type=None)

    async def search_photon(self, text: str) -> list[GeocodeCandidate]:
        data = await self._get_json(
            PHOTON_SEARCH_URL,
            {'q': text, 'limit': PHOTON_LIMIT, 'lang': GEOCODER_LANG},
        )
        return parse_photon(data or {})

    async def search_nominatim(self, text: str) -> list[GeocodeCandidate]:
        data = await self._get_json(
            NOMINATIM_SEARCH_URL,
            {
                'q': text,
                'format': 'jsonv2',
                'limit': GEOCODER_LIMIT,
                'addressdetails': 1,
                'accept-language': GEOCODER_LANG,
            },
        )
        return parse_nominatim(data or [])

    async def search(self, text: str) -> list[GeocodeCandidate]:
        """Кандидаты для строки поиска; FetchFailure, если оба сервиса недоступны."""
        text = text.strip()
        if not text:
            return []
        try:
            return await self.search_photon(text)
        except (FetchFailure, TimeoutError, aiohttp.ClientError, ValueError) as e:
            logger.debug('Photon недоступен: %r, пробуем Nominatim', e)
        try:
            return await self.search_nominatim(text)
        except (FetchFailure, TimeoutError, aiohttp.ClientError, ValueError) as e:
            msg = 'Все геокодеры недоступны'
            logger.warning('%s: %r', msg, e)
            raise FetchFailure(msg) from None
