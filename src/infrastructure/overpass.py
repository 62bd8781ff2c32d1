"""
Клиент Overpass API и построители запросов.

Запрос отправляется на зеркала по очереди, у каждой попытки свой таймаут.
Первый успешный JSON возвращается вызывающему; если все зеркала отказали,
поднимается FetchFailure.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import TYPE_CHECKING, Any, Protocol

import aiohttp

from shared.constants import (
    BOUNDARY_ADMIN_LEVELS,
    DEFAULT_ADMIN_LEVEL,
    DEFAULT_FEATURE_NAME,
    MIN_POINTS_FOR_ARC,
    OVERPASS_BOUNDARY_TIMEOUT_S,
    OVERPASS_ENDPOINTS,
    OVERPASS_QUERY_TIMEOUT_BOUNDARY,
)
from shared.errors import FetchFailure

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from shared.progress import CancelToken

logger = logging.getLogger(__name__)


class GeodataQuery(Protocol):
    """То, что нужно сервисам от клиента геоданных."""

    async def run_query(
        self, ql: str, *, timeout_s: float = OVERPASS_BOUNDARY_TIMEOUT_S
    ) -> dict[str, Any]: ...


class OverpassClient:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        endpoints: Sequence[str] = OVERPASS_ENDPOINTS,
        *,
        cancel_token: CancelToken | None = None,
    ) -> None:
        self._session = session
        self.endpoints = tuple(endpoints)
        self._cancel = cancel_token

    async def run_query(
        self, ql: str, *, timeout_s: float = OVERPASS_BOUNDARY_TIMEOUT_S
    ) -> dict[str, Any]:
        """
        POST data=<ql> на каждое зеркало по порядку.

        Ошибки отдельных попыток пишутся в debug и не выходят наружу.
        Отмена (asyncio.CancelledError) пробрасывается сразу.
        """
        last_error: str | None = None
        for url in self.endpoints:
            if self._cancel is not None and self._cancel.is_set():
                raise asyncio.CancelledError
            timeout = aiohttp.ClientTimeout(total=timeout_s)
            try:
                async with self._session.post(
                    url,
                    data={'data': ql},
                    timeout=timeout,
                ) as resp:
                    if resp.status == HTTPStatus.OK:
                        payload = await resp.json(content_type=None)
                        if isinstance(payload, dict):
                            logger.debug(
                                'Overpass %s: %d элементов',
                                url,
                                len(payload.get('elements') or []),
                            )
                            return payload
                        last_error = f'{url}: неожиданный формат ответа'
                    else:
                        last_error = f'{url}: HTTP {resp.status}'
            except (TimeoutError, aiohttp.ClientError, ValueError) as e:
                last_error = f'{url}: {e!r}'
            logger.debug('Overpass: попытка не удалась (%s)', last_error)
        msg = f'Все зеркала Overpass недоступны: {last_error}'
        logger.warning(msg)
        raise FetchFailure(msg)


# --- Построители запросов


def query_by_ids(ids: Iterable[int], osm_type: str) -> str:
    body = ''.join(f'{osm_type}({int(i)});' for i in ids)
    return f'[out:json][timeout:{OVERPASS_QUERY_TIMEOUT_BOUNDARY}]; ({body}); out geom qt;'


def query_is_in(lat: float, lon: float) -> str:
    """Административные границы, содержащие точку (для node из геокодера)."""
    levels = ''.join(BOUNDARY_ADMIN_LEVELS)
    return (
        f'[out:json][timeout:{OVERPASS_QUERY_TIMEOUT_BOUNDARY}];\n'
        f'  is_in({lat},{lon})->.a;\n'
        f'  relation(area.a)["boundary"="administrative"]["admin_level"~"^[{levels}]$"];\n'
        '  out geom qt;'
    )


def query_settlements(area: str) -> str:
    """Города и посёлки городского типа внутри области."""
    return (
        f'[out:json][timeout:{OVERPASS_QUERY_TIMEOUT_BOUNDARY}];\n'
        f'({area};)->.searchArea;\n'
        '(\n'
        '  relation["place"~"^(city|town)$"](area.searchArea);\n'
        '  way["place"~"^(city|town)$"](area.searchArea);\n'
        ');\n'
        'out geom qt;'
    )


def admin_level_of(element: dict[str, Any]) -> int:
    raw = (element.get('tags') or {}).get('admin_level')
    try:
        return int(raw)
    except (TypeError, ValueError):
        return DEFAULT_ADMIN_LEVEL


def most_specific_boundary(elements: Sequence[dict[str, Any]]) -> dict[str, Any] | None:
    """Граница с наибольшим admin_level (самая детальная); None для пустого списка."""
    if not elements:
        return None
    return max(elements, key=admin_level_of)


def feature_name(tags: dict[str, Any]) -> str:
    return str(
        tags.get('name')
        or tags.get('name:ru')
        or tags.get('official_name')
        or DEFAULT_FEATURE_NAME
    )


def _geometry_to_arc(geometry: Iterable[dict[str, Any]]) -> list[tuple[float, float]]:
    return [(float(pt['lon']), float(pt['lat'])) for pt in geometry if pt]


@dataclass
class ParsedElements:
    """Результат разбора ответа: дуги, объединённые теги и первый элемент."""

    arcs: list[list[tuple[float, float]]] = field(default_factory=list)
    tags: dict[str, str] = field(default_factory=dict)
    name: str = DEFAULT_FEATURE_NAME
    first: dict[str, Any] | None = None


def parse_elements(data: dict[str, Any] | None) -> ParsedElements:
    """
    Разбирает ответ Overpass.

    Ways дают свою геометрию; relations дают геометрию участников-ways
    с ролью outer или без роли. Теги элементов сливаются, имя берётся из
    первого элемента, у которого оно есть.
    """
    out = ParsedElements()
    elements = (data or {}).get('elements') or []
    if not elements:
        return out
    out.first = elements[0]
    name: str | None = None
    for el in elements:
        tags = {str(k): str(v) for k, v in (el.get('tags') or {}).items()}
        if name is None and tags:
            name = feature_name(tags)
        out.tags.update(tags)
        if el.get('type') == 'way' and el.get('geometry'):
            arc = _geometry_to_arc(el['geometry'])
            if len(arc) >= MIN_POINTS_FOR_ARC:
                out.arcs.append(arc)
        elif el.get('type') == 'relation':
            for m in el.get('members') or []:
                if m.get('type') != 'way' or not m.get('geometry'):
                    continue
                if m.get('role') not in ('outer', '', None):
                    continue
                arc = _geometry_to_arc(m['geometry'])
                if len(arc) >= MIN_POINTS_FOR_ARC:
                    out.arcs.append(arc)
    out.name = name or DEFAULT_FEATURE_NAME
    return out
