"""
Дороги внутри выбранных границ: запросы, классификация и дедупликация.

Запрос выполняется отдельно для каждой границы. Границы могут перекрываться,
поэтому один и тот же way приходит несколько раз и схлопывается по identity.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NamedTuple

from domain.models import BoundaryFeature, Geometry, Point2, RoadClass, RoadFeature
from services.road_cache import RoadQueryCache, request_signature
from shared.constants import (
    DEFAULT_ROAD_NAME,
    FEDERAL_HIGHWAY_CLASSES,
    FEDERAL_REF_PATTERN,
    MIN_POINTS_FOR_ARC,
    OVERPASS_AREA_OFFSET_RELATION,
    OVERPASS_AREA_OFFSET_WAY,
    OVERPASS_QUERY_TIMEOUT_ROADS,
    OVERPASS_ROADS_TIMEOUT_S,
    REGIONAL_HIGHWAY_CLASSES,
    REGIONAL_REF_PATTERN,
)
from shared.errors import FetchFailure

if TYPE_CHECKING:
    from infrastructure.overpass import GeodataQuery

logger = logging.getLogger(__name__)

_FEDERAL_REF_RE = re.compile(FEDERAL_REF_PATTERN)
# Точность ключа по первой вершине (~1 см)
_CONTENT_KEY_DIGITS = 7


def classify_road(tags: dict[str, Any]) -> RoadClass:
    """
    Федеральная трасса: ref с префиксом М-/Р-/А- (латиница или кириллица)
    либо highway=motorway|trunk. Всё остальное считается региональной дорогой.
    """
    ref = str(tags.get('ref') or '')
    highway = str(tags.get('highway') or '')
    if _FEDERAL_REF_RE.match(ref) or highway in FEDERAL_HIGHWAY_CLASSES:
        return RoadClass.FEDERAL
    return RoadClass.REGIONAL


def road_name(tags: dict[str, Any]) -> str:
    return str(tags.get('name') or tags.get('ref') or DEFAULT_ROAD_NAME)


class RoadTarget(NamedTuple):
    """То, что нужно для запроса дорог: id, тип и имя области."""

    osm_ids: tuple[int, ...]
    osm_type: str | None
    name: str

    @classmethod
    def from_boundary(cls, boundary: BoundaryFeature) -> RoadTarget:
        return cls(tuple(boundary.osm_ids), boundary.osm_type, boundary.name)


def area_selector(boundary: BoundaryFeature | RoadTarget) -> str | None:
    """
    Селектор области Overpass для границы.

    relation -> area(3600000000 + id), way -> area(2400000000 + id),
    без id: поиск области по имени среди admin_level 4/5.
    """
    if boundary.osm_ids:
        base_id = int(boundary.osm_ids[0])
        offset = (
            OVERPASS_AREA_OFFSET_WAY
            if boundary.osm_type == 'way'
            else OVERPASS_AREA_OFFSET_RELATION
        )
        return f'area({offset + base_id})'
    if boundary.name:
        name = boundary.name.replace('"', '\\"')
        return f'area["name"~"{name}"]["admin_level"~"^[45]$"]'
    return None


def _alt(values: Sequence[str]) -> str:
    return '|'.join(values)


def build_road_query(
    area: str, *, include_federal: bool, include_regional: bool
) -> str | None:
    """QL-запрос дорог в области; None, если не выбран ни один класс."""
    fed = _alt(FEDERAL_HIGHWAY_CLASSES)
    reg = _alt(REGIONAL_HIGHWAY_CLASSES)
    if include_federal and include_regional:
        road_filter = (
            '(\n'
            f'  way["highway"~"^({fed})$"](area.searchArea);\n'
            f'  way["highway"~"^({reg})$"]["ref"](area.searchArea);\n'
            ');'
        )
    elif include_federal:
        road_filter = (
            '(\n'
            f'  way["highway"~"^({fed})$"](area.searchArea);\n'
            f'  way["highway"~"^(primary|secondary)$"]["ref"~"{FEDERAL_REF_PATTERN}.*"]'
            '(area.searchArea);\n'
            ');'
        )
    elif include_regional:
        road_filter = (
            f'way["highway"~"^({reg})$"]["ref"~"{REGIONAL_REF_PATTERN}.*"]'
            '(area.searchArea);'
        )
    else:
        return None
    return (
        f'[out:json][timeout:{OVERPASS_QUERY_TIMEOUT_ROADS}];\n'
        f'({area};)->.searchArea;\n'
        f'(\n{road_filter}\n);\n'
        'out geom qt;'
    )


@dataclass(frozen=True)
class RawRoadArc:
    """Один way из ответа; way_id отсутствует у участников route-relation."""

    way_id: int | None
    tags: dict[str, str]
    points: tuple[Point2, ...]


def raw_arcs_from_elements(elements: Iterable[dict[str, Any]]) -> list[RawRoadArc]:
    out: list[RawRoadArc] = []
    for el in elements:
        tags = {str(k): str(v) for k, v in (el.get('tags') or {}).items()}
        if el.get('type', 'way') == 'way' and el.get('geometry'):
            pts = tuple(Point2(float(p['lon']), float(p['lat'])) for p in el['geometry'])
            if len(pts) >= MIN_POINTS_FOR_ARC:
                way_id = el.get('id')
                out.append(RawRoadArc(int(way_id) if way_id is not None else None, tags, pts))
        elif el.get('type') == 'relation':
            # Участники маршрута: своих тегов нет, берём теги relation
            for m in el.get('members') or []:
                if m.get('type') != 'way' or not m.get('geometry'):
                    continue
                pts = tuple(Point2(float(p['lon']), float(p['lat'])) for p in m['geometry'])
                if len(pts) >= MIN_POINTS_FOR_ARC:
                    out.append(RawRoadArc(None, tags, pts))
    return out


def road_identity(arc: RawRoadArc) -> str:
    if arc.way_id is not None:
        return f'way/{arc.way_id}'
    first = arc.points[0]
    return f'geom/{first.x:.{_CONTENT_KEY_DIGITS}f},{first.y:.{_CONTENT_KEY_DIGITS}f}'


def dedupe(raw_road_arcs_per_target: Iterable[Iterable[RawRoadArc]]) -> list[RoadFeature]:
    """
    Объединяет дороги, полученные для нескольких границ.

    Ключ: way id, при его отсутствии первая вершина. Классификация
    выполняется один раз на уникальную дорогу, порядок по первому появлению.
    """
    seen: dict[str, RoadFeature] = {}
    total = 0
    for target in raw_road_arcs_per_target:
        for arc in target:
            total += 1
            key = road_identity(arc)
            if key in seen:
                continue
            seen[key] = RoadFeature(
                identity=key,
                name=road_name(arc.tags),
                classification=classify_road(arc.tags),
                geometry=Geometry.line_string(list(arc.points)),
                tags=arc.tags,
            )
    logger.debug('Дороги: %d вхождений -> %d уникальных', total, len(seen))
    return list(seen.values())


def filter_roads(
    roads: Iterable[RoadFeature], *, include_federal: bool, include_regional: bool
) -> list[RoadFeature]:
    allowed = set()
    if include_federal:
        allowed.add(RoadClass.FEDERAL)
    if include_regional:
        allowed.add(RoadClass.REGIONAL)
    return [r for r in roads if r.classification in allowed]


class RoadService:
    """Запрос дорог для набора границ через кэш и клиент геоданных."""

    def __init__(self, client: GeodataQuery, cache: RoadQueryCache | None = None) -> None:
        self._client = client
        self.cache = cache if cache is not None else RoadQueryCache()

    async def _fetch_target(
        self, area: str, *, include_federal: bool, include_regional: bool
    ) -> list[RawRoadArc] | None:
        key = request_signature(
            area, include_federal=include_federal, include_regional=include_regional
        )
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug('Дороги: из кэша %s', key)
            return cached
        ql = build_road_query(
            area, include_federal=include_federal, include_regional=include_regional
        )
        if ql is None:
            return []
        try:
            data = await self._client.run_query(ql, timeout_s=OVERPASS_ROADS_TIMEOUT_S)
        except FetchFailure:
            return None
        arcs = raw_arcs_from_elements(data.get('elements') or [])
        self.cache.put(key, arcs)
        return arcs

    async def fetch_roads(
        self,
        boundaries: Sequence[BoundaryFeature | RoadTarget],
        *,
        include_federal: bool,
        include_regional: bool,
    ) -> list[RoadFeature] | None:
        """
        Дороги для всех границ.

        Возвращает None, если ни один запрос не удался; тогда вызывающий
        оставляет прежние данные без изменений.
        """
        if not (include_federal or include_regional) or not boundaries:
            return []
        per_target: list[list[RawRoadArc]] = []
        failed = 0
        for b in boundaries:
            area = area_selector(b)
            if area is None:
                continue
            arcs = await self._fetch_target(
                area, include_federal=include_federal, include_regional=include_regional
            )
            if arcs is None:
                failed += 1
                continue
            per_target.append(arcs)
        if not per_target and failed:
            logger.warning('Дороги: нет данных ни для одной границы')
            return None
        roads = dedupe(per_target)
        return filter_roads(
            roads, include_federal=include_federal, include_regional=include_regional
        )
