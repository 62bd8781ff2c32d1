"""
Загрузка границ регионов и городов и сборка их полигонов.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from domain.models import BoundaryFeature, Geometry, Point2
from geo.stitching import StitchedRing, stitch
from infrastructure.overpass import (
    most_specific_boundary,
    parse_elements,
    query_by_ids,
    query_is_in,
)
from shared.constants import OVERPASS_BOUNDARY_TIMEOUT_S
from shared.errors import FetchFailure
from shared.progress import publish_warning

if TYPE_CHECKING:
    from infrastructure.geocoding import GeocodeCandidate
    from infrastructure.overpass import GeodataQuery

logger = logging.getLogger(__name__)


def normalize_ids(osm_id: int | Sequence[int]) -> list[int]:
    return [int(osm_id)] if isinstance(osm_id, int) else [int(i) for i in osm_id]


def boundary_identity(ids: Sequence[int], name: str) -> str:
    if ids:
        return 'osm-' + '-'.join(str(int(i)) for i in ids)
    return name


def rings_to_geometry(rings: Sequence[StitchedRing]) -> tuple[Geometry | None, int]:
    """
    Polygon/MultiPolygon из результатов сшивки.

    В геометрию попадают только замкнутые кольца не менее чем из трёх
    вершин. Незамкнутые цепочки отбрасываются; если полноценных колец нет
    совсем, геометрии нет. Возвращает (геометрия, число отбракованных колец).
    """
    valid = [r for r in rings if r.is_polygon_ring]
    rejected = len(rings) - len(valid)
    if not valid:
        return None, rejected
    return Geometry.from_rings([list(r.points) for r in valid]), rejected


def build_boundary(
    data: dict[str, Any] | None,
    ids: Sequence[int],
    osm_type: str,
) -> BoundaryFeature | None:
    """BoundaryFeature из ответа Overpass; None, если геометрии нет."""
    parsed = parse_elements(data)
    first = parsed.first
    if first is None:
        return None
    identity = boundary_identity(ids, parsed.name)
    el_type = str(first.get('type') or osm_type)
    # После поиска по точке (is_in) id границы отличается от запрошенного
    first_id = first.get('id')
    resolved_ids = list(ids) if first_id is None or first_id in ids else [int(first_id)]

    if not parsed.arcs and el_type == 'node':
        # Одиночная точка остаётся точкой и не превращается в кольцо
        return BoundaryFeature(
            identity=identity,
            name=parsed.name,
            tags=parsed.tags,
            geometry=Geometry.point(Point2(float(first['lon']), float(first['lat']))),
            osm_ids=list(ids),
            osm_type='node',
        )
    if not parsed.arcs:
        return None

    rings = stitch(parsed.arcs)
    geometry, rejected = rings_to_geometry(rings)
    if rejected:
        publish_warning(
            f'Граница «{parsed.name}»: отброшено незамкнутых или вырожденных колец: '
            f'{rejected} из {len(rings)}'
        )
    if geometry is None:
        return None
    return BoundaryFeature(
        identity=identity,
        name=parsed.name,
        tags=parsed.tags,
        geometry=geometry,
        osm_ids=resolved_ids,
        osm_type=el_type,
        degenerate_rings=rejected,
    )


class BoundaryService:
    def __init__(self, client: GeodataQuery) -> None:
        self._client = client

    async def _query(self, ql: str) -> dict[str, Any] | None:
        try:
            return await self._client.run_query(ql, timeout_s=OVERPASS_BOUNDARY_TIMEOUT_S)
        except FetchFailure:
            return None

    async def fetch_boundary_data(
        self, ids: Sequence[int], osm_type: str
    ) -> dict[str, Any] | None:
        """
        Сырой ответ Overpass для границы; None, если данных нет.

        Если геокодер вернул точку (node), ищется самая детальная
        административная граница, в которую она входит.
        """
        if not ids:
            return None
        data = await self._query(query_by_ids(ids, osm_type))
        elements = (data or {}).get('elements') or []
        if elements and elements[0].get('type') == 'node':
            node = elements[0]
            around = await self._query(query_is_in(node['lat'], node['lon']))
            best = most_specific_boundary((around or {}).get('elements') or [])
            if best is not None:
                logger.info(
                    'Точка %s: используется граница admin_level=%s',
                    ids[0],
                    (best.get('tags') or {}).get('admin_level'),
                )
                data = {'elements': [best]}
        if not elements:
            return None
        return data

    async def fetch_boundary(
        self, osm_id: int | Sequence[int], osm_type: str
    ) -> BoundaryFeature | None:
        """Граница по OSM id (одному или нескольким): загрузка и сшивка."""
        ids = normalize_ids(osm_id)
        data = await self.fetch_boundary_data(ids, osm_type)
        feature = build_boundary(data, ids, osm_type) if data is not None else None
        if feature is None:
            logger.warning('Граница %s/%s: нет геометрии', osm_type, ids)
        return feature

    async def fetch_for_candidate(
        self, candidate: GeocodeCandidate
    ) -> BoundaryFeature | None:
        if candidate.osm_id is None or not candidate.osm_type:
            return None
        return await self.fetch_boundary(candidate.osm_id, candidate.osm_type)
