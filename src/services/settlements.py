"""Населённые пункты (place=city|town) внутри выбранных границ."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from domain.models import BoundaryFeature
from infrastructure.overpass import query_settlements
from services.boundaries import build_boundary
from services.roads import RoadTarget, area_selector
from shared.constants import OVERPASS_BOUNDARY_TIMEOUT_S
from shared.errors import FetchFailure

if TYPE_CHECKING:
    from infrastructure.overpass import GeodataQuery

logger = logging.getLogger(__name__)


class SettlementService:
    def __init__(self, client: GeodataQuery) -> None:
        self._client = client

    async def fetch_settlements(
        self, boundaries: Sequence[BoundaryFeature | RoadTarget]
    ) -> list[BoundaryFeature] | None:
        """
        Полигоны городов для всех границ, без повторов.

        None: ни один запрос не удался (прежние данные не трогаем).
        """
        found: dict[str, BoundaryFeature] = {}
        attempted = 0
        failed = 0
        for b in boundaries:
            area = area_selector(b)
            if area is None:
                continue
            attempted += 1
            try:
                data = await self._client.run_query(
                    query_settlements(area), timeout_s=OVERPASS_BOUNDARY_TIMEOUT_S
                )
            except FetchFailure:
                failed += 1
                continue
            for el in data.get('elements') or []:
                el_id = el.get('id')
                el_type = str(el.get('type') or 'relation')
                ids = [int(el_id)] if el_id is not None else []
                feature = build_boundary({'elements': [el]}, ids, el_type)
                if feature is None or feature.identity in found:
                    continue
                found[feature.identity] = feature
        if attempted and failed == attempted:
            logger.warning('Населённые пункты: нет данных')
            return None
        logger.info('Населённые пункты: %d', len(found))
        return list(found.values())
