"""Tests for services.settlements module."""

from unittest.mock import AsyncMock

import pytest

from domain.models import BoundaryFeature, Geometry, Point2
from services.roads import RoadTarget
from services.settlements import SettlementService
from shared.errors import FetchFailure


def _city(way_id, name):
    coords = [(0, 0), (1, 0), (1, 1), (0, 0)]
    return {
        'type': 'way',
        'id': way_id,
        'tags': {'place': 'city', 'name': name},
        'geometry': [{'lon': x, 'lat': y} for x, y in coords],
    }


def _boundary(osm_id):
    ring = [Point2(0, 0), Point2(2, 0), Point2(2, 2), Point2(0, 0)]
    return BoundaryFeature(
        identity=f'osm-{osm_id}',
        name='Регион',
        geometry=Geometry.from_rings([ring]),
        osm_ids=[osm_id],
        osm_type='relation',
    )


class TestSettlementService:
    """Tests for SettlementService.fetch_settlements."""

    @pytest.mark.asyncio
    async def test_dedupes_across_boundaries(self):
        client = AsyncMock()
        client.run_query.return_value = {'elements': [_city(10, 'Тверь'), _city(11, 'Торжок')]}
        found = await SettlementService(client).fetch_settlements([_boundary(1), _boundary(2)])
        assert [f.identity for f in found] == ['osm-10', 'osm-11']
        assert client.run_query.await_count == 2
        assert 'place' in client.run_query.await_args.args[0]

    @pytest.mark.asyncio
    async def test_accepts_road_targets(self):
        client = AsyncMock()
        client.run_query.return_value = {'elements': [_city(10, 'Тверь')]}
        found = await SettlementService(client).fetch_settlements(
            [RoadTarget((3,), 'relation', 'Регион')]
        )
        assert len(found) == 1
        assert 'area(3600000003)' in client.run_query.await_args.args[0]

    @pytest.mark.asyncio
    async def test_all_failed(self):
        client = AsyncMock()
        client.run_query.side_effect = FetchFailure('down')
        assert await SettlementService(client).fetch_settlements([_boundary(1)]) is None

    @pytest.mark.asyncio
    async def test_no_boundaries(self):
        client = AsyncMock()
        assert await SettlementService(client).fetch_settlements([]) == []
