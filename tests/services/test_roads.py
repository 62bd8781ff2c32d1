"""Tests for services.roads module."""

from unittest.mock import AsyncMock

import pytest

from domain.models import BoundaryFeature, Geometry, Point2, RoadClass
from services.road_cache import RoadQueryCache
from services.roads import (
    RawRoadArc,
    RoadService,
    RoadTarget,
    area_selector,
    build_road_query,
    classify_road,
    dedupe,
    filter_roads,
    raw_arcs_from_elements,
    road_identity,
    road_name,
)
from shared.errors import FetchFailure

LINE = (Point2(37.0, 55.0), Point2(37.1, 55.1))


def _way(way_id, tags, coords=((55.0, 37.0), (55.1, 37.1))):
    return {
        'type': 'way',
        'id': way_id,
        'tags': tags,
        'geometry': [{'lat': lat, 'lon': lon} for lat, lon in coords],
    }


def _boundary(osm_id=123, osm_type='relation', name='Область'):
    ring = [Point2(0, 0), Point2(1, 0), Point2(1, 1), Point2(0, 0)]
    return BoundaryFeature(
        identity=f'osm-{osm_id}',
        name=name,
        geometry=Geometry.from_rings([ring]),
        osm_ids=[osm_id],
        osm_type=osm_type,
    )


class TestClassifyRoad:
    """Tests for classify_road function."""

    @pytest.mark.parametrize('ref', ['M-11', 'М-11', 'Р-22', 'A-100', 'А-100'])
    def test_federal_ref_prefixes(self, ref):
        """Latin and Cyrillic M/R/A prefixes should be federal."""
        assert classify_road({'ref': ref, 'highway': 'primary'}) == RoadClass.FEDERAL

    def test_latin_p_is_regional(self):
        """Secondary way with ref 'P-22' (Latin P) should be regional."""
        assert classify_road({'ref': 'P-22', 'highway': 'secondary'}) == RoadClass.REGIONAL

    def test_motorway_without_ref_is_federal(self):
        assert classify_road({'highway': 'motorway'}) == RoadClass.FEDERAL

    @pytest.mark.parametrize('highway', ['motorway', 'trunk'])
    def test_federal_highway_class(self, highway):
        assert classify_road({'highway': highway}) == RoadClass.FEDERAL

    def test_numeric_ref_regional(self):
        assert classify_road({'ref': '46К-1100', 'highway': 'secondary'}) == RoadClass.REGIONAL

    def test_no_tags(self):
        assert classify_road({}) == RoadClass.REGIONAL


class TestRoadName:
    def test_name_then_ref_then_default(self):
        assert road_name({'name': 'Трасса Дон', 'ref': 'М-4'}) == 'Трасса Дон'
        assert road_name({'ref': 'М-4'}) == 'М-4'
        assert road_name({}) == 'Трасса'


class TestAreaSelector:
    """Tests for area_selector function."""

    def test_relation_offset(self):
        assert area_selector(_boundary(51490, 'relation')) == 'area(3600051490)'

    def test_way_offset(self):
        assert area_selector(_boundary(7, 'way')) == 'area(2400000007)'

    def test_by_name(self):
        target = RoadTarget((), None, 'Тверская "область"')
        sel = area_selector(target)
        assert sel.startswith('area["name"~"Тверская \\"область\\""]')
        assert '^[45]$' in sel

    def test_nothing(self):
        assert area_selector(RoadTarget((), None, '')) is None

    def test_target_from_boundary(self):
        target = RoadTarget.from_boundary(_boundary(5))
        assert target == RoadTarget((5,), 'relation', 'Область')


class TestBuildRoadQuery:
    """Tests for build_road_query function."""

    def test_none_when_nothing_selected(self):
        assert build_road_query('area(1)', include_federal=False, include_regional=False) is None

    def test_federal_only(self):
        ql = build_road_query('area(1)', include_federal=True, include_regional=False)
        assert '(area(1);)->.searchArea;' in ql
        assert 'motorway|trunk' in ql
        assert 'tertiary' not in ql
        assert ql.endswith('out geom qt;')

    def test_regional_only(self):
        ql = build_road_query('area(1)', include_federal=False, include_regional=True)
        assert 'primary|secondary|tertiary' in ql
        assert '^[0-9]' in ql

    def test_both(self):
        ql = build_road_query('area(1)', include_federal=True, include_regional=True)
        assert 'motorway|trunk' in ql
        assert '["ref"](area.searchArea)' in ql


class TestRawArcs:
    """Tests for raw_arcs_from_elements."""

    def test_ways(self):
        arcs = raw_arcs_from_elements([_way(10, {'ref': 'М-4'})])
        assert len(arcs) == 1
        assert arcs[0].way_id == 10
        assert arcs[0].points[0] == Point2(37.0, 55.0)

    def test_short_way_skipped(self):
        assert raw_arcs_from_elements([_way(10, {}, coords=((55.0, 37.0),))]) == []

    def test_relation_members_get_relation_tags(self):
        rel = {
            'type': 'relation',
            'id': 99,
            'tags': {'ref': 'Р-22'},
            'members': [
                {'type': 'way', 'geometry': [{'lat': 1, 'lon': 2}, {'lat': 3, 'lon': 4}]},
                {'type': 'node', 'lat': 1, 'lon': 2},
            ],
        }
        arcs = raw_arcs_from_elements([rel])
        assert len(arcs) == 1
        assert arcs[0].way_id is None
        assert arcs[0].tags == {'ref': 'Р-22'}


class TestDedupe:
    """Tests for dedupe function."""

    def test_same_way_from_two_targets_kept_once(self):
        arc = RawRoadArc(42, {'ref': 'М-11'}, LINE)
        roads = dedupe([[arc], [arc]])
        assert len(roads) == 1
        assert roads[0].identity == 'way/42'
        assert roads[0].classification == RoadClass.FEDERAL

    def test_first_seen_order(self):
        a = RawRoadArc(1, {}, LINE)
        b = RawRoadArc(2, {}, LINE)
        roads = dedupe([[b], [a, b]])
        assert [r.identity for r in roads] == ['way/2', 'way/1']

    def test_content_key_fallback(self):
        a = RawRoadArc(None, {'ref': '1'}, LINE)
        b = RawRoadArc(None, {'ref': '1'}, LINE)
        roads = dedupe([[a], [b]])
        assert len(roads) == 1
        assert road_identity(a).startswith('geom/37.0000000,55.0000000')

    def test_classified_once(self, monkeypatch):
        """Classification should run once per unique road."""
        calls = []

        def _spy(tags):
            calls.append(tags)
            return RoadClass.REGIONAL

        monkeypatch.setattr('services.roads.classify_road', _spy)
        arc = RawRoadArc(7, {}, LINE)
        dedupe([[arc, arc], [arc]])
        assert len(calls) == 1

    def test_filter_roads(self):
        roads = dedupe(
            [[RawRoadArc(1, {'ref': 'М-1'}, LINE), RawRoadArc(2, {'ref': '12'}, LINE)]]
        )
        fed = filter_roads(roads, include_federal=True, include_regional=False)
        assert [r.identity for r in fed] == ['way/1']
        both = filter_roads(roads, include_federal=True, include_regional=True)
        assert len(both) == 2


class TestRoadService:
    """Tests for RoadService with a mocked geodata client."""

    @pytest.mark.asyncio
    async def test_fetch_and_dedupe_across_boundaries(self):
        client = AsyncMock()
        client.run_query.return_value = {
            'elements': [_way(1, {'ref': 'М-4', 'highway': 'trunk'}), _way(2, {'ref': '12'})]
        }
        service = RoadService(client)
        roads = await service.fetch_roads(
            [_boundary(1), _boundary(2)], include_federal=True, include_regional=True
        )
        assert client.run_query.await_count == 2
        assert [r.identity for r in roads] == ['way/1', 'way/2']

    @pytest.mark.asyncio
    async def test_cache_hit_skips_request(self):
        client = AsyncMock()
        client.run_query.return_value = {'elements': [_way(1, {'ref': 'М-4'})]}
        service = RoadService(client, RoadQueryCache())
        b = _boundary(1)
        await service.fetch_roads([b], include_federal=True, include_regional=False)
        await service.fetch_roads([b], include_federal=True, include_regional=False)
        assert client.run_query.await_count == 1

    @pytest.mark.asyncio
    async def test_nothing_enabled(self):
        client = AsyncMock()
        roads = await RoadService(client).fetch_roads(
            [_boundary()], include_federal=False, include_regional=False
        )
        assert roads == []
        client.run_query.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_all_failed_returns_none(self):
        client = AsyncMock()
        client.run_query.side_effect = FetchFailure('down')
        roads = await RoadService(client).fetch_roads(
            [_boundary()], include_federal=True, include_regional=True
        )
        assert roads is None

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_successful(self):
        client = AsyncMock()
        client.run_query.side_effect = [
            FetchFailure('down'),
            {'elements': [_way(5, {'ref': 'М-5'})]},
        ]
        roads = await RoadService(client).fetch_roads(
            [_boundary(1), _boundary(2)], include_federal=True, include_regional=False
        )
        assert [r.identity for r in roads] == ['way/5']
