"""Tests for domain.models module."""

import pytest
from pydantic import ValidationError

from domain.models import (
    AnnotationLayer,
    BoundaryFeature,
    Geometry,
    GeometryType,
    Point2,
    SelectionCollection,
    StyleSettings,
    ViewState,
)
from shared.constants import MapMode

RING = [Point2(0, 0), Point2(1, 0), Point2(1, 1), Point2(0, 0)]


def _feature(identity, name='x'):
    return BoundaryFeature(identity=identity, name=name, geometry=Geometry.from_rings([RING]))


class TestGeometry:
    """Tests for Geometry helpers."""

    def test_single_ring_is_polygon(self):
        g = Geometry.from_rings([RING])
        assert g.type == GeometryType.POLYGON
        assert g.rings() == [RING]

    def test_many_rings_are_multipolygon(self):
        g = Geometry.from_rings([RING, RING])
        assert g.type == GeometryType.MULTI_POLYGON
        assert len(g.rings()) == 2

    def test_point_and_lines(self):
        p = Geometry.point(Point2(37.5, 55.7))
        assert p.points() == [Point2(37.5, 55.7)]
        assert p.rings() == []
        line = Geometry.line_string([Point2(0, 0), Point2(1, 1)])
        assert line.lines() == [[Point2(0, 0), Point2(1, 1)]]

    def test_all_vertices(self):
        g = Geometry.from_rings([RING])
        assert len(g.all_vertices()) == 4

    def test_frozen(self):
        g = Geometry.point(Point2(0, 0))
        with pytest.raises(ValidationError):
            g.type = GeometryType.POLYGON


class TestSelectionCollection:
    """Tests for SelectionCollection identity semantics."""

    def test_add_and_replace(self):
        sel = SelectionCollection()
        assert sel.add(_feature('osm-1', 'old'))
        assert not sel.add(_feature('osm-1', 'new'))
        assert len(sel) == 1
        assert sel.get('osm-1').name == 'new'

    def test_remove_by_identity_only(self):
        sel = SelectionCollection([_feature('osm-1'), _feature('osm-2')])
        assert sel.remove('osm-1')
        assert not sel.remove('osm-1')
        assert sel.identities() == frozenset({'osm-2'})
        assert 'osm-2' in sel

    def test_iteration_is_snapshot(self):
        sel = SelectionCollection([_feature('osm-1'), _feature('osm-2')])
        for f in sel:
            sel.remove(f.identity)
        assert len(sel) == 0

    def test_clear(self):
        sel = SelectionCollection([_feature('osm-1')])
        sel.clear()
        assert sel.to_list() == []


class TestStyleSettings:
    """Tests for StyleSettings validators."""

    def test_defaults(self):
        s = StyleSettings()
        assert s.map_mode == MapMode.STREETS
        assert not s.roads_enabled

    def test_roads_enabled(self):
        assert StyleSettings(show_regional_roads=True).roads_enabled

    def test_opacity_out_of_range(self):
        with pytest.raises(ValidationError):
            StyleSettings(dim_opacity=1.5)

    def test_clamps(self):
        s = StyleSettings(supersample=20, export_zoom_offset=-1, jpeg_quality=500)
        assert s.supersample == 8
        assert s.export_zoom_offset == 0
        assert s.jpeg_quality == 100

    def test_extra_keys_ignored(self):
        s = StyleSettings.model_validate({'map_mode': 'dark', 'legacy_key': 1})
        assert s.map_mode == MapMode.DARK


class TestViewState:
    def test_zoom_range(self):
        with pytest.raises(ValidationError):
            ViewState(origin_lon=0, origin_lat=0, zoom=99)


class TestAnnotationLayer:
    """Tests for AnnotationLayer.from_geojson."""

    def test_feature_collection(self):
        data = {
            'type': 'FeatureCollection',
            'features': [
                {
                    'type': 'Feature',
                    'properties': {'color': '#00ff00', 'name': 'A'},
                    'geometry': {'type': 'Point', 'coordinates': [37.0, 55.0]},
                },
                {'type': 'Feature', 'properties': {}, 'geometry': None},
            ],
        }
        layer = AnnotationLayer.from_geojson('l1', 'Слой', '#ff0000', data)
        assert len(layer.features) == 1
        assert layer.features[0].color == '#00ff00'
        assert layer.visible

    def test_single_feature(self):
        data = {
            'type': 'Feature',
            'geometry': {'type': 'LineString', 'coordinates': [[0, 0], [1, 1]]},
        }
        layer = AnnotationLayer.from_geojson('l2', 'Линия', '#0000ff', data)
        assert layer.features[0].color is None
        assert layer.features[0].geometry.lines() == [[Point2(0, 0), Point2(1, 1)]]
