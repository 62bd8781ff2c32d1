"""Tests for render.clip_mask module."""

import dataclasses

import pytest

from domain.models import BoundaryFeature, Geometry, Point2
from geo.projection import ViewTransform, project_points
from render.clip_mask import (
    ClipMaskCache,
    boundary_rings,
    project_ring_path,
    synthesize,
)
from render.primitives import path_data
from shared.errors import ProjectionUndefined

RING = [Point2(37.0, 55.0), Point2(37.5, 55.0), Point2(37.5, 55.5), Point2(37.0, 55.0)]


@pytest.fixture
def transform():
    return ViewTransform(origin_geo=Point2(36.5, 56.0), zoom=8, width_px=800, height_px=600)


def _boundary(identity='osm-1', rings=(RING,)):
    return BoundaryFeature(identity=identity, name='Г', geometry=Geometry.from_rings(list(rings)))


class TestSynthesize:
    """Tests for synthesize function."""

    def test_no_boundaries_identity_and_inert(self, transform):
        result = synthesize([], transform)
        assert result.clip_region.is_identity
        assert result.dim_mask.is_inert
        assert result.dim_mask.width == 800
        assert result.dim_mask.height == 600

    def test_mask_cutout_equals_clip_path_equals_projected_ring(self, transform):
        """One ring: cut-out path, clip path and projected ring should be the same."""
        result = synthesize([RING], transform)
        expected = path_data(project_points(RING, transform), closed=True)
        assert result.clip_region.paths == (expected,)
        assert result.dim_mask.cutouts == (expected,)

    def test_one_path_per_ring(self, transform):
        ring2 = [Point2(x + 1, y) for x, y in RING]
        result = synthesize([RING, ring2], transform)
        assert len(result.clip_region.paths) == 2

    def test_short_ring_skipped(self, transform):
        result = synthesize([RING[:2]], transform)
        assert result.clip_region.is_identity

    def test_project_ring_path_raises(self, transform):
        with pytest.raises(ProjectionUndefined):
            project_ring_path(RING[:2], transform)

    def test_point_boundaries_ignored(self):
        point = BoundaryFeature(identity='p', name='P', geometry=Geometry.point(Point2(1, 2)))
        assert boundary_rings([point, _boundary()]) == [RING]


class TestClipMaskCache:
    """Tests for ClipMaskCache recomputation rules."""

    def test_same_key_reused(self, transform):
        cache = ClipMaskCache()
        a = cache.get([_boundary()], transform)
        b = cache.get([_boundary()], transform)
        assert a is b
        assert cache.computations == 1

    def test_transform_change_recomputes(self, transform):
        cache = ClipMaskCache()
        a = cache.get([_boundary()], transform)
        b = cache.get([_boundary()], dataclasses.replace(transform, zoom=9))
        assert cache.computations == 2
        assert a.clip_region.paths != b.clip_region.paths

    def test_selection_change_recomputes(self, transform):
        cache = ClipMaskCache()
        cache.get([_boundary('osm-1')], transform)
        result = cache.get([], transform)
        assert cache.computations == 2
        assert result.clip_region.is_identity

    def test_replaced_geometry_recomputes(self, transform):
        cache = ClipMaskCache()
        shifted = [Point2(p.x + 1.0, p.y) for p in RING]
        a = cache.get([_boundary('osm-1')], transform)
        b = cache.get([_boundary('osm-1', rings=(shifted,))], transform)
        assert cache.computations == 2
        assert a.clip_region.paths != b.clip_region.paths
        assert b.dim_mask.cutouts == b.clip_region.paths
