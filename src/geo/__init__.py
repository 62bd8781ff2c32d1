"""Геометрия: сшивка дуг границ и проекции Меркатора (EPSG:3857, EPSG:3395)."""
from geo.projection import (
    ViewTransform,
    fit_bounds,
    geo_bounds,
    latlng_to_pixel_xy,
    pixel_xy_to_latlng,
    project,
    project_to_container_space,
    project_to_tile_space,
    tile_corner_geo,
    tile_index_range,
    unproject_container_point,
    view_origin_world,
    viewport_bounds,
)
from geo.stitching import StitchedRing, points_match, stitch

__all__ = [
    'StitchedRing',
    'ViewTransform',
    'fit_bounds',
    'geo_bounds',
    'latlng_to_pixel_xy',
    'pixel_xy_to_latlng',
    'points_match',
    'project',
    'project_to_container_space',
    'project_to_tile_space',
    'stitch',
    'tile_corner_geo',
    'tile_index_range',
    'unproject_container_point',
    'view_origin_world',
    'viewport_bounds',
]
