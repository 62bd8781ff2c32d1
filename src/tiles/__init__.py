"""Basemap tiles.

This module provides:
- TileFetcher: concurrent XYZ tile retrieval with per-tile timeout
- build_mosaic: supersampled raster underlay for export
"""

from tiles.fetcher import TileFetcher, tile_url
from tiles.mosaic import (
    MosaicResult,
    build_mosaic,
    encode_data_url,
    plan_tiles,
    to_data_url,
)

__all__ = [
    'MosaicResult',
    'TileFetcher',
    'build_mosaic',
    'encode_data_url',
    'plan_tiles',
    'tile_url',
    'to_data_url',
]
