"""Services package - boundaries, roads, settlements and compositing."""

from services.boundaries import BoundaryService, build_boundary
from services.compositor import (
    CompositingSession,
    CompositorState,
    ExportSession,
    compose_layers,
)
from services.road_cache import RoadQueryCache, request_signature
from services.roads import RoadService, RoadTarget, classify_road, dedupe
from services.settlements import SettlementService

__all__ = [
    'BoundaryService',
    'CompositingSession',
    'CompositorState',
    'ExportSession',
    'RoadQueryCache',
    'RoadService',
    'RoadTarget',
    'SettlementService',
    'build_boundary',
    'classify_road',
    'compose_layers',
    'dedupe',
    'request_signature',
]
