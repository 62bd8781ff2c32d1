# Векторные слои, отсечение и сборка SVG
from render.clip_mask import ClipMask, ClipMaskCache, ClipRegion, DimMask, synthesize
from render.overlay import (
    LayerStyle,
    render_annotation_layer,
    render_boundaries,
    render_layer,
    render_roads,
    render_settlements,
)
from render.primitives import CircleMarker, PathPrimitive
from render.svg_document import SvgLayers, build_svg, serialize

__all__ = [
    'CircleMarker',
    'ClipMask',
    'ClipMaskCache',
    'ClipRegion',
    'DimMask',
    'LayerStyle',
    'PathPrimitive',
    'SvgLayers',
    'build_svg',
    'render_annotation_layer',
    'render_boundaries',
    'render_layer',
    'render_roads',
    'render_settlements',
    'serialize',
    'synthesize',
]
