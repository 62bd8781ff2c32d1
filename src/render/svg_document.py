"""
Сборка SVG-документа экспорта.

Порядок слоёв снизу вверх: фон, растровая подложка, затемнение,
Regions, Roads (с отсечением), Settlements (с отсечением), KML_<id>.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field

from render.clip_mask import CLIP_PATH_ID, DIM_MASK_ID, ClipMask
from render.overlay import SETTLEMENT_HATCH_ID
from render.primitives import CircleMarker, Primitive
from shared.constants import (
    DIM_COLOR,
    DIM_OPACITY,
    SETTLEMENT_COLOR,
    SETTLEMENT_HATCH_SPACING,
    SETTLEMENT_HATCH_WIDTH,
)

logger = logging.getLogger(__name__)

SVG_NS = 'http://www.w3.org/2000/svg'
XLINK_NS = 'http://www.w3.org/1999/xlink'


@dataclass
class SvgLayers:
    boundaries: list[Primitive] = field(default_factory=list)
    roads: list[Primitive] = field(default_factory=list)
    settlements: list[Primitive] = field(default_factory=list)
    # (id слоя, примитивы) в порядке отрисовки
    annotations: list[tuple[str, list[Primitive]]] = field(default_factory=list)


def _append_primitives(parent: ET.Element, primitives: list[Primitive]) -> None:
    for prim in primitives:
        tag = 'circle' if isinstance(prim, CircleMarker) else 'path'
        ET.SubElement(parent, tag, prim.attributes())


def _build_defs(root: ET.Element, clip_mask: ClipMask) -> None:
    defs = ET.SubElement(root, 'defs')

    clip = ET.SubElement(defs, 'clipPath', {'id': CLIP_PATH_ID})
    for d in clip_mask.clip_region.paths:
        ET.SubElement(clip, 'path', {'d': d})

    mask_def = clip_mask.dim_mask
    mask = ET.SubElement(
        defs,
        'mask',
        {
            'id': DIM_MASK_ID,
            'maskUnits': 'userSpaceOnUse',
            'x': '0',
            'y': '0',
            'width': str(mask_def.width),
            'height': str(mask_def.height),
            'style': 'mask-type:luminance',
        },
    )
    ET.SubElement(
        mask,
        'rect',
        {
            'x': '0',
            'y': '0',
            'width': str(mask_def.width),
            'height': str(mask_def.height),
            'fill': '#ffffff',
        },
    )
    for d in mask_def.cutouts:
        ET.SubElement(mask, 'path', {'d': d, 'fill': '#000000'})

    spacing = str(SETTLEMENT_HATCH_SPACING)
    pattern = ET.SubElement(
        defs,
        'pattern',
        {
            'id': SETTLEMENT_HATCH_ID,
            'patternUnits': 'userSpaceOnUse',
            'width': spacing,
            'height': spacing,
            'patternTransform': 'rotate(45)',
        },
    )
    ET.SubElement(
        pattern,
        'line',
        {
            'x1': '0',
            'y1': '0',
            'x2': '0',
            'y2': spacing,
            'stroke': SETTLEMENT_COLOR,
            'stroke-width': f'{SETTLEMENT_HATCH_WIDTH:g}',
        },
    )


def build_svg(
    width: int,
    height: int,
    *,
    background: str,
    clip_mask: ClipMask,
    layers: SvgLayers,
    raster_data_url: str | None = None,
    dim_background: bool = False,
    dim_opacity: float = DIM_OPACITY,
    clip_to_boundaries: bool = True,
) -> ET.Element:
    root = ET.Element(
        'svg',
        {
            'xmlns': SVG_NS,
            'xmlns:xlink': XLINK_NS,
            'width': str(width),
            'height': str(height),
            'viewBox': f'0 0 {width} {height}',
        },
    )
    _build_defs(root, clip_mask)
    ET.SubElement(root, 'rect', {'width': '100%', 'height': '100%', 'fill': background})
    if raster_data_url:
        ET.SubElement(
            root,
            'image',
            {
                'xlink:href': raster_data_url,
                'x': '0',
                'y': '0',
                'width': str(width),
                'height': str(height),
                'preserveAspectRatio': 'none',
            },
        )
    if dim_background and not clip_mask.dim_mask.is_inert:
        ET.SubElement(
            root,
            'rect',
            {
                'id': 'Dim',
                'x': '0',
                'y': '0',
                'width': str(width),
                'height': str(height),
                'fill': DIM_COLOR,
                'fill-opacity': f'{dim_opacity:g}',
                'mask': f'url(#{DIM_MASK_ID})',
            },
        )

    clip_attrs: dict[str, str] = {}
    if clip_to_boundaries and not clip_mask.clip_region.is_identity:
        clip_attrs['clip-path'] = f'url(#{CLIP_PATH_ID})'

    _append_primitives(ET.SubElement(root, 'g', {'id': 'Regions'}), layers.boundaries)
    _append_primitives(
        ET.SubElement(root, 'g', {'id': 'Roads', **clip_attrs}), layers.roads
    )
    _append_primitives(
        ET.SubElement(root, 'g', {'id': 'Settlements', **clip_attrs}),
        layers.settlements,
    )
    for layer_id, prims in layers.annotations:
        _append_primitives(ET.SubElement(root, 'g', {'id': f'KML_{layer_id}'}), prims)
    logger.debug(
        'SVG %dx%d: KML-слоёв %d, отсечение %s',
        width,
        height,
        len(layers.annotations),
        'да' if clip_attrs else 'нет',
    )
    return root


def serialize(root: ET.Element) -> str:
    body = ET.tostring(root, encoding='unicode')
    return '<?xml version="1.0" encoding="UTF-8" standalone="no"?>\n' + body + '\n'

