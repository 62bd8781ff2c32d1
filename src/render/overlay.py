"""
Векторные слои: границы, дороги, населённые пункты и пользовательские слои.

Все координаты проецируются в пространство контейнера на экранном зуме.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from domain.models import Geometry, GeometryType, Point2, RoadClass
from geo.projection import project_points, project_to_container_space
from render.primitives import CircleMarker, PathPrimitive, Primitive, path_data
from shared.constants import (
    ANNOTATION_POINT_COLOR,
    ANNOTATION_STROKE_WIDTH,
    BOUNDARY_COLOR,
    BOUNDARY_DASH_ARRAY,
    BOUNDARY_DASH_WIDTH,
    BOUNDARY_FILL_OPACITY,
    BOUNDARY_UNDERLAY_OPACITY,
    BOUNDARY_UNDERLAY_WIDTH,
    FALLBACK_COLOR,
    FEDERAL_ROAD_COLOR,
    FEDERAL_ROAD_OPACITY,
    FEDERAL_ROAD_WIDTH,
    POINT_RADIUS,
    POINT_STROKE_COLOR,
    POINT_STROKE_WIDTH,
    POLYGON_FILL_OPACITY,
    REGIONAL_ROAD_COLOR,
    REGIONAL_ROAD_OPACITY,
    REGIONAL_ROAD_WIDTH,
    SETTLEMENT_COLOR,
    SETTLEMENT_STROKE_WIDTH,
)

if TYPE_CHECKING:
    from domain.models import AnnotationLayer, BoundaryFeature, RoadFeature
    from geo.projection import ViewTransform

logger = logging.getLogger(__name__)

SETTLEMENT_HATCH_ID = 'settlement-hatch'


@dataclass(frozen=True)
class LayerStyle:
    """Стиль слоя. point_color переопределяет цвет маркеров точек."""

    color: str | None = None
    stroke_width: float = ANNOTATION_STROKE_WIDTH
    opacity: float = 1.0
    fill_opacity: float = POLYGON_FILL_OPACITY
    dash_array: str | None = None
    point_color: str | None = None
    # Заливка полигонов ссылкой на паттерн вместо цвета
    fill_pattern: str | None = None
    use_feature_color: bool = True


def resolve_color(
    feature_color: str | None,
    layer_color: str | None,
    *,
    multi_color: bool,
) -> str:
    """Цвет объекта -> цвет слоя -> FALLBACK_COLOR."""
    if multi_color and feature_color:
        return feature_color
    if layer_color:
        return layer_color
    return FALLBACK_COLOR


def _ring_primitive(
    points: Sequence[Point2], color: str, style: LayerStyle
) -> PathPrimitive:
    fill = f'url(#{style.fill_pattern})' if style.fill_pattern else color
    return PathPrimitive(
        d=path_data(points, closed=True),
        stroke=color,
        stroke_width=style.stroke_width,
        fill=fill,
        fill_opacity=None if style.fill_pattern else style.fill_opacity,
        opacity=style.opacity,
        dash_array=style.dash_array,
        closed=True,
    )


def _line_primitive(
    points: Sequence[Point2], color: str, style: LayerStyle
) -> PathPrimitive:
    return PathPrimitive(
        d=path_data(points),
        stroke=color,
        stroke_width=style.stroke_width,
        opacity=style.opacity,
        dash_array=style.dash_array,
    )


def render_geometry(
    geometry: Geometry,
    color: str,
    style: LayerStyle,
    transform: ViewTransform,
) -> list[Primitive]:
    """Примитивы одной геометрии: точка -> маркер, линия -> путь, кольцо -> замкнутый путь."""
    out: list[Primitive] = []
    if geometry.type == GeometryType.POINT:
        for p in geometry.points():
            c = project_to_container_space(p, transform)
            out.append(
                CircleMarker(
                    cx=c.x,
                    cy=c.y,
                    r=POINT_RADIUS,
                    fill=style.point_color or color,
                    stroke=POINT_STROKE_COLOR,
                    stroke_width=POINT_STROKE_WIDTH,
                    opacity=style.opacity,
                )
            )
    elif geometry.type in (GeometryType.LINE_STRING, GeometryType.MULTI_LINE_STRING):
        for line in geometry.lines():
            if len(line) < 2:  # noqa: PLR2004
                continue
            out.append(_line_primitive(project_points(line, transform), color, style))
    elif geometry.type in (GeometryType.POLYGON, GeometryType.MULTI_POLYGON):
        for ring in geometry.rings():
            if len(ring) < 2:  # noqa: PLR2004
                continue
            out.append(_ring_primitive(project_points(ring, transform), color, style))
    return out


def render_layer(
    features: Iterable[object],
    style: LayerStyle,
    transform: ViewTransform,
    *,
    multi_color: bool = False,
) -> list[Primitive]:
    """
    Примитивы для набора объектов с атрибутом ``geometry``.

    Цвет объекта берётся из атрибута ``color``, если он есть и включён
    разноцветный режим.
    """
    out: list[Primitive] = []
    for f in features:
        geometry: Geometry = f.geometry  # type: ignore[attr-defined]
        feature_color = getattr(f, 'color', None) if style.use_feature_color else None
        color = resolve_color(feature_color, style.color, multi_color=multi_color)
        out.extend(render_geometry(geometry, color, style, transform))
    return out


def render_annotation_layer(
    layer: AnnotationLayer,
    transform: ViewTransform,
    *,
    multi_color: bool,
) -> list[Primitive]:
    """Импортированный слой: точки всегда красные с белой обводкой."""
    if not layer.visible:
        return []
    style = LayerStyle(color=layer.color, point_color=ANNOTATION_POINT_COLOR)
    return render_layer(layer.features, style, transform, multi_color=multi_color)


_BOUNDARY_UNDERLAY = LayerStyle(
    color=BOUNDARY_COLOR,
    stroke_width=BOUNDARY_UNDERLAY_WIDTH,
    opacity=BOUNDARY_UNDERLAY_OPACITY,
    fill_opacity=BOUNDARY_FILL_OPACITY,
    use_feature_color=False,
)
_BOUNDARY_DASHED = replace(
    _BOUNDARY_UNDERLAY,
    stroke_width=BOUNDARY_DASH_WIDTH,
    opacity=1.0,
    fill_opacity=0.0,
    dash_array=BOUNDARY_DASH_ARRAY,
)


def render_boundaries(
    boundaries: Sequence[BoundaryFeature], transform: ViewTransform
) -> list[Primitive]:
    """
    Двухпроходная обводка: сначала толстая сплошная подложка для всех
    границ, затем тонкий пунктир поверх.
    """
    underlay = render_layer(boundaries, _BOUNDARY_UNDERLAY, transform)
    dashed = [
        p
        for p in render_layer(boundaries, _BOUNDARY_DASHED, transform)
        if isinstance(p, PathPrimitive)
    ]
    # У пунктирного прохода нет заливки
    dashed = [replace(p, fill='none', fill_opacity=None) for p in dashed]
    logger.debug(
        'Границы: %d объектов, %d примитивов',
        len(boundaries),
        len(underlay) + len(dashed),
    )
    return underlay + dashed


ROAD_STYLES: dict[RoadClass, LayerStyle] = {
    RoadClass.FEDERAL: LayerStyle(
        color=FEDERAL_ROAD_COLOR,
        stroke_width=FEDERAL_ROAD_WIDTH,
        opacity=FEDERAL_ROAD_OPACITY,
        use_feature_color=False,
    ),
    RoadClass.REGIONAL: LayerStyle(
        color=REGIONAL_ROAD_COLOR,
        stroke_width=REGIONAL_ROAD_WIDTH,
        opacity=REGIONAL_ROAD_OPACITY,
        use_feature_color=False,
    ),
}


def render_roads(
    roads: Sequence[RoadFeature],
    transform: ViewTransform,
    *,
    show_federal: bool = True,
    show_regional: bool = True,
) -> list[Primitive]:
    """Региональные дороги рисуются первыми, федеральные поверх."""
    out: list[Primitive] = []
    if show_regional:
        regional = [r for r in roads if r.classification == RoadClass.REGIONAL]
        out.extend(render_layer(regional, ROAD_STYLES[RoadClass.REGIONAL], transform))
    if show_federal:
        federal = [r for r in roads if r.classification == RoadClass.FEDERAL]
        out.extend(render_layer(federal, ROAD_STYLES[RoadClass.FEDERAL], transform))
    return out


_SETTLEMENT_STYLE = LayerStyle(
    color=SETTLEMENT_COLOR,
    stroke_width=SETTLEMENT_STROKE_WIDTH,
    fill_pattern=SETTLEMENT_HATCH_ID,
    use_feature_color=False,
)


def render_settlements(
    settlements: Sequence[BoundaryFeature], transform: ViewTransform
) -> list[Primitive]:
    return render_layer(settlements, _SETTLEMENT_STYLE, transform)
