"""
Область отсечения и маска затемнения из колец выбранных границ.

Оба артефакта строятся из одних и тех же спроецированных путей: clipPath
ограничивает дороги и населённые пункты объединением границ, а маска
затемняет всё вне этого объединения. Артефакты всегда пересчитываются
целиком при смене вида или набора границ.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from domain.models import BoundaryFeature, Geometry, Point2
from geo.projection import ViewTransform, project_points
from render.primitives import path_data
from shared.errors import ProjectionUndefined

logger = logging.getLogger(__name__)

CLIP_PATH_ID = 'boundary-clip'
DIM_MASK_ID = 'dim-mask'

# Кольцо из менее чем трёх точек не ограничивает площадь
_MIN_RING_POINTS = 3


@dataclass(frozen=True)
class ClipRegion:
    """Объединение колец; без путей это тождественное отсечение (видно всё)."""

    paths: tuple[str, ...] = ()

    @property
    def is_identity(self) -> bool:
        return not self.paths


@dataclass(frozen=True)
class DimMask:
    """
    Маска яркости: белый прямоугольник вида и чёрные вырезы по кольцам.

    Без вырезов маска инертна и затемнение не применяется.
    """

    width: int
    height: int
    cutouts: tuple[str, ...] = ()

    @property
    def is_inert(self) -> bool:
        return not self.cutouts


@dataclass(frozen=True)
class ClipMask:
    clip_region: ClipRegion
    dim_mask: DimMask


def project_ring_path(ring: Sequence[Point2], transform: ViewTransform) -> str:
    if len(ring) < _MIN_RING_POINTS:
        msg = f'Кольцо из {len(ring)} точек'
        raise ProjectionUndefined(msg)
    return path_data(project_points(ring, transform), closed=True)


def boundary_rings(boundaries: Iterable[BoundaryFeature]) -> list[list[Point2]]:
    """Все кольца полигональных границ; точечные границы не участвуют."""
    rings: list[list[Point2]] = []
    for b in boundaries:
        rings.extend(b.rings())
    return rings


def synthesize(
    rings: Iterable[Sequence[Point2]], transform: ViewTransform
) -> ClipMask:
    """Один путь на кольцо; одни и те же пути идут в clipPath и в вырезы маски."""
    paths: list[str] = []
    skipped = 0
    for ring in rings:
        try:
            paths.append(project_ring_path(ring, transform))
        except ProjectionUndefined:
            skipped += 1
    if skipped:
        logger.debug('Маска: пропущено вырожденных колец: %d', skipped)
    shared = tuple(paths)
    return ClipMask(
        clip_region=ClipRegion(paths=shared),
        dim_mask=DimMask(width=transform.width_px, height=transform.height_px, cutouts=shared),
    )


class ClipMaskCache:
    """
    Последний результат synthesize по ключу (вид, identity и геометрия границ).

    Любое изменение ключа ведёт к полному пересчёту, частичных обновлений нет.
    """

    def __init__(self) -> None:
        self._key: tuple[ViewTransform, tuple[tuple[str, Geometry], ...]] | None = None
        self._value: ClipMask | None = None
        self.computations = 0

    def get(
        self, boundaries: Sequence[BoundaryFeature], transform: ViewTransform
    ) -> ClipMask:
        # Повторный выбор того же identity может заменить геометрию
        key = (transform, tuple((b.identity, b.geometry) for b in boundaries))
        if self._value is not None and self._key == key:
            return self._value
        self._value = synthesize(boundary_rings(boundaries), transform)
        self._key = key
        self.computations += 1
        return self._value
