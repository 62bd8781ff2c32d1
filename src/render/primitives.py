"""Примитивы векторного слоя: пути и круглые маркеры в пикселях контейнера."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from shared.constants import SVG_COORD_PRECISION


def fmt(v: float, precision: int = SVG_COORD_PRECISION) -> str:
    s = f'{v:.{precision}f}'
    # '-0.00' и '0.00' должны совпадать при сравнении путей
    return s[1:] if s == f'-{0:.{precision}f}' else s


def path_data(points: Sequence[Sequence[float]], *, closed: bool = False) -> str:
    """'M x y L x y ... [Z]'; пустая строка для пустой последовательности."""
    if not points:
        return ''
    parts = [
        f'{"M" if i == 0 else "L"} {fmt(p[0])} {fmt(p[1])}' for i, p in enumerate(points)
    ]
    if closed:
        parts.append('Z')
    return ' '.join(parts)


@dataclass(frozen=True)
class PathPrimitive:
    d: str
    stroke: str | None
    stroke_width: float
    fill: str = 'none'
    fill_opacity: float | None = None
    opacity: float = 1.0
    dash_array: str | None = None
    closed: bool = False

    def attributes(self) -> dict[str, str]:
        attrs = {
            'd': self.d,
            'stroke': self.stroke or 'none',
            'stroke-width': f'{self.stroke_width:g}',
            'fill': self.fill,
        }
        if self.fill_opacity is not None:
            attrs['fill-opacity'] = f'{self.fill_opacity:g}'
        if self.dash_array:
            attrs['stroke-dasharray'] = self.dash_array
        if self.opacity != 1.0:
            attrs['opacity'] = f'{self.opacity:g}'
        if not self.closed:
            attrs['stroke-linejoin'] = 'round'
            attrs['stroke-linecap'] = 'round'
        return attrs


@dataclass(frozen=True)
class CircleMarker:
    cx: float
    cy: float
    r: float
    fill: str
    stroke: str
    stroke_width: float
    opacity: float = 1.0

    def attributes(self) -> dict[str, str]:
        attrs = {
            'cx': fmt(self.cx),
            'cy': fmt(self.cy),
            'r': f'{self.r:g}',
            'fill': self.fill,
            'stroke': self.stroke,
            'stroke-width': f'{self.stroke_width:g}',
        }
        if self.opacity != 1.0:
            attrs['opacity'] = f'{self.opacity:g}'
        return attrs


Primitive = PathPrimitive | CircleMarker
