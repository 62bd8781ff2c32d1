"""
Сшивка неупорядоченных дуг (ways) в замкнутые кольца.

Overpass отдаёт границу отношения как набор ways в произвольном порядке и
направлении. Концы дуг индексируются по квантованной координате, после чего
кольца собираются обходом смежности по индексам дуг.
"""

from __future__ import annotations

import logging
import warnings
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from domain.models import Point2
from shared.constants import MIN_RING_DISTINCT_VERTICES, STITCH_EPSILON_DEG
from shared.errors import StitchDegenerate

logger = logging.getLogger(__name__)

_START = 0
_END = 1

# Порядок перебора вариантов стыковки для одной дуги-кандидата
_APPEND_FORWARD = 0  # конец кольца == начало дуги
_APPEND_REVERSED = 1  # конец кольца == конец дуги
_PREPEND_FORWARD = 2  # начало кольца == конец дуги
_PREPEND_REVERSED = 3  # начало кольца == начало дуги


@dataclass(frozen=True)
class StitchedRing:
    """Результат сшивки: последовательность вершин и признаки замкнутости."""

    points: tuple[Point2, ...]
    closed: bool

    @property
    def degenerate(self) -> bool:
        """Незамкнутая цепочка из дуг, концы которых ни с чем не совпали."""
        return not self.closed

    @property
    def distinct_vertices(self) -> int:
        pts = self.points[:-1] if self.closed else self.points
        return len(set(pts))

    @property
    def is_polygon_ring(self) -> bool:
        return self.closed and self.distinct_vertices >= MIN_RING_DISTINCT_VERTICES

    def __len__(self) -> int:
        return len(self.points)


def points_match(a: Point2, b: Point2, eps: float = STITCH_EPSILON_DEG) -> bool:
    return abs(a[0] - b[0]) < eps and abs(a[1] - b[1]) < eps


class _EndpointIndex:
    """Мультиотображение: квантованная точка -> [(индекс дуги, какой конец)]."""

    def __init__(self, arcs: Sequence[Sequence[Point2]], eps: float) -> None:
        self._arcs = arcs
        self._eps = eps
        self._cells: dict[tuple[int, int], list[tuple[int, int]]] = defaultdict(list)
        for idx, arc in enumerate(arcs):
            self._cells[self._key(arc[0])].append((idx, _START))
            self._cells[self._key(arc[-1])].append((idx, _END))

    def _key(self, p: Point2) -> tuple[int, int]:
        return round(p[0] / self._eps), round(p[1] / self._eps)

    def lookup(self, p: Point2, used: list[bool]) -> list[tuple[int, int]]:
        """Неиспользованные концы дуг в пределах eps от точки p."""
        kx, ky = self._key(p)
        found: list[tuple[int, int]] = []
        for dx in (-1, 0, 1):
            for dy in (-1, 0, 1):
                for idx, end in self._cells.get((kx + dx, ky + dy), ()):
                    if used[idx]:
                        continue
                    arc = self._arcs[idx]
                    q = arc[0] if end == _START else arc[-1]
                    if points_match(p, q, self._eps):
                        found.append((idx, end))
        return found


def _normalize(arcs: Iterable[Sequence[Sequence[float]]]) -> list[tuple[Point2, ...]]:
    out: list[tuple[Point2, ...]] = []
    for arc in arcs:
        pts = tuple(Point2(float(p[0]), float(p[1])) for p in arc)
        if pts:
            out.append(pts)
    return out


def _best_candidate(
    head: Point2,
    tail: Point2,
    index: _EndpointIndex,
    used: list[bool],
) -> tuple[int, int] | None:
    """
    Выбрать дугу с наименьшим индексом и вариант стыковки.

    Для одной дуги варианты проверяются в порядке: присоединение к концу
    (прямое, обратное), затем к началу (прямое, обратное).
    """
    options: dict[int, int] = {}
    for idx, end in index.lookup(tail, used):
        mode = _APPEND_FORWARD if end == _START else _APPEND_REVERSED
        options[idx] = min(options.get(idx, mode), mode)
    for idx, end in index.lookup(head, used):
        mode = _PREPEND_FORWARD if end == _END else _PREPEND_REVERSED
        options[idx] = min(options.get(idx, mode), mode)
    if not options:
        return None
    idx = min(options)
    return idx, options[idx]


def stitch(
    arcs: Iterable[Sequence[Sequence[float]]],
    *,
    eps: float = STITCH_EPSILON_DEG,
) -> list[StitchedRing]:
    """
    Сшивает дуги в кольца.

    Дуги могут идти в любом порядке и направлении. Общая точка стыка не
    дублируется. Цепочка наращивается, пока находятся совпадающие концы или
    пока она не замкнулась; затем начинается новое кольцо с первой свободной
    дуги. Несколько колец означают мультиполигон. Цепочки, которые так и не
    замкнулись, возвращаются как есть с признаком ``degenerate``.
    Для пустого входа возвращается пустой список.
    """
    pool = _normalize(arcs)
    if not pool:
        return []

    index = _EndpointIndex(pool, eps)
    used = [False] * len(pool)
    rings: list[StitchedRing] = []

    for seed in range(len(pool)):
        if used[seed]:
            continue
        used[seed] = True
        chain: list[Point2] = list(pool[seed])

        while not (len(chain) > 2 and points_match(chain[0], chain[-1], eps)):
            cand = _best_candidate(chain[0], chain[-1], index, used)
            if cand is None:
                break
            idx, mode = cand
            used[idx] = True
            arc = pool[idx]
            if mode == _APPEND_FORWARD:
                chain.extend(arc[1:])
            elif mode == _APPEND_REVERSED:
                chain.extend(reversed(arc[:-1]))
            elif mode == _PREPEND_FORWARD:
                chain[:0] = arc[:-1]
            else:
                chain[:0] = list(reversed(arc))[:-1]

        closed = len(chain) > 2 and points_match(chain[0], chain[-1], eps)
        rings.append(StitchedRing(points=tuple(chain), closed=closed))

    degenerate = sum(1 for r in rings if r.degenerate)
    if degenerate:
        msg = (
            f'Сшивка: {degenerate} из {len(rings)} цепочек не замкнулись '
            '(разрывы в исходных данных)'
        )
        logger.warning(msg)
        warnings.warn(msg, StitchDegenerate, stacklevel=2)
    logger.debug('Сшивка: %d дуг -> %d колец', len(pool), len(rings))
    return rings
