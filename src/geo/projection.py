"""
Проекция географических координат на плоскость (Меркатор).

Тайлы OSM нарезаны в сферическом Меркаторе (EPSG:3857), тайлы Яндекса в
эллипсоидальном (EPSG:3395). Снимок вида несёт свою проекцию, и все
функции ниже считают мировые пиксели в ней.

При экспорте используются одновременно две независимые проекции:
- тайловое пространство на повышенном зуме (размещение растровых тайлов);
- пространство контейнера на экранном зуме (размещение векторных слоёв).
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace

from domain.models import Point2, ViewState
from shared.constants import (
    ELLIPTIC_INVERSE_MAX_ITER,
    ELLIPTIC_INVERSE_TOL,
    FIT_MAX_ZOOM,
    FIT_PADDING_PX,
    MAX_ZOOM,
    MERCATOR_MAX_SIN,
    MIN_ZOOM,
    TILE_SIZE,
    WGS84_SEMI_MAJOR_M,
    WGS84_SEMI_MINOR_M,
    WORLD_LAT_MAX_DEG,
    WORLD_LNG_HALF_SPAN_DEG,
    WORLD_LNG_SPAN_DEG,
    XY_EPSILON,
    Crs,
)
from shared.errors import ProjectionUndefined

# Эксцентриситет эллипсоида WGS84
_ECCENTRICITY = math.sqrt(1.0 - (WGS84_SEMI_MINOR_M / WGS84_SEMI_MAJOR_M) ** 2)


@dataclass(frozen=True)
class ViewTransform:
    """
    Снимок состояния вида: единственный источник истины для проекций.

    origin_geo: географическая точка (lon, lat) левого верхнего угла вида.
    Экземпляр неизменяемый, поэтому растровая и векторная проекции одного
    экспорта всегда читают одно и то же состояние.
    """

    origin_geo: Point2
    zoom: int
    width_px: int
    height_px: int
    pixels_per_tile: int = TILE_SIZE
    crs: Crs = Crs.EPSG3857

    @classmethod
    def from_state(cls, state: ViewState) -> ViewTransform:
        return cls(
            origin_geo=Point2(state.origin_lon, state.origin_lat),
            zoom=state.zoom,
            width_px=state.width_px,
            height_px=state.height_px,
            pixels_per_tile=state.pixels_per_tile,
            crs=Crs(state.crs),
        )

    def to_state(self) -> ViewState:
        return ViewState(
            origin_lon=self.origin_geo.x,
            origin_lat=self.origin_geo.y,
            zoom=self.zoom,
            width_px=self.width_px,
            height_px=self.height_px,
            pixels_per_tile=self.pixels_per_tile,
            crs=self.crs,
        )

    @property
    def center_geo(self) -> Point2:
        return unproject_container_point(
            Point2(self.width_px / 2.0, self.height_px / 2.0), self
        )

    def panned(self, dx_px: float, dy_px: float) -> ViewTransform:
        """Новый снимок, сдвинутый на (dx, dy) пикселей контейнера."""
        ox, oy = view_origin_world(self, self.zoom)
        lat, lng = pixel_xy_to_latlng(
            ox + dx_px, oy + dy_px, self.zoom, self.pixels_per_tile, crs=self.crs
        )
        return replace(self, origin_geo=Point2(lng, lat))

    def zoomed(self, zoom: int) -> ViewTransform:
        """Новый снимок с другим зумом и тем же центром."""
        zoom = max(MIN_ZOOM, min(MAX_ZOOM, int(zoom)))
        return centered_transform(
            self.center_geo,
            zoom,
            self.width_px,
            self.height_px,
            self.pixels_per_tile,
            crs=self.crs,
        )

    def with_crs(self, crs: Crs) -> ViewTransform:
        """Тот же центр и зум в другой проекции (смена стиля подложки)."""
        if crs == self.crs:
            return self
        return centered_transform(
            self.center_geo,
            self.zoom,
            self.width_px,
            self.height_px,
            self.pixels_per_tile,
            crs=crs,
        )


def world_size(zoom: int, tile_px: int = TILE_SIZE) -> float:
    return float(tile_px) * (2**zoom)


def _mercator_y(lat_deg: float, crs: Crs) -> float:
    """Нормированная ордината Меркатора: ln(tan(pi/4 + phi/2)) с поправкой эллипсоида."""
    siny = math.sin(math.radians(lat_deg))
    siny = min(max(siny, -MERCATOR_MAX_SIN), MERCATOR_MAX_SIN)
    y = 0.5 * math.log((1 + siny) / (1 - siny))
    if crs == Crs.EPSG3395:
        con = _ECCENTRICITY * siny
        y -= _ECCENTRICITY * 0.5 * math.log((1 + con) / (1 - con))
    return y


def _mercator_lat(y: float, crs: Crs) -> float:
    """Широта (градусы) по нормированной ординате; для 3395 итерационно."""
    ts = math.exp(-y)
    phi = math.pi / 2 - 2 * math.atan(ts)
    if crs == Crs.EPSG3395:
        e = _ECCENTRICITY
        for _ in range(ELLIPTIC_INVERSE_MAX_ITER):
            con = e * math.sin(phi)
            con = ((1 - con) / (1 + con)) ** (e / 2)
            dphi = math.pi / 2 - 2 * math.atan(ts * con) - phi
            phi += dphi
            if abs(dphi) <= ELLIPTIC_INVERSE_TOL:
                break
    return math.degrees(phi)


def latlng_to_pixel_xy(
    lat_deg: float,
    lng_deg: float,
    zoom: int,
    tile_px: int = TILE_SIZE,
    *,
    crs: Crs = Crs.EPSG3857,
) -> tuple[float, float]:
    """Преобразует WGS84 (lat, lng) в координаты «мира» (пиксели) проекции crs."""
    size = world_size(zoom, tile_px)
    x = (lng_deg + WORLD_LNG_HALF_SPAN_DEG) / WORLD_LNG_SPAN_DEG * size
    y = (0.5 - _mercator_y(lat_deg, crs) / (2 * math.pi)) * size
    return x, y


def pixel_xy_to_latlng(
    x: float,
    y: float,
    zoom: int,
    tile_px: int = TILE_SIZE,
    *,
    crs: Crs = Crs.EPSG3857,
) -> tuple[float, float]:
    """Обратное преобразование: «мировые» пиксели -> WGS84 (lat, lng)."""
    size = world_size(zoom, tile_px)
    lng = (x / size) * WORLD_LNG_SPAN_DEG - WORLD_LNG_HALF_SPAN_DEG
    merc_y = (0.5 - (y / size)) * 2 * math.pi
    lat = max(-WORLD_LAT_MAX_DEG, min(WORLD_LAT_MAX_DEG, _mercator_lat(merc_y, crs)))
    return lat, lng


def project_to_container_space(geo: Point2, transform: ViewTransform) -> Point2:
    """
    Пиксели контейнера на экранном зуме.

    Векторные слои всегда проецируются этой функцией, чтобы пути совпадали
    с экранными размерами итогового изображения независимо от суперсэмплинга.
    """
    ox, oy = view_origin_world(transform, transform.zoom)
    px, py = latlng_to_pixel_xy(
        geo[1], geo[0], transform.zoom, transform.pixels_per_tile, crs=transform.crs
    )
    return Point2(px - ox, py - oy)


# Проекция по умолчанию для векторных слоёв
project = project_to_container_space


def view_origin_world(transform: ViewTransform, zoom: int) -> tuple[float, float]:
    """Левый верхний угол вида в мировых пикселях на заданном зуме."""
    return latlng_to_pixel_xy(
        transform.origin_geo.y,
        transform.origin_geo.x,
        zoom,
        transform.pixels_per_tile,
        crs=transform.crs,
    )


def project_to_tile_space(
    geo: Point2, transform: ViewTransform, export_zoom: int
) -> Point2:
    """
    Мировые пиксели на повышенном зуме экспорта относительно левого верхнего
    угла вида на том же зуме. Используется только для размещения тайлов.
    """
    ox, oy = view_origin_world(transform, export_zoom)
    px, py = latlng_to_pixel_xy(
        geo[1], geo[0], export_zoom, transform.pixels_per_tile, crs=transform.crs
    )
    return Point2(px - ox, py - oy)


def tile_corner_geo(tx: int, ty: int, zoom: int, transform: ViewTransform) -> Point2:
    """Северо-западный угол тайла (tx, ty) как (lon, lat) в проекции вида."""
    step = float(transform.pixels_per_tile)
    lat, lng = pixel_xy_to_latlng(
        tx * step, ty * step, zoom, transform.pixels_per_tile, crs=transform.crs
    )
    return Point2(lng, lat)


def project_points(
    points: Iterable[Sequence[float]], transform: ViewTransform
) -> list[Point2]:
    return [project_to_container_space(Point2(p[0], p[1]), transform) for p in points]


def unproject_container_point(p: Point2, transform: ViewTransform) -> Point2:
    """Пиксель контейнера -> (lon, lat)."""
    ox, oy = view_origin_world(transform, transform.zoom)
    lat, lng = pixel_xy_to_latlng(
        ox + p[0],
        oy + p[1],
        transform.zoom,
        transform.pixels_per_tile,
        crs=transform.crs,
    )
    return Point2(lng, lat)


def viewport_bounds(transform: ViewTransform) -> tuple[float, float, float, float]:
    """Географические границы вида: (west, south, east, north)."""
    nw = unproject_container_point(Point2(0.0, 0.0), transform)
    se = unproject_container_point(
        Point2(float(transform.width_px), float(transform.height_px)), transform
    )
    return nw.x, se.y, se.x, nw.y


def export_zoom_for(transform: ViewTransform, offset: int) -> int:
    """Зум загрузки тайлов при экспорте: экранный + offset, не выше MAX_ZOOM."""
    return max(MIN_ZOOM, min(MAX_ZOOM, transform.zoom + max(0, int(offset))))


def tile_index_range(
    transform: ViewTransform, export_zoom: int
) -> tuple[int, int, int, int]:
    """
    Диапазон индексов тайлов (x_min, y_min, x_max, y_max) на зуме экспорта,
    покрывающий вид. Индексы x не нормализованы (wrap делается при загрузке).
    """
    tile_px = float(transform.pixels_per_tile)
    scale = 2 ** (export_zoom - transform.zoom)
    nw_x, nw_y = view_origin_world(transform, export_zoom)
    se_x = nw_x + transform.width_px * scale
    se_y = nw_y + transform.height_px * scale
    x_min = math.floor(nw_x / tile_px)
    y_min = math.floor(nw_y / tile_px)
    x_max = math.floor((se_x - XY_EPSILON) / tile_px)
    y_max = math.floor((se_y - XY_EPSILON) / tile_px)
    return x_min, y_min, x_max, y_max


def geo_bounds(points: Iterable[Sequence[float]]) -> tuple[float, float, float, float]:
    """(west, south, east, north) набора точек; для пустого набора ProjectionUndefined."""
    xs: list[float] = []
    ys: list[float] = []
    for p in points:
        xs.append(float(p[0]))
        ys.append(float(p[1]))
    if not xs:
        msg = 'Нет точек для вычисления границ'
        raise ProjectionUndefined(msg)
    return min(xs), min(ys), max(xs), max(ys)


def centered_transform(
    center: Point2,
    zoom: int,
    width_px: int,
    height_px: int,
    tile_px: int = TILE_SIZE,
    *,
    crs: Crs = Crs.EPSG3857,
) -> ViewTransform:
    cx, cy = latlng_to_pixel_xy(center.y, center.x, zoom, tile_px, crs=crs)
    lat, lng = pixel_xy_to_latlng(
        cx - width_px / 2.0, cy - height_px / 2.0, zoom, tile_px, crs=crs
    )
    return ViewTransform(
        origin_geo=Point2(lng, lat),
        zoom=zoom,
        width_px=width_px,
        height_px=height_px,
        pixels_per_tile=tile_px,
        crs=crs,
    )


def fit_bounds(
    bounds: tuple[float, float, float, float],
    width_px: int,
    height_px: int,
    *,
    padding_px: int = FIT_PADDING_PX,
    max_zoom: int = FIT_MAX_ZOOM,
    tile_px: int = TILE_SIZE,
    crs: Crs = Crs.EPSG3857,
) -> ViewTransform:
    """Максимальный зум (не выше max_zoom), при котором bbox помещается в вид."""
    west, south, east, north = bounds
    avail_w = max(1, width_px - 2 * padding_px)
    avail_h = max(1, height_px - 2 * padding_px)
    zoom = max(MIN_ZOOM, min(max_zoom, MAX_ZOOM))
    while zoom > MIN_ZOOM:
        x0, y0 = latlng_to_pixel_xy(north, west, zoom, tile_px, crs=crs)
        x1, y1 = latlng_to_pixel_xy(south, east, zoom, tile_px, crs=crs)
        if abs(x1 - x0) <= avail_w and abs(y1 - y0) <= avail_h:
            break
        zoom -= 1
    # Центр считается в мировых пикселях, чтобы не смещать его по широте
    x0, y0 = latlng_to_pixel_xy(north, west, zoom, tile_px, crs=crs)
    x1, y1 = latlng_to_pixel_xy(south, east, zoom, tile_px, crs=crs)
    lat, lng = pixel_xy_to_latlng(
        (x0 + x1) / 2.0, (y0 + y1) / 2.0, zoom, tile_px, crs=crs
    )
    center = Point2(lng, lat)
    return centered_transform(center, zoom, width_px, height_px, tile_px, crs=crs)
