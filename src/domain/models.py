from __future__ import annotations

from collections.abc import Iterable, Iterator
from enum import Enum
from typing import Any, Generic, Literal, NamedTuple, Protocol, TypeVar

from pydantic import BaseModel, Field, field_validator

from shared.constants import (
    DEFAULT_VIEW_HEIGHT_PX,
    DEFAULT_VIEW_WIDTH_PX,
    DIM_OPACITY,
    EXPORT_JPEG_QUALITY,
    EXPORT_SUPERSAMPLE,
    EXPORT_ZOOM_OFFSET,
    MAX_ZOOM,
    PROJECT_FORMAT_VERSION,
    TILE_SIZE,
    Crs,
    MapMode,
    default_map_mode,
)


class _HasIdentity(Protocol):
    @property
    def identity(self) -> str: ...


F = TypeVar('F', bound=_HasIdentity)


class Point2(NamedTuple):
    """Пара координат: географические (lon, lat) или плоские (x, y)."""

    x: float
    y: float


class GeometryType(str, Enum):
    POINT = 'Point'
    LINE_STRING = 'LineString'
    MULTI_LINE_STRING = 'MultiLineString'
    POLYGON = 'Polygon'
    MULTI_POLYGON = 'MultiPolygon'


class RoadClass(str, Enum):
    FEDERAL = 'federal'
    REGIONAL = 'regional'


def _to_points(seq: Any) -> list[Point2]:
    return [Point2(float(p[0]), float(p[1])) for p in seq]


class Geometry(BaseModel):
    """Геометрия в терминах GeoJSON (координаты lon, lat)."""

    model_config = {'frozen': True}

    type: GeometryType
    coordinates: Any

    @classmethod
    def point(cls, p: Point2) -> Geometry:
        return cls(type=GeometryType.POINT, coordinates=[p.x, p.y])

    @classmethod
    def line_string(cls, points: list[Point2]) -> Geometry:
        return cls(
            type=GeometryType.LINE_STRING,
            coordinates=[[p.x, p.y] for p in points],
        )

    @classmethod
    def from_rings(cls, rings: list[list[Point2]]) -> Geometry:
        """Polygon для одного кольца, MultiPolygon для нескольких."""
        coords = [[[p.x, p.y] for p in ring] for ring in rings]
        if len(coords) > 1:
            return cls(type=GeometryType.MULTI_POLYGON, coordinates=[[c] for c in coords])
        return cls(type=GeometryType.POLYGON, coordinates=coords)

    def rings(self) -> list[list[Point2]]:
        """Все кольца полигональной геометрии (внешние и внутренние)."""
        if self.type == GeometryType.POLYGON:
            return [_to_points(r) for r in self.coordinates]
        if self.type == GeometryType.MULTI_POLYGON:
            return [_to_points(r) for poly in self.coordinates for r in poly]
        return []

    def lines(self) -> list[list[Point2]]:
        if self.type == GeometryType.LINE_STRING:
            return [_to_points(self.coordinates)]
        if self.type == GeometryType.MULTI_LINE_STRING:
            return [_to_points(line) for line in self.coordinates]
        return []

    def points(self) -> list[Point2]:
        if self.type == GeometryType.POINT:
            return [Point2(float(self.coordinates[0]), float(self.coordinates[1]))]
        return []

    def all_vertices(self) -> list[Point2]:
        out = self.points()
        for line in self.lines():
            out.extend(line)
        for ring in self.rings():
            out.extend(ring)
        return out


class BoundaryFeature(BaseModel):
    """Выбранная пользователем граница региона или города."""

    identity: str
    name: str
    tags: dict[str, str] = Field(default_factory=dict)
    geometry: Geometry
    osm_ids: list[int] = Field(default_factory=list)
    osm_type: str | None = None
    # Количество незамкнутых колец, оставшихся после сшивки
    degenerate_rings: int = 0

    def rings(self) -> list[list[Point2]]:
        return self.geometry.rings()


class RoadFeature(BaseModel):
    identity: str
    name: str
    classification: RoadClass
    geometry: Geometry
    tags: dict[str, str] = Field(default_factory=dict)


class AnnotationFeature(BaseModel):
    properties: dict[str, Any] = Field(default_factory=dict)
    geometry: Geometry

    @property
    def color(self) -> str | None:
        c = self.properties.get('color')
        return str(c) if c else None


class AnnotationLayer(BaseModel):
    """Импортированный пользователем слой (например, из KML)."""

    id: str
    name: str
    color: str
    visible: bool = True
    features: list[AnnotationFeature] = Field(default_factory=list)

    @classmethod
    def from_geojson(
        cls, layer_id: str, name: str, color: str, data: dict[str, Any]
    ) -> AnnotationLayer:
        """Строит слой из GeoJSON FeatureCollection или одиночного Feature."""
        if data.get('type') == 'Feature':
            raw = [data]
        else:
            raw = list(data.get('features') or [])
        features = [
            AnnotationFeature(
                properties=dict(f.get('properties') or {}),
                geometry=Geometry.model_validate(f['geometry']),
            )
            for f in raw
            if f.get('geometry')
        ]
        return cls(id=layer_id, name=name, color=color, features=features)


class ViewState(BaseModel):
    """Сохраняемое состояние вида (для воспроизведения экспорта без сети)."""

    origin_lon: float
    origin_lat: float
    zoom: int
    width_px: int = DEFAULT_VIEW_WIDTH_PX
    height_px: int = DEFAULT_VIEW_HEIGHT_PX
    pixels_per_tile: int = TILE_SIZE
    crs: Crs = Crs.EPSG3857

    @field_validator('zoom')
    @classmethod
    def validate_zoom(cls, v: int) -> int:
        if not (0 <= int(v) <= MAX_ZOOM):
            msg = f'Зум должен быть в диапазоне [0, {MAX_ZOOM}]'
            raise ValueError(msg)
        return int(v)


class StyleSettings(BaseModel):
    """Настройки стиля и экспорта, сохраняемые в профиль TOML."""

    model_config = {
        'extra': 'ignore',  # игнорировать лишние поля из профилей
    }

    map_mode: MapMode = default_map_mode()
    # Разноцветный режим: цвет каждого объекта KML вместо цвета слоя
    use_multi_color: bool = True
    show_federal_roads: bool = False
    show_regional_roads: bool = False
    show_settlements: bool = False
    # Затемнять всё вне выбранных границ
    dim_background: bool = False
    dim_opacity: float = DIM_OPACITY
    # Обрезать дороги и населённые пункты по выбранным границам
    clip_to_boundaries: bool = True
    supersample: int = EXPORT_SUPERSAMPLE
    export_zoom_offset: int = EXPORT_ZOOM_OFFSET
    jpeg_quality: int = EXPORT_JPEG_QUALITY

    @field_validator('dim_opacity')
    @classmethod
    def validate_opacity(cls, v: float | str) -> float:
        v = float(v)
        if not (0.0 <= v <= 1.0):
            msg = 'Значение должно быть в диапазоне [0.0, 1.0]'
            raise ValueError(msg)
        return v

    @field_validator('supersample')
    @classmethod
    def validate_supersample(cls, v: int | str) -> int:
        iv = int(v)
        # Допускаем от 1 до 8
        return max(1, min(iv, 8))

    @field_validator('export_zoom_offset')
    @classmethod
    def validate_zoom_offset(cls, v: int | str) -> int:
        iv = int(v)
        return max(0, min(iv, 3))

    @field_validator('jpeg_quality')
    @classmethod
    def validate_quality(cls, v: int | str) -> int:
        iv = int(v)
        return max(10, min(iv, 100))

    @property
    def roads_enabled(self) -> bool:
        return self.show_federal_roads or self.show_regional_roads


class ProjectState(BaseModel):
    """
    Версионированный документ проекта.

    Кольца границ хранятся целиком, поэтому повторное открытие проекта
    не требует сетевых запросов.
    """

    version: Literal[1] = PROJECT_FORMAT_VERSION
    style: StyleSettings = Field(default_factory=StyleSettings)
    view: ViewState | None = None
    annotation_layers: list[AnnotationLayer] = Field(default_factory=list)
    boundaries: list[BoundaryFeature] = Field(default_factory=list)
    settlements: list[BoundaryFeature] = Field(default_factory=list)
    roads: list[RoadFeature] = Field(default_factory=list)


class SelectionCollection(Generic[F]):
    """
    Набор выбранных объектов, ключ: identity.

    Порядок вставки значения не имеет; повторное добавление объекта с тем
    же identity заменяет прежний, удаление только по identity.
    """

    def __init__(self, items: Iterable[F] = ()) -> None:
        self._items: dict[str, F] = {}
        for item in items:
            self.add(item)

    def add(self, item: F) -> bool:
        """True, если объект новый; False, если заменён существующий."""
        is_new = item.identity not in self._items
        self._items[item.identity] = item
        return is_new

    def remove(self, identity: str) -> bool:
        return self._items.pop(identity, None) is not None

    def get(self, identity: str) -> F | None:
        return self._items.get(identity)

    def identities(self) -> frozenset[str]:
        return frozenset(self._items)

    def clear(self) -> None:
        self._items.clear()

    def __contains__(self, identity: object) -> bool:
        return identity in self._items

    def __iter__(self) -> Iterator[F]:
        return iter(list(self._items.values()))

    def __len__(self) -> int:
        return len(self._items)

    def to_list(self) -> list[F]:
        return list(self._items.values())
