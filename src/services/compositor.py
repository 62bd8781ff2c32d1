"""
Оркестратор компоновки: живой оверлей и одноразовый экспорт.

Конвейер: загрузка границы -> [загрузка дорог] -> сшивка -> проекция ->
отрисовка. Живая сессия при смене вида повторяет только проекцию и
отрисовку, при смене выбора начинает с загрузки. Экспорт работает с
замороженным снимком вида и заканчивается одним SVG-файлом.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from domain.models import (
    AnnotationLayer,
    BoundaryFeature,
    ProjectState,
    RoadFeature,
    SelectionCollection,
    StyleSettings,
)
from geo.projection import ViewTransform, export_zoom_for, viewport_bounds
from infrastructure.overpass import parse_elements
from render.clip_mask import ClipMask, ClipMaskCache, boundary_rings, synthesize
from render.overlay import (
    render_annotation_layer,
    render_boundaries,
    render_roads,
    render_settlements,
)
from render.svg_document import SvgLayers, build_svg, serialize
from services.boundaries import build_boundary, normalize_ids
from services.roads import RoadTarget
from shared.constants import (
    INVERTED_MODES,
    MapMode,
    background_for_mode,
    crs_for_mode,
    tile_url_for_mode,
)
from shared.errors import ExportFailure
from shared.file_io import write_atomic
from shared.progress import CancelScope, FetchSlot
from tiles.mosaic import build_mosaic, encode_data_url

if TYPE_CHECKING:
    from collections.abc import Awaitable, Iterable, Sequence

    from services.boundaries import BoundaryService
    from services.roads import RoadService
    from services.settlements import SettlementService
    from tiles.fetcher import TileFetcher

logger = logging.getLogger(__name__)


class CompositorState(str, Enum):
    IDLE = 'idle'
    FETCHING_BOUNDARY = 'fetching_boundary'
    FETCHING_ROADS = 'fetching_roads'
    STITCHING = 'stitching'
    PROJECTING = 'projecting'
    RENDERING = 'rendering'
    LIVE_OVERLAY_READY = 'live_overlay_ready'
    EXPORT_ARTIFACT_READY = 'export_artifact_ready'
    ABORTED = 'aborted'
    ERROR = 'error'


S = CompositorState

_TRANSITIONS: dict[CompositorState, frozenset[CompositorState]] = {
    S.IDLE: frozenset(
        {S.FETCHING_BOUNDARY, S.FETCHING_ROADS, S.STITCHING, S.PROJECTING, S.ABORTED}
    ),
    # Новый запрос может вытеснить текущий, пока тот ждёт сеть
    S.FETCHING_BOUNDARY: frozenset(
        {S.FETCHING_BOUNDARY, S.FETCHING_ROADS, S.STITCHING, S.ABORTED, S.ERROR}
    ),
    S.FETCHING_ROADS: frozenset(
        {
            S.FETCHING_ROADS,
            S.FETCHING_BOUNDARY,
            S.STITCHING,
            S.PROJECTING,
            S.ABORTED,
            S.ERROR,
        }
    ),
    S.STITCHING: frozenset({S.PROJECTING, S.ABORTED, S.ERROR}),
    S.PROJECTING: frozenset({S.RENDERING, S.ABORTED, S.ERROR}),
    S.RENDERING: frozenset(
        {S.LIVE_OVERLAY_READY, S.EXPORT_ARTIFACT_READY, S.ABORTED, S.ERROR}
    ),
    S.LIVE_OVERLAY_READY: frozenset(
        {S.PROJECTING, S.FETCHING_BOUNDARY, S.FETCHING_ROADS, S.IDLE}
    ),
    S.EXPORT_ARTIFACT_READY: frozenset(),
    S.ABORTED: frozenset({S.IDLE, S.PROJECTING, S.FETCHING_BOUNDARY, S.FETCHING_ROADS}),
    S.ERROR: frozenset({S.IDLE, S.PROJECTING, S.FETCHING_BOUNDARY, S.FETCHING_ROADS}),
}

# Ключ слота выбора: (тип объекта OSM, запрошенные id)
_SelectionKey = tuple[str, tuple[int, ...]]

FETCHING_STATES = frozenset({S.FETCHING_BOUNDARY, S.FETCHING_ROADS})
IN_FLIGHT_STATES = frozenset(
    {S.FETCHING_BOUNDARY, S.FETCHING_ROADS, S.STITCHING, S.PROJECTING, S.RENDERING}
)


class CompositorStateMachine:
    """Текущее состояние сессии и история переходов."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.state = S.IDLE
        self.history: list[CompositorState] = [S.IDLE]

    def can(self, new: CompositorState) -> bool:
        return new in _TRANSITIONS[self.state]

    def transition(self, new: CompositorState) -> None:
        if not self.can(new):
            msg = f'{self.name}: недопустимый переход {self.state.value} -> {new.value}'
            raise RuntimeError(msg)
        logger.debug('%s: %s -> %s', self.name, self.state.value, new.value)
        self.state = new
        self.history.append(new)

    @property
    def in_flight(self) -> bool:
        return self.state in IN_FLIGHT_STATES


def compose_layers(
    transform: ViewTransform,
    style: StyleSettings,
    *,
    boundaries: Sequence[BoundaryFeature],
    roads: Sequence[RoadFeature],
    settlements: Sequence[BoundaryFeature],
    annotation_layers: Iterable[AnnotationLayer],
) -> SvgLayers:
    """Примитивы всех векторных слоёв в порядке отрисовки."""
    return SvgLayers(
        boundaries=render_boundaries(boundaries, transform),
        roads=render_roads(
            roads,
            transform,
            show_federal=style.show_federal_roads,
            show_regional=style.show_regional_roads,
        ),
        settlements=(
            render_settlements(settlements, transform) if style.show_settlements else []
        ),
        annotations=[
            (
                layer.id,
                render_annotation_layer(
                    layer, transform, multi_color=style.use_multi_color
                ),
            )
            for layer in annotation_layers
            if layer.visible
        ],
    )


@dataclass(frozen=True)
class LiveOverlay:
    """Результат отрисовки живой сессии для одного снимка вида."""

    transform: ViewTransform
    clip_mask: ClipMask
    layers: SvgLayers
    style: StyleSettings

    def svg_text(self) -> str:
        """Векторный оверлей без растровой подложки (предпросмотр)."""
        root = build_svg(
            self.transform.width_px,
            self.transform.height_px,
            background=background_for_mode(self.style.map_mode),
            clip_mask=self.clip_mask,
            layers=self.layers,
            dim_background=self.style.dim_background,
            dim_opacity=self.style.dim_opacity,
            clip_to_boundaries=self.style.clip_to_boundaries,
        )
        return serialize(root)


class CompositingSession:
    """
    Живая сессия: выбранные границы, дороги, слои и текущий вид.

    Каждый выбор границы выполняется в своём слоте, ключ которого равен
    запрошенным (тип, id): разные границы загружаются параллельно и
    накапливаются, а повторный выбор тех же id вытесняет прежний запуск.
    Дороги и населённые пункты загружаются через общие слоты ``roads`` и
    ``settlements``, поэтому применяется только самый свежий ответ; он
    всегда запрашивается для всех выбранных и ещё загружающихся границ.
    """

    def __init__(
        self,
        boundary_service: BoundaryService | None = None,
        road_service: RoadService | None = None,
        settlement_service: SettlementService | None = None,
        *,
        style: StyleSettings | None = None,
        transform: ViewTransform | None = None,
    ) -> None:
        self._boundary_service = boundary_service
        self._road_service = road_service
        self._settlement_service = settlement_service
        self.style = style or StyleSettings()
        self.transform = self._aligned(transform)
        self.boundaries: SelectionCollection[BoundaryFeature] = SelectionCollection()
        self.roads: list[RoadFeature] = []
        self.settlements: list[BoundaryFeature] = []
        self.annotation_layers: dict[str, AnnotationLayer] = {}
        self.overlay: LiveOverlay | None = None
        self.machine = CompositorStateMachine('live')
        self.clip_cache = ClipMaskCache()
        self._selection_slots: dict[_SelectionKey, FetchSlot[Any]] = {}
        self._pending_targets: dict[_SelectionKey, RoadTarget] = {}
        self._roads_slot: FetchSlot[Any] = FetchSlot('roads')
        self._settlements_slot: FetchSlot[Any] = FetchSlot('settlements')

    @property
    def state(self) -> CompositorState:
        return self.machine.state

    def _aligned(self, transform: ViewTransform | None) -> ViewTransform | None:
        """Вид в проекции тайлов текущего стиля."""
        if transform is None:
            return None
        return transform.with_crs(crs_for_mode(self.style.map_mode))

    def _advance(self, new: CompositorState, *, resume: CompositorState) -> None:
        """
        Переход конвейера, который ждал сеть в состоянии resume.

        Пока он ждал, другой выбор мог завершиться и перевести сессию дальше;
        тогда сессия сначала возвращается в состояние этого конвейера.
        """
        m = self.machine
        if m.state != resume and not m.can(new) and m.can(resume):
            m.transition(resume)
        m.transition(new)

    async def _guarded(self, coro: Awaitable[Any]) -> Any:
        try:
            return await coro
        except asyncio.CancelledError:
            if self.machine.can(S.ABORTED):
                self.machine.transition(S.ABORTED)
            logger.info('Сессия: операция отменена')
            raise

    # --- Конвейеры

    def _selection_slot(self, key: _SelectionKey) -> FetchSlot[Any]:
        slot = self._selection_slots.get(key)
        if slot is None:
            osm_type, ids = key
            slot = FetchSlot(f'boundary {osm_type}/{",".join(map(str, ids))}')
            self._selection_slots[key] = slot
        return slot

    async def select_boundary(
        self, osm_id: int | Sequence[int], osm_type: str
    ) -> BoundaryFeature | None:
        """
        Добавляет границу в выбор.

        None: граница не найдена, сеть недоступна (состояние ERROR, прежние
        данные не тронуты) или запуск вытеснен повторным выбором тех же id.
        """
        ids = normalize_ids(osm_id)
        key: _SelectionKey = (osm_type, tuple(ids))
        applied, feature = await self._guarded(
            self._selection_slot(key).run(self._select_pipeline(ids, osm_type, key))
        )
        return feature if applied else None

    async def refresh_roads(self) -> bool | None:
        """
        Перезагрузка дорог и населённых пунктов для текущего выбора.

        None: запрос вытеснен более новым, который и отрисует результат.
        """
        return await self._guarded(self._refresh_pipeline())

    async def remove_boundary(self, identity: str) -> bool:
        """Убирает границу; дороги и населённые пункты запрашиваются заново."""
        if not self.boundaries.remove(identity):
            return False
        logger.info('Граница %s убрана из выбора', identity)
        if self._needs_overlay_data():
            await self.refresh_roads()
        else:
            self.render()
        return True

    def _needs_overlay_data(self) -> bool:
        return self.style.roads_enabled or self.style.show_settlements

    def _road_targets(self) -> list[RoadTarget]:
        """Цели для дорог: выбранные границы и границы, которые ещё загружаются."""
        targets: list[RoadTarget] = []
        seen: set[tuple[tuple[int, ...], str | None]] = set()
        committed = [RoadTarget.from_boundary(b) for b in self.boundaries]
        for t in committed + list(self._pending_targets.values()):
            k = (t.osm_ids, t.osm_type)
            if t.osm_ids and k in seen:
                continue
            seen.add(k)
            targets.append(t)
        return targets

    async def _select_pipeline(
        self, ids: list[int], osm_type: str, key: _SelectionKey
    ) -> BoundaryFeature | None:
        if self._boundary_service is None:
            msg = 'Сервис границ не задан'
            raise RuntimeError(msg)
        self._advance(S.FETCHING_BOUNDARY, resume=S.FETCHING_BOUNDARY)
        data = await self._boundary_service.fetch_boundary_data(ids, osm_type)
        if data is None:
            logger.warning('Граница %s/%s: данных нет', osm_type, ids)
            self._advance(S.ERROR, resume=S.FETCHING_BOUNDARY)
            return None

        target = _target_from_data(data, ids, osm_type)
        self._pending_targets[key] = target
        try:
            stage = S.FETCHING_BOUNDARY
            if self._needs_overlay_data():
                self._advance(S.FETCHING_ROADS, resume=stage)
                stage = S.FETCHING_ROADS
                await self._fetch_overlay_data(self._road_targets())

            self._advance(S.STITCHING, resume=stage)
            feature = build_boundary(data, ids, osm_type)
            if feature is None:
                logger.warning('Граница %s/%s: нет геометрии', osm_type, ids)
                self.machine.transition(S.ERROR)
                return None
            if not self.boundaries.add(feature):
                logger.info('Граница %s уже выбрана, обновлена', feature.identity)
        finally:
            if self._pending_targets.get(key) is target:
                del self._pending_targets[key]
        self._render_now()
        return feature

    async def _refresh_pipeline(self) -> bool | None:
        self.machine.transition(S.FETCHING_ROADS)
        ok = await self._fetch_overlay_data(self._road_targets())
        if ok is None:
            return None
        self._render_now()
        return ok

    async def _fetch_overlay_data(self, targets: Sequence[RoadTarget]) -> bool | None:
        """
        Дороги и населённые пункты; при отказе остаются прежние данные.

        True/False: успех или отказ; None, если более новый запрос вытеснил этот.
        """
        ok = True
        superseded = False
        style = self.style
        if self._road_service is not None:
            applied, roads = await self._roads_slot.run(
                self._road_service.fetch_roads(
                    targets,
                    include_federal=style.show_federal_roads,
                    include_regional=style.show_regional_roads,
                ),
                apply=self._apply_roads,
            )
            superseded = not applied
            ok = ok and roads is not None
        if self._settlement_service is not None and style.show_settlements:
            applied, found = await self._settlements_slot.run(
                self._settlement_service.fetch_settlements(targets),
                apply=self._apply_settlements,
            )
            superseded = superseded or not applied
            ok = ok and found is not None
        return None if superseded else ok

    def _apply_roads(self, roads: list[RoadFeature] | None) -> None:
        if roads is None:
            logger.warning('Дороги не получены, оставлены прежние (%d)', len(self.roads))
            return
        self.roads = roads

    def _apply_settlements(self, found: list[BoundaryFeature] | None) -> None:
        if found is None:
            logger.warning('Населённые пункты не получены, оставлены прежние')
            return
        self.settlements = found

    # --- Проекция и отрисовка

    def _render_now(self) -> LiveOverlay | None:
        m = self.machine
        if self.transform is None:
            # Вида ещё нет: данные приняты, рисовать нечего
            if m.state != S.IDLE:
                self._advance(S.PROJECTING, resume=S.FETCHING_ROADS)
                m.transition(S.RENDERING)
                m.transition(S.LIVE_OVERLAY_READY)
            return None
        transform = self.transform
        self._advance(S.PROJECTING, resume=S.FETCHING_ROADS)
        try:
            clip_mask = self.clip_cache.get(self.boundaries.to_list(), transform)
            m.transition(S.RENDERING)
            layers = compose_layers(
                transform,
                self.style,
                boundaries=self.boundaries.to_list(),
                roads=self.roads,
                settlements=self.settlements,
                annotation_layers=self.annotation_layers.values(),
            )
        except Exception:
            m.transition(S.ERROR)
            raise
        self.overlay = LiveOverlay(transform, clip_mask, layers, self.style)
        m.transition(S.LIVE_OVERLAY_READY)
        return self.overlay

    def render(self) -> LiveOverlay | None:
        """
        Перерисовка без загрузки.

        Пока идёт загрузка, ничего не делает: конвейер сам нарисует
        результат с последним снимком вида.
        """
        if self.machine.state in FETCHING_STATES:
            return None
        return self._render_now()

    def set_transform(self, transform: ViewTransform) -> LiveOverlay | None:
        self.transform = self._aligned(transform)
        return self.render()

    def pan(self, dx_px: float, dy_px: float) -> LiveOverlay | None:
        """Сдвиг вида на (dx, dy) пикселей контейнера."""
        if self.transform is None:
            return None
        return self.set_transform(self.transform.panned(dx_px, dy_px))

    def zoom_to(self, zoom: int) -> LiveOverlay | None:
        """Новый зум с сохранением центра вида."""
        if self.transform is None:
            return None
        return self.set_transform(self.transform.zoomed(zoom))

    def set_style(self, style: StyleSettings) -> LiveOverlay | None:
        self.style = style
        self.transform = self._aligned(self.transform)
        return self.render()

    def add_annotation_layer(self, layer: AnnotationLayer) -> LiveOverlay | None:
        self.annotation_layers[layer.id] = layer
        return self.render()

    def remove_annotation_layer(self, layer_id: str) -> bool:
        if self.annotation_layers.pop(layer_id, None) is None:
            return False
        self.render()
        return True

    # --- Проект

    def to_project(self) -> ProjectState:
        return ProjectState(
            style=self.style,
            view=self.transform.to_state() if self.transform is not None else None,
            annotation_layers=list(self.annotation_layers.values()),
            boundaries=self.boundaries.to_list(),
            settlements=list(self.settlements),
            roads=list(self.roads),
        )

    @classmethod
    def from_project(
        cls,
        project: ProjectState,
        boundary_service: BoundaryService | None = None,
        road_service: RoadService | None = None,
        settlement_service: SettlementService | None = None,
    ) -> CompositingSession:
        """Восстановление сессии из проекта без сетевых запросов."""
        session = cls(
            boundary_service,
            road_service,
            settlement_service,
            style=project.style,
            transform=(
                ViewTransform.from_state(project.view) if project.view is not None else None
            ),
        )
        for b in project.boundaries:
            session.boundaries.add(b)
        session.roads = list(project.roads)
        session.settlements = list(project.settlements)
        for layer in project.annotation_layers:
            session.annotation_layers[layer.id] = layer
        return session

    def export_session(
        self,
        tile_fetcher: TileFetcher | None = None,
        *,
        transform: ViewTransform | None = None,
    ) -> ExportSession:
        """Экспорт текущего выбора со снимком вида на момент вызова."""
        snapshot = transform or self.transform
        if snapshot is None:
            msg = 'Вид не задан: нечего экспортировать'
            raise ExportFailure(msg)
        return ExportSession(
            snapshot,
            self.style,
            boundaries=self.boundaries.to_list(),
            roads=list(self.roads),
            settlements=list(self.settlements),
            annotation_layers=list(self.annotation_layers.values()),
            tile_fetcher=tile_fetcher,
            road_service=self._road_service,
        )


def _target_from_data(data: dict[str, Any], ids: list[int], osm_type: str) -> RoadTarget:
    """Цель запроса дорог для ещё не сшитой границы."""
    parsed = parse_elements(data)
    first = parsed.first or {}
    first_id = first.get('id')
    target_ids = (int(first_id),) if first_id is not None else tuple(ids)
    return RoadTarget(target_ids, str(first.get('type') or osm_type), parsed.name)


class ExportSession:
    """
    Одноразовый экспорт: снимок вида, стиль и копии данных.

    Все задачи экспорта (загрузка дорог и тайлов, кодирование) живут в
    одной области отмены. Файл появляется только после успешной записи.
    """

    def __init__(
        self,
        transform: ViewTransform,
        style: StyleSettings,
        *,
        boundaries: Sequence[BoundaryFeature] = (),
        roads: Sequence[RoadFeature] = (),
        settlements: Sequence[BoundaryFeature] = (),
        annotation_layers: Sequence[AnnotationLayer] = (),
        tile_fetcher: TileFetcher | None = None,
        road_service: RoadService | None = None,
    ) -> None:
        # Растр и векторные слои проецируются в проекции тайлов стиля
        self.transform = transform.with_crs(crs_for_mode(style.map_mode))
        self.style = style
        self.boundaries = list(boundaries)
        self.roads = list(roads)
        self.settlements = list(settlements)
        self.annotation_layers = list(annotation_layers)
        self._tile_fetcher = tile_fetcher
        self._road_service = road_service
        self.machine = CompositorStateMachine('export')
        self.scope = CancelScope()
        self.tiles_failed = 0

    @property
    def state(self) -> CompositorState:
        return self.machine.state

    def cancel(self) -> None:
        self.scope.cancel()

    async def run(self, out_path: Path | str) -> Path | None:
        """
        Выполняет экспорт в out_path.

        Returns:
            Путь к файлу или None, если экспорт отменён через ``cancel``.

        Raises:
            ExportFailure: любой другой отказ; файл не создаётся.

        """
        task = self.scope.spawn(self._run(Path(out_path)))
        try:
            return await task
        except asyncio.CancelledError:
            if self.machine.can(S.ABORTED):
                self.machine.transition(S.ABORTED)
            logger.info('Экспорт отменён')
            if self.scope.is_set():
                return None
            raise

    async def _run(self, out_path: Path) -> Path:
        m = self.machine
        try:
            await self._ensure_roads()
            m.transition(S.PROJECTING)
            west, south, east, north = viewport_bounds(self.transform)
            logger.info(
                'Экспорт: вид %.5f,%.5f - %.5f,%.5f, z=%d, %s',
                west,
                south,
                east,
                north,
                self.transform.zoom,
                self.transform.crs.value,
            )
            clip_mask = synthesize(boundary_rings(self.boundaries), self.transform)
            raster = await self._build_raster()
            self.scope.raise_if_cancelled()

            m.transition(S.RENDERING)
            layers = compose_layers(
                self.transform,
                self.style,
                boundaries=self.boundaries,
                roads=self.roads,
                settlements=self.settlements,
                annotation_layers=self.annotation_layers,
            )
            root = build_svg(
                self.transform.width_px,
                self.transform.height_px,
                background=background_for_mode(self.style.map_mode),
                clip_mask=clip_mask,
                layers=layers,
                raster_data_url=raster,
                dim_background=self.style.dim_background,
                dim_opacity=self.style.dim_opacity,
                clip_to_boundaries=self.style.clip_to_boundaries,
            )
            text = serialize(root)
            self.scope.raise_if_cancelled()
            path = write_atomic(out_path, text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if m.can(S.ERROR):
                m.transition(S.ERROR)
            logger.exception('Экспорт не удался')
            msg = f'Не удалось экспортировать карту: {e}'
            raise ExportFailure(msg) from e
        m.transition(S.EXPORT_ARTIFACT_READY)
        return path

    async def _ensure_roads(self) -> None:
        style = self.style
        if (
            not style.roads_enabled
            or self.roads
            or self._road_service is None
            or not self.boundaries
        ):
            return
        self.machine.transition(S.FETCHING_ROADS)
        roads = await self._road_service.fetch_roads(
            [RoadTarget.from_boundary(b) for b in self.boundaries],
            include_federal=style.show_federal_roads,
            include_regional=style.show_regional_roads,
        )
        if roads is None:
            logger.warning('Экспорт: дороги недоступны, слой будет пустым')
            return
        self.roads = roads

    async def _build_raster(self) -> str | None:
        mode = MapMode(self.style.map_mode)
        if self._tile_fetcher is None or tile_url_for_mode(mode) is None:
            return None
        result = await build_mosaic(
            self.transform,
            self._tile_fetcher,
            export_zoom=export_zoom_for(self.transform, self.style.export_zoom_offset),
            supersample=self.style.supersample,
            background=background_for_mode(mode),
            invert=mode in INVERTED_MODES,
        )
        self.tiles_failed = result.tiles_failed
        return await encode_data_url(result.image, self.style.jpeg_quality)
