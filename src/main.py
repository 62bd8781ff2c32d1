"""Command line entry point for KML Master: boundaries, roads and SVG export."""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

from domain.models import AnnotationLayer, Point2, ProjectState, StyleSettings
from domain.profiles import load_profile
from domain.project import load_or_new_project, load_project, save_project
from geo.projection import (
    ViewTransform,
    centered_transform,
    fit_bounds,
    geo_bounds,
)
from infrastructure.geocoding import Geocoder
from infrastructure.http.client import make_http_session, resolve_cache_dir
from infrastructure.overpass import OverpassClient
from services.boundaries import BoundaryService
from services.compositor import CompositingSession
from services.roads import RoadService
from services.settlements import SettlementService
from shared.constants import (
    DEFAULT_VIEW_HEIGHT_PX,
    DEFAULT_VIEW_WIDTH_PX,
    FALLBACK_COLOR,
    crs_for_mode,
    tile_url_for_mode,
)
from shared.diagnostics import log_comprehensive_diagnostics
from shared.errors import ExportFailure, FetchFailure, ProjectionUndefined
from shared.progress import (
    cleanup_all_progress_resources,
    set_progress_callback,
    set_warning_callback,
)
from tiles.fetcher import TileFetcher

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> Path:
    """Configure logging to stdout and to a file in the user's local data dir.

    Returns:
        Path to the log file.
    """
    base = os.getenv('LOCALAPPDATA')
    local_base = (Path(base) if base else Path.home() / '.local' / 'share') / 'kml-master'
    log_dir = local_base / 'log'
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / 'kml_master.log'

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(str(log_file), encoding='utf-8'),
        ],
    )
    return log_file


def _cache_dir(args: argparse.Namespace) -> Path | None:
    return None if args.no_cache else resolve_cache_dir()


def _apply_profile(project: ProjectState, profile: str | None) -> ProjectState:
    if not profile:
        return project
    style: StyleSettings = load_profile(profile)
    return project.model_copy(update={'style': style})


def _framing_points(project: ProjectState) -> list[Point2]:
    points: list[Point2] = []
    for b in project.boundaries:
        points.extend(b.geometry.all_vertices())
    for layer in project.annotation_layers:
        for f in layer.features:
            points.extend(f.geometry.all_vertices())
    return points


def frame_view(
    project: ProjectState,
    *,
    width: int,
    height: int,
    zoom: int | None = None,
    refit: bool = False,
) -> ViewTransform:
    """Вид для экспорта: сохранённый или подогнанный под выбранные объекты."""
    if project.view is not None and not refit and zoom is None:
        return ViewTransform.from_state(project.view)
    bounds = geo_bounds(_framing_points(project))
    crs = crs_for_mode(project.style.map_mode)
    if zoom is None:
        return fit_bounds(bounds, width, height, crs=crs)
    west, south, east, north = bounds
    center = Point2((west + east) / 2.0, (south + north) / 2.0)
    return centered_transform(center, zoom, width, height, crs=crs)


async def cmd_search(args: argparse.Namespace) -> int:
    async with make_http_session(_cache_dir(args)) as http:
        try:
            candidates = await Geocoder(http).search(args.text)
        except FetchFailure as e:
            logger.error('%s', e)
            return 1
    if not candidates:
        print('Ничего не найдено')
        return 0
    for i, c in enumerate(candidates):
        print(f'{i}\t{c.osm_type or "-"}/{c.osm_id or "-"}\t{c.display_name}')
    return 0


async def cmd_add_boundary(args: argparse.Namespace) -> int:
    project = _apply_profile(load_or_new_project(args.project), args.profile)
    async with make_http_session(_cache_dir(args)) as http:
        overpass = OverpassClient(http)
        session = CompositingSession.from_project(
            project,
            BoundaryService(overpass),
            RoadService(overpass),
            SettlementService(overpass),
        )
        osm_id, osm_type = args.osm_id, args.osm_type
        if osm_id is None:
            try:
                candidates = await Geocoder(http).search(args.query or '')
            except FetchFailure as e:
                logger.error('%s', e)
                return 1
            usable = [c for c in candidates if c.osm_id is not None and c.osm_type]
            if not usable or args.pick >= len(usable):
                logger.error('Нет подходящего объекта для "%s"', args.query)
                return 1
            chosen = usable[args.pick]
            logger.info('Выбран объект: %s', chosen.display_name)
            osm_id, osm_type = chosen.osm_id, chosen.osm_type
        feature = await session.select_boundary(osm_id, osm_type)
    if feature is None:
        logger.error('Граница не добавлена (состояние %s)', session.state.value)
        return 1
    save_project(args.project, session.to_project())
    print(f'{feature.identity}\t{feature.name}')
    return 0


async def cmd_remove_boundary(args: argparse.Namespace) -> int:
    project = _apply_profile(load_project(args.project), args.profile)
    async with make_http_session(_cache_dir(args)) as http:
        overpass = OverpassClient(http)
        session = CompositingSession.from_project(
            project,
            BoundaryService(overpass),
            RoadService(overpass),
            SettlementService(overpass),
        )
        removed = await session.remove_boundary(args.identity)
    if not removed:
        logger.error('Граница %s не выбрана', args.identity)
        return 1
    save_project(args.project, session.to_project())
    return 0


async def cmd_fetch_roads(args: argparse.Namespace) -> int:
    project = _apply_profile(load_project(args.project), args.profile)
    async with make_http_session(_cache_dir(args)) as http:
        overpass = OverpassClient(http)
        session = CompositingSession.from_project(
            project,
            road_service=RoadService(overpass),
            settlement_service=SettlementService(overpass),
        )
        ok = await session.refresh_roads()
    save_project(args.project, session.to_project())
    logger.info('Дорог: %d, населённых пунктов: %d', len(session.roads), len(session.settlements))
    return 0 if ok else 1


def cmd_add_layer(args: argparse.Namespace) -> int:
    project = load_or_new_project(args.project)
    data = json.loads(Path(args.file).read_text(encoding='utf-8'))
    layer_id = args.id or Path(args.file).stem
    layer = AnnotationLayer.from_geojson(
        layer_id, args.name or layer_id, args.color, data
    )
    layers = [x for x in project.annotation_layers if x.id != layer_id] + [layer]
    project = project.model_copy(update={'annotation_layers': layers})
    save_project(args.project, project)
    logger.info('Слой %s: %d объектов', layer_id, len(layer.features))
    return 0


async def cmd_export(args: argparse.Namespace) -> int:
    project = _apply_profile(load_project(args.project), args.profile)
    try:
        transform = frame_view(
            project,
            width=args.width,
            height=args.height,
            zoom=args.zoom,
            refit=args.fit,
        )
    except ProjectionUndefined:
        logger.error('Нечего экспортировать: нет ни границ, ни слоёв')
        return 1
    log_comprehensive_diagnostics('EXPORT_START')
    async with make_http_session(_cache_dir(args)) as http:
        session = CompositingSession.from_project(
            project, road_service=RoadService(OverpassClient(http))
        )
        template = tile_url_for_mode(project.style.map_mode)
        fetcher = TileFetcher.for_template(http, template) if template else None
        export = session.export_session(fetcher, transform=transform)
        try:
            path = await export.run(args.out)
        except ExportFailure as e:
            logger.error('%s', e)
            log_comprehensive_diagnostics('EXPORT_ERROR')
            return 1
    log_comprehensive_diagnostics('EXPORT_DONE')
    if path is None:
        return 1
    if export.tiles_failed:
        logger.warning('Пропущено тайлов подложки: %d', export.tiles_failed)
    print(path)
    return 0


def _print_progress(done: int, total: int, label: str) -> None:
    end = '\n' if done >= total else ''
    print(f'\r{label}: {done}/{total}', end=end, file=sys.stderr, flush=True)


def _report_warnings(collected: list[str]) -> None:
    """Сводка нефатальных предупреждений в конце команды."""
    if not collected:
        return
    print(f'Предупреждения ({len(collected)}):', file=sys.stderr)
    for text in collected:
        print(f'  - {text}', file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='KML Master - границы, дороги и экспорт карты в SVG'
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Отладочный лог')
    parser.add_argument('--no-cache', action='store_true', help='Без HTTP-кэша')
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('search', help='Поиск объекта по названию')
    p.add_argument('text')

    def _project_args(sp: argparse.ArgumentParser) -> None:
        sp.add_argument('--project', required=True, help='Файл проекта (JSON)')
        sp.add_argument('--profile', help='Профиль стиля (имя или путь к TOML)')

    p = sub.add_parser('add-boundary', help='Добавить границу в проект')
    _project_args(p)
    p.add_argument('--osm-id', type=int)
    p.add_argument('--osm-type', default='relation', choices=['node', 'way', 'relation'])
    p.add_argument('--query', help='Найти объект геокодером')
    p.add_argument('--pick', type=int, default=0, help='Номер кандидата поиска')

    p = sub.add_parser('remove-boundary', help='Убрать границу из проекта')
    _project_args(p)
    p.add_argument('identity')

    p = sub.add_parser('fetch-roads', help='Загрузить дороги для выбранных границ')
    _project_args(p)

    p = sub.add_parser('add-layer', help='Добавить слой GeoJSON')
    p.add_argument('--project', required=True)
    p.add_argument('--file', required=True, help='GeoJSON FeatureCollection')
    p.add_argument('--id')
    p.add_argument('--name')
    p.add_argument('--color', default=FALLBACK_COLOR)

    p = sub.add_parser('export', help='Экспорт в SVG')
    _project_args(p)
    p.add_argument('--out', required=True)
    p.add_argument('--width', type=int, default=DEFAULT_VIEW_WIDTH_PX)
    p.add_argument('--height', type=int, default=DEFAULT_VIEW_HEIGHT_PX)
    p.add_argument('--zoom', type=int)
    p.add_argument('--fit', action='store_true', help='Подогнать вид под объекты')
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main application entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    logger.info('Starting KML Master: %s', args.command)

    if args.command == 'add-boundary' and args.osm_id is None and not args.query:
        logger.error('Укажите --osm-id или --query')
        return 2

    handlers = {
        'search': cmd_search,
        'add-boundary': cmd_add_boundary,
        'remove-boundary': cmd_remove_boundary,
        'fetch-roads': cmd_fetch_roads,
        'export': cmd_export,
    }
    collected: list[str] = []
    set_warning_callback(collected.append)
    set_progress_callback(_print_progress if sys.stderr.isatty() else None)
    try:
        if args.command == 'add-layer':
            return cmd_add_layer(args)
        return asyncio.run(handlers[args.command](args))
    except KeyboardInterrupt:
        logger.info('Прервано пользователем')
        return 130
    except (FileNotFoundError, ValueError) as e:
        logger.error('%s', e)
        return 1
    finally:
        _report_warnings(collected)
        cleanup_all_progress_resources()


if __name__ == '__main__':
    sys.exit(main())
