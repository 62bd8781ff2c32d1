from enum import Enum

# --- Константы Web Mercator и XYZ

# Базовый размер тайла Web Mercator (пикселей)
TILE_SIZE = 256

# Ограничение синуса для избежания бесконечностей у полюсов
MERCATOR_MAX_SIN = 0.9999
WORLD_LNG_SPAN_DEG = 360.0
WORLD_LNG_HALF_SPAN_DEG = 180.0
WORLD_LAT_MAX_DEG = 90.0

# Небольшой эпсилон для расчётов на границах тайлов
XY_EPSILON = 1e-9

# Максимальный уровень приближения
MAX_ZOOM = 19

# Минимальный уровень приближения
MIN_ZOOM = 0


class Crs(str, Enum):
    """Проекция мировых пикселей: сферический (3857) или эллипсоидальный (3395) Меркатор."""

    EPSG3857 = 'EPSG:3857'
    EPSG3395 = 'EPSG:3395'


# Полуоси эллипсоида WGS84 для EPSG:3395 (метры)
WGS84_SEMI_MAJOR_M = 6378137.0
WGS84_SEMI_MINOR_M = 6356752.314245179

# Обратная проекция 3395: итерации и точность по широте (радианы)
ELLIPTIC_INVERSE_MAX_ITER = 15
ELLIPTIC_INVERSE_TOL = 1e-12

# --- Сшивка дуг границ

# Допуск совпадения концов дуг (градусы по каждой оси)
STITCH_EPSILON_DEG = 1e-7

# Минимум различных вершин для валидного кольца
MIN_RING_DISTINCT_VERTICES = 3

# Минимальное количество точек для валидной дуги
MIN_POINTS_FOR_ARC = 2

# --- Overpass API

OVERPASS_ENDPOINTS = (
    'https://overpass-api.de/api/interpreter',
    'https://overpass.kumi.systems/api/interpreter',
    'https://overpass.osm.ch/api/interpreter',
)

# Таймаут одной попытки запроса границы (секунды)
OVERPASS_BOUNDARY_TIMEOUT_S = 45.0

# Таймаут одной попытки запроса дорог (секунды)
OVERPASS_ROADS_TIMEOUT_S = 60.0

# Серверный таймаут в заголовке запроса [timeout:N]
OVERPASS_QUERY_TIMEOUT_BOUNDARY = 90
OVERPASS_QUERY_TIMEOUT_ROADS = 120

# Уровни admin_level, в которых ищется граница для точки (node -> is_in)
BOUNDARY_ADMIN_LEVELS = ('4', '5', '6', '8')

# admin_level по умолчанию, если тег отсутствует
DEFAULT_ADMIN_LEVEL = 10

# Смещения area id в Overpass
OVERPASS_AREA_OFFSET_RELATION = 3_600_000_000
OVERPASS_AREA_OFFSET_WAY = 2_400_000_000

# Имя объекта, если в тегах нет ни одного названия
DEFAULT_FEATURE_NAME = 'Объект'

# Имя дороги, если нет ни name, ни ref
DEFAULT_ROAD_NAME = 'Трасса'

# --- Классификация дорог

# Федеральные трассы: М-, Р-, А- (латиница и кириллица)
FEDERAL_REF_PATTERN = r'^[MРAМРА]-'

# Региональные трассы: номер начинается с цифры
REGIONAL_REF_PATTERN = r'^[0-9]'

# Классы highway, которые всегда считаются федеральными
FEDERAL_HIGHWAY_CLASSES = ('motorway', 'trunk')

# Классы highway, из которых берутся региональные дороги (только при наличии ref)
REGIONAL_HIGHWAY_CLASSES = ('primary', 'secondary', 'tertiary')

# --- Кэш запросов дорог

ROAD_CACHE_MAX_ENTRIES = 32
ROAD_CACHE_TTL_S = 30 * 60

# --- Геокодирование

PHOTON_SEARCH_URL = 'https://photon.komoot.io/api/'
NOMINATIM_SEARCH_URL = 'https://nominatim.openstreetmap.org/search'
GEOCODER_TIMEOUT_S = 5.0
GEOCODER_LIMIT = 8
PHOTON_LIMIT = 10
GEOCODER_LANG = 'ru'

# --- Тайлы

# Параллелизм загрузки тайлов
DOWNLOAD_CONCURRENCY = 16

# Таймаут загрузки одного тайла (секунды)
TILE_TIMEOUT_S = 15.0

# Попыток загрузки одного тайла (отказавший тайл просто пропускается)
TILE_RETRIES = 2

# Перекрытие соседних тайлов при сборке мозаики (px), убирает швы от округления
TILE_SEAM_OVERLAP_PX = 1

# Поддомены для шаблона {s}
TILE_SUBDOMAINS = ('a', 'b', 'c')

# Коэффициент суперсэмплинга растра при экспорте
EXPORT_SUPERSAMPLE = 4

# Прибавка к экранному зуму для загрузки тайлов при экспорте
EXPORT_ZOOM_OFFSET = 2

# Качество JPEG для встраиваемой мозаики
EXPORT_JPEG_QUALITY = 85

# Основание экспоненциальной задержки между попытками
HTTP_BACKOFF_FACTOR = 1.6

# Диапазон кодов 5xx
HTTP_5XX_MIN = 500
HTTP_5XX_MAX = 600


class MapMode(str, Enum):
    STREETS = 'streets'
    BRIGHT_V2 = 'bright_v2'
    DARK = 'dark'
    NONE = 'none'


YANDEX_TILE_URL = (
    'https://core-renderer-tiles.maps.yandex.net/tiles'
    '?l=map&x={x}&y={y}&z={z}&lang=ru_RU&scale=2'
)
OSM_TILE_URL = 'https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png'

TILE_URL_BY_MODE: dict[MapMode, str] = {
    MapMode.STREETS: YANDEX_TILE_URL,
    MapMode.BRIGHT_V2: OSM_TILE_URL,
    MapMode.DARK: OSM_TILE_URL,
}

# Тайлы Яндекса нарезаны в эллипсоидальном Меркаторе, OSM в сферическом
CRS_BY_MODE: dict[MapMode, Crs] = {
    MapMode.STREETS: Crs.EPSG3395,
    MapMode.BRIGHT_V2: Crs.EPSG3857,
    MapMode.DARK: Crs.EPSG3857,
    MapMode.NONE: Crs.EPSG3857,
}

# Стили, для которых растр инвертируется по яркости (тёмная подложка из OSM)
INVERTED_MODES = frozenset({MapMode.DARK})

# Стили с тёмной подложкой (фон мозаики и документа тоже тёмный)
DARK_MODES = frozenset({MapMode.DARK, MapMode.NONE})

DARK_BACKGROUND = '#0a0a0a'
LIGHT_BACKGROUND = '#ffffff'


def default_map_mode() -> MapMode:
    return MapMode.STREETS


def tile_url_for_mode(mode: MapMode | str) -> str | None:
    """Шаблон URL тайлов для стиля. Для MapMode.NONE возвращает None."""
    try:
        mm = MapMode(mode) if not isinstance(mode, MapMode) else mode
    except ValueError:
        mm = default_map_mode()
    return TILE_URL_BY_MODE.get(mm)


def crs_for_mode(mode: MapMode | str) -> Crs:
    """Проекция, в которой нарезаны тайлы стиля."""
    try:
        mm = MapMode(mode) if not isinstance(mode, MapMode) else mode
    except ValueError:
        mm = default_map_mode()
    return CRS_BY_MODE.get(mm, Crs.EPSG3857)


def background_for_mode(mode: MapMode | str) -> str:
    """Цвет фона: тёмная заливка для тёмных стилей, светлая для остальных."""
    try:
        mm = MapMode(mode) if not isinstance(mode, MapMode) else mode
    except ValueError:
        mm = default_map_mode()
    return DARK_BACKGROUND if mm in DARK_MODES else LIGHT_BACKGROUND


# --- Стили векторных слоёв

# Цвет по умолчанию, если у объекта и слоя нет своего цвета
FALLBACK_COLOR = '#A855F7'

# Точки аннотаций
ANNOTATION_POINT_COLOR = '#ff0000'
POINT_STROKE_COLOR = '#ffffff'
POINT_RADIUS = 4.5
POINT_STROKE_WIDTH = 1.2
ANNOTATION_STROKE_WIDTH = 1.0
POLYGON_FILL_OPACITY = 0.1

# Границы регионов: двухпроходная обводка
BOUNDARY_COLOR = '#3b82f6'
BOUNDARY_UNDERLAY_WIDTH = 4.0
BOUNDARY_UNDERLAY_OPACITY = 0.35
BOUNDARY_DASH_WIDTH = 1.5
BOUNDARY_DASH_ARRAY = '8, 12'
BOUNDARY_FILL_OPACITY = 0.03

# Дороги
FEDERAL_ROAD_COLOR = '#555555'
FEDERAL_ROAD_WIDTH = 3.5
FEDERAL_ROAD_OPACITY = 1.0
REGIONAL_ROAD_COLOR = '#888888'
REGIONAL_ROAD_WIDTH = 1.8
REGIONAL_ROAD_OPACITY = 0.7

# Населённые пункты
SETTLEMENT_COLOR = '#ff3d00'
SETTLEMENT_STROKE_WIDTH = 1.5
SETTLEMENT_HATCH_SPACING = 6
SETTLEMENT_HATCH_WIDTH = 1.0

# Затемнение фона вне выбранных границ
DIM_COLOR = '#000000'
DIM_OPACITY = 0.55

# Количество знаков после запятой в координатах path
SVG_COORD_PRECISION = 2

# --- Кэш HTTP
HTTP_CACHE_ENABLED = True
# Каталог кэша (относительные пути считаются от корня проекта)
HTTP_CACHE_DIR = '.cache/http'
# Время жизни (TTL) в часах
HTTP_CACHE_EXPIRE_HOURS = 168
# Учитывать заголовки Cache-Control/ETag/Last-Modified
HTTP_CACHE_RESPECT_HEADERS = True
# Разрешить использовать устаревший кэш при сетевых ошибках (часы), 0 запрещает
HTTP_CACHE_STALE_IF_ERROR_HOURS = 72

# Заголовок User-Agent для публичных сервисов OSM
HTTP_USER_AGENT = 'kml-master/1.0 (+https://www.openstreetmap.org/copyright)'

# --- Профили и проекты
PROFILES_DIR = 'configs/profiles'
PROJECT_FORMAT_VERSION = 1

# --- Подгонка вида под выбранные объекты
FIT_PADDING_PX = 40
FIT_MAX_ZOOM = 12
DEFAULT_VIEW_WIDTH_PX = 1280
DEFAULT_VIEW_HEIGHT_PX = 800
