from __future__ import annotations

import contextlib
import os
import sqlite3
import ssl
from datetime import timedelta
from pathlib import Path

import aiohttp
import certifi
from aiohttp_client_cache import CachedSession, SQLiteBackend

from shared.constants import (
    HTTP_CACHE_DIR,
    HTTP_CACHE_ENABLED,
    HTTP_CACHE_EXPIRE_HOURS,
    HTTP_CACHE_RESPECT_HEADERS,
    HTTP_CACHE_STALE_IF_ERROR_HOURS,
    HTTP_USER_AGENT,
)


def resolve_cache_dir() -> Path | None:
    raw_dir = Path(HTTP_CACHE_DIR)
    if raw_dir.is_absolute():
        return raw_dir

    local = os.getenv('LOCALAPPDATA')
    if local:
        return (Path(local) / 'kml-master' / '.cache' / 'http').resolve()
    # Fallback: user's home directory
    return (Path.home() / '.local' / 'share' / 'kml-master' / 'cache' / 'http').resolve()


def make_http_session(
    cache_dir: Path | None, *, use_cache: bool = HTTP_CACHE_ENABLED
) -> aiohttp.ClientSession:
    """
    Сессия для Overpass, геокодеров и тайлов.

    POST-запросы Overpass тоже кэшируются: одинаковый QL даёт одинаковый ответ,
    а повторные выборы той же границы не должны нагружать публичные зеркала.
    """
    # Создать SSL-контекст с сертификатами из certifi
    ssl_context = ssl.create_default_context(cafile=certifi.where())
    connector = aiohttp.TCPConnector(ssl=ssl_context)
    headers = {'User-Agent': HTTP_USER_AGENT}

    if use_cache and cache_dir is not None:
        cache_dir.mkdir(parents=True, exist_ok=True)
        cache_path = cache_dir / 'http_cache.sqlite'
        with contextlib.suppress(Exception):
            if not cache_path.exists():
                with sqlite3.connect(cache_path) as _conn:
                    _conn.execute('PRAGMA journal_mode=WAL;')
        expire_td = timedelta(hours=max(0, int(HTTP_CACHE_EXPIRE_HOURS)))
        stale_hours = int(HTTP_CACHE_STALE_IF_ERROR_HOURS)
        stale_param: bool | timedelta
        stale_param = timedelta(hours=stale_hours) if stale_hours > 0 else False
        backend = SQLiteBackend(
            str(cache_path),
            expire_after=expire_td,
            allowed_methods=('GET', 'HEAD', 'POST'),
        )
        return CachedSession(
            cache=backend,
            connector=connector,
            headers=headers,
            expire_after=expire_td,
            cache_control=bool(HTTP_CACHE_RESPECT_HEADERS),
            stale_if_error=stale_param,
        )
    return aiohttp.ClientSession(connector=connector, headers=headers)
