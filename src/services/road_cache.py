"""
Кэш результатов запросов дорог.

Ограниченный LRU с TTL. Часы передаются снаружи, поэтому тесты управляют
временем и могут проверить вытеснение и устаревание без sleep.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

from shared.constants import ROAD_CACHE_MAX_ENTRIES, ROAD_CACHE_TTL_S

logger = logging.getLogger(__name__)


def request_signature(area: str, *, include_federal: bool, include_regional: bool) -> str:
    """Канонический ключ запроса: не зависит от порядка аргументов и пробелов."""
    area_norm = ' '.join(area.split())
    return f'{area_norm}|fed={int(bool(include_federal))}|reg={int(bool(include_regional))}'


class RoadQueryCache:
    def __init__(
        self,
        max_entries: int = ROAD_CACHE_MAX_ENTRIES,
        ttl_s: float = ROAD_CACHE_TTL_S,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            msg = 'max_entries должен быть >= 1'
            raise ValueError(msg)
        self.max_entries = int(max_entries)
        self.ttl_s = float(ttl_s)
        self._clock = clock
        self._data: OrderedDict[str, tuple[float, Any]] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def _expired(self, stored_at: float) -> bool:
        if self.ttl_s <= 0:
            return False
        return self._clock() - stored_at >= self.ttl_s

    def get(self, key: str) -> Any | None:
        entry = self._data.get(key)
        if entry is None:
            self._misses += 1
            return None
        stored_at, value = entry
        if self._expired(stored_at):
            del self._data[key]
            self._expirations += 1
            self._misses += 1
            logger.debug('Кэш дорог: запись устарела %s', key)
            return None
        self._data.move_to_end(key)
        self._hits += 1
        return value

    def put(self, key: str, value: Any) -> None:
        if key in self._data:
            self._data.move_to_end(key)
        self._data[key] = (self._clock(), value)
        while len(self._data) > self.max_entries:
            old_key, _ = self._data.popitem(last=False)
            self._evictions += 1
            logger.debug('Кэш дорог: вытеснена запись %s', old_key)

    def invalidate(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def clear(self) -> None:
        self._data.clear()

    def keys(self) -> list[str]:
        """Ключи от самого старого к самому свежему по использованию."""
        return list(self._data.keys())

    @property
    def stats(self) -> dict[str, int]:
        return {
            'entries': len(self._data),
            'hits': self._hits,
            'misses': self._misses,
            'evictions': self._evictions,
            'expirations': self._expirations,
        }
