"""Progress reporting, cancellation scopes and supersedable fetch slots."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


# Глобальные колбэки для интеграции с внешним UI (опционально)
class _CbStore:
    progress: Callable[[int, int, str], None] | None = None
    warning: Callable[[str], None] | None = None


def set_progress_callback(cb: Callable[[int, int, str], None] | None) -> None:
    """Устанавливает глобальный колбэк прогресса: (done, total, label)."""
    _CbStore.progress = cb


def set_warning_callback(cb: Callable[[str], None] | None) -> None:
    """Устанавливает колбэк для нефатальных предупреждений (показ пользователю)."""
    _CbStore.warning = cb


def publish_warning(text: str) -> None:
    """Логирует предупреждение и передаёт его во внешний UI, если колбэк задан."""
    logger.warning(text)
    cb = _CbStore.warning
    if cb is not None:
        with contextlib.suppress(Exception):
            cb(text)


def cleanup_all_progress_resources() -> None:
    """Очистка всех глобальных колбэков."""
    _CbStore.progress = None
    _CbStore.warning = None


class ConsoleProgress:
    """Счётчик прогресса для пошаговых операций (загрузка тайлов)."""

    def __init__(self, total: int, label: str = 'Прогресс') -> None:
        self.total = max(1, int(total))
        self.done = 0
        self.start = time.monotonic()
        self.label = label
        self._lock = asyncio.Lock()
        self._render()

    def _render(self) -> None:
        elapsed = max(1e-6, time.monotonic() - self.start)
        rps = self.done / elapsed
        logger.debug(
            '%s: %d/%d | %.1f/s', self.label, self.done, self.total, rps
        )
        # Сообщаем UI о прогрессе
        if _CbStore.progress is not None:
            with contextlib.suppress(Exception):
                _CbStore.progress(self.done, self.total, self.label)

    def step_sync(self, n: int = 1) -> None:
        self.done = min(self.total, self.done + n)
        self._render()

    async def step(self, n: int = 1) -> None:
        async with self._lock:
            self.done = min(self.total, self.done + n)
            self._render()


class CancelToken(Protocol):
    def is_set(self) -> bool: ...


class CancelScope:
    """
    Одна область отмены для длительной операции (экспорт).

    Все задачи, запущенные через ``spawn``, отменяются вызовом ``cancel``.
    Отмена не является ошибкой: ожидающий получает ``asyncio.CancelledError``.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._tasks: set[asyncio.Task] = set()

    def is_set(self) -> bool:
        return self._cancelled

    def spawn(self, coro: Awaitable[T]) -> asyncio.Task[T]:
        task = asyncio.ensure_future(coro)
        if self._cancelled:
            task.cancel()
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def cancel(self) -> None:
        self._cancelled = True
        for task in list(self._tasks):
            task.cancel()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise asyncio.CancelledError


@dataclass(frozen=True)
class FetchToken:
    """Номер выдачи запроса в слоте; сравнивается со слотом при завершении."""

    slot: FetchSlot
    generation: int

    @property
    def is_current(self) -> bool:
        return self.slot.generation == self.generation


class FetchSlot(Generic[T]):
    """
    Логический слот для запросов, которые вытесняют друг друга (дороги, граница).

    Каждый новый запрос получает монотонно растущий токен и активно отменяет
    предыдущую задачу слота. Результат применяется только если его токен
    остаётся текущим на момент завершения.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.generation = 0
        self._task: asyncio.Task | None = None

    def next_token(self) -> FetchToken:
        self.generation += 1
        prev = self._task
        if prev is not None and not prev.done():
            logger.debug(
                'Слот %s: отмена устаревшего запроса (поколение %d)',
                self.name,
                self.generation - 1,
            )
            prev.cancel()
        self._task = None
        return FetchToken(self, self.generation)

    def invalidate(self) -> None:
        """Сделать все выданные токены устаревшими и отменить текущую задачу."""
        self.next_token()

    async def run(
        self,
        coro: Awaitable[T],
        apply: Callable[[T], None] | None = None,
    ) -> tuple[bool, T | None]:
        """
        Выполнить запрос в слоте.

        Returns:
            (applied, result). ``applied`` равно False, если результат устарел
            или запрос был вытеснен новым.

        """
        token = self.next_token()
        task = asyncio.ensure_future(coro)
        self._task = task
        try:
            result = await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if token.is_current or (current is not None and current.cancelling()):
                # Отменили извне, а не новым запросом: пробрасываем
                raise
            logger.debug('Слот %s: запрос %d вытеснен', self.name, token.generation)
            return False, None
        finally:
            if self._task is task:
                self._task = None
        if not token.is_current:
            logger.debug(
                'Слот %s: результат %d устарел, отброшен', self.name, token.generation
            )
            return False, None
        if apply is not None:
            apply(result)
        return True, result
