"""Атомарная запись файлов результата."""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


def write_atomic(path: Path | str, text: str) -> Path:
    """
    Пишет текст во временный файл рядом с целью и переименовывает его.

    До успешного os.replace целевой файл не появляется и не меняется;
    при ошибке временный файл удаляется.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f'.{path.name}.', suffix='.tmp', dir=path.parent)
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(OSError):
            tmp.unlink()
        raise
    logger.info('Сохранено: %s (%d байт)', path, len(text.encode('utf-8')))
    return path
