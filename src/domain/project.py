"""
Сохранение и загрузка проекта (JSON).

Проект хранит кольца границ, дороги и слои целиком, поэтому открытие
сохранённого проекта и повторный экспорт не требуют сети.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from domain.models import ProjectState
from shared.constants import PROJECT_FORMAT_VERSION
from shared.file_io import write_atomic

logger = logging.getLogger(__name__)


class ProjectFormatError(ValueError):
    """Файл проекта повреждён или записан более новой версией программы."""


def parse_project(data: dict[str, Any]) -> ProjectState:
    version = data.get('version')
    if version != PROJECT_FORMAT_VERSION:
        msg = f'Неподдерживаемая версия проекта: {version!r} (ожидается {PROJECT_FORMAT_VERSION})'
        raise ProjectFormatError(msg)
    try:
        return ProjectState.model_validate(data)
    except ValidationError as e:
        msg = f'Некорректный проект: {e.error_count()} ошибок'
        raise ProjectFormatError(msg) from e


def load_project(path: Path | str) -> ProjectState:
    path = Path(path)
    if not path.exists():
        msg = f'Проект не найден: {path}'
        raise FileNotFoundError(msg)
    try:
        data = json.loads(path.read_text(encoding='utf-8'))
    except json.JSONDecodeError as e:
        msg = f'Проект {path}: не JSON ({e.msg}, строка {e.lineno})'
        raise ProjectFormatError(msg) from None
    if not isinstance(data, dict):
        msg = f'Проект {path}: ожидается объект JSON'
        raise ProjectFormatError(msg)
    project = parse_project(data)
    logger.info(
        'Проект загружен: %s (границ %d, дорог %d, слоёв %d)',
        path,
        len(project.boundaries),
        len(project.roads),
        len(project.annotation_layers),
    )
    return project


def load_or_new_project(path: Path | str) -> ProjectState:
    """Существующий проект или пустой, если файла ещё нет."""
    path = Path(path)
    if not path.exists():
        logger.info('Проект %s не найден, создаётся новый', path)
        return ProjectState()
    return load_project(path)


def save_project(path: Path | str, project: ProjectState) -> Path:
    text = project.model_dump_json(indent=2)
    return write_atomic(Path(path), text + '\n')
