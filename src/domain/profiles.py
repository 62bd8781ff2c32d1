import logging
import os
from pathlib import Path

import tomlkit

from domain.models import StyleSettings
from shared.constants import PROFILES_DIR

logger = logging.getLogger(__name__)


def _user_profiles_dir() -> Path:
    """
    Determine profiles directory.

    1) If <project_root>/configs/profiles exists, use it (run-from-repo setups).
    2) Otherwise, fall back to the user data directory:
       %LOCALAPPDATA%/kml-master/configs/profiles or
       ~/.local/share/kml-master/configs/profiles.
    """
    project_root = Path(__file__).resolve().parent.parent.parent
    local_profiles = project_root / PROFILES_DIR
    if local_profiles.exists():
        return local_profiles

    base = os.getenv('LOCALAPPDATA')
    root = Path(base) if base else Path.home() / '.local' / 'share'
    return root / 'kml-master' / 'configs' / 'profiles'


def ensure_profiles_dir(profiles_dir: Path | None = None) -> Path:
    folder = profiles_dir or _user_profiles_dir()
    folder.mkdir(parents=True, exist_ok=True)
    return folder


def list_profiles(profiles_dir: Path | None = None) -> list[str]:
    """Список имён профилей без расширения."""
    folder = ensure_profiles_dir(profiles_dir)
    return sorted(p.stem for p in folder.glob('*.toml') if p.is_file())


def profile_path(name: str, profiles_dir: Path | None = None) -> Path:
    """Путь к файлу профиля по имени."""
    return ensure_profiles_dir(profiles_dir) / f'{name}.toml'


def load_profile(name_or_path: str, profiles_dir: Path | None = None) -> StyleSettings:
    """
    Загрузка и валидация профиля TOML -> StyleSettings.

    Поддерживает как имя профиля (без .toml) из каталога profiles,
    так и путь до TOML файла. Незнакомые ключи игнорируются.
    """
    p = Path(name_or_path)
    path = (
        p
        if p.suffix.lower() == '.toml' and p.exists()
        else profile_path(name_or_path, profiles_dir)
    )
    if not path.exists():
        msg = f'Профиль не найден: {path}'
        raise FileNotFoundError(msg)
    data = tomlkit.parse(path.read_text(encoding='utf-8'))
    settings = StyleSettings.model_validate(data.unwrap())
    logger.info('Профиль %s: стиль %s', path.stem, settings.map_mode.value)
    return settings


def save_profile(
    name: str, settings: StyleSettings, profiles_dir: Path | None = None
) -> Path:
    """Сохранение профиля в TOML."""
    path = profile_path(name, profiles_dir)
    data = settings.model_dump(mode='json')
    path.write_text(tomlkit.dumps(data), encoding='utf-8')
    return path


def delete_profile(name: str, profiles_dir: Path | None = None) -> bool:
    """Удаление файла профиля, если он существует."""
    path = profile_path(name, profiles_dir)
    if not path.exists():
        return False
    path.unlink()
    return True
