"""Tests for domain.profiles module."""

from pathlib import Path

import pytest

from domain.models import StyleSettings
from domain.profiles import (
    _user_profiles_dir,
    delete_profile,
    ensure_profiles_dir,
    list_profiles,
    load_profile,
    profile_path,
    save_profile,
)
from shared.constants import MapMode


class TestUserProfilesDir:
    """Tests for _user_profiles_dir function."""

    def test_returns_path(self):
        assert isinstance(_user_profiles_dir(), Path)

    def test_local_profiles_preferred(self):
        # В репозитории есть configs/profiles
        assert _user_profiles_dir().parts[-2:] == ('configs', 'profiles')

    def test_bundled_profiles_load(self):
        assert 'default' in list_profiles()
        assert load_profile('dark_roads').map_mode == MapMode.DARK


class TestProfileFiles:
    """Tests for profile save, load and delete."""

    def test_ensure_creates(self, tmp_path):
        folder = tmp_path / 'a' / 'b'
        assert ensure_profiles_dir(folder) == folder
        assert folder.is_dir()

    def test_profile_path(self, tmp_path):
        assert profile_path('x', tmp_path) == tmp_path / 'x.toml'

    def test_save_and_load(self, tmp_path):
        settings = StyleSettings(map_mode=MapMode.DARK, show_settlements=True, dim_opacity=0.4)
        path = save_profile('night', settings, tmp_path)
        assert path.exists()
        assert 'map_mode = "dark"' in path.read_text(encoding='utf-8')
        assert load_profile('night', tmp_path) == settings
        assert list_profiles(tmp_path) == ['night']

    def test_load_by_path(self, tmp_path):
        path = tmp_path / 'custom.toml'
        path.write_text('show_federal_roads = true\nunknown = 1\n', encoding='utf-8')
        settings = load_profile(str(path))
        assert settings.show_federal_roads
        assert settings.map_mode == MapMode.STREETS

    def test_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_profile('ghost', tmp_path)

    def test_invalid_value(self, tmp_path):
        (tmp_path / 'bad.toml').write_text('dim_opacity = 3.0\n', encoding='utf-8')
        with pytest.raises(ValueError):
            load_profile('bad', tmp_path)

    def test_delete(self, tmp_path):
        save_profile('tmp', StyleSettings(), tmp_path)
        assert delete_profile('tmp', tmp_path)
        assert not delete_profile('tmp', tmp_path)
