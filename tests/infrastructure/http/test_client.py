"""Tests for infrastructure.http.client module."""

from pathlib import Path
from unittest.mock import patch

import pytest
from aiohttp_client_cache import CachedSession

from infrastructure.http.client import (
    make_http_session,
    resolve_cache_dir,
)


class TestResolveCacheDir:
    """Tests for resolve_cache_dir function."""

    def test_returns_path(self):
        """Should return a Path object."""
        assert isinstance(resolve_cache_dir(), Path)

    def test_uses_localappdata(self, tmp_path):
        with patch.dict('os.environ', {'LOCALAPPDATA': str(tmp_path)}):
            result = resolve_cache_dir()
        assert result == (tmp_path / 'kml-master' / '.cache' / 'http').resolve()

    def test_fallback_to_home(self):
        """Should fallback to home directory when LOCALAPPDATA not set."""
        with patch('os.getenv', return_value=None):
            result = resolve_cache_dir()
        assert 'kml-master' in str(result)


class TestMakeHttpSession:
    """Tests for make_http_session function."""

    @pytest.mark.asyncio
    async def test_creates_session_without_cache(self):
        """Should create a plain session when cache_dir is None."""
        session = make_http_session(None)
        try:
            assert not isinstance(session, CachedSession)
            assert 'kml-master' in session.headers['User-Agent']
        finally:
            await session.close()

    @pytest.mark.asyncio
    async def test_creates_cached_session(self, tmp_path):
        """Should create a CachedSession with SQLite file in cache_dir."""
        cache_dir = tmp_path / 'cache'
        session = make_http_session(cache_dir)
        try:
            assert isinstance(session, CachedSession)
            assert (cache_dir / 'http_cache.sqlite').exists()
        finally:
            await session.close()

    @pytest.mark.asyncio
    async def test_cache_disabled_flag(self, tmp_path):
        session = make_http_session(tmp_path, use_cache=False)
        try:
            assert not isinstance(session, CachedSession)
        finally:
            await session.close()
