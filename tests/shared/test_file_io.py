"""Tests for shared.file_io module."""

from unittest.mock import patch

import pytest

from shared.file_io import write_atomic


class TestWriteAtomic:
    """Tests for write_atomic function."""

    def test_writes_text(self, tmp_path):
        path = write_atomic(tmp_path / 'out.svg', '<svg/>')
        assert path.read_text(encoding='utf-8') == '<svg/>'
        assert [p.name for p in tmp_path.iterdir()] == ['out.svg']

    def test_creates_parent(self, tmp_path):
        path = write_atomic(tmp_path / 'a' / 'b' / 'out.svg', 'x')
        assert path.exists()

    def test_replaces_existing(self, tmp_path):
        target = tmp_path / 'out.svg'
        target.write_text('old', encoding='utf-8')
        write_atomic(target, 'new')
        assert target.read_text(encoding='utf-8') == 'new'

    def test_failure_keeps_target_and_removes_temp(self, tmp_path):
        target = tmp_path / 'out.svg'
        target.write_text('old', encoding='utf-8')
        with patch('shared.file_io.os.replace', side_effect=OSError('no space')):
            with pytest.raises(OSError, match='no space'):
                write_atomic(target, 'new')
        assert target.read_text(encoding='utf-8') == 'old'
        assert [p.name for p in tmp_path.iterdir()] == ['out.svg']

    def test_unicode(self, tmp_path):
        path = write_atomic(tmp_path / 'out.svg', 'Тверь')
        assert path.read_bytes() == 'Тверь'.encode()
