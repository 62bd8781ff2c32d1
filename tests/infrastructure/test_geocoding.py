"""Tests for infrastructure.geocoding module."""

from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from infrastructure.geocoding import Geocoder, parse_nominatim, parse_photon
from shared.errors import FetchFailure

PHOTON = {
    'features': [
        {
            'geometry': {'coordinates': [35.9, 56.86]},
            'properties': {
                'name': 'Тверь',
                'state': 'Тверская область',
                'country': 'Россия',
                'osm_id': 2315487,
                'osm_type': 'R',
                'extent': [35.7, 56.95, 36.1, 56.75],
            },
        },
        {'geometry': {'coordinates': []}, 'properties': {'name': 'пусто'}},
    ]
}

NOMINATIM = [
    {
        'display_name': 'Тверь, Тверская область, Россия',
        'lat': '56.86',
        'lon': '35.9',
        'osm_id': 2315487,
        'osm_type': 'relation',
        'boundingbox': ['56.75', '56.95', '35.7', '36.1'],
    }
]


def _response(status=200, payload=None):
    resp = MagicMock()
    resp.status = status
    resp.json = AsyncMock(return_value=payload)
    resp.__aenter__ = AsyncMock(return_value=resp)
    resp.__aexit__ = AsyncMock(return_value=None)
    return resp


class TestParsers:
    """Tests for parse_photon / parse_nominatim."""

    def test_photon(self):
        out = parse_photon(PHOTON)
        assert len(out) == 1
        c = out[0]
        assert c.name == 'Тверь'
        assert c.osm_type == 'relation'
        assert c.osm_id == 2315487
        assert c.bbox == (35.7, 56.75, 36.1, 56.95)
        assert c.display_name == 'Тверь, Тверская область, Россия'

    def test_nominatim(self):
        out = parse_nominatim(NOMINATIM)
        assert out[0].bbox == (35.7, 56.75, 36.1, 56.95)
        assert out[0].lat == pytest.approx(56.86)
        assert out[0].name == 'Тверь'


class TestGeocoder:
    """Tests for Geocoder.search with a mocked session."""

    @pytest.mark.asyncio
    async def test_blank_text(self):
        session = MagicMock()
        assert await Geocoder(session).search('   ') == []
        session.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_photon_first(self):
        session = MagicMock()
        session.get = MagicMock(return_value=_response(payload=PHOTON))
        out = await Geocoder(session).search('Тверь')
        assert out[0].name == 'Тверь'
        assert session.get.call_count == 1
        assert session.get.call_args.kwargs['params']['lang'] == 'ru'

    @pytest.mark.asyncio
    async def test_fallback_to_nominatim(self):
        session = MagicMock()
        session.get = MagicMock(
            side_effect=[_response(status=503), _response(payload=NOMINATIM)]
        )
        out = await Geocoder(session).search('Тверь')
        assert out[0].osm_type == 'relation'
        params = session.get.call_args.kwargs['params']
        assert params['format'] == 'jsonv2'
        assert params['accept-language'] == 'ru'

    @pytest.mark.asyncio
    async def test_both_down(self):
        session = MagicMock()
        session.get = MagicMock(
            side_effect=[aiohttp.ClientConnectionError('x'), _response(status=500)]
        )
        with pytest.raises(FetchFailure):
            await Geocoder(session).search('Тверь')
