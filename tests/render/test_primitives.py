"""Tests for render.primitives module."""

from render.primitives import CircleMarker, PathPrimitive, fmt, path_data


class TestPathData:
    def test_open_path(self):
        assert path_data([(0, 0), (1.004, 2.5)]) == 'M 0.00 0.00 L 1.00 2.50'

    def test_closed_path(self):
        assert path_data([(0, 0), (1, 0), (0, 1)], closed=True).endswith(' Z')

    def test_empty(self):
        assert path_data([]) == ''

    def test_negative_zero(self):
        assert fmt(-0.001) == '0.00'
        assert fmt(-1.5) == '-1.50'


class TestPrimitives:
    def test_open_path_attributes(self):
        attrs = PathPrimitive(d='M 0 0 L 1 1', stroke='#000', stroke_width=2).attributes()
        assert attrs['fill'] == 'none'
        assert attrs['stroke-linecap'] == 'round'
        assert 'opacity' not in attrs

    def test_closed_path_attributes(self):
        attrs = PathPrimitive(
            d='M 0 0 Z',
            stroke='#000',
            stroke_width=1.5,
            fill='#fff',
            fill_opacity=0.1,
            opacity=0.5,
            dash_array='8, 12',
            closed=True,
        ).attributes()
        assert attrs['fill-opacity'] == '0.1'
        assert attrs['opacity'] == '0.5'
        assert attrs['stroke-dasharray'] == '8, 12'
        assert 'stroke-linecap' not in attrs

    def test_circle(self):
        attrs = CircleMarker(1, 2, 4.5, '#ff0000', '#ffffff', 1.2).attributes()
        assert attrs == {
            'cx': '1.00',
            'cy': '2.00',
            'r': '4.5',
            'fill': '#ff0000',
            'stroke': '#ffffff',
            'stroke-width': '1.2',
        }
