"""
Table Tests — pocket layout, capture test and fixed spots.
"""

import sys
import os
import dataclasses
import math
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from table import Pocket, Table


class TestPockets:

    def test_six_pockets(self):
        centers = {p.center for p in Table().pockets()}
        assert centers == {
            (0.0, 0.0), (500.0, 0.0), (1000.0, 0.0),
            (0.0, 500.0), (500.0, 500.0), (1000.0, 500.0),
        }

    def test_pocket_radius(self):
        assert all(p.radius == 25.0 for p in Table().pockets())

    def test_pockets_are_immutable(self):
        pocket = Table().pockets()[0]
        with pytest.raises(dataclasses.FrozenInstanceError):
            pocket.radius = 40.0

    def test_scaled_table(self):
        table = Table(width=2000, height=1000, pocket_radius=30)
        assert (1000.0, 1000.0) in {p.center for p in table.pockets()}
        assert table.break_position == (500.0, 500.0)
        assert table.rack_apex == (1400.0, 500.0)


class TestIsInPocket:
    """Capture is strict: a centre exactly on the radius is outside."""

    @pytest.mark.parametrize("point,expected", [
        ((0.0, 0.0), True),
        ((10.0, 10.0), True),
        ((24.999, 0.0), True),
        ((25.0, 0.0), False),
        ((0.0, 25.0), False),
        ((20.0, 20.0), False),     # ~28.3 from the corner
    ])
    def test_corner(self, point, expected):
        assert Table.is_in_pocket(point, Pocket((0.0, 0.0), 25.0)) is expected

    def test_side_pocket(self):
        side = Pocket((500.0, 0.0), 25.0)
        assert Table.is_in_pocket((500.0, 20.0), side)
        assert not Table.is_in_pocket((500.0, 30.0), side)

    def test_pocket_at(self):
        table = Table()
        assert table.pocket_at((500.0, 250.0)) is None
        hit = table.pocket_at((990.0, 495.0))
        assert hit is not None and hit.center == (1000.0, 500.0)

    def test_pocket_at_accepts_numpy(self):
        np = pytest.importorskip("numpy")
        hit = Table().pocket_at(np.array([498.0, 3.0]))
        assert hit.center == (500.0, 0.0)


class TestSpots:

    def test_break_and_rack_spots(self):
        table = Table()
        assert table.break_position == (250.0, 250.0)
        assert table.rack_apex == (700.0, 250.0)

    def test_spots_are_clear_of_pockets(self):
        table = Table()
        for spot in (table.break_position, table.rack_apex):
            assert table.pocket_at(spot) is None
            nearest = min(math.dist(spot, p.center) for p in table.pockets())
            assert nearest > 25.0 + table.ball_radius

