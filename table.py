"""
Table geometry — bounds, the six pockets and the fixed spots.
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple

from physics import TABLE_WIDTH, TABLE_HEIGHT, BALL_RADIUS


@dataclass(frozen=True)
class Pocket:
    center: Tuple[float, float]
    radius: float


class Table:
    """Static 8-ball table. Never mutated after construction."""

    POCKET_RADIUS = 25.0
    BREAK_X = 250.0     # cue ball spot (head string)
    RACK_X = 700.0      # apex of the triangle (foot spot)

    def __init__(self, width: float = TABLE_WIDTH, height: float = TABLE_HEIGHT,
                 pocket_radius: float = POCKET_RADIUS, ball_radius: float = BALL_RADIUS):
        self.width = float(width)
        self.height = float(height)
        self.ball_radius = float(ball_radius)
        self.break_position = (self.BREAK_X * self.width / TABLE_WIDTH, self.height / 2)
        self.rack_apex = (self.RACK_X * self.width / TABLE_WIDTH, self.height / 2)

        w, h, r = self.width, self.height, float(pocket_radius)
        # 4 corners + 2 long-side midpoints
        self._pockets = (
            Pocket((0.0, 0.0), r), Pocket((w / 2, 0.0), r), Pocket((w, 0.0), r),
            Pocket((0.0, h), r), Pocket((w / 2, h), r), Pocket((w, h), r),
        )

    def pockets(self) -> Tuple[Pocket, ...]:
        return self._pockets

    @staticmethod
    def is_in_pocket(position, pocket: Pocket) -> bool:
        """True iff the point is strictly inside the pocket's capture radius."""
        dx = float(position[0]) - pocket.center[0]
        dy = float(position[1]) - pocket.center[1]
        return math.hypot(dx, dy) < pocket.radius

    def pocket_at(self, position) -> Optional[Pocket]:
        return next((p for p in self._pockets if self.is_in_pocket(position, p)), None)
