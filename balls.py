"""
Ball identities, groups and the on-table ball registry.

The registry owns the mapping from ball identity to physics body. Physics
bodies are created and removed through the engine; positions always come
from the engine.
"""

import enum
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np

from physics import BodyKind, PhysicsEngine
from table import Table


class Group(enum.Enum):
    SOLID = "Solids"
    STRIPE = "Stripes"
    EIGHT = "Eight"
    CUE = "Cue"

    @property
    def opponent(self) -> "Group":
        if self is Group.SOLID:
            return Group.STRIPE
        if self is Group.STRIPE:
            return Group.SOLID
        raise ValueError(f"{self.value} is not a player group")


@dataclass(frozen=True, order=True)
class BallId:
    """Ball identity: 0 is the cue ball, 1..15 the numbered balls."""
    number: int

    def __post_init__(self):
        if not 0 <= self.number <= 15:
            raise ValueError(f"no such ball: {self.number}")

    @property
    def is_cue(self) -> bool:
        return self.number == 0

    @property
    def is_eight(self) -> bool:
        return self.number == 8

    @property
    def label(self) -> str:
        return "cue" if self.is_cue else str(self.number)

    @classmethod
    def from_label(cls, label) -> "BallId":
        if label == "cue":
            return CUE
        return cls(int(label))

    def __str__(self) -> str:
        return self.label


CUE = BallId(0)
EIGHT = BallId(8)


def group_of(ident: BallId) -> Group:
    n = ident.number
    if n == 0:
        return Group.CUE
    if n == 8:
        return Group.EIGHT
    return Group.SOLID if n <= 7 else Group.STRIPE


class BallStatus(enum.Enum):
    ON_TABLE = 0
    POCKETED = 1


@dataclass
class Ball:
    """One ball entity. A pocketed entity is never put back on the table."""
    ident: BallId
    handle: int
    status: BallStatus = BallStatus.ON_TABLE
    last_position: Optional[Tuple[float, float]] = None

    @property
    def group(self) -> Group:
        return group_of(self.ident)

    @property
    def number(self) -> int:
        return self.ident.number

    @property
    def label(self) -> str:
        return self.ident.label

    @property
    def on_table(self) -> bool:
        return self.status is BallStatus.ON_TABLE


class BallRegistry:
    """The 16 balls of a game and their status."""

    RACK_SPACING = 2.05     # x ball radius; > 2 so the rack starts without contacts
    RACK_ROWS = 5

    def __init__(self, engine: PhysicsEngine, table: Table):
        self.engine = engine
        self.table = table
        self._balls: Dict[BallId, Ball] = {}

    # ── Setup ────────────────────────────────────────────────────────────────

    def _create(self, ident: BallId, position) -> Ball:
        handle = self.engine.create_body(
            BodyKind.BALL, position, radius=self.table.ball_radius, label=ident.label,
        )
        return Ball(ident, handle)

    def _discard_all(self) -> None:
        for ball in self._balls.values():
            if ball.on_table:
                self.engine.remove_body(ball.handle)
        self._balls = {}

    @classmethod
    def rack_positions(cls, apex, radius: float) -> List[Tuple[float, float]]:
        """Triangle slots, apex first, rows growing away from the cue ball."""
        spacing = radius * cls.RACK_SPACING
        x0, y0 = apex
        slots = []
        for row in range(cls.RACK_ROWS):
            for col in range(row + 1):
                slots.append((x0 + row * spacing * 0.866, y0 + (col - row / 2) * spacing))
        return slots

    def rack(self) -> None:
        """Cue ball on the break spot, 1..15 in the triangle in row order."""
        self._discard_all()
        self._balls[CUE] = self._create(CUE, self.table.break_position)
        slots = self.rack_positions(self.table.rack_apex, self.table.ball_radius)
        for number, slot in enumerate(slots, start=1):
            ident = BallId(number)
            self._balls[ident] = self._create(ident, slot)

    def set_layout(self, positions: Dict[BallId, Tuple[float, float]]) -> None:
        """Put exactly the listed balls on the table; the rest count as pocketed."""
        self._discard_all()
        for number in range(16):
            ident = BallId(number)
            if ident in positions:
                self._balls[ident] = self._create(ident, positions[ident])
            else:
                ball = Ball(ident, handle=-1, status=BallStatus.POCKETED)
                self._balls[ident] = ball

    # ── Operations ───────────────────────────────────────────────────────────

    def remove_ball(self, ident: BallId) -> Optional[Ball]:
        """Mark a ball pocketed and take it out of the simulation."""
        ball = self._balls.get(ident)
        if ball is None or not ball.on_table:
            return None
        ball.last_position = tuple(float(v) for v in self.engine.position(ball.handle))
        ball.status = BallStatus.POCKETED
        self.engine.remove_body(ball.handle)
        return ball

    def respawn_cue(self) -> Ball:
        """New cue ball entity on the break spot after a scratch."""
        current = self._balls.get(CUE)
        if current is not None and current.on_table:
            print("[BALLS] respawn_cue ignored: cue ball is still on the table")
            return current
        ball = self._create(CUE, self.table.break_position)
        self.engine.clear_overlaps(ball.handle)
        self._balls[CUE] = ball
        return ball

    def active_balls(self) -> Iterator[Ball]:
        for ball in self._balls.values():
            if ball.on_table:
                yield ball

    # ── Queries ──────────────────────────────────────────────────────────────

    @property
    def cue_ball(self) -> Optional[Ball]:
        ball = self._balls.get(CUE)
        return ball if ball is not None and ball.on_table else None

    def get(self, ident: BallId) -> Optional[Ball]:
        return self._balls.get(ident)

    def all_balls(self) -> List[Ball]:
        return list(self._balls.values())

    def position(self, ident: BallId) -> Optional[np.ndarray]:
        ball = self._balls.get(ident)
        if ball is None or not ball.on_table:
            return None
        return self.engine.position(ball.handle)

    def place(self, ident: BallId, point) -> None:
        ball = self._balls.get(ident)
        if ball is None or not ball.on_table:
            return
        self.engine.set_position(ball.handle, point)

    def speed(self, ident: BallId) -> float:
        ball = self._balls.get(ident)
        if ball is None or not ball.on_table:
            return 0.0
        return self.engine.speed(ball.handle)
