"""
2D Pool Table Physics Engine
Discs on a flat table: air friction, ball-ball impulse, cushions, pocket capture.

Units are table units (the 1000 x 500 canvas) and simulation ticks
(one 60 Hz step = 1.0), so velocities are in units/tick.
"""

import enum
import numpy as np
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

# ──────────────────────────────────────────────
# Constants (table units)
# ──────────────────────────────────────────────
TABLE_WIDTH: float = 1000.0
TABLE_HEIGHT: float = 500.0
BALL_RADIUS: float = 15.0
BALL_MASS: float = 1.0

# Numerical thresholds
VELOCITY_THRESHOLD: float = 0.02

# ── Runtime-editable behavior constants ───────────────────────────────────────
# These are read by name every call, so server.py can mutate them live via:
#   import physics as _phys;  _phys.FRICTION_AIR = 0.02
RESTITUTION: float = 0.95           # ball-ball restitution
CUSHION_RESTITUTION: float = 0.95   # ball-cushion restitution
FRICTION_AIR: float = 0.01          # fraction of velocity lost per tick

WALL_LABEL = "wall"
WALL_HANDLE = 0


class BodyKind(enum.Enum):
    BALL = 0
    WALL = 1


@dataclass
class Body:
    """Rigid disc tracked by the engine. ``label`` is opaque to the engine."""
    handle: int
    label: str
    kind: BodyKind = BodyKind.BALL
    position: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0]))
    velocity: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0]))
    radius: float = BALL_RADIUS
    mass: float = BALL_MASS
    restitution: Optional[float] = None     # None → RESTITUTION
    friction_air: Optional[float] = None    # None → FRICTION_AIR
    captured: bool = False

    def __post_init__(self):
        self.position = np.array(self.position, dtype=float)
        self.velocity = np.array(self.velocity, dtype=float)

    @property
    def speed(self) -> float:
        return float(np.linalg.norm(self.velocity))

    def is_moving(self) -> bool:
        return self.speed > VELOCITY_THRESHOLD


class PhysicsEngine:
    """Top-down disc physics using numpy.

    Collision starts are queued as ``(handle, handle)`` pairs in
    ``collision_start`` and drained by the caller once per tick. Cushion
    contacts are reported against the built-in wall body (``WALL_HANDLE``).
    """

    def __init__(self, table_width: float = TABLE_WIDTH, table_height: float = TABLE_HEIGHT):
        self.table_width = table_width
        self.table_height = table_height
        # Table bounds: x in [0, w], y in [0, h]
        self.x_min = 0.0
        self.x_max = table_width
        self.y_min = 0.0
        self.y_max = table_height

        self.bodies: Dict[int, Body] = {}
        self.pockets: List[Tuple[np.ndarray, float]] = []
        self.events: list = []
        self.collision_start: List[Tuple[int, int]] = []

        self._labels: Dict[int, str] = {WALL_HANDLE: WALL_LABEL}
        self._next_handle = WALL_HANDLE + 1
        self._contacts: set = set()

    # ──────────────────────────────────────────
    # Bodies
    # ──────────────────────────────────────────
    def create_body(self, kind: BodyKind, position, radius: float = BALL_RADIUS,
                    label: str = "", mass: float = BALL_MASS,
                    restitution: Optional[float] = None,
                    friction_air: Optional[float] = None) -> int:
        """Add a disc and return its handle."""
        if kind != BodyKind.BALL:
            raise ValueError("cushions are part of the table; only BALL bodies can be created")
        handle = self._next_handle
        self._next_handle += 1
        self.bodies[handle] = Body(
            handle, label, kind,
            position=position, radius=radius, mass=mass,
            restitution=restitution, friction_air=friction_air,
        )
        self._labels[handle] = label
        return handle

    def remove_body(self, handle: int) -> None:
        if self.bodies.pop(handle, None) is None:
            return
        self._contacts = {pair for pair in self._contacts if handle not in pair}

    def stop_all(self) -> None:
        """Bring every body to rest."""
        for body in self.bodies.values():
            body.velocity[:] = 0.0

    def clear_overlaps(self, handle: int, gap: float = 0.01) -> None:
        """Push resting bodies off ``handle`` so nothing touches it.

        The body itself stays put; anything overlapping it is moved out along
        the line of centres to leave ``gap`` between the surfaces.
        """
        body = self.bodies[handle]
        for other in self.bodies.values():
            if other.handle == handle or other.captured:
                continue
            diff = other.position - body.position
            dist = float(np.linalg.norm(diff))
            min_dist = body.radius + other.radius + gap
            if dist >= min_dist:
                continue
            normal = diff / dist if dist > 1e-9 else np.array([1.0, 0.0])
            other.position = body.position + normal * min_dist
        self._contacts = {pair for pair in self._contacts if handle not in pair}

    def apply_impulse(self, handle: int, vector) -> None:
        """Instantaneous impulse: delta_v = J / m."""
        body = self.bodies[handle]
        body.velocity = body.velocity + np.asarray(vector, dtype=float) / body.mass
        body.captured = False

    def position(self, handle: int) -> np.ndarray:
        return self.bodies[handle].position.copy()

    def set_position(self, handle: int, point) -> None:
        """Teleport a body and bring it to rest."""
        body = self.bodies[handle]
        body.position = np.array(point, dtype=float)
        body.velocity[:] = 0.0
        body.captured = False
        self._contacts = {pair for pair in self._contacts if handle not in pair}

    def speed(self, handle: int) -> float:
        return self.bodies[handle].speed

    def label(self, handle: int) -> str:
        """Label of a body; also valid for bodies removed earlier this tick."""
        return self._labels.get(handle, "")

    def add_pocket(self, center, radius: float) -> None:
        """Register a capture zone; balls whose centre enters it stop there."""
        self.pockets.append((np.array(center, dtype=float), float(radius)))

    def drain_collisions(self) -> List[Tuple[int, int]]:
        pairs = list(self.collision_start)
        self.collision_start.clear()
        return pairs

    # ──────────────────────────────────────────
    # Pocket capture
    # ──────────────────────────────────────────
    def _check_pockets(self, body: Body) -> None:
        for center, radius in self.pockets:
            if np.linalg.norm(body.position - center) < radius:
                body.captured = True
                body.velocity[:] = 0.0
                self.events.append({"type": "drop", "ball": body.label, "speed": 0.0})
                return

    # ──────────────────────────────────────────
    # Ball-Ball Collision
    # ──────────────────────────────────────────
    @staticmethod
    def _check_ball_collision(b1: Body, b2: Body) -> bool:
        """Check if two discs are overlapping or touching."""
        dist = np.linalg.norm(b1.position - b2.position)
        return dist <= (b1.radius + b2.radius)

    def _resolve_ball_collision(self, b1: Body, b2: Body) -> None:
        """Impulse along the line of centres with restitution."""
        diff = b1.position - b2.position
        dist = np.linalg.norm(diff)
        if dist < 1e-9:
            return

        normal = diff / dist

        # Separate overlapping discs, split by inverse mass
        overlap = (b1.radius + b2.radius) - dist
        if overlap > 0:
            inv1, inv2 = 1 / b1.mass, 1 / b2.mass
            b1.position = b1.position + normal * overlap * inv1 / (inv1 + inv2)
            b2.position = b2.position - normal * overlap * inv2 / (inv1 + inv2)

        rel_vel = b1.velocity - b2.velocity
        vel_along_normal = np.dot(rel_vel, normal)

        # Only resolve if approaching
        if vel_along_normal >= 0:
            return

        self.events.append({
            "type": "ball_ball", "ball1": b1.label, "ball2": b2.label,
            "speed": float(np.linalg.norm(rel_vel)),
        })

        e1 = RESTITUTION if b1.restitution is None else b1.restitution
        e2 = RESTITUTION if b2.restitution is None else b2.restitution
        e = min(e1, e2)
        j = -(1 + e) * vel_along_normal / (1 / b1.mass + 1 / b2.mass)

        impulse = j * normal
        b1.velocity = b1.velocity + impulse / b1.mass
        b2.velocity = b2.velocity - impulse / b2.mass

    # ──────────────────────────────────────────
    # Cushion Collision
    # ──────────────────────────────────────────
    def _check_cushion_collisions(self, body: Body) -> bool:
        """Reflect off the four cushions. Returns True while touching one."""
        R = body.radius
        e = CUSHION_RESTITUTION
        touching = False

        for axis, lo, hi in ((0, self.x_min, self.x_max), (1, self.y_min, self.y_max)):
            if body.position[axis] - R <= lo:
                touching = True
                if body.velocity[axis] < 0:
                    impact_speed = abs(body.velocity[axis])
                    body.position[axis] = lo + R
                    body.velocity[axis] = -body.velocity[axis] * e
                    self.events.append({"type": "cushion", "ball": body.label, "speed": float(impact_speed)})
            elif body.position[axis] + R >= hi:
                touching = True
                if body.velocity[axis] > 0:
                    impact_speed = abs(body.velocity[axis])
                    body.position[axis] = hi - R
                    body.velocity[axis] = -body.velocity[axis] * e
                    self.events.append({"type": "cushion", "ball": body.label, "speed": float(impact_speed)})
        return touching

    # ──────────────────────────────────────────
    # Main Update Loop
    # ──────────────────────────────────────────
    def update(self, dt: float = 1.0) -> None:
        """Advance the simulation by dt ticks."""
        self.events.clear()
        live = [b for b in self.bodies.values() if not b.captured]

        # Air friction + move
        for body in live:
            if body.speed > 0.0:
                fa = FRICTION_AIR if body.friction_air is None else body.friction_air
                body.velocity = body.velocity * (1.0 - fa) ** dt
                body.position = body.position + body.velocity * dt

        for body in live:
            self._check_pockets(body)
        live = [b for b in live if not b.captured]

        touching = set()

        # Ball-ball collisions
        for i in range(len(live)):
            for j in range(i + 1, len(live)):
                b1, b2 = live[i], live[j]
                if self._check_ball_collision(b1, b2):
                    key = (min(b1.handle, b2.handle), max(b1.handle, b2.handle))
                    touching.add(key)
                    if key not in self._contacts:
                        self.collision_start.append((b1.handle, b2.handle))
                    self._resolve_ball_collision(b1, b2)

        # Cushion collisions
        for body in live:
            if self._check_cushion_collisions(body):
                key = (WALL_HANDLE, body.handle)
                touching.add(key)
                if key not in self._contacts:
                    self.collision_start.append((body.handle, WALL_HANDLE))

        self._contacts = touching

        # Final state check
        for body in live:
            if not body.is_moving():
                body.velocity[:] = 0.0

    def all_at_rest(self) -> bool:
        return all(not b.is_moving() for b in self.bodies.values())

    def simulate(self, dt: float = 1.0, max_time: float = 5000.0) -> float:
        """
        Run simulation until all bodies stop or max_time is reached.

        Returns:
            Elapsed time in ticks.
        """
        t = 0.0
        while t < max_time:
            self.update(dt)
            t += dt
            if self.all_at_rest():
                break
        return t
