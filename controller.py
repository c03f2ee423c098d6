"""
PoolController — Layer 2 (Game Logic)

Owns the GameSession (table, balls, physics, turn state), the shot
controller and the rule engine. Communicates with Layer 3 (server.py /
main.py) via two queues:
  - pending_events  : presentation commands (spawn_ball, remove_ball, sound,
                      show_power_meter, status, update_ui, foul, game_over, …)
  - physics_events  : collision dicts of the last tick, for sound volume

Layer 3 calls:
  ctrl.begin_aim() / update_aim(p) / commit_shot()   — pointer down/move/up
  ctrl.reset_game()                                  — new rack, any time
  ctrl.step()                                        — once per frame
  ctrl.snapshot()                                    — state for drawing
"""

import numpy as np

from balls import BallId, CUE
from rules import GameSession, Phase, PocketPolicy, RuleEngine, TurnOutcome


class PoolController:
    """Layer 2: shot controller + rule engine orchestration."""

    # ── Class-level constants ─────────────────────────────────────────────────
    SIM_SUBSTEPS    = 4
    SIM_DT          = 1.0 / SIM_SUBSTEPS   # ticks per substep
    MAX_POWER       = 25.0                 # impulse at full power (unit mass → units/tick)
    POWER_SCALE     = 200.0                # drag distance for full power
    REST_SPEED      = 0.2
    AIM_LINE_LENGTH = 200.0
    MAX_SHOT_TICKS  = 5000

    # ── Constructor ───────────────────────────────────────────────────────────

    def __init__(self, pocket_policy: PocketPolicy = PocketPolicy.ALL):
        self.pocket_policy = pocket_policy

        # Aiming
        self.aim_pointer: np.ndarray | None = None
        self.aim_power = 0.0

        # Event queues (never rebound; Layer 3 drains them in place)
        self.pending_events: list[dict] = []
        self.physics_events: list[dict] = []

        self.session: GameSession
        self.rules: RuleEngine
        self.reset_game()

    # ── Shortcuts ─────────────────────────────────────────────────────────────

    @property
    def turn(self):
        return self.session.turn

    @property
    def phase(self) -> Phase:
        return self.session.turn.phase

    @property
    def mode(self) -> str:
        return self.session.turn.phase.value

    @property
    def status_msg(self) -> str:
        return self.session.turn.message

    @property
    def engine(self):
        return self.session.engine

    @property
    def registry(self):
        return self.session.registry

    @property
    def table(self):
        return self.session.table

    # ──────────────────────────────────────────────────────────────────────────
    # Game setup
    # ──────────────────────────────────────────────────────────────────────────

    def reset_game(self) -> None:
        """Rebuild table, balls and turn state. Allowed in every phase."""
        self.pending_events.append({"type": "clear_balls"})
        self.physics_events.clear()
        self.aim_pointer = None
        self.aim_power = 0.0

        self.session = GameSession.new()
        self.rules = RuleEngine(self.session, self.pending_events, self.pocket_policy)

        self._spawn_all()
        self._power_meter(False)
        self.rules.publish_ui()
        self.rules.publish_status("Player 1's Turn - Aim and shoot!")
        print("[GAME] New game racked")

    def set_layout(self, positions: dict) -> None:
        """Replace the rack with an arranged position (practice / tests).

        ``positions`` maps BallId (or label) → (x, y). Balls not listed are
        off the table. Players and turn state are left as they are.
        """
        if self.phase is Phase.BALLS_IN_MOTION:
            return
        layout = {}
        for key, pos in positions.items():
            ident = key if isinstance(key, BallId) else BallId.from_label(key)
            layout[ident] = (float(pos[0]), float(pos[1]))
        self.pending_events.append({"type": "clear_balls"})
        self.registry.set_layout(layout)
        self._spawn_all()
        self.rules.publish_ui()

    def place_ball(self, ident: BallId, point) -> None:
        if self.phase is Phase.BALLS_IN_MOTION:
            return
        self.registry.place(ident, point)

    def _spawn_all(self) -> None:
        for ball in self.registry.active_balls():
            x, y = self.registry.position(ball.ident)
            self.pending_events.append({
                "type": "spawn_ball", "ball": ball.label,
                "pos": [round(float(x), 3), round(float(y), 3)],
            })

    def _power_meter(self, visible: bool) -> None:
        self.pending_events.append({
            "type": "show_power_meter", "visible": visible,
            "fraction": round(self.aim_power, 4),
        })

    # ──────────────────────────────────────────────────────────────────────────
    # Shooting (pointer down / move / up)
    # ──────────────────────────────────────────────────────────────────────────

    def begin_aim(self) -> bool:
        turn = self.turn
        if turn.phase not in (Phase.IDLE, Phase.AIMING):
            return False
        if self.registry.cue_ball is None:
            return False
        turn.phase = Phase.AIMING
        turn.first_hit = None
        self.aim_pointer = None
        self.aim_power = 0.0
        self._power_meter(True)
        return True

    def update_aim(self, pointer) -> bool:
        if self.phase is not Phase.AIMING:
            return False
        cue_pos = self.registry.position(CUE)
        if cue_pos is None:
            return False
        pointer = np.asarray(pointer, dtype=float)[:2]
        distance = float(np.linalg.norm(cue_pos - pointer))
        self.aim_pointer = pointer
        self.aim_power = min(distance / self.POWER_SCALE, 1.0)
        self._power_meter(True)
        return True

    def commit_shot(self) -> bool:
        """Strike the cue ball away from the pointer. No-op without a direction."""
        turn = self.turn
        if turn.phase is not Phase.AIMING:
            return False
        cue = self.registry.cue_ball
        if cue is None or self.aim_pointer is None:
            return False
        delta = self.registry.position(CUE) - self.aim_pointer
        dist = float(np.linalg.norm(delta))
        if dist < 1e-9 or self.aim_power <= 0.0:
            return False

        direction = delta / dist
        self.engine.apply_impulse(cue.handle, direction * self.aim_power * self.MAX_POWER)
        print(f"[SHOT] Player {turn.current_player}: power={self.aim_power:.2f} "
              f"dir=({direction[0]:.3f},{direction[1]:.3f})")

        turn.phase = Phase.BALLS_IN_MOTION
        self.aim_pointer = None
        self.aim_power = 0.0
        self.pending_events.append({"type": "sound", "name": "cue_strike"})
        self._power_meter(False)
        return True

    def cancel_aim(self) -> bool:
        if self.phase is not Phase.AIMING:
            return False
        self.turn.phase = Phase.IDLE
        self.aim_pointer = None
        self.aim_power = 0.0
        self._power_meter(False)
        return True

    # ──────────────────────────────────────────────────────────────────────────
    # Main loop
    # ──────────────────────────────────────────────────────────────────────────

    def step(self) -> None:
        """Advance physics + rules by one tick. Called every frame by L3."""
        if self.phase is not Phase.BALLS_IN_MOTION:
            return

        self.physics_events.clear()
        for _ in range(self.SIM_SUBSTEPS):
            self.engine.update(self.SIM_DT)
            self.physics_events.extend(self.engine.events)
            self.rules.observe_collisions(self.engine.drain_collisions())

        if self.balls_at_rest():
            self.engine.stop_all()
            self.rules.resolve_turn()

    def balls_at_rest(self) -> bool:
        return all(self.engine.speed(b.handle) < self.REST_SPEED
                   for b in self.registry.active_balls())

    # ──────────────────────────────────────────────────────────────────────────
    # Headless API
    # ──────────────────────────────────────────────────────────────────────────

    def play_shot(self, direction, power: float, max_ticks: int | None = None) -> dict:
        """Aim along ``direction`` with ``power`` in [0, 1] and run to rest.

        Drives the same begin/update/commit path as the pointer does, then
        ticks until the turn resolves. Returns a summary dict.
        """
        result = {"fired": False, "ticks": 0, "shooter": self.turn.current_player}
        if not self.begin_aim():
            return result
        cue_pos = self.registry.position(CUE)
        d = np.asarray(direction, dtype=float)
        n = float(np.linalg.norm(d))
        power = max(0.0, min(1.0, float(power)))
        pointer = cue_pos if n < 1e-9 else cue_pos - d / n * power * self.POWER_SCALE
        self.update_aim(pointer)
        if not self.commit_shot():
            return result

        limit = self.MAX_SHOT_TICKS if max_ticks is None else max_ticks
        ticks = 0
        while self.phase is Phase.BALLS_IN_MOTION and ticks < limit:
            self.step()
            ticks += 1

        outcome: TurnOutcome | None = self.rules.last_outcome
        result.update({
            "fired": True,
            "ticks": ticks,
            "resolved": self.phase is not Phase.BALLS_IN_MOTION,
            "first_hit": outcome.first_hit.label if outcome and outcome.first_hit else None,
            "pocketed": [i.label for i in outcome.pocketed] if outcome else [],
            "fouls": [f.value for f in outcome.fouls] if outcome else [],
            "current_player": self.turn.current_player,
            "game_over": self.turn.game_over,
            "winner": self.turn.winner,
        })
        return result

    # ──────────────────────────────────────────────────────────────────────────
    # State for Layer 3
    # ──────────────────────────────────────────────────────────────────────────

    def snapshot(self) -> dict:
        session, turn = self.session, self.session.turn

        balls = []
        for ball in self.registry.all_balls():
            pos = self.registry.position(ball.ident) if ball.on_table else ball.last_position
            balls.append({
                "id": ball.number,
                "label": ball.label,
                "group": ball.group.value,
                "pos": None if pos is None else [round(float(pos[0]), 3), round(float(pos[1]), 3)],
                "pocketed": not ball.on_table,
            })

        aim = None
        cue_pos = self.registry.position(CUE)
        if turn.phase is Phase.AIMING and self.aim_pointer is not None and cue_pos is not None:
            delta = cue_pos - self.aim_pointer
            dist = float(np.linalg.norm(delta))
            if dist > 1e-9:
                end = cue_pos + delta / dist * self.AIM_LINE_LENGTH
                aim = {
                    "start": [round(float(cue_pos[0]), 3), round(float(cue_pos[1]), 3)],
                    "end": [round(float(end[0]), 3), round(float(end[1]), 3)],
                }

        return {
            "phase": turn.phase.value,
            "current_player": turn.current_player,
            "players": [
                {"id": p.id, "group": p.group.value if p.group else None, "score": p.score}
                for p in session.players
            ],
            "status": turn.message,
            "game_over": turn.game_over,
            "winner": turn.winner,
            "consecutive_fouls": turn.consecutive_fouls,
            "power": round(self.aim_power, 4),
            "aim": aim,
            "balls": balls,
        }
