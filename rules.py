"""
8-Ball Rules — turn state machine, fouls, group assignment and win conditions.

The rule engine never advances the simulation. The controller feeds it the
collision pairs of every tick (observe_collisions) and calls resolve_turn()
once every ball on the table is at rest. Presentation commands are appended
to the shared ``events`` list as dicts, same queue the controller uses.

Turn resolution, in order:
  1. pockets — scratch, then numbered balls (eight ends the game)
  2. first-hit check, unless a foul was already recorded
  3. a foul passes the turn; otherwise the shooter keeps the table
"""

import enum
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from physics import PhysicsEngine, WALL_LABEL
from table import Table
from balls import BallId, BallRegistry, Group, CUE, group_of


class Phase(enum.Enum):
    IDLE = "idle"
    AIMING = "aiming"
    BALLS_IN_MOTION = "running"
    GAME_OVER = "game_over"


class FoulReason(enum.Enum):
    SCRATCH = "Scratch"
    WRONG_BALL = "Wrong ball pocketed"
    NO_HIT = "No ball was hit"
    OPPONENT_FIRST = "Hit opponent's ball first"


class PocketPolicy(enum.Enum):
    FIRST_ONLY = "first"    # scratch short-circuits; one numbered ball per rest
    ALL = "all"             # every ball found in a pocket, eight ball last


@dataclass
class Player:
    id: int
    group: Optional[Group] = None
    score: int = 0

    @property
    def group_name(self) -> str:
        return self.group.value if self.group is not None else "Not Assigned"


@dataclass
class TurnState:
    current_player: int = 1
    phase: Phase = Phase.IDLE
    first_hit: Optional[BallId] = None
    consecutive_fouls: int = 0
    game_over: bool = False
    winner: Optional[int] = None
    message: str = ""


@dataclass
class TurnOutcome:
    shooter: int = 1
    first_hit: Optional[BallId] = None
    pocketed: List[BallId] = field(default_factory=list)
    fouls: List[FoulReason] = field(default_factory=list)
    scratched: bool = False
    legal_pocket: bool = False
    game_over: bool = False

    @property
    def fouled(self) -> bool:
        return bool(self.fouls)


@dataclass
class GameSession:
    """Everything one game needs; rebuilt from scratch on reset."""
    engine: PhysicsEngine
    table: Table
    registry: BallRegistry
    players: Tuple[Player, Player] = field(default_factory=lambda: (Player(1), Player(2)))
    turn: TurnState = field(default_factory=TurnState)

    @classmethod
    def new(cls, table: Optional[Table] = None) -> "GameSession":
        table = table or Table()
        engine = PhysicsEngine(table.width, table.height)
        for pocket in table.pockets():
            engine.add_pocket(pocket.center, pocket.radius)
        registry = BallRegistry(engine, table)
        registry.rack()
        return cls(engine, table, registry)

    def player(self, player_id: int) -> Player:
        return self.players[player_id - 1]

    @property
    def current(self) -> Player:
        return self.player(self.turn.current_player)

    @property
    def opponent(self) -> Player:
        return self.player(2 if self.turn.current_player == 1 else 1)

    def owner_of(self, group: Group) -> Optional[Player]:
        return next((p for p in self.players if p.group is group), None)

    @property
    def player1_type(self) -> Optional[Group]:
        return self.players[0].group

    @property
    def player2_type(self) -> Optional[Group]:
        return self.players[1].group


class RuleEngine:
    """Turn/rule state machine for one GameSession."""

    WIN_SCORE = 7   # own-group balls to clear before the eight

    def __init__(self, session: GameSession, events: list,
                 pocket_policy: PocketPolicy = PocketPolicy.ALL):
        self.session = session
        self.events = events
        self.pocket_policy = pocket_policy
        self.last_outcome: Optional[TurnOutcome] = None

    # ── Publishing ───────────────────────────────────────────────────────────

    def _emit(self, event_type: str, **data) -> None:
        self.events.append({"type": event_type, **data})

    def _sound(self, name: str) -> None:
        self._emit("sound", name=name)

    def publish_status(self, msg: str) -> None:
        self.session.turn.message = msg
        self._emit("status", msg=msg)

    def publish_ui(self) -> None:
        self._emit("update_ui")

    # ── Collision observation ────────────────────────────────────────────────

    def observe_collisions(self, pairs) -> None:
        """Record the first cue-ball contact of the turn."""
        turn = self.session.turn
        if turn.phase is not Phase.BALLS_IN_MOTION:
            return
        engine = self.session.engine
        for h1, h2 in pairs:
            l1, l2 = engine.label(h1), engine.label(h2)
            if WALL_LABEL in (l1, l2):
                continue
            self._sound("hit")
            if turn.first_hit is not None:
                continue
            if l1 == CUE.label:
                other = l2
            elif l2 == CUE.label:
                other = l1
            else:
                continue
            ident = BallId.from_label(other)
            if not ident.is_cue:
                turn.first_hit = ident

    # ── Turn resolution ──────────────────────────────────────────────────────

    def resolve_turn(self) -> TurnOutcome:
        turn = self.session.turn
        outcome = TurnOutcome(shooter=turn.current_player, first_hit=turn.first_hit)
        if turn.phase is not Phase.BALLS_IN_MOTION:
            return outcome
        self.last_outcome = outcome

        self._resolve_pockets(outcome)
        if outcome.game_over:
            return outcome

        if not outcome.fouls:
            foul = self._check_first_hit()
            if foul is not None:
                outcome.fouls.append(foul)

        turn.phase = Phase.IDLE
        if outcome.fouls:
            self.handle_foul(outcome.fouls[0])
        else:
            turn.consecutive_fouls = 0
            if not outcome.legal_pocket:
                self.publish_status(f"Player {turn.current_player}'s Turn")
        self.publish_ui()
        return outcome

    def _resolve_pockets(self, outcome: TurnOutcome) -> None:
        registry, table = self.session.registry, self.session.table

        cue_pos = registry.position(CUE)
        if cue_pos is not None and table.pocket_at(cue_pos) is not None:
            self._scratch(outcome)
            if self.pocket_policy is PocketPolicy.FIRST_ONLY:
                return

        sunk = [b for b in registry.active_balls()
                if not b.ident.is_cue and table.pocket_at(registry.position(b.ident)) is not None]
        if self.pocket_policy is PocketPolicy.FIRST_ONLY:
            # highest-numbered ball first
            sunk = sunk[-1:]
        else:
            sunk.sort(key=lambda b: b.ident.is_eight)

        for ball in sunk:
            registry.remove_ball(ball.ident)
            outcome.pocketed.append(ball.ident)
            self._emit("remove_ball", ball=ball.label)
            self._sound("pocket")
            self._on_ball_pocketed(ball.ident, outcome)
            if outcome.game_over:
                return

    def _scratch(self, outcome: TurnOutcome) -> None:
        registry = self.session.registry
        outcome.scratched = True
        outcome.fouls.append(FoulReason.SCRATCH)
        registry.remove_ball(CUE)
        self._emit("remove_ball", ball=CUE.label)
        self._sound("scratch")
        cue = registry.respawn_cue()
        x, y = registry.position(cue.ident)
        self._emit("spawn_ball", ball=cue.label, pos=[round(float(x), 3), round(float(y), 3)])
        print(f"[RULES] Scratch by player {outcome.shooter}; cue ball back on the break spot")

    def _on_ball_pocketed(self, ident: BallId, outcome: TurnOutcome) -> None:
        session = self.session
        shooter = session.current

        if ident.is_eight:
            outcome.game_over = True
            if shooter.group is not None and shooter.score == self.WIN_SCORE:
                self.end_game(f"Player {shooter.id} Wins!", winner=shooter.id)
            else:
                other = session.opponent
                self.end_game(
                    f"Player {other.id} Wins! (Opponent sunk the 8-ball early)",
                    winner=other.id,
                )
            return

        group = group_of(ident)
        if shooter.group is None:
            self.assign_groups(group)

        if group is shooter.group:
            shooter.score += 1
            outcome.legal_pocket = True
            self.publish_ui()
            self.publish_status(f"Player {shooter.id} pocketed a ball! Continue playing.")
        else:
            owner = session.owner_of(group)
            if owner is not None:
                owner.score += 1
            outcome.fouls.append(FoulReason.WRONG_BALL)

    def _check_first_hit(self) -> Optional[FoulReason]:
        turn = self.session.turn
        if turn.first_hit is None:
            return FoulReason.NO_HIT
        shooter = self.session.current
        if shooter.group is None:
            return None
        hit_group = group_of(turn.first_hit)
        if hit_group is not shooter.group and hit_group is not Group.EIGHT:
            return FoulReason.OPPONENT_FIRST
        return None

    # ── State changes ────────────────────────────────────────────────────────

    def assign_groups(self, group: Group) -> None:
        """Give the shooter ``group`` and the opponent the other one. Once per game."""
        session = self.session
        shooter, other = session.current, session.opponent
        if shooter.group is not None:
            return
        shooter.group = group
        other.group = group.opponent
        print(f"[RULES] Player {shooter.id} is {shooter.group.value}, "
              f"player {other.id} is {other.group.value}")
        self.publish_ui()
        self.publish_status(f"Player {shooter.id} is {shooter.group.value}")

    def handle_foul(self, reason: FoulReason) -> None:
        turn = self.session.turn
        self._sound("foul")
        self._emit("foul", reason=reason.value, player=turn.current_player)
        turn.consecutive_fouls += 1
        print(f"[RULES] Foul by player {turn.current_player}: {reason.value}")
        self.switch_player()
        self.publish_status(f"Foul! {reason.value}. Player {turn.current_player}'s Turn")

    def switch_player(self) -> None:
        turn = self.session.turn
        turn.current_player = 2 if turn.current_player == 1 else 1
        turn.first_hit = None
        self.publish_ui()
        self.publish_status(f"Player {turn.current_player}'s Turn")

    def end_game(self, message: str, winner: Optional[int] = None) -> None:
        turn = self.session.turn
        self._sound("win")
        turn.phase = Phase.GAME_OVER
        turn.game_over = True
        turn.winner = winner
        self.publish_status(message)
        self._emit("game_over", msg=message, winner=winner)
        self.publish_ui()
        print(f"[RULES] Game over: {message}")
