"""
Server Tests — client command handling and frame serialization.

The websocket loop itself is not started; commands are fed straight into
_handle_command() against the module-level controller.
"""

import sys
import os
import json
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import physics
import server
from rules import Phase


@pytest.fixture(autouse=True)
def fresh_game():
    server.ctrl.reset_game()
    server.ctrl.pending_events.clear()
    server.ctrl.physics_events.clear()
    yield server.ctrl
    server._handle_command({"cmd": "reset_params"})


def cue_xy(ctrl):
    x, y = ctrl.registry.position(ctrl.registry.cue_ball.ident)
    return float(x), float(y)


class TestInitMessage:

    def test_table_description(self):
        msg = json.loads(server._build_init_message())
        assert msg["type"] == "init"
        assert (msg["table_width"], msg["table_height"]) == (1000.0, 500.0)
        assert msg["ball_radius"] == 15.0
        assert len(msg["pockets"]) == 6
        assert {"x": 500.0, "y": 0.0, "r": 25.0} in msg["pockets"]
        assert msg["power_scale"] == 200.0


class TestPointerCommands:

    def test_drag_and_release_fires(self, fresh_game):
        x, y = cue_xy(fresh_game)
        server._handle_command({"cmd": "pointer_down", "x": x, "y": y})
        assert fresh_game.phase is Phase.AIMING
        server._handle_command({"cmd": "pointer_move", "x": x - 100, "y": y})
        assert fresh_game.aim_power == pytest.approx(0.5)
        server._handle_command({"cmd": "pointer_up", "x": x - 100, "y": y})
        assert fresh_game.phase is Phase.BALLS_IN_MOTION

    def test_release_on_cue_does_not_fire(self, fresh_game):
        x, y = cue_xy(fresh_game)
        server._handle_command({"cmd": "pointer_down", "x": x, "y": y})
        server._handle_command({"cmd": "pointer_up", "x": x, "y": y})
        assert fresh_game.phase is Phase.AIMING

    def test_cancel(self, fresh_game):
        server._handle_command({"cmd": "pointer_down"})
        server._handle_command({"cmd": "pointer_cancel"})
        assert fresh_game.phase is Phase.IDLE

    def test_bad_coordinates_raise(self):
        server._handle_command({"cmd": "pointer_down"})
        with pytest.raises(ValueError):
            server._handle_command({"cmd": "pointer_move", "x": "left", "y": 0})

    def test_reset(self, fresh_game):
        fresh_game.play_shot((1.0, 0.0), 1.0, max_ticks=2)
        server._handle_command({"cmd": "reset"})
        assert fresh_game.phase is Phase.IDLE

    def test_unknown_command(self):
        assert server._handle_command({"cmd": "fly"}) is None
        assert server._handle_command({}) is None


class TestStateAndParams:

    def test_get_state(self):
        reply = server._handle_command({"cmd": "get_state"})
        assert reply["type"] == "state"
        assert reply["data"]["phase"] == "idle"
        assert len(reply["data"]["balls"]) == 16

    def test_get_params(self):
        reply = server._handle_command({"cmd": "get_params"})
        attrs = [p["attr"] for p in reply["data"]]
        assert attrs == ["FRICTION_AIR", "RESTITUTION", "CUSHION_RESTITUTION"]

    def test_adjust_param_changes_physics(self):
        before = physics.FRICTION_AIR
        reply = server._handle_command(
            {"cmd": "adjust_param", "index": 0, "direction": 1})
        assert reply["type"] == "param_update"
        assert physics.FRICTION_AIR == pytest.approx(before + 0.001)
        assert reply["value"] == pytest.approx(physics.FRICTION_AIR)

    def test_adjust_param_fine_step(self):
        before = physics.RESTITUTION
        server._handle_command(
            {"cmd": "adjust_param", "index": 1, "direction": -1, "fine": True})
        assert physics.RESTITUTION == pytest.approx(before - 0.001)

    def test_adjust_param_clamped(self):
        for _ in range(20):
            server._handle_command({"cmd": "adjust_param", "index": 2, "direction": 1})
        assert physics.CUSHION_RESTITUTION == 1.0

    def test_adjust_param_bad_index(self):
        assert server._handle_command(
            {"cmd": "adjust_param", "index": 9, "direction": 1}) is None

    def test_reset_params(self):
        server._handle_command({"cmd": "adjust_param", "index": 0, "direction": 1})
        reply = server._handle_command({"cmd": "reset_params"})
        assert physics.FRICTION_AIR == server.PARAM_DEFAULTS["FRICTION_AIR"]
        assert reply["type"] == "params"


class TestFrameMessage:

    def test_frame_drains_queues(self, fresh_game):
        fresh_game.begin_aim()
        frame = json.loads(server._build_frame_message())
        assert frame["type"] == "frame"
        assert frame["mode"] == "aiming"
        assert frame["events"][-1]["type"] == "show_power_meter"
        assert fresh_game.pending_events == []
        assert json.loads(server._build_frame_message())["events"] == []

    def test_frame_carries_game_state(self, fresh_game):
        frame = json.loads(server._build_frame_message())
        assert frame["game"]["current_player"] == 1
        assert frame["game"]["game_over"] is False
        assert len(frame["balls"]) == 16
        assert frame["aim"] == {"power": 0.0, "line": None}

    def test_frame_skips_pocketed_balls(self, fresh_game):
        fresh_game.set_layout({"cue": (500.0, 300.0), "3": (500.0, 150.0)})
        frame = json.loads(server._build_frame_message())
        assert sorted(b["label"] for b in frame["balls"]) == ["3", "cue"]

    def test_collision_sounds(self, fresh_game):
        # 10 units of gap: contact lands in the last substep of the first tick
        fresh_game.set_layout({"cue": (250.0, 250.0), "1": (290.0, 250.0)})
        fresh_game.play_shot((1.0, 0.0), 0.5, max_ticks=1)
        frame = json.loads(server._build_frame_message())
        ball_sounds = [s for s in frame["sounds"] if s["type"] == "ball_ball"]
        assert len(ball_sounds) == 1
        assert ball_sounds[0]["speed"] > 0
        assert fresh_game.physics_events == []
