"""
8-Ball Pool Desktop Client — Layer 3 (Ursina, top-down)
Layer 2: controller.py (PoolController) + rules.py (RuleEngine)
Layer 1: physics.py (PhysicsEngine)

Press and drag away from the cue ball to aim, release to shoot.
Esc cancels the aim, R starts a new game.
"""

import os
import tempfile
import wave
from pathlib import Path

import numpy as np
from PIL import Image, ImageDraw
from ursina import (
    Ursina, Entity, Text, Audio, Texture, Mesh, Vec3,
    camera, color, mouse, destroy,
)

from physics import TABLE_WIDTH, TABLE_HEIGHT, BALL_RADIUS
from balls import BallId, Group, group_of
from controller import PoolController
from rules import Phase

# ── Layer 2: controller instance ──────────────────────────────────────────────
ctrl = PoolController()

WORLD_SCALE = 100.0     # table units per world unit

_asset_dir = tempfile.mkdtemp(prefix="pool8_assets_")


def _to_world(x, y, z=0.0) -> Vec3:
    return Vec3((x - TABLE_WIDTH / 2) / WORLD_SCALE, (TABLE_HEIGHT / 2 - y) / WORLD_SCALE, z)


def _to_table(world_pos):
    return (world_pos.x * WORLD_SCALE + TABLE_WIDTH / 2,
            TABLE_HEIGHT / 2 - world_pos.y * WORLD_SCALE)


# ──────────────────────────────────────────
# Ball textures (PIL)
# ──────────────────────────────────────────

_BALL_RGB = {
    0: (255, 255, 255),
    1: (255, 255, 0), 2: (0, 0, 255), 3: (255, 0, 0), 4: (128, 0, 128),
    5: (255, 165, 0), 6: (0, 128, 0), 7: (139, 69, 19), 8: (0, 0, 0),
}

_tex_cache = {}


def _make_ball_texture(number: int, size: int = 128):
    """Coloured disc; stripes get a white centre, numbered balls a label."""
    img = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    striped = group_of(BallId(number)) is Group.STRIPE
    base = _BALL_RGB[number - 8 if striped else number]
    draw.ellipse([1, 1, size - 2, size - 2], fill=base + (255,), outline=(0, 0, 0, 255))
    if striped:
        inset = int(size * 0.2)
        draw.ellipse([inset, inset, size - inset, size - inset], fill=(255, 255, 255, 255))
    if number:
        text = str(number)
        ink = (0, 0, 0, 255) if striped else (255, 255, 255, 255)
        left, top, right, bottom = draw.textbbox((0, 0), text)
        draw.text(((size - (right - left)) / 2, (size - (bottom - top)) / 2), text, fill=ink)
    return img


def _get_texture(number: int):
    if number in _tex_cache:
        return _tex_cache[number]
    path = os.path.join(_asset_dir, f"ball_{number}.png")
    _make_ball_texture(number).save(path)
    tex = Texture(path)
    _tex_cache[number] = tex
    return tex


# ──────────────────────────────────────────
# Synthesized Sound Effects (numpy + wave)
# ──────────────────────────────────────────

_SR = 44100


def _synth_wav(filename, samples):
    """Write mono 16-bit 44100Hz WAV and return Path object."""
    path = os.path.join(_asset_dir, filename)
    data = np.clip(samples, -1.0, 1.0)
    data_int = (data * 32767).astype(np.int16)
    with wave.open(path, "w") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(_SR)
        wf.writeframes(data_int.tobytes())
    return Path(path)


def _tone(dur, freq, decay, fm=0.0):
    t = np.linspace(0, dur, int(_SR * dur), endpoint=False)
    return t, np.exp(-t * decay) * np.sin(2 * np.pi * freq * t + fm * np.sin(2 * np.pi * 200 * t))


def _synth_all() -> dict:
    _, hit = _tone(0.08, 800, 60, fm=5)
    _, strike = _tone(0.12, 300, 35, fm=2)
    _, cushion = _tone(0.1, 400, 40)
    t, drop = _tone(0.35, 180, 12)
    drop = drop + 0.4 * np.exp(-t * 20) * np.sin(2 * np.pi * 90 * t)
    t, foul = _tone(0.5, 220, 4)
    foul = foul * (1 - t / t[-1])
    t = np.linspace(0, 1.2, int(_SR * 1.2), endpoint=False)
    win = sum(np.exp(-(t - k * 0.25).clip(0) * 4) * (t >= k * 0.25) *
              np.sin(2 * np.pi * f * t) for k, f in enumerate((523, 659, 784, 1047))) * 0.3
    return {
        "hit":        _synth_wav("hit.wav", hit * 0.8),
        "cue_strike": _synth_wav("strike.wav", strike * 0.9),
        "cushion":    _synth_wav("cushion.wav", cushion * 0.6),
        "pocket":     _synth_wav("pocket.wav", drop * 0.7),
        "scratch":    _synth_wav("scratch.wav", drop[::-1] * 0.6),
        "foul":       _synth_wav("foul.wav", foul * 0.7),
        "win":        _synth_wav("win.wav", win),
    }


# ──────────────────────────────────────────
# Ursina App
# ──────────────────────────────────────────

app = Ursina(borderless=False, title="8-Ball Pool", size=(1280, 760))

camera.orthographic = True
camera.fov = TABLE_HEIGHT / WORLD_SCALE * 1.6

# ── Table ─────────────────────────────────
RAIL = 0.3
Entity(model="quad", color=color.hsv(25, 0.6, 0.35),
       scale=(TABLE_WIDTH / WORLD_SCALE + RAIL * 2, TABLE_HEIGHT / WORLD_SCALE + RAIL * 2), z=0.02)
table_surface = Entity(
    model="quad", color=color.hsv(140, 0.85, 0.42),
    scale=(TABLE_WIDTH / WORLD_SCALE, TABLE_HEIGHT / WORLD_SCALE),
    collider="box", z=0.01,
)
for pocket in ctrl.table.pockets():
    Entity(model="circle", color=color.black,
           scale=pocket.radius * 2 / WORLD_SCALE,
           position=_to_world(*pocket.center, z=0.005))

# ── Ball entities (L3 owns these) ─────────────────────────────────────────────
ball_entities: dict[str, Entity] = {}
aim_line_entity = None

# ── Sound effects ─────────────────────────────────────────────────────────────
sound_paths = _synth_all()
sounds: dict[str, Audio] = {}

# ── UI ────────────────────────────────────────────────────────────────────────
info_text = Text(text="Drag from the cue ball to aim, release to shoot.  [Esc] Cancel  [R] New game",
                 position=(-0.75, 0.47), scale=1.0, color=color.white)
status_text = Text(text="", position=(-0.75, 0.42), scale=1.2, color=color.light_gray)
player_texts = [
    Text(text="", position=(-0.75, -0.38), scale=1.2),
    Text(text="", position=(0.25, -0.38), scale=1.2),
]
result_text = Text(text="", position=(0, 0.05), origin=(0, 0), scale=3, color=color.yellow)

power_bar_bg = Entity(parent=camera.ui, model="quad", color=color.dark_gray,
                      scale=(0.4, 0.02), position=(0, -0.45), enabled=False)
power_bar_fill = Entity(parent=camera.ui, model="quad", color=color.orange,
                        scale=(0.001, 0.02), position=(-0.2, -0.45, -0.01), enabled=False)


# ──────────────────────────────────────────
# Sound loading (deferred until app is running)
# ──────────────────────────────────────────

_sounds_loaded = False


def _load_sounds():
    global _sounds_loaded
    if _sounds_loaded:
        return
    try:
        for name, path in sound_paths.items():
            sounds[name] = Audio(path, autoplay=False)
        _sounds_loaded = True
    except Exception as exc:
        print(f"[AUDIO] sound disabled: {exc}")
        _sounds_loaded = True


def _play_sound(name, volume=1.0):
    snd = sounds.get(name)
    if snd is None:
        return
    snd.volume = volume
    snd.play()


def _play_collision_sounds(events):
    for evt in events:
        if evt["type"] != "cushion":
            continue
        vol = min(1.0, evt["speed"] / 10.0)
        if vol >= 0.05:
            _play_sound("cushion", vol)


# ──────────────────────────────────────────
# Helper functions (L3 only)
# ──────────────────────────────────────────

def _spawn_ball(label, pos):
    _remove_ball(label)
    number = BallId.from_label(label).number
    ent = Entity(
        model="quad",
        texture=_get_texture(number),
        scale=BALL_RADIUS * 2 / WORLD_SCALE,
        position=_to_world(pos[0], pos[1], z=-0.01),
    )
    ball_entities[label] = ent
    return ent


def _remove_ball(label):
    ent = ball_entities.pop(label, None)
    if ent is not None:
        destroy(ent)


def _do_clear_balls():
    for label in list(ball_entities):
        _remove_ball(label)
    _clear_aim()
    result_text.text = ""


def _clear_aim():
    global aim_line_entity
    if aim_line_entity:
        destroy(aim_line_entity)
        aim_line_entity = None


def _update_aim_line(aim):
    global aim_line_entity
    _clear_aim()
    if not aim:
        return
    aim_line_entity = Entity(
        model=Mesh(vertices=[_to_world(*aim["start"], z=-0.02), _to_world(*aim["end"], z=-0.02)],
                   mode="line", thickness=3),
        color=color.white,
    )


def _update_power_bar(visible, fraction):
    power_bar_bg.enabled = visible
    power_bar_fill.enabled = visible
    w = fraction * 0.4
    power_bar_fill.scale_x = max(w, 0.001)
    power_bar_fill.x = -0.2 + w / 2
    power_bar_fill.color = color.hsv(120 - fraction * 120, 1.0, 1.0)


def _update_game_ui():
    turn = ctrl.turn
    for text, player in zip(player_texts, ctrl.session.players):
        active = player.id == turn.current_player and not turn.game_over
        text.text = f"{'>> ' if active else ''}Player {player.id}: {player.group_name}  ({player.score})"
        text.color = color.yellow if active else color.light_gray


def _get_mouse_table_pos():
    if mouse.world_point is not None:
        return _to_table(mouse.world_point)
    return None


# ──────────────────────────────────────────
# Controller event dispatcher (L2 → L3)
# ──────────────────────────────────────────

def _handle_controller_event(ev: dict):
    t = ev["type"]
    if t == "spawn_ball":
        _spawn_ball(ev["ball"], ev["pos"])
    elif t == "remove_ball":
        _remove_ball(ev["ball"])
    elif t == "clear_balls":
        _do_clear_balls()
    elif t == "sound":
        _play_sound(ev["name"])
    elif t == "show_power_meter":
        _update_power_bar(ev["visible"], ev["fraction"])
    elif t == "update_ui":
        _update_game_ui()
    elif t == "status":
        status_text.text = ev["msg"]
    elif t == "game_over":
        result_text.text = ev["msg"]


# ──────────────────────────────────────────
# Input handler
# ──────────────────────────────────────────

def input(key):
    if key == "r":
        ctrl.reset_game()
    elif key == "escape":
        ctrl.cancel_aim()
    elif key == "left mouse down":
        if ctrl.begin_aim():
            pos = _get_mouse_table_pos()
            if pos is not None:
                ctrl.update_aim(pos)
    elif key == "left mouse up":
        pos = _get_mouse_table_pos()
        if pos is not None:
            ctrl.update_aim(pos)
        ctrl.commit_shot()


# ──────────────────────────────────────────
# Update loop
# ──────────────────────────────────────────

def update():
    _load_sounds()

    if ctrl.phase is Phase.AIMING:
        pos = _get_mouse_table_pos()
        if pos is not None:
            ctrl.update_aim(pos)

    # ── Physics + rules step ─────────────────────────────────────────────────
    ctrl.step()

    # ── Process pending events (L2 → L3 rendering commands) ──────────────────
    for ev in ctrl.pending_events:
        _handle_controller_event(ev)
    ctrl.pending_events.clear()

    _play_collision_sounds(ctrl.physics_events)
    ctrl.physics_events.clear()

    # ── Ball entity position sync ────────────────────────────────────────────
    for ball in ctrl.registry.active_balls():
        ent = ball_entities.get(ball.label)
        if ent is not None:
            x, y = ctrl.registry.position(ball.ident)
            ent.position = _to_world(x, y, z=-0.01)

    _update_aim_line(ctrl.snapshot()["aim"] if ctrl.phase is Phase.AIMING else None)


# ──────────────────────────────────────────
# Run
# ──────────────────────────────────────────

if __name__ == "__main__":
    app.run()
