"""
8-Ball Web Server — Layer 3 (FastAPI + WebSocket)

Serves the canvas frontend and runs the game loop, sending table state
to browser clients over WebSocket. Clients send pointer input in table
coordinates; the controller decides what is legal.
"""

import asyncio
import json
import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from controller import PoolController
from physics import TABLE_WIDTH, TABLE_HEIGHT, BALL_RADIUS
import physics as _phys

STATIC_DIR = Path(__file__).resolve().parent / "static"

# ── Controller ──────────────────────────────────────────────────────────────

ctrl = PoolController()


# ── Lifespan (startup/shutdown) ─────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    task = asyncio.create_task(game_loop())
    yield
    task.cancel()


app = FastAPI(lifespan=lifespan)

clients: list[WebSocket] = []

# ── Physics params (live tuning) ────────────────────────────────────────────

PHYSICS_PARAMS = [
    ("FRICTION_AIR",        "Air Friction",    0.001,  0.1,   0.001),
    ("RESTITUTION",         "Ball Rest.",      0.10,   1.0,   0.01),
    ("CUSHION_RESTITUTION", "Cushion Rest.",   0.10,   1.0,   0.01),
]

PARAM_DEFAULTS = {attr: getattr(_phys, attr) for attr, *_ in PHYSICS_PARAMS}

# ── Async game loop ─────────────────────────────────────────────────────────

TARGET_FPS = 60
FRAME_DT = 1.0 / TARGET_FPS


async def game_loop():
    """Main game loop running at ~60 fps."""
    while True:
        now = time.perf_counter()

        ctrl.step()

        if clients:
            frame_msg = _build_frame_message()
            dead: list[WebSocket] = []
            for ws in clients:
                try:
                    await ws.send_text(frame_msg)
                except Exception:
                    dead.append(ws)
            for ws in dead:
                if ws in clients:
                    clients.remove(ws)
        else:
            # Nobody is watching; keep the queues from growing.
            ctrl.pending_events.clear()
            ctrl.physics_events.clear()

        elapsed = time.perf_counter() - now
        sleep_time = FRAME_DT - elapsed
        if sleep_time > 0:
            await asyncio.sleep(sleep_time)
        else:
            await asyncio.sleep(0)


def _build_frame_message() -> str:
    """Serialize current state into a JSON frame message and drain the queues."""
    state = ctrl.snapshot()

    events = list(ctrl.pending_events)
    ctrl.pending_events.clear()

    sounds = []
    for ev in ctrl.physics_events:
        sounds.append({
            "type": ev.get("type", ""),
            "speed": round(float(ev.get("speed", 0.0)), 3),
        })
    ctrl.physics_events.clear()

    frame = {
        "type": "frame",
        "balls": [b for b in state["balls"] if not b["pocketed"]],
        "events": events,
        "sounds": sounds,
        "mode": state["phase"],
        "status": state["status"],
        "game": {
            "current_player": state["current_player"],
            "players": state["players"],
            "game_over": state["game_over"],
            "winner": state["winner"],
        },
        "aim": {"power": state["power"], "line": state["aim"]},
    }
    return json.dumps(frame, separators=(',', ':'))


def _build_init_message() -> str:
    return json.dumps({
        "type": "init",
        "table_width": TABLE_WIDTH,
        "table_height": TABLE_HEIGHT,
        "ball_radius": BALL_RADIUS,
        "pockets": [
            {"x": p.center[0], "y": p.center[1], "r": p.radius}
            for p in ctrl.table.pockets()
        ],
        "power_scale": ctrl.POWER_SCALE,
    })


# ── Client commands ─────────────────────────────────────────────────────────

def _pointer(msg: dict):
    return (float(msg.get("x", 0.0)), float(msg.get("y", 0.0)))


def _handle_command(msg: dict) -> dict | None:
    """Apply one client command. Returns a direct reply, if any."""
    cmd = msg.get("cmd", "")
    if cmd == "pointer_down":
        if ctrl.begin_aim() and "x" in msg:
            ctrl.update_aim(_pointer(msg))
    elif cmd == "pointer_move":
        ctrl.update_aim(_pointer(msg))
    elif cmd == "pointer_up":
        if "x" in msg:
            ctrl.update_aim(_pointer(msg))
        ctrl.commit_shot()
    elif cmd == "pointer_cancel":
        ctrl.cancel_aim()
    elif cmd == "reset":
        ctrl.reset_game()
    elif cmd == "get_state":
        return {"type": "state", "data": ctrl.snapshot()}
    elif cmd == "get_params":
        return {"type": "params", "data": _get_params_data()}
    elif cmd == "adjust_param":
        idx = int(msg.get("index", 0))
        direction = int(msg.get("direction", 0))
        fine = msg.get("fine", False)
        if 0 <= idx < len(PHYSICS_PARAMS):
            attr, label, mn, mx, step = PHYSICS_PARAMS[idx]
            s = step / 10.0 if fine else step
            cur = getattr(_phys, attr)
            new_val = max(mn, min(mx, cur + direction * s))
            setattr(_phys, attr, new_val)
            return {"type": "param_update", "index": idx, "value": round(new_val, 6)}
    elif cmd == "reset_params":
        for attr, dflt in PARAM_DEFAULTS.items():
            setattr(_phys, attr, dflt)
        return {"type": "params", "data": _get_params_data()}
    return None


def _get_params_data() -> list:
    """Return all physics params with current values."""
    result = []
    for attr, label, mn, mx, step in PHYSICS_PARAMS:
        result.append({
            "attr": attr, "label": label,
            "value": round(getattr(_phys, attr), 6),
            "min": mn, "max": mx, "step": step,
        })
    return result


# ── WebSocket endpoint ──────────────────────────────────────────────────────

@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws.accept()
    clients.append(ws)
    print(f"[SERVER] client connected ({len(clients)} total)")

    await ws.send_text(_build_init_message())

    try:
        while True:
            data = await ws.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                continue
            if not isinstance(msg, dict):
                continue
            try:
                reply = _handle_command(msg)
            except (TypeError, ValueError) as exc:
                print(f"[SERVER] bad command {msg.get('cmd')!r}: {exc}")
                continue
            if reply is not None:
                await ws.send_text(json.dumps(reply))
    except WebSocketDisconnect:
        pass
    finally:
        if ws in clients:
            clients.remove(ws)
        print(f"[SERVER] client disconnected ({len(clients)} left)")


# ── Static files + root route ───────────────────────────────────────────────

app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")


@app.get("/")
async def root():
    return FileResponse(STATIC_DIR / "index.html")


# ── Run with uvicorn ────────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("server:app", host="0.0.0.0", port=8000, reload=False)
