"""
api/server.py — FastAPI REST API + WebSocket push for button-grid hosts.

Everything a control surface needs is served from the ControlHost:
  - /status, /healthz            connection state (503 from /healthz unless bound)
  - /variables                   recording_timecode / streaming_timecode
  - /actions, /actions/{id}      list and press buttons
  - /feedbacks/{id}?scene=...    evaluate a boolean feedback
  - /presets, /scenes            generated button layouts, known scenes
  - /config                      read or change the Meld target (reconnects immediately)
  - /ws                          live status/variables/feedbacks/definitions events
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from meld_relay import __version__
from meld_relay.config import get_settings
from meld_relay.core import MeldClient, MeldConnectionError, get_meld_client
from meld_relay.surface import UnknownDefinitionError

log = logging.getLogger(__name__)

_osc_bridge = None


def set_managers(osc: Any = None) -> None:
    global _osc_bridge
    _osc_bridge = osc


# ──────────────────────────────────────────────────────────────────────────────
# WebSocket connection pool
# ──────────────────────────────────────────────────────────────────────────────

class WSConnectionPool:
    def __init__(self):
        self._connections: list[WebSocket] = []

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        self._connections.append(ws)
        log.info(f"WS client connected. Total: {len(self._connections)}")

    def disconnect(self, ws: WebSocket) -> None:
        if ws in self._connections:
            self._connections.remove(ws)
        log.info(f"WS client disconnected. Total: {len(self._connections)}")

    async def broadcast(self, message: dict) -> None:
        if not self._connections:
            return
        data = json.dumps(message)
        dead = []
        for ws in self._connections:
            try:
                await ws.send_text(data)
            except Exception:
                dead.append(ws)
        for ws in dead:
            self.disconnect(ws)

    def count(self) -> int:
        return len(self._connections)


ws_pool = WSConnectionPool()


def _push_host_event(event: str, data: dict) -> None:
    """ControlHost listener: relay host events to every WS client."""
    if not ws_pool.count():
        return
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return
    loop.create_task(ws_pool.broadcast({"event": event, "data": data}))


# ──────────────────────────────────────────────────────────────────────────────
# App factory
# ──────────────────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    log.info(f"meld-relay API starting on {settings.api.host}:{settings.api.port}")

    host = None
    try:
        host = get_meld_client().control_host
        host.on_event(_push_host_event)
        log.info("Control host events wired to WS clients")
    except RuntimeError:
        pass  # Meld client not yet initialized

    yield
    if host is not None:
        host.remove_listener(_push_host_event)
    log.info("meld-relay API shutting down.")


class ActionBody(BaseModel):
    options: dict = Field(default_factory=dict)


class ConfigBody(BaseModel):
    host: Optional[str] = None
    port: Optional[int] = Field(None, ge=1, le=65535)


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="meld-relay",
        description="Meld Studio control relay for button-grid surfaces",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def meld() -> MeldClient:
        try:
            return get_meld_client()
        except RuntimeError:
            raise HTTPException(status_code=503, detail="Meld client not initialized")

    # ─────────────────────────────────────────────────────────────────
    # Health
    # ─────────────────────────────────────────────────────────────────

    @app.get("/health", tags=["System"])
    async def health():
        client = meld()
        return {
            "status": "ok",
            "meld_connected": client.is_connected(),
            "ws_clients": ws_pool.count(),
            "osc_active": _osc_bridge.is_running() if _osc_bridge else False,
            "version": __version__,
        }

    @app.get("/healthz", tags=["System"])
    async def healthz():
        """Machine-readable health check. Returns 503 when Meld is not bound."""
        if not meld().is_connected():
            raise HTTPException(
                status_code=503,
                detail={"status": "degraded", "reason": "Meld Studio not connected"},
            )
        return {"status": "ok"}

    @app.get("/status", tags=["System"])
    async def status():
        return meld().get_status()

    # ─────────────────────────────────────────────────────────────────
    # Config
    # ─────────────────────────────────────────────────────────────────

    @app.get("/config", tags=["System"])
    async def get_config():
        client = meld()
        return {"host": client.host, "port": client.port}

    @app.put("/config", tags=["System"])
    async def update_config(body: ConfigBody):
        """Change the Meld target. Reconnects immediately."""
        client = meld()
        client.configure(host=body.host, port=body.port)
        settings.meld.host = client.host
        settings.meld.port = client.port
        return {"host": client.host, "port": client.port, "status": "reconnecting"}

    # ─────────────────────────────────────────────────────────────────
    # Surface
    # ─────────────────────────────────────────────────────────────────

    @app.get("/variables", tags=["Surface"])
    async def variables():
        host = meld().control_host
        return {
            "definitions": [d.to_dict() for d in host.variable_definitions],
            "values": dict(host.variables),
        }

    @app.get("/scenes", tags=["Surface"])
    async def scenes():
        client = meld()
        return {"current": client.current_scene_id, "scenes": client.registry.list_scenes()}

    @app.post("/scenes/refresh", tags=["Surface"])
    async def refresh_scenes():
        client = meld()
        try:
            client.require_proxy()
        except MeldConnectionError as e:
            raise HTTPException(status_code=503, detail=str(e))
        client.refresh_scenes()
        return {"status": "refresh requested"}

    @app.get("/actions", tags=["Surface"])
    async def list_actions():
        return [a.to_dict() for a in meld().control_host.actions.values()]

    @app.post("/actions/{action_id}", tags=["Surface"])
    async def run_action(action_id: str, body: Optional[ActionBody] = None):
        host = meld().control_host
        try:
            host.run_action(action_id, body.options if body else {})
        except UnknownDefinitionError:
            raise HTTPException(status_code=404, detail=f"Action '{action_id}' not found")
        return {"action": action_id, "status": "ok", "variables": dict(host.variables)}

    @app.get("/feedbacks", tags=["Surface"])
    async def list_feedbacks():
        return [f.to_dict() for f in meld().control_host.feedbacks.values()]

    @app.get("/feedbacks/{feedback_id}", tags=["Surface"])
    async def evaluate_feedback(feedback_id: str, scene: Optional[str] = Query(None)):
        host = meld().control_host
        options = {"scene": scene} if scene is not None else {}
        try:
            value = host.evaluate_feedback(feedback_id, options)
        except UnknownDefinitionError:
            raise HTTPException(status_code=404, detail=f"Feedback '{feedback_id}' not found")
        return {"feedback": feedback_id, "options": options, "value": value}

    @app.get("/presets", tags=["Surface"])
    async def list_presets():
        return [p.to_dict() for p in meld().control_host.presets]

    # ─────────────────────────────────────────────────────────────────
    # WebSocket push
    # ─────────────────────────────────────────────────────────────────

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await ws_pool.connect(websocket)
        try:
            await websocket.send_text(json.dumps({
                "event": "connected",
                "data": {**meld().control_host.snapshot(), "version": __version__},
            }))
        except Exception:
            pass

        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    msg = json.loads(raw)
                    response = await _handle_ws_command(msg)
                    await websocket.send_text(json.dumps(response))
                except json.JSONDecodeError:
                    await websocket.send_text(json.dumps({"error": "Invalid JSON"}))
                except Exception as e:
                    await websocket.send_text(json.dumps({"error": str(e)}))
        except WebSocketDisconnect:
            ws_pool.disconnect(websocket)

    async def _handle_ws_command(msg: dict) -> dict:
        cmd = msg.get("cmd", "")
        params = msg.get("params", {})
        client = get_meld_client()

        match cmd:
            case "run_action":
                client.control_host.run_action(params["action_id"], params.get("options", {}))
                return {"action": params["action_id"], "status": "ok"}
            case "show_scene":
                return {"scene": params["scene_id"], "sent": client.show_scene(str(params["scene_id"]))}
            case "refresh_scenes":
                client.refresh_scenes()
                return {"status": "refresh requested"}
            case "get_status":
                return client.get_status()
            case _:
                return {"error": f"Unknown command: {cmd}"}

    return app
