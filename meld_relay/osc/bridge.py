"""
osc/bridge.py — OSC UDP bridge for TouchOSC-style button grids.

Listens for OSC messages on a UDP port and maps them to control-host actions.
Also sends feedback (timecodes, live scene, status) back to OSC clients on the
reply port.

Address map:
  /meld/action/{action_id}    → press a button (any action the projector defined)
  /meld/scene/{scene_id}      → show scene
  /meld/state/query           → resend full state

Feedback messages sent back:
  /meld/state/recording_timecode  → "HH:MM:SS"
  /meld/state/streaming_timecode  → "HH:MM:SS"
  /meld/state/scene               → current scene id
  /meld/state/status              → connecting | ok | disconnected | connection_failure
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from pythonosc.dispatcher import Dispatcher
from pythonosc.osc_server import AsyncIOOSCUDPServer
from pythonosc.udp_client import SimpleUDPClient

from meld_relay.surface import UnknownDefinitionError, scene_action_id

log = logging.getLogger(__name__)


class OSCBridge:
    """
    UDP OSC server that translates Open Sound Control messages into
    meld-relay actions, and sends feedback back to clients.
    """

    def __init__(
        self,
        meld_client: Any,
        listen_host: str = "0.0.0.0",
        listen_port: int = 9000,
        reply_port: int = 9001,
        client_host: str = "255.255.255.255",
    ):
        self.listen_host = listen_host
        self.listen_port = listen_port
        self.reply_port = reply_port
        self.client_host = client_host

        self._meld = meld_client
        self._host = meld_client.control_host

        self._server: Optional[Any] = None
        self._transport: Optional[Any] = None
        self._reply_client: Optional[Any] = None
        self._running = False

    # ──────────────────────────────────────────────────────────────────
    # Server lifecycle
    # ──────────────────────────────────────────────────────────────────

    async def start(self) -> None:
        dispatcher = Dispatcher()
        self._setup_dispatcher(dispatcher)

        self._server = AsyncIOOSCUDPServer(
            (self.listen_host, self.listen_port),
            dispatcher,
            asyncio.get_running_loop(),
        )
        self._transport, _ = await self._server.create_serve_endpoint()
        self._reply_client = SimpleUDPClient(self.client_host, self.reply_port, allow_broadcast=True)
        self._host.on_event(self._on_host_event)
        self._running = True
        log.info(f"OSC bridge listening on {self.listen_host}:{self.listen_port} → reply to {self.client_host}:{self.reply_port}")

    async def stop(self) -> None:
        if self._transport:
            self._transport.close()
        self._host.remove_listener(self._on_host_event)
        self._running = False
        log.info("OSC bridge stopped.")

    def is_running(self) -> bool:
        return self._running

    # ──────────────────────────────────────────────────────────────────
    # Dispatcher setup
    # ──────────────────────────────────────────────────────────────────

    def _setup_dispatcher(self, dispatcher: Any) -> None:
        dispatcher.map("/meld/action/*", self._handle_action)
        dispatcher.map("/meld/scene/*", self._handle_scene)
        dispatcher.map("/meld/state/query", self._handle_state_query)
        dispatcher.set_default_handler(self._handle_unknown)

    # ──────────────────────────────────────────────────────────────────
    # OSC message handlers
    # ──────────────────────────────────────────────────────────────────

    def _handle_action(self, address: str, *args) -> None:
        # /meld/action/{action_id}; a trailing 0 argument is a button release
        parts = address.strip("/").split("/")
        if len(parts) < 3 or (args and args[0] == 0):
            return
        action_id = parts[2]
        log.info(f"[OSC] Action: {action_id}")
        self._run_action(action_id)

    def _handle_scene(self, address: str, *args) -> None:
        parts = address.strip("/").split("/")
        if len(parts) < 3 or (args and args[0] == 0):
            return
        scene_id = parts[2]
        log.info(f"[OSC] Scene: {scene_id}")
        self._run_action(scene_action_id(scene_id))

    def _handle_state_query(self, address: str, *args) -> None:
        self.send_state()

    def _handle_unknown(self, address: str, *args) -> None:
        log.debug(f"[OSC] Unhandled: {address} {args}")

    def _run_action(self, action_id: str) -> None:
        try:
            self._host.run_action(action_id)
        except UnknownDefinitionError:
            log.warning(f"[OSC] Unknown action: {action_id}")
        except Exception as e:
            log.error(f"OSC action error: {e}")

    # ──────────────────────────────────────────────────────────────────
    # Feedback
    # ──────────────────────────────────────────────────────────────────

    def _on_host_event(self, event: str, data: dict) -> None:
        if event == "variables":
            for variable_id, value in data.items():
                self._send_osc(f"/meld/state/{variable_id}", value)
        elif event == "status":
            self._send_osc("/meld/state/status", data["status"])
        elif event == "feedbacks" and self._meld.current_scene_id is not None:
            self._send_osc("/meld/state/scene", self._meld.current_scene_id)

    def send_state(self) -> None:
        """Broadcast current state back to OSC clients."""
        if not self._reply_client:
            return
        self._send_osc("/meld/state/status", self._host.status.value)
        for variable_id, value in self._host.variables.items():
            self._send_osc(f"/meld/state/{variable_id}", value)
        if self._meld.current_scene_id is not None:
            self._send_osc("/meld/state/scene", self._meld.current_scene_id)

    def _send_osc(self, address: str, value: Any) -> None:
        if self._reply_client:
            try:
                self._reply_client.send_message(address, value)
            except Exception as e:
                log.debug(f"OSC send error: {e}")
