"""
core/meld_client.py — Meld Studio WebChannel client with reconnect & state sync.

Lifecycle of one connection:

  IDLE ─connect()─► CONNECTING ─socket open─► HANDSHAKE_WAIT ─init response─► BOUND
                        ▲                            │                         │
                        │                  handshake failure              socket close
                        │                     (force close)                    │
                        └──── 3 s one-shot ◄──── DISCONNECTED ◄────────────────┘

Only the socket close schedules a reconnect. Socket errors update the status
and nothing else; the close that follows them does the rest. A configuration
change skips the delay and reconnects immediately.

Every callback is bound to the Connection it was created for. Once that
connection is replaced or torn down, late callbacks from its proxy are ignored.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import websockets

from meld_relay.scenes import SceneRegistry
from meld_relay.surface.host import ControlHost, Status
from meld_relay.timers import TimerEngine

from .capabilities import Capabilities
from .transport import WebChannelTransport
from .webchannel import QWebChannel, WebChannelError

log = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 13376
DEFAULT_RECONNECT_INTERVAL = 3.0

Connector = Callable[[str], Awaitable[Any]]


def ws_url(host: str, port: int) -> str:
    return f"ws://{host}:{port}/"


class MeldConnectionError(Exception):
    pass


class ConnectionPhase(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    HANDSHAKE_WAIT = "handshake_wait"
    BOUND = "bound"
    DISCONNECTED = "disconnected"


@dataclass
class Connection:
    """One socket + one WebChannel binding. Replaced wholesale on reconnect."""
    host: str
    port: int
    phase: ConnectionPhase = ConnectionPhase.CONNECTING
    socket: Optional[Any] = None
    transport: Optional[WebChannelTransport] = None
    channel: Optional[QWebChannel] = None
    proxy: Optional[Any] = None
    task: Optional[asyncio.Task] = None
    handshake_timer: Optional[asyncio.TimerHandle] = None
    subscriptions: list[tuple[Any, Callable]] = field(default_factory=list)

    @property
    def url(self) -> str:
        return ws_url(self.host, self.port)


class MeldClient:
    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        control_host: Optional[ControlHost] = None,
        reconnect_interval: float = DEFAULT_RECONNECT_INTERVAL,
        tick_interval: float = 1.0,
        open_timeout: float = 5.0,
        object_name: str = "meld",
        connector: Optional[Connector] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.host = host
        self.port = port
        self.reconnect_interval = reconnect_interval
        self.open_timeout = open_timeout
        self.object_name = object_name

        self.control_host = control_host or ControlHost()
        self.registry = SceneRegistry()
        self.recording = TimerEngine(
            "recording", "recording_timecode", self.control_host.set_variable_values, tick_interval, clock
        )
        self.streaming = TimerEngine(
            "streaming", "streaming_timecode", self.control_host.set_variable_values, tick_interval, clock
        )
        self.current_scene_id: Optional[str] = None
        self.last_error: Optional[str] = None
        self.capabilities = Capabilities()

        self._connector: Connector = connector or self._open_socket
        self._connection: Optional[Connection] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._closing: set[asyncio.Task] = set()
        self._shutdown = False

    # ── State ─────────────────────────────────────────────────────────

    @property
    def url(self) -> str:
        return ws_url(self.host, self.port)

    @property
    def connection(self) -> Optional[Connection]:
        return self._connection

    @property
    def phase(self) -> ConnectionPhase:
        return self._connection.phase if self._connection else ConnectionPhase.IDLE

    @property
    def proxy(self) -> Optional[Any]:
        return self._connection.proxy if self._connection else None

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    def is_connected(self) -> bool:
        return self.phase is ConnectionPhase.BOUND

    def require_proxy(self) -> Any:
        proxy = self.proxy
        if proxy is None:
            raise MeldConnectionError("Not connected to Meld Studio")
        return proxy

    def get_status(self) -> dict:
        return {
            "url": self.url,
            "phase": self.phase.value,
            "connected": self.is_connected(),
            "status": self.control_host.status.value,
            "message": self.control_host.status_message,
            "current_scene": self.current_scene_id,
            "recording": {"active": self.recording.active, "timecode": self.recording.value},
            "streaming": {"active": self.streaming.active, "timecode": self.streaming.value},
            "capabilities": self.capabilities.describe(),
            "reconnect_pending": self.reconnect_pending,
            "last_error": self.last_error,
        }

    # ── Connection ────────────────────────────────────────────────────

    def connect(self) -> Connection:
        """Tear down any existing connection and start a fresh attempt."""
        self._shutdown = False
        self._cancel_reconnect()
        self._teardown()

        conn = Connection(self.host, self.port)
        self._connection = conn
        self.control_host.update_status(Status.CONNECTING)
        log.info(f"Connecting to Meld Studio: {conn.url}")
        conn.task = asyncio.get_running_loop().create_task(self._run(conn))
        return conn

    def configure(self, host: Optional[str] = None, port: Optional[int] = None) -> Connection:
        """Apply a new target and reconnect immediately, bypassing the retry delay."""
        if host:
            self.host = host
        if port:
            self.port = int(port)
        log.debug(f"Config updated: {self.host}:{self.port}")
        # timers of the previous target are not carried over
        self._teardown()
        self.recording.stop()
        self.streaming.stop()
        return self.connect()

    async def disconnect(self) -> None:
        """Stop both timers, close the socket and cancel any pending reconnect."""
        self._shutdown = True
        self._cancel_reconnect()
        self._teardown()
        self.recording.stop()
        self.streaming.stop()
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)
        log.info("Meld client disconnected.")

    async def _open_socket(self, url: str) -> Any:
        return await websockets.connect(url, open_timeout=self.open_timeout, max_size=None)

    async def _run(self, conn: Connection) -> None:
        try:
            socket = await self._connector(conn.url)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._on_error(conn, e)
            self._on_close(conn)
            return

        conn.socket = socket
        self._on_open(conn)
        try:
            async for message in socket:
                conn.transport.deliver(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._on_error(conn, e)
        finally:
            self._on_close(conn)

    # ── Socket events ─────────────────────────────────────────────────

    def _on_open(self, conn: Connection) -> None:
        if conn is not self._connection:
            return
        conn.phase = ConnectionPhase.HANDSHAKE_WAIT
        conn.transport = WebChannelTransport(conn.socket)
        try:
            conn.channel = QWebChannel(
                conn.transport,
                lambda channel: self._on_channel_ready(conn, channel),
                lambda exc: self._handshake_failed(conn, exc),
            )
        except Exception as e:
            self._handshake_failed(conn, e)
            return
        if self.open_timeout:
            conn.handshake_timer = asyncio.get_running_loop().call_later(
                self.open_timeout, self._handshake_timed_out, conn
            )

    def _on_error(self, conn: Connection, exc: BaseException) -> None:
        if conn is not self._connection:
            return
        message = str(exc) or "WebSocket error"
        self.last_error = message
        log.warning(f"Meld connection error: {message}")
        self.control_host.update_status(Status.CONNECTION_FAILURE, message)

    def _on_close(self, conn: Connection) -> None:
        if conn is not self._connection:
            return
        conn.phase = ConnectionPhase.DISCONNECTED
        self._detach(conn)
        self._close_socket(conn)
        self.recording.suspend()
        self.streaming.suspend()
        self.control_host.update_status(Status.DISCONNECTED)
        if self._shutdown:
            return
        log.warning(f"Meld Studio disconnected. Reconnecting in {self.reconnect_interval}s...")
        self._schedule_reconnect()

    # ── Handshake ─────────────────────────────────────────────────────

    def _on_channel_ready(self, conn: Connection, channel: QWebChannel) -> None:
        if conn is not self._connection:
            return
        proxy = channel.objects.get(self.object_name)
        if proxy is None:
            raise WebChannelError(
                f"Meld object '{self.object_name}' not published (objects: {sorted(channel.objects)})"
            )
        self._cancel_handshake_timer(conn)
        conn.proxy = proxy
        conn.phase = ConnectionPhase.BOUND
        self.last_error = None
        self.capabilities = Capabilities.resolve(proxy)
        self.control_host.update_status(Status.OK)
        log.info(f"Connected to Meld Studio at {self.host}:{self.port}")

        self._subscribe(conn, proxy)
        self._reconcile(proxy)
        self.refresh_scenes()

    def _handshake_failed(self, conn: Connection, exc: BaseException) -> None:
        if conn is not self._connection:
            return
        self._cancel_handshake_timer(conn)
        self._detach(conn)
        log.error(f"QWebChannel init failed: {exc}")
        self.last_error = f"QWebChannel init failed: {exc}"
        self.control_host.update_status(Status.CONNECTION_FAILURE, "QWebChannel init failed")
        self._close_socket(conn)

    def _handshake_timed_out(self, conn: Connection) -> None:
        conn.handshake_timer = None
        if conn is self._connection and conn.phase is ConnectionPhase.HANDSHAKE_WAIT:
            self._handshake_failed(conn, MeldConnectionError(f"no init response within {self.open_timeout}s"))

    def _cancel_handshake_timer(self, conn: Connection) -> None:
        if conn.handshake_timer is not None:
            conn.handshake_timer.cancel()
            conn.handshake_timer = None

    # ── Remote signals ────────────────────────────────────────────────

    def _subscribe(self, conn: Connection, proxy: Any) -> None:
        for signal_name, handler in (
            ("sceneChanged", self._on_scene_changed),
            ("isRecordingChanged", self._on_recording_changed),
            ("isStreamingChanged", self._on_streaming_changed),
        ):
            signal = getattr(proxy, signal_name, None)
            if signal is None or not callable(getattr(signal, "connect", None)):
                log.debug(f"Meld does not publish {signal_name}")
                continue
            callback = self._guarded(conn, handler)
            signal.connect(callback)
            conn.subscriptions.append((signal, callback))

    def _guarded(self, conn: Connection, handler: Callable[..., None]) -> Callable[..., None]:
        def callback(*args: Any) -> None:
            if conn is not self._connection or conn.proxy is None:
                log.debug(f"Ignoring {handler.__name__} from a stale Meld connection")
                return
            handler(conn.proxy, *args)
        return callback

    def _reconcile(self, proxy: Any) -> None:
        """Pick up state that was already true before we connected."""
        # an unpublished flag counts as idle
        recording = getattr(proxy, "isRecording", None)
        self.recording.on_remote_state_change(recording if isinstance(recording, bool) else False)
        streaming = getattr(proxy, "isStreaming", None)
        self.streaming.on_remote_state_change(streaming if isinstance(streaming, bool) else False)
        for name in ("currentScene", "currentSceneId"):
            scene_id = getattr(proxy, name, None)
            if isinstance(scene_id, (str, int)) and not isinstance(scene_id, bool) and scene_id != "":
                self._set_current_scene(scene_id)
                break

    def _on_scene_changed(self, proxy: Any, *args: Any) -> None:
        scene_id = args[0] if args else getattr(proxy, "currentScene", None)
        if scene_id is not None:
            self._set_current_scene(scene_id)

    def _on_recording_changed(self, proxy: Any, *args: Any) -> None:
        self.recording.on_remote_state_change(_read_flag(proxy, "isRecording", args))

    def _on_streaming_changed(self, proxy: Any, *args: Any) -> None:
        self.streaming.on_remote_state_change(_read_flag(proxy, "isStreaming", args))

    def _set_current_scene(self, scene_id: Any) -> None:
        self.current_scene_id = str(scene_id)
        log.debug(f"Current scene: {self.current_scene_id}")
        self.control_host.check_feedbacks("scene_active")

    # ── Scenes ────────────────────────────────────────────────────────

    def refresh_scenes(self) -> None:
        conn = self._connection
        if conn is None or conn.proxy is None:
            return
        if self.capabilities.supports("get_scenes"):
            self.capabilities.invoke("get_scenes", callback=self._guarded(conn, self._ingest_scenes))
            return
        items = _session_items(conn.proxy)
        if items is not None:
            scenes = [
                {"id": item_id, "name": _field(item, "name") or item_id}
                for item_id, item in items.items()
                if _field(item, "type") == "scene"
            ]
            self.registry.refresh(scenes)
            return
        log.warning("Unable to discover scenes (no getScenes() or session.items).")

    def _ingest_scenes(self, proxy: Any, scenes: Any = None) -> None:
        self.registry.refresh(scenes if isinstance(scenes, (list, tuple)) else [])

    # ── Local commands (button presses) ───────────────────────────────

    def show_scene(self, scene_id: str) -> bool:
        return self.capabilities.invoke("show_scene", scene_id)

    def start_recording(self) -> None:
        self.capabilities.invoke("start_record")
        self.recording.start()

    def stop_recording(self) -> None:
        self.capabilities.invoke("stop_record")
        self.recording.stop()

    def toggle_recording(self) -> None:
        self.capabilities.invoke("toggle_record")
        self.recording.toggle()

    def start_streaming(self) -> None:
        self.capabilities.invoke("start_stream")
        self.streaming.start()

    def stop_streaming(self) -> None:
        self.capabilities.invoke("stop_stream")
        self.streaming.stop()

    def toggle_streaming(self) -> None:
        self.capabilities.invoke("toggle_stream")
        self.streaming.toggle()

    # ── Teardown helpers ──────────────────────────────────────────────

    def _schedule_reconnect(self) -> None:
        self._cancel_reconnect()
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self.reconnect_interval, self._reconnect)

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        self.connect()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _teardown(self) -> None:
        conn = self._connection
        if conn is None:
            return
        self._connection = None
        conn.phase = ConnectionPhase.DISCONNECTED
        if conn.task is not None and conn.task is not asyncio.current_task():
            conn.task.cancel()
        self._cancel_handshake_timer(conn)
        self._detach(conn)
        self._close_socket(conn)
        self.recording.suspend()
        self.streaming.suspend()

    def _detach(self, conn: Connection) -> None:
        """Drop the proxy and every subscription made through it."""
        conn.proxy = None
        conn.subscriptions.clear()
        if conn.transport is not None:
            conn.transport.on_message = None
        self.capabilities = Capabilities()

    def _close_socket(self, conn: Connection) -> None:
        socket, conn.socket = conn.socket, None
        if socket is None:
            return
        try:
            task = asyncio.get_running_loop().create_task(socket.close())
        except Exception as e:
            log.debug(f"Socket close failed: {e}")
            return
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)


def _field(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def _session_items(proxy: Any) -> Optional[Mapping]:
    session = getattr(proxy, "session", None)
    if session is None:
        return None
    items = _field(session, "items")
    return items if isinstance(items, Mapping) else None


def _read_flag(proxy: Any, name: str, args: tuple) -> bool:
    value = getattr(proxy, name, None)
    if isinstance(value, bool):
        return value
    if args:
        return bool(args[0])
    return bool(value)
