"""
Shared fixtures: an in-memory Meld Studio WebChannel server and socket.

FakeSocket mimics the slice of a websockets connection the client uses
(async send, async close, async iteration). FakeMeldServer answers the
WebChannel handshake and method calls the way Meld does.
"""

import asyncio
import json
from typing import Any, Optional

import pytest

from meld_relay.core.webchannel import QWebChannelMessageType as T

_CLOSE = object()

DEFAULT_METHODS = (
    "getScenes",
    "showScene",
    "toggleRecord",
    "startRecord",
    "stopRecord",
    "toggleStream",
    "startStream",
    "stopStream",
)

# signal indices used by the fake "meld" object
SIG_RECORDING_CHANGED = 1
SIG_STREAMING_CHANGED = 2
SIG_CURRENT_SCENE_CHANGED = 3
SIG_SCENE_CHANGED = 4

PROPERTY_INDEX = {"isRecording": 0, "isStreaming": 1, "currentScene": 2, "session": 3}
PROPERTY_SIGNAL = {"isRecording": SIG_RECORDING_CHANGED, "isStreaming": SIG_STREAMING_CHANGED}


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSocket:
    def __init__(self, responder=None):
        self.sent: list[dict] = []
        self.closed = False
        self._responder = responder
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, text: str) -> None:
        if self.closed:
            raise ConnectionResetError("socket is closed")
        message = json.loads(text)
        self.sent.append(message)
        if self._responder:
            self._responder(self, message)

    def push(self, message: Any) -> None:
        self._inbox.put_nowait(message if isinstance(message, (str, bytes)) else json.dumps(message))

    def fail(self, exc: BaseException) -> None:
        self._inbox.put_nowait(exc)

    def drop(self) -> None:
        """Remote side went away."""
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(_CLOSE)

    async def close(self) -> None:
        self.drop()

    def sent_of_type(self, msg_type: int) -> list[dict]:
        return [m for m in self.sent if m.get("type") == msg_type]

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item


def meld_description(
    is_recording: bool = False,
    is_streaming: bool = False,
    current_scene: Optional[str] = None,
    methods: tuple = DEFAULT_METHODS,
    session: Optional[dict] = None,
) -> dict:
    properties = [
        [0, "isRecording", [1, SIG_RECORDING_CHANGED], is_recording],
        [1, "isStreaming", [1, SIG_STREAMING_CHANGED], is_streaming],
        [2, "currentScene", [1, SIG_CURRENT_SCENE_CHANGED], current_scene],
    ]
    if session is not None:
        properties.append([3, "session", [], session])
    return {
        "methods": [[name, 10 + i] for i, name in enumerate(methods)],
        "properties": properties,
        "signals": [["sceneChanged", SIG_SCENE_CHANGED]],
        "enums": {},
    }


class FakeMeldServer:
    def __init__(self, object_name: str = "meld", scenes: Optional[list] = None, **description: Any):
        self.object_name = object_name
        self.scenes = scenes if scenes is not None else []
        self.description = meld_description(**description)
        self.sockets: list[FakeSocket] = []
        self.calls: list[tuple[str, list]] = []
        self.refuse = False
        self.answer_init = True

    @property
    def socket(self) -> FakeSocket:
        return self.sockets[-1]

    async def connect(self, url: str) -> FakeSocket:
        if self.refuse:
            raise ConnectionRefusedError(f"connect to {url} refused")
        sock = FakeSocket(self._respond)
        self.sockets.append(sock)
        return sock

    def _method_name(self, index: int) -> str:
        return next(name for name, idx in self.description["methods"] if idx == index)

    def _respond(self, sock: FakeSocket, message: dict) -> None:
        if message["type"] == T.INIT and self.answer_init:
            sock.push({"type": T.RESPONSE, "id": message["id"], "data": {self.object_name: self.description}})
        elif message["type"] == T.INVOKE_METHOD:
            name = self._method_name(message["method"])
            self.calls.append((name, message["args"]))
            data = self.scenes if name == "getScenes" else None
            sock.push({"type": T.RESPONSE, "id": message["id"], "data": data})

    # ── server-initiated traffic ──────────────────────────────────────

    def emit_scene_changed(self, scene_id: str, sock: Optional[FakeSocket] = None) -> None:
        (sock or self.socket).push({
            "type": T.SIGNAL, "object": self.object_name, "signal": SIG_SCENE_CHANGED, "args": [scene_id],
        })

    def set_property(self, name: str, value: Any, sock: Optional[FakeSocket] = None) -> None:
        signals = {str(PROPERTY_SIGNAL[name]): [value]} if name in PROPERTY_SIGNAL else {}
        (sock or self.socket).push({
            "type": T.PROPERTY_UPDATE,
            "data": [{
                "object": self.object_name,
                "signals": signals,
                "properties": {str(PROPERTY_INDEX[name]): value},
            }],
        })


async def wait_until(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def clock():
    return FakeClock()
