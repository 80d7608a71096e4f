"""
tests/test_webchannel.py — Transport adapter, WebChannel protocol & capability table.
Run with: pytest tests/ -v
"""

import json
import logging
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from meld_relay.core import Capabilities, QObject, QWebChannel, WebChannelError, WebChannelTransport
from meld_relay.core.webchannel import QWebChannelMessageType as T

from conftest import meld_description


# ─── Transport Adapter ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_transport_send_serializes_non_strings():
    socket = MagicMock()
    socket.send = AsyncMock()
    transport = WebChannelTransport(socket)

    await transport.send({"type": 3, "id": 1})
    await transport.send("raw text")

    assert socket.send.await_args_list[0].args == (json.dumps({"type": 3, "id": 1}),)
    assert socket.send.await_args_list[1].args == ("raw text",)


@pytest.mark.asyncio
async def test_transport_send_failure_is_logged_not_raised(caplog):
    socket = MagicMock()
    socket.send = AsyncMock(side_effect=ConnectionResetError("peer reset"))
    transport = WebChannelTransport(socket)

    with caplog.at_level(logging.ERROR):
        await transport.send("hello")
    assert "Transport send failed: peer reset" in caplog.text


def test_transport_send_without_event_loop_is_logged(caplog):
    transport = WebChannelTransport(MagicMock())
    assert transport.send("hello") is None
    assert "Transport send failed" in caplog.text


def test_transport_deliver_decodes_and_dispatches():
    transport = WebChannelTransport(MagicMock())
    received = []
    transport.on_message = received.append

    transport.deliver(b'{"type": 10}')
    transport.deliver("plain")

    assert received == ['{"type": 10}', "plain"]


def test_transport_deliver_without_handler_is_dropped():
    transport = WebChannelTransport(MagicMock())
    transport.deliver("nobody listening")


def test_transport_deliver_swallows_handler_and_decode_errors(caplog):
    transport = WebChannelTransport(MagicMock())

    def broken(_text):
        raise ValueError("bad frame")

    transport.on_message = broken
    transport.deliver("x")
    transport.deliver(b"\xff\xfe")

    assert caplog.text.count("Transport onmessage failed") == 2


# ─── WebChannel protocol ──────────────────────────────────────────────────────

class RecordingTransport:
    def __init__(self):
        self.on_message = None
        self.sent: list[dict] = []

    def send(self, text):
        self.sent.append(json.loads(text))

    def receive(self, message):
        self.on_message(json.dumps(message))

    def of_type(self, msg_type):
        return [m for m in self.sent if m["type"] == msg_type]


def open_channel(description=None, objects=None):
    transport = RecordingTransport()
    ready = []
    channel = QWebChannel(transport, ready.append)
    init = transport.sent[0]
    transport.receive({
        "type": T.RESPONSE,
        "id": init["id"],
        "data": objects if objects is not None else {"meld": description or meld_description()},
    })
    return transport, channel, ready


def test_handshake_builds_objects_and_goes_idle():
    transport, channel, ready = open_channel(meld_description(is_recording=True, current_scene="s1"))

    assert transport.sent[0]["type"] == T.INIT
    assert ready == [channel]
    assert transport.sent[-1] == {"type": T.IDLE}

    meld = channel.objects["meld"]
    assert isinstance(meld, QObject)
    assert meld.isRecording is True
    assert meld.isStreaming is False
    assert meld.currentScene == "s1"
    assert meld.has_method("getScenes")
    assert meld.has_signal("isRecordingChanged")
    assert getattr(meld, "switchScene", None) is None


def test_transport_requires_send():
    with pytest.raises(WebChannelError):
        QWebChannel(SimpleNamespace(on_message=None))


def test_method_invocation_delivers_result_to_callback():
    transport, channel, _ = open_channel()
    meld = channel.objects["meld"]
    results = []

    meld.getScenes(callback=results.append)
    call = transport.of_type(T.INVOKE_METHOD)[-1]
    assert call["object"] == "meld"
    assert call["args"] == []

    transport.receive({"type": T.RESPONSE, "id": call["id"], "data": [{"id": "1", "name": "Cam"}]})
    assert results == [[{"id": "1", "name": "Cam"}]]


def test_method_accepts_trailing_callable_and_args():
    transport, channel, _ = open_channel()
    meld = channel.objects["meld"]
    results = []

    meld.showScene("42", results.append)
    call = transport.of_type(T.INVOKE_METHOD)[-1]
    assert call["args"] == ["42"]
    transport.receive({"type": T.RESPONSE, "id": call["id"], "data": True})
    assert results == [True]


def test_pure_signal_connect_registers_with_server_once():
    transport, channel, _ = open_channel()
    meld = channel.objects["meld"]

    first, second = MagicMock(), MagicMock()
    meld.sceneChanged.connect(first)
    meld.sceneChanged.connect(second)
    assert len(transport.of_type(T.CONNECT_TO_SIGNAL)) == 1

    transport.receive({"type": T.SIGNAL, "object": "meld", "signal": 4, "args": ["2"]})
    first.assert_called_once_with("2")
    second.assert_called_once_with("2")

    meld.sceneChanged.disconnect(first)
    meld.sceneChanged.disconnect(second)
    assert len(transport.of_type(T.DISCONNECT_FROM_SIGNAL)) == 1


def test_property_update_refreshes_cache_before_notify():
    transport, channel, _ = open_channel()
    meld = channel.objects["meld"]
    seen = []
    meld.isRecordingChanged.connect(lambda *args: seen.append(meld.isRecording))
    assert transport.of_type(T.CONNECT_TO_SIGNAL) == []

    idle_before = len(transport.of_type(T.IDLE))
    transport.receive({
        "type": T.PROPERTY_UPDATE,
        "data": [{"object": "meld", "signals": {"1": [True]}, "properties": {"0": True}}],
    })

    assert seen == [True]
    assert len(transport.of_type(T.IDLE)) == idle_before + 1


def test_set_property_sends_and_caches():
    transport, channel, _ = open_channel()
    meld = channel.objects["meld"]
    meld.currentScene = "7"

    assert meld.currentScene == "7"
    assert transport.of_type(T.SET_PROPERTY)[-1] == {
        "type": T.SET_PROPERTY, "object": "meld", "property": 2, "value": "7",
    }


def test_qobject_references_are_unwrapped():
    session = {
        "methods": [],
        "properties": [[0, "items", [], {"s1": {"type": "scene", "name": "Main"}}]],
        "signals": [],
    }
    meld = meld_description()
    meld["properties"].append([3, "session", [], {"__QObject*__": True, "id": "session", "data": session}])

    _, channel, _ = open_channel(objects={"meld": meld})

    resolved = channel.objects["meld"].session
    assert isinstance(resolved, QObject)
    assert channel.objects["session"] is resolved
    assert resolved.items["s1"]["name"] == "Main"


def test_malformed_frame_raises_channel_error():
    transport, channel, _ = open_channel()
    with pytest.raises(WebChannelError):
        channel.handle_message("{not json")


def test_unknown_message_type_is_logged(caplog):
    transport, _, _ = open_channel()
    transport.receive({"type": 99})
    assert "Invalid WebChannel message" in caplog.text


def test_init_failure_goes_to_error_callback():
    transport = RecordingTransport()
    errors = []
    QWebChannel(transport, lambda ch: None, errors.append)
    transport.receive({"type": T.RESPONSE, "id": transport.sent[0]["id"], "data": "nonsense"})

    assert len(errors) == 1
    assert isinstance(errors[0], WebChannelError)
    assert transport.of_type(T.IDLE) == []


def test_signal_callback_errors_do_not_stop_other_callbacks(caplog):
    transport, channel, _ = open_channel()
    meld = channel.objects["meld"]
    good = MagicMock()
    meld.sceneChanged.connect(MagicMock(side_effect=RuntimeError("handler bug")))
    meld.sceneChanged.connect(good)

    transport.receive({"type": T.SIGNAL, "object": "meld", "signal": 4, "args": ["1"]})
    good.assert_called_once_with("1")
    assert "Signal callback error" in caplog.text


# ─── Capabilities ─────────────────────────────────────────────────────────────

def test_capabilities_prefer_primary_then_fallback():
    proxy = SimpleNamespace(
        switchScene=MagicMock(),
        toggleRecording=MagicMock(),
        toggleRecord=None,
        isRecording=True,
    )
    caps = Capabilities.resolve(proxy)

    assert caps.method_name("show_scene") == "switchScene"
    assert caps.method_name("toggle_record") == "toggleRecording"
    assert not caps.supports("get_scenes")

    assert caps.invoke("show_scene", "3") is True
    proxy.switchScene.assert_called_once_with("3")


def test_capabilities_missing_command_is_skipped():
    caps = Capabilities.resolve(SimpleNamespace())
    assert caps.invoke("start_stream") is False
    assert all(v is None for v in caps.describe().values())


def test_capabilities_remote_call_error_is_logged(caplog):
    proxy = SimpleNamespace(startStream=MagicMock(side_effect=RuntimeError("gone")))
    caps = Capabilities.resolve(proxy)
    assert caps.invoke("start_stream") is False
    assert "Remote call startStream failed" in caplog.text


def test_capabilities_resolve_against_qobject():
    _, channel, _ = open_channel(meld_description(methods=("switchScene", "toggleRecording")))
    caps = Capabilities.resolve(channel.objects["meld"])
    assert caps.method_name("show_scene") == "switchScene"
    assert caps.method_name("toggle_record") == "toggleRecording"
    assert caps.method_name("start_record") is None
