"""
core/webchannel.py — Client side of the Qt WebChannel protocol.

Meld Studio publishes its state as QObjects over a Qt WebChannel. The wire
format is JSON text frames; each frame carries a numeric "type":

  1 signal          server → client   {"object", "signal", "args"}
  2 propertyUpdate  server → client   {"data": [{"object", "signals", "properties"}]}
  3 init            client → server   answered by a response holding object descriptions
  4 idle            client → server   "ready for the next batch of property updates"
  5 debug
  6 invokeMethod    client → server   {"object", "method", "args", "id"}
  7 connectToSignal / 8 disconnectFromSignal
  9 setProperty     client → server   {"object", "property", "value"}
 10 response        server → client   {"id", "data"}

Usage:
    def ready(channel):
        meld = channel.objects["meld"]
        print(meld.isRecording)
        meld.isRecordingChanged.connect(lambda *a: print("recording:", meld.isRecording))
        meld.getScenes(callback=print)

    QWebChannel(transport, ready)

The transport only needs send(text) and an assignable on_message slot; see
core/transport.py.
"""

from __future__ import annotations

import json
import logging
from enum import IntEnum
from typing import Any, Callable, Optional

log = logging.getLogger(__name__)

_MISSING = object()

_DESTROYED_SIGNALS = ("destroyed", "destroyed()", "destroyed(QObject*)")


class QWebChannelMessageType(IntEnum):
    SIGNAL = 1
    PROPERTY_UPDATE = 2
    INIT = 3
    IDLE = 4
    DEBUG = 5
    INVOKE_METHOD = 6
    CONNECT_TO_SIGNAL = 7
    DISCONNECT_FROM_SIGNAL = 8
    SET_PROPERTY = 9
    RESPONSE = 10


class WebChannelError(Exception):
    pass


class QWebChannel:
    """
    Args:
        transport:      object with send(text) and an assignable on_message slot
        init_callback:  called with the channel once the object graph is built
        error_callback: called with the exception if building the object graph
                        or init_callback fails; without it the error propagates
                        to the transport
    """

    def __init__(
        self,
        transport: Any,
        init_callback: Optional[Callable[["QWebChannel"], None]] = None,
        error_callback: Optional[Callable[[Exception], None]] = None,
    ):
        if transport is None or not callable(getattr(transport, "send", None)):
            raise WebChannelError("The transport must provide a send() method.")

        self.transport = transport
        self.objects: dict[str, QObject] = {}
        self._exec_callbacks: dict[int, Callable[[Any], None]] = {}
        self._exec_id = 0

        transport.on_message = self.handle_message

        def build(data: Any) -> None:
            if not isinstance(data, dict):
                raise WebChannelError(f"Invalid init response: {data!r}")
            for object_name, object_info in data.items():
                QObject(object_name, object_info, self)
            # Properties may reference objects registered later in the same response.
            for obj in list(self.objects.values()):
                obj._unwrap_properties()
            log.debug(f"WebChannel initialized with objects: {sorted(self.objects)}")
            if init_callback:
                init_callback(self)

        def on_init(data: Any) -> None:
            try:
                build(data)
            except Exception as e:
                if error_callback is None:
                    raise
                error_callback(e)
                return
            self.exec({"type": QWebChannelMessageType.IDLE})

        self.exec({"type": QWebChannelMessageType.INIT}, on_init)

    # ── Outbound ──────────────────────────────────────────────────────

    def send(self, data: Any) -> None:
        if not isinstance(data, str):
            data = json.dumps(data)
        self.transport.send(data)

    def exec(self, data: dict, callback: Optional[Callable[[Any], None]] = None) -> None:
        if callback is None:
            self.send(data)
            return
        self._exec_id += 1
        data["id"] = self._exec_id
        self._exec_callbacks[self._exec_id] = callback
        self.send(data)

    # ── Inbound ───────────────────────────────────────────────────────

    def handle_message(self, text: str) -> None:
        try:
            message = json.loads(text)
        except (TypeError, ValueError) as e:
            raise WebChannelError(f"Malformed WebChannel frame: {e}") from e
        if not isinstance(message, dict):
            raise WebChannelError(f"Unexpected WebChannel frame: {message!r}")

        msg_type = message.get("type")
        if msg_type == QWebChannelMessageType.SIGNAL:
            self._handle_signal(message)
        elif msg_type == QWebChannelMessageType.RESPONSE:
            self._handle_response(message)
        elif msg_type == QWebChannelMessageType.PROPERTY_UPDATE:
            self._handle_property_update(message)
        else:
            log.error(f"Invalid WebChannel message received: {text}")

    def _handle_signal(self, message: dict) -> None:
        obj = self.objects.get(message.get("object"))
        if obj is None:
            log.warning(f"Unhandled signal: {message.get('object')}::{message.get('signal')}")
            return
        obj._signal_emitted(message.get("signal"), message.get("args") or [])

    def _handle_response(self, message: dict) -> None:
        if "id" not in message:
            log.error(f"Invalid response message received: {message!r}")
            return
        callback = self._exec_callbacks.pop(message["id"], None)
        if callback is None:
            log.debug(f"Response for unknown request id {message['id']}")
            return
        callback(message.get("data", _MISSING))

    def _handle_property_update(self, message: dict) -> None:
        for data in message.get("data") or []:
            obj = self.objects.get(data.get("object"))
            if obj is None:
                log.warning(f"Unhandled property update: {data.get('object')}")
                continue
            obj._property_update(data.get("signals") or {}, data.get("properties") or {})
        self.exec({"type": QWebChannelMessageType.IDLE})


class Signal:
    """A remote signal. Callbacks receive the signal arguments positionally."""

    def __init__(self, owner: "QObject", name: str, index: int, is_property_notify: bool):
        self._owner = owner
        self.name = name
        self.index = index
        self.is_property_notify = is_property_notify

    def connect(self, callback: Callable[..., Any]) -> None:
        if not callable(callback):
            raise TypeError(f"Bad callback given to connect to signal {self.name}")
        connections = self._owner._connections.setdefault(self.index, [])
        connections.append(callback)
        # Property notify signals arrive through propertyUpdate; destroyed is always sent.
        if self.is_property_notify or self.name in _DESTROYED_SIGNALS:
            return
        if len(connections) == 1:
            self._owner._channel.exec({
                "type": QWebChannelMessageType.CONNECT_TO_SIGNAL,
                "object": self._owner._id,
                "signal": self.index,
            })

    def disconnect(self, callback: Callable[..., Any]) -> None:
        connections = self._owner._connections.get(self.index, [])
        if callback not in connections:
            log.error(f"Cannot find connection of signal {self.name} to {callback!r}")
            return
        connections.remove(callback)
        if not self.is_property_notify and not connections:
            self._owner._channel.exec({
                "type": QWebChannelMessageType.DISCONNECT_FROM_SIGNAL,
                "object": self._owner._id,
                "signal": self.index,
            })


class QMethod:
    """A remote invokable. The result is delivered to callback, never returned."""

    def __init__(self, owner: "QObject", name: str, index: int):
        self._owner = owner
        self.name = name
        self.index = index

    def __call__(self, *args: Any, callback: Optional[Callable[[Any], None]] = None) -> None:
        if callback is None and args and callable(args[-1]):
            callback, args = args[-1], args[:-1]
        wire_args = [_wrap_value(a) for a in args]

        def on_response(response: Any) -> None:
            if response is _MISSING:
                return
            result = self._owner._unwrap(response)
            if callback:
                callback(result)

        self._owner._channel.exec({
            "type": QWebChannelMessageType.INVOKE_METHOD,
            "object": self._owner._id,
            "method": self.index,
            "args": wire_args,
        }, on_response)

    def __repr__(self) -> str:
        return f"<QMethod {self._owner._id}.{self.name}>"


class QObject:
    """Local proxy for a remote QObject. Attribute access resolves remote members."""

    def __init__(self, name: str, data: dict, channel: QWebChannel):
        object.__setattr__(self, "_id", name)
        object.__setattr__(self, "_channel", channel)
        object.__setattr__(self, "_connections", {})
        object.__setattr__(self, "_property_cache", {})
        object.__setattr__(self, "_property_index", {})
        object.__setattr__(self, "_signals", {})
        object.__setattr__(self, "_methods", {})
        object.__setattr__(self, "_enums", dict(data.get("enums") or {}))
        channel.objects[name] = self

        for method_data in data.get("methods") or []:
            self._add_method(method_data)
        for property_info in data.get("properties") or []:
            self._bind_property(property_info)
        for signal_data in data.get("signals") or []:
            self._add_signal(signal_data, False)

    # ── Introspection ─────────────────────────────────────────────────

    @property
    def object_id(self) -> str:
        return self._id

    def has_method(self, name: str) -> bool:
        return name in self._methods

    def has_property(self, name: str) -> bool:
        return name in self._property_index

    def has_signal(self, name: str) -> bool:
        return name in self._signals

    def __getattr__(self, name: str) -> Any:
        props = self.__dict__.get("_property_index", {})
        if name in props:
            return self._property_cache.get(props[name])
        if name in self.__dict__.get("_signals", {}):
            return self._signals[name]
        if name in self.__dict__.get("_methods", {}):
            return self._methods[name]
        if name in self.__dict__.get("_enums", {}):
            return self._enums[name]
        raise AttributeError(f"Remote object '{self.__dict__.get('_id')}' has no member '{name}'")

    def __setattr__(self, name: str, value: Any) -> None:
        if name in self._property_index:
            self.set_property(name, value)
            return
        object.__setattr__(self, name, value)

    def __repr__(self) -> str:
        return f"<QObject {self._id}>"

    # ── Properties ────────────────────────────────────────────────────

    def set_property(self, name: str, value: Any) -> None:
        index = self._property_index[name]
        self._property_cache[index] = value
        self._channel.exec({
            "type": QWebChannelMessageType.SET_PROPERTY,
            "object": self._id,
            "property": index,
            "value": _wrap_value(value),
        })

    def _bind_property(self, property_info: list) -> None:
        index, name, notify_data, value = (list(property_info) + [None] * 4)[:4]
        self._property_index[name] = index
        self._property_cache[index] = value
        if notify_data:
            signal_name, signal_index = notify_data[0], notify_data[1]
            if signal_name == 1:
                signal_name = f"{name}Changed"
            self._add_signal([signal_name, signal_index], True)

    def _unwrap_properties(self) -> None:
        for index, value in list(self._property_cache.items()):
            self._property_cache[index] = self._unwrap(value)

    def _property_update(self, signals: dict, properties: dict) -> None:
        for index, value in properties.items():
            self._property_cache[int(index)] = self._unwrap(value)
        for index, args in signals.items():
            self._invoke_signal_callbacks(int(index), args or [])

    # ── Signals & methods ─────────────────────────────────────────────

    def _add_signal(self, signal_data: list, is_property_notify: bool) -> None:
        name, index = signal_data[0], signal_data[1]
        self._signals[name] = Signal(self, name, index, is_property_notify)

    def _add_method(self, method_data: list) -> None:
        name, index = method_data[0], method_data[1]
        self._methods[name] = QMethod(self, name, index)

    def _signal_emitted(self, signal_index: Any, args: list) -> None:
        self._invoke_signal_callbacks(int(signal_index), self._unwrap(args))

    def _invoke_signal_callbacks(self, signal_index: int, args: list) -> None:
        for callback in list(self._connections.get(signal_index, [])):
            try:
                callback(*args)
            except Exception as e:
                log.error(f"Signal callback error on {self._id}: {e}")

    # ── Object references ─────────────────────────────────────────────

    def _unwrap(self, response: Any) -> Any:
        if isinstance(response, list):
            return [self._unwrap(item) for item in response]
        if not isinstance(response, dict):
            return response
        if not response.get("__QObject*__") or response.get("id") is None:
            return {key: self._unwrap(value) for key, value in response.items()}

        object_id = response["id"]
        existing = self._channel.objects.get(object_id)
        if existing is not None:
            return existing
        if not response.get("data"):
            log.error(f"Cannot unwrap unknown QObject {object_id} without data.")
            return None

        qobject = QObject(object_id, response["data"], self._channel)
        if qobject.has_signal("destroyed"):
            def forget(*_args: Any) -> None:
                if self._channel.objects.get(object_id) is qobject:
                    del self._channel.objects[object_id]
            qobject.destroyed.connect(forget)
        qobject._unwrap_properties()
        return qobject


def _wrap_value(value: Any) -> Any:
    if isinstance(value, QObject):
        return {"id": value.object_id}
    return value
