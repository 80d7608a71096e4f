"""
core/transport.py — Adapts a websockets connection to the WebChannel transport interface.

QWebChannel expects a browser-style transport: a synchronous send(text) and an
assignable on_message slot. A websockets connection offers an async send() and
an async iterator of frames instead. WebChannelTransport bridges the two:

  socket frame ─► deliver(raw) ─► on_message(text)   (slot installed by QWebChannel)
  QWebChannel  ─► send(payload) ─► task: socket.send(text)

Neither direction ever raises into its caller. Failures are logged.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Optional

log = logging.getLogger(__name__)

MessageHandler = Callable[[str], None]


class WebChannelTransport:
    def __init__(self, socket: Any):
        self._socket = socket
        self.on_message: Optional[MessageHandler] = None
        self._pending: set[asyncio.Task] = set()

    def send(self, payload: Any) -> Optional[asyncio.Task]:
        """Queue payload for writing. Non-str payloads are JSON-encoded."""
        try:
            text = payload if isinstance(payload, str) else json.dumps(payload)
            task = asyncio.get_running_loop().create_task(self._write(text))
        except Exception as e:
            log.error(f"Transport send failed: {e}")
            return None
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _write(self, text: str) -> None:
        try:
            await self._socket.send(text)
        except Exception as e:
            log.error(f"Transport send failed: {e}")

    def deliver(self, raw: Any) -> None:
        """Hand an inbound frame to the installed handler, if any."""
        try:
            text = raw if isinstance(raw, str) else bytes(raw).decode("utf-8")
            handler = self.on_message
            if handler is None:
                log.debug("Transport message dropped: no handler installed yet")
                return
            handler(text)
        except Exception as e:
            log.error(f"Transport onmessage failed: {e}")
