"""
core/capabilities.py — Per-connection table of the remote commands Meld exposes.

Meld Studio builds differ in what they publish on the `meld` object: some have
showScene(), others switchScene(); toggleRecord() vs toggleRecording(). The
table below lists candidate method names per logical command, first match
wins. It is resolved once when a connection binds instead of probing the proxy
on every button press.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

log = logging.getLogger(__name__)

COMMAND_CANDIDATES: dict[str, tuple[str, ...]] = {
    "get_scenes": ("getScenes",),
    "show_scene": ("showScene", "switchScene"),
    "start_record": ("startRecord", "startRecording"),
    "stop_record": ("stopRecord", "stopRecording"),
    "toggle_record": ("toggleRecord", "toggleRecording"),
    "start_stream": ("startStream", "startStreaming"),
    "stop_stream": ("stopStream", "stopStreaming"),
    "toggle_stream": ("toggleStream", "toggleStreaming"),
}


class Capabilities:
    """Logical command → first available remote callable, or absent."""

    def __init__(self, resolved: Optional[dict[str, tuple[str, Callable[..., Any]]]] = None):
        self._resolved = resolved or {}

    @classmethod
    def resolve(cls, proxy: Any) -> "Capabilities":
        resolved: dict[str, tuple[str, Callable[..., Any]]] = {}
        if proxy is None:
            return cls(resolved)
        for command, candidates in COMMAND_CANDIDATES.items():
            for method_name in candidates:
                member = getattr(proxy, method_name, None)
                if callable(member):
                    resolved[command] = (method_name, member)
                    break
        log.debug(f"Resolved Meld capabilities: {cls(resolved).describe()}")
        return cls(resolved)

    def supports(self, command: str) -> bool:
        return command in self._resolved

    def method_name(self, command: str) -> Optional[str]:
        entry = self._resolved.get(command)
        return entry[0] if entry else None

    def invoke(self, command: str, *args: Any, **kwargs: Any) -> bool:
        """Fire-and-forget a remote command. Returns False when Meld lacks it."""
        entry = self._resolved.get(command)
        if entry is None:
            log.debug(f"Meld does not expose '{command}' — skipped")
            return False
        method_name, member = entry
        try:
            member(*args, **kwargs)
        except Exception as e:
            log.error(f"Remote call {method_name} failed: {e}")
            return False
        log.debug(f"Invoked {method_name}{args}")
        return True

    def describe(self) -> dict[str, Optional[str]]:
        return {command: self.method_name(command) for command in COMMAND_CANDIDATES}
