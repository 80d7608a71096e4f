"""
core/connection_manager.py — Global Meld client singleton for dependency injection.
"""

from __future__ import annotations

from typing import Optional

from meld_relay.surface.host import ControlHost

from .meld_client import MeldClient

_meld_client: Optional[MeldClient] = None


def init_meld_client(
    host: str,
    port: int,
    control_host: Optional[ControlHost] = None,
    reconnect_interval: float = 3.0,
    tick_interval: float = 1.0,
    open_timeout: float = 5.0,
    object_name: str = "meld",
) -> MeldClient:
    global _meld_client
    _meld_client = MeldClient(
        host=host,
        port=port,
        control_host=control_host,
        reconnect_interval=reconnect_interval,
        tick_interval=tick_interval,
        open_timeout=open_timeout,
        object_name=object_name,
    )
    return _meld_client


def get_meld_client() -> MeldClient:
    if _meld_client is None:
        raise RuntimeError("Meld client not initialized. Call init_meld_client() first.")
    return _meld_client
