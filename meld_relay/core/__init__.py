"""core — Meld Studio connection management."""
from .capabilities import Capabilities
from .connection_manager import get_meld_client, init_meld_client
from .meld_client import ConnectionPhase, MeldClient, MeldConnectionError
from .transport import WebChannelTransport
from .webchannel import QObject, QWebChannel, WebChannelError

__all__ = [
    "Capabilities",
    "ConnectionPhase",
    "MeldClient",
    "MeldConnectionError",
    "QObject",
    "QWebChannel",
    "WebChannelError",
    "WebChannelTransport",
    "get_meld_client",
    "init_meld_client",
]
