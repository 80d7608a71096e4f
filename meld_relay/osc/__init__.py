"""osc — OSC UDP listener/sender."""
from .bridge import OSCBridge

__all__ = ["OSCBridge"]
