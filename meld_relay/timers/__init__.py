"""timers — Recording/streaming elapsed-time counters."""
from .engine import TimerEngine, ZERO_TIMECODE, format_hms

__all__ = ["TimerEngine", "ZERO_TIMECODE", "format_hms"]
