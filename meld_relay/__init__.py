"""
meld-relay — Meld Studio control relay for button-grid surfaces.

Modules:
  core/     — Meld WebChannel client, transport adapter & connection supervisor
  timers/   — Recording/streaming elapsed-time counters
  scenes/   — Scene registry & name normalization
  surface/  — Control host & action/feedback/preset projector
  api/      — FastAPI REST + WebSocket bridge
  osc/      — OSC UDP listener/sender
  config/   — Settings, env loading, YAML config
"""

__version__ = "1.0.0"
