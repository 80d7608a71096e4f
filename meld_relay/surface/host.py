"""
surface/host.py — In-process control-surface host.

A button grid needs four things from the relay: a connection status, a set of
named variables (the timecodes), action/feedback/preset definitions it can
render as buttons, and a way to press those buttons. ControlHost keeps all of
that in one place. The API server and OSC bridge read from it and subscribe to
its events; the projector and the Meld client write to it.

Events pushed to listeners (event name, payload):
  status       {"status": "ok", "message": None}
  variables    {"recording_timecode": "00:00:03"}
  feedbacks    {"feedback_ids": ["scene_active"]}
  definitions  {"kind": "actions" | "feedbacks" | "presets" | "variables"}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

log = logging.getLogger(__name__)

HostListener = Callable[[str, dict], None]


class Status(str, Enum):
    CONNECTING = "connecting"
    OK = "ok"
    DISCONNECTED = "disconnected"
    CONNECTION_FAILURE = "connection_failure"


class UnknownDefinitionError(KeyError):
    pass


@dataclass
class VariableDefinition:
    variable_id: str
    name: str

    def to_dict(self) -> dict:
        return {"variable_id": self.variable_id, "name": self.name}


@dataclass
class ActionDefinition:
    action_id: str
    name: str
    callback: Callable[[dict], Any]
    options: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"action_id": self.action_id, "name": self.name, "options": self.options}


@dataclass
class FeedbackDefinition:
    feedback_id: str
    name: str
    callback: Callable[[dict], bool]
    type: str = "boolean"
    description: str = ""
    options: list[dict] = field(default_factory=list)
    default_style: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "feedback_id": self.feedback_id,
            "type": self.type,
            "name": self.name,
            "description": self.description,
            "options": self.options,
            "default_style": self.default_style,
        }


@dataclass
class PresetDefinition:
    category: str
    name: str
    style: dict
    down_actions: list[dict] = field(default_factory=list)
    feedbacks: list[dict] = field(default_factory=list)
    type: str = "button"

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "category": self.category,
            "name": self.name,
            "style": self.style,
            "steps": [{"down": self.down_actions, "up": []}],
            "feedbacks": self.feedbacks,
        }


class ControlHost:
    def __init__(self):
        self.status: Status = Status.DISCONNECTED
        self.status_message: Optional[str] = None
        self.variable_definitions: list[VariableDefinition] = []
        self.variables: dict[str, str] = {}
        self.actions: dict[str, ActionDefinition] = {}
        self.feedbacks: dict[str, FeedbackDefinition] = {}
        self.presets: list[PresetDefinition] = []
        self._listeners: list[HostListener] = []

    def on_event(self, listener: HostListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: HostListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ── Writers ───────────────────────────────────────────────────────

    def update_status(self, status: Status, message: Optional[str] = None) -> None:
        self.status = Status(status)
        self.status_message = message
        log.debug(f"Status → {self.status.value}{f' ({message})' if message else ''}")
        self._emit("status", {"status": self.status.value, "message": message})

    def set_variable_definitions(self, definitions: list[VariableDefinition]) -> None:
        self.variable_definitions = list(definitions)
        self._emit("definitions", {"kind": "variables"})

    def set_variable_values(self, values: dict[str, str]) -> None:
        self.variables.update(values)
        self._emit("variables", dict(values))

    def set_action_definitions(self, actions: dict[str, ActionDefinition]) -> None:
        self.actions = dict(actions)
        self._emit("definitions", {"kind": "actions"})

    def set_feedback_definitions(self, feedbacks: dict[str, FeedbackDefinition]) -> None:
        self.feedbacks = dict(feedbacks)
        self._emit("definitions", {"kind": "feedbacks"})

    def set_preset_definitions(self, presets: list[PresetDefinition]) -> None:
        self.presets = list(presets)
        self._emit("definitions", {"kind": "presets"})

    def check_feedbacks(self, *feedback_ids: str) -> None:
        self._emit("feedbacks", {"feedback_ids": list(feedback_ids)})

    # ── Button presses & feedback evaluation ──────────────────────────

    def run_action(self, action_id: str, options: Optional[dict] = None) -> Any:
        action = self.actions.get(action_id)
        if action is None:
            raise UnknownDefinitionError(f"Action '{action_id}' not defined. Available: {sorted(self.actions)}")
        log.info(f"Action: {action.name}")
        return action.callback(options or {})

    def evaluate_feedback(self, feedback_id: str, options: Optional[dict] = None) -> bool:
        feedback = self.feedbacks.get(feedback_id)
        if feedback is None:
            raise UnknownDefinitionError(f"Feedback '{feedback_id}' not defined.")
        return bool(feedback.callback(options or {}))

    # ── Readers ───────────────────────────────────────────────────────

    def snapshot(self) -> dict:
        return {
            "status": self.status.value,
            "message": self.status_message,
            "variables": dict(self.variables),
        }

    def _emit(self, event: str, data: dict) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, data)
            except Exception as e:
                log.error(f"Host listener error ({event}): {e}")
