"""
surface/projector.py — Projects Meld state into button-grid definitions.

The projector owns no state. Every call to project() rebuilds the complete
action, feedback and preset sets from the scene registry, so it is safe to run
after every scene refresh:

  actions    show_scene_<id> per scene
             start_/stop_/toggle_ record and stream
  feedbacks  scene_active (boolean, option "scene" → true while that scene is live)
  presets    one "Scenes" button per scene + six "Control" buttons showing timecodes
  variables  recording_timecode, streaming_timecode
"""

from __future__ import annotations

import logging
from typing import Any

from meld_relay.timers import ZERO_TIMECODE

from .host import (
    ActionDefinition,
    ControlHost,
    FeedbackDefinition,
    PresetDefinition,
    VariableDefinition,
)

log = logging.getLogger(__name__)

WHITE = 0xFFFFFF
BLACK = 0x000000
DARK_GREEN = 0x003300
DARK_RED = 0x330000
LIVE_RED = 0xCC0000

SCENE_ACTIVE = "scene_active"

# (action_id, action name, preset text prefix, variable shown, preset background)
CONTROL_BUTTONS: list[tuple[str, str, str, str, int]] = [
    ("toggle_stream", "Toggle Streaming", "Stream", "streaming_timecode", BLACK),
    ("toggle_record", "Toggle Recording", "Record", "recording_timecode", BLACK),
    ("start_stream", "Start Streaming", "Start Stream", "streaming_timecode", DARK_GREEN),
    ("stop_stream", "Stop Streaming", "Stop Stream", "streaming_timecode", DARK_RED),
    ("start_record", "Start Recording", "Start Rec", "recording_timecode", DARK_GREEN),
    ("stop_record", "Stop Recording", "Stop Rec", "recording_timecode", DARK_RED),
]


def scene_action_id(scene_id: str) -> str:
    return f"show_scene_{scene_id}"


class ControlSurfaceProjector:
    """
    Usage:
        projector = ControlSurfaceProjector(control_host, meld_client, label="meldstudio")
        projector.attach()      # define variables, project once, follow registry refreshes
    """

    def __init__(self, control_host: ControlHost, client: Any, label: str = "meldstudio"):
        self._host = control_host
        self._client = client
        self.label = label

    def attach(self) -> None:
        self.define_variables()
        self.project()
        self._client.registry.on_change(lambda _registry: self.project())

    def project(self) -> None:
        self.define_actions()
        self.define_feedbacks()
        self.define_presets()
        log.debug(f"Projected {len(self._client.registry)} scene(s) onto the control surface")

    # ── Variables ─────────────────────────────────────────────────────

    def define_variables(self) -> None:
        self._host.set_variable_definitions([
            VariableDefinition("recording_timecode", "Recording Timecode"),
            VariableDefinition("streaming_timecode", "Streaming Timecode"),
        ])
        self._host.set_variable_values({
            "recording_timecode": ZERO_TIMECODE,
            "streaming_timecode": ZERO_TIMECODE,
        })

    # ── Actions ───────────────────────────────────────────────────────

    def build_actions(self) -> dict[str, ActionDefinition]:
        client = self._client
        actions: dict[str, ActionDefinition] = {}

        for scene in client.registry.scenes.values():
            action_id = scene_action_id(scene.id)
            actions[action_id] = ActionDefinition(
                action_id=action_id,
                name=f"Show Scene: {scene.name}",
                callback=lambda _options, scene_id=scene.id: client.show_scene(scene_id),
            )

        commands = {
            "toggle_stream": client.toggle_streaming,
            "start_stream": client.start_streaming,
            "stop_stream": client.stop_streaming,
            "toggle_record": client.toggle_recording,
            "start_record": client.start_recording,
            "stop_record": client.stop_recording,
        }
        for action_id, name, *_rest in CONTROL_BUTTONS:
            command = commands[action_id]
            actions[action_id] = ActionDefinition(
                action_id=action_id,
                name=name,
                callback=lambda _options, command=command: command(),
            )
        return actions

    def define_actions(self) -> None:
        self._host.set_action_definitions(self.build_actions())

    # ── Feedbacks ─────────────────────────────────────────────────────

    def build_feedbacks(self) -> dict[str, FeedbackDefinition]:
        choices = [{"id": s.id, "label": s.name} for s in self._client.registry.scenes.values()]
        return {
            SCENE_ACTIVE: FeedbackDefinition(
                feedback_id=SCENE_ACTIVE,
                name="Scene Active",
                description="Change button style if the selected scene is currently live.",
                options=[{"type": "dropdown", "id": "scene", "label": "Scene", "choices": choices}],
                default_style={"bgcolor": LIVE_RED, "color": WHITE},
                callback=self._scene_is_live,
            )
        }

    def define_feedbacks(self) -> None:
        self._host.set_feedback_definitions(self.build_feedbacks())

    def _scene_is_live(self, options: dict) -> bool:
        current = self._client.current_scene_id
        return current is not None and str(options.get("scene")) == current

    # ── Presets ───────────────────────────────────────────────────────

    def build_presets(self) -> list[PresetDefinition]:
        presets: list[PresetDefinition] = []

        for scene in self._client.registry.scenes.values():
            presets.append(PresetDefinition(
                category="Scenes",
                name=f"Scene: {scene.name}",
                style={"text": scene.name, "size": "auto", "color": WHITE, "bgcolor": BLACK},
                down_actions=[{"actionId": scene_action_id(scene.id), "options": {}}],
                feedbacks=[{"feedbackId": SCENE_ACTIVE, "options": {"scene": scene.id}}],
            ))

        for action_id, name, text, variable_id, bgcolor in CONTROL_BUTTONS:
            presets.append(PresetDefinition(
                category="Control",
                name=name,
                style={
                    "text": f"{text}\n$({self.label}:{variable_id})",
                    "size": "auto",
                    "color": WHITE,
                    "bgcolor": bgcolor,
                },
                down_actions=[{"actionId": action_id, "options": {}}],
            ))
        return presets

    def define_presets(self) -> None:
        self._host.set_preset_definitions(self.build_presets())
