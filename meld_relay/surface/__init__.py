"""surface — Control-surface host and the projector that feeds it."""
from .host import (
    ActionDefinition,
    ControlHost,
    FeedbackDefinition,
    PresetDefinition,
    Status,
    UnknownDefinitionError,
    VariableDefinition,
)
from .projector import ControlSurfaceProjector, scene_action_id

__all__ = [
    "ActionDefinition",
    "ControlHost",
    "ControlSurfaceProjector",
    "FeedbackDefinition",
    "PresetDefinition",
    "Status",
    "UnknownDefinitionError",
    "VariableDefinition",
    "scene_action_id",
]
