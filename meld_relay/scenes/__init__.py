"""scenes — Meld Studio scene registry."""
from .registry import Scene, SceneRegistry, normalize_scene_name

__all__ = ["Scene", "SceneRegistry", "normalize_scene_name"]
