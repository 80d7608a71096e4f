"""
scenes/registry.py — Locally known set of Meld Studio scenes.

Meld reports scenes with display names that often carry a role suffix such as
"Main (Program)". The registry strips that suffix for button labels but keys
everything by the raw, remote-assigned scene id.

Every refresh builds a new mapping and swaps it in with a single assignment,
so listeners never see a half-updated set and scenes missing from the latest
query do not survive.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Optional

log = logging.getLogger(__name__)

_TRAILING_GROUP = re.compile(r"\s*\([^()]*\)\s*$")

RegistryListener = Callable[["SceneRegistry"], None]


def normalize_scene_name(name: Any, scene_id: Any) -> str:
    """Strip one trailing parenthetical group; fall back to the id when no name is left."""
    raw = "" if name is None else str(name)
    clean = _TRAILING_GROUP.sub("", raw, count=1).strip()
    return clean or str(scene_id)


@dataclass(frozen=True)
class Scene:
    id: str
    name: str

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["Scene"]:
        """Build a Scene from a {id, name} mapping or an object with id/name attributes."""
        if isinstance(raw, Mapping):
            scene_id = raw.get("id")
            name = raw.get("name")
        else:
            scene_id = getattr(raw, "id", None)
            name = getattr(raw, "name", None)
        if scene_id is None or scene_id == "":
            return None
        return cls(id=str(scene_id), name=normalize_scene_name(name, scene_id))


class SceneRegistry:
    """
    Mapping of scene id → Scene, replaced wholesale on every refresh.

    Usage:
        registry = SceneRegistry()
        registry.on_change(lambda reg: projector.project())
        registry.refresh([{"id": "1", "name": "Cam (Live)"}])
    """

    def __init__(self):
        self._scenes: dict[str, Scene] = {}
        self._listeners: list[RegistryListener] = []

    def on_change(self, listener: RegistryListener) -> None:
        self._listeners.append(listener)

    @property
    def scenes(self) -> dict[str, Scene]:
        return self._scenes

    def get(self, scene_id: Any) -> Optional[Scene]:
        return self._scenes.get(str(scene_id))

    def list_scenes(self) -> list[dict]:
        return [s.to_dict() for s in self._scenes.values()]

    def __len__(self) -> int:
        return len(self._scenes)

    def __contains__(self, scene_id: Any) -> bool:
        return str(scene_id) in self._scenes

    def refresh(self, raw_scenes: Optional[Iterable[Any]]) -> None:
        fresh: dict[str, Scene] = {}
        for raw in raw_scenes or []:
            scene = Scene.from_raw(raw)
            if scene is None:
                log.debug(f"Ignoring scene entry without id: {raw!r}")
                continue
            fresh[scene.id] = scene
        self._scenes = fresh
        log.info(f"Scene list refreshed: {len(fresh)} scene(s)")
        self._notify()

    def _notify(self) -> None:
        for listener in self._listeners:
            try:
                listener(self)
            except Exception as e:
                log.error(f"Scene registry listener error: {e}")
