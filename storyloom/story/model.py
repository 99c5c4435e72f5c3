from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import ValidationError

DEFAULT_TITLE = "New Adventure"
DEFAULT_AUTHOR = "Anonymous"
DEFAULT_VERSION = "1.0.0"
RESOURCE_KINDS = ("images", "audio", "video")


@dataclass(frozen=True)
class Choice:
    text: str
    condition: Optional[Dict[str, Any]] = None
    next_scene: Optional[str] = None
    actions: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class Scene:
    id: str
    title: str = ""
    content: str = ""
    choices: List[Choice] = field(default_factory=list)
    on_enter: List[Dict[str, Any]] = field(default_factory=list)
    on_exit: List[Dict[str, Any]] = field(default_factory=list)


def _expect_list(value: Any, path: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError("expected a list", path)
    return value


def _parse_choice(raw: Any, path: str) -> Choice:
    if not isinstance(raw, dict):
        raise ValidationError("choice must be an object", path)
    condition = raw.get("condition")
    if condition is not None and not isinstance(condition, dict):
        raise ValidationError("condition must be an object", f"{path}.condition")
    next_scene = raw.get("nextScene")
    if next_scene is not None and not isinstance(next_scene, str):
        raise ValidationError("nextScene must be a string", f"{path}.nextScene")
    actions = _expect_list(raw.get("actions"), f"{path}.actions")
    return Choice(
        text=str(raw.get("text", "")),
        condition=condition,
        next_scene=next_scene or None,
        actions=list(actions),
    )


def _parse_scene(scene_id: str, raw: Any) -> Scene:
    path = f"scenes.{scene_id}"
    if not isinstance(raw, dict):
        raise ValidationError("scene must be an object", path)
    choices_raw = _expect_list(raw.get("choices"), f"{path}.choices")
    choices = [_parse_choice(c, f"{path}.choices[{i}]") for i, c in enumerate(choices_raw)]
    on_enter = _expect_list(raw.get("onEnter"), f"{path}.onEnter")
    on_exit = _expect_list(raw.get("onExit"), f"{path}.onExit")
    return Scene(
        id=scene_id,
        title=str(raw.get("title", "")),
        content=str(raw.get("content", "")),
        choices=choices,
        on_enter=list(on_enter),
        on_exit=list(on_exit),
    )


class StoryDocument:
    """Authoring document for one adventure.

    The raw mapping is kept as given (plus top-level defaults) so that
    editor-only properties survive export; ``Scene``/``Choice`` views are
    built once for the engine to read.
    """

    def __init__(self, data: Dict[str, Any], scenes: Dict[str, Scene]) -> None:
        self._data = data
        self._scenes = scenes

    @classmethod
    def from_dict(cls, data: Any) -> "StoryDocument":
        if not isinstance(data, dict):
            raise ValidationError("story document must be an object")
        doc = copy.deepcopy(data)
        doc.setdefault("title", DEFAULT_TITLE)
        doc.setdefault("author", DEFAULT_AUTHOR)
        doc.setdefault("version", DEFAULT_VERSION)
        doc.setdefault("scenes", {})
        doc.setdefault("startScene", None)
        doc.setdefault("resources", {k: {} for k in RESOURCE_KINDS})

        scenes_raw = doc["scenes"]
        if not isinstance(scenes_raw, dict):
            raise ValidationError("scenes must be an object", "scenes")
        start = doc["startScene"]
        if start is not None and not isinstance(start, str):
            raise ValidationError("startScene must be a string or null", "startScene")
        resources = doc["resources"]
        if not isinstance(resources, dict):
            raise ValidationError("resources must be an object", "resources")
        for kind in RESOURCE_KINDS:
            table = resources.get(kind)
            if table is not None and not isinstance(table, dict):
                raise ValidationError("resource table must be an object", f"resources.{kind}")

        scenes = {str(sid): _parse_scene(str(sid), raw) for sid, raw in scenes_raw.items()}
        return cls(doc, scenes)

    @classmethod
    def from_json(cls, text: str) -> "StoryDocument":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValidationError(f"invalid JSON: {e.msg}", f"line {e.lineno}") from e
        return cls.from_dict(data)

    @classmethod
    def empty(cls) -> "StoryDocument":
        return cls.from_dict({})

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)

    @property
    def title(self) -> str:
        return str(self._data.get("title") or "")

    @property
    def author(self) -> str:
        return str(self._data.get("author") or "")

    @property
    def version(self) -> str:
        return str(self._data.get("version") or "")

    @property
    def start_scene(self) -> Optional[str]:
        return self._data.get("startScene") or None

    @property
    def resources(self) -> Dict[str, Dict[str, Any]]:
        res = self._data.get("resources") or {}
        return {kind: copy.deepcopy(res.get(kind) or {}) for kind in RESOURCE_KINDS}

    def scene_ids(self) -> List[str]:
        return list(self._scenes.keys())

    def has_scene(self, scene_id: Any) -> bool:
        return isinstance(scene_id, str) and scene_id in self._scenes

    def get_scene(self, scene_id: Optional[str]) -> Optional[Scene]:
        if scene_id is None:
            return None
        return self._scenes.get(scene_id)

    def __len__(self) -> int:
        return len(self._scenes)
