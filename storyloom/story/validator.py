from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Set

from ..engine.actions import ACTION_TYPES
from ..engine.conditions import CONDITION_TYPES
from .model import StoryDocument

_MEDIA_ACTIONS = {
    "PLAY_AUDIO": ("audio", "audioId"),
    "STOP_AUDIO": ("audio", "audioId"),
    "PLAY_VIDEO": ("video", "videoId"),
    "STOP_VIDEO": ("video", "videoId"),
}


@dataclass
class Diagnostic:
    severity: str  # "error" | "warning" | "info"
    message: str
    scene: str | None = None
    path: str | None = None

    def __str__(self) -> str:
        where = self.path or self.scene
        loc = f" [{where}]" if where else ""
        return f"{self.severity}: {self.message}{loc}"


def _walk_actions(actions: Iterable[Any], path: str):
    """Yield (action, path) for every action, descending into composites."""
    for i, action in enumerate(actions):
        here = f"{path}[{i}]"
        yield action, here
        if not isinstance(action, dict):
            continue
        kind = action.get("type")
        if kind == "SEQUENCE" and isinstance(action.get("actions"), list):
            yield from _walk_actions(action["actions"], f"{here}.actions")
        elif kind == "CONDITIONAL":
            for key in ("thenActions", "elseActions"):
                branch = action.get(key)
                if branch is None:
                    continue
                yield from _walk_actions(branch if isinstance(branch, list) else [branch], f"{here}.{key}")
        elif kind == "DELAYED" and isinstance(action.get("action"), dict):
            yield from _walk_actions([action["action"]], f"{here}.action")


def _walk_conditions(cond: Any, path: str):
    if not isinstance(cond, dict):
        return
    yield cond, path
    kind = cond.get("type")
    if kind in ("AND", "OR") and isinstance(cond.get("conditions"), list):
        for i, child in enumerate(cond["conditions"]):
            yield from _walk_conditions(child, f"{path}.conditions[{i}]")
    elif kind == "NOT":
        yield from _walk_conditions(cond.get("condition"), f"{path}.condition")


def _action_conditions(action: Any, path: str):
    if isinstance(action, dict) and action.get("type") == "CONDITIONAL":
        yield from _walk_conditions(action.get("condition"), f"{path}.condition")


def validate_story(doc: StoryDocument) -> List[Diagnostic]:
    """Static checks over a story graph; nothing is executed."""
    diags: List[Diagnostic] = []
    scene_ids = set(doc.scene_ids())
    resources = doc.resources

    if not scene_ids:
        diags.append(Diagnostic("error", "Story has no scenes"))
        return diags
    start = doc.start_scene
    if not start:
        diags.append(Diagnostic("error", "No start scene set", path="startScene"))
    elif start not in scene_ids:
        diags.append(Diagnostic("error", f"Start scene not found: '{start}'", path="startScene"))

    edges = {sid: set() for sid in scene_ids}
    for sid in doc.scene_ids():
        scene = doc.get_scene(sid)
        base = f"scenes.{sid}"
        action_lists = [(scene.on_enter, f"{base}.onEnter"), (scene.on_exit, f"{base}.onExit")]
        for i, choice in enumerate(scene.choices):
            cpath = f"{base}.choices[{i}]"
            if choice.next_scene:
                if choice.next_scene in scene_ids:
                    edges[sid].add(choice.next_scene)
                else:
                    diags.append(Diagnostic("error", f"Choice target scene not found: '{choice.next_scene}'", sid, f"{cpath}.nextScene"))
            for cond, cp in _walk_conditions(choice.condition, f"{cpath}.condition"):
                _check_condition(cond, cp, sid, CONDITION_TYPES, scene_ids, diags)
            action_lists.append((choice.actions, f"{cpath}.actions"))

        for actions, apath in action_lists:
            for action, path in _walk_actions(actions, apath):
                target = _check_action(action, path, sid, ACTION_TYPES, scene_ids, resources, diags)
                if target:
                    edges[sid].add(target)
                for cond, cp in _action_conditions(action, path):
                    _check_condition(cond, cp, sid, CONDITION_TYPES, scene_ids, diags)

        if not scene.choices:
            diags.append(Diagnostic("info", "Scene has no choices (ending)", sid))

    if start in scene_ids:
        reachable = _reachable(start, edges)
        for sid in doc.scene_ids():
            if sid not in reachable:
                diags.append(Diagnostic("warning", "Scene is unreachable from the start scene", sid))
    return diags


def _check_action(action, path, sid, known, scene_ids, resources, diags) -> Optional[str]:
    if not isinstance(action, dict):
        diags.append(Diagnostic("error", "Action is not an object", sid, path))
        return None
    kind = action.get("type")
    if kind not in known:
        diags.append(Diagnostic("error", f"Unknown action type: {kind!r}", sid, path))
        return None
    if kind == "GO_TO_SCENE":
        target = action.get("sceneId")
        if target in scene_ids:
            return target
        diags.append(Diagnostic("error", f"GO_TO_SCENE target not found: '{target}'", sid, path))
    elif kind in _MEDIA_ACTIONS:
        table, key = _MEDIA_ACTIONS[kind]
        media_id = action.get(key)
        if media_id not in resources.get(table, {}):
            diags.append(Diagnostic("warning", f"Missing {table} resource: '{media_id}'", sid, path))
    return None


def _check_condition(cond, path, sid, known, scene_ids, diags) -> None:
    kind = cond.get("type")
    if kind not in known:
        diags.append(Diagnostic("warning", f"Unknown condition type {kind!r} (always true)", sid, path))
    elif kind in ("VISIT_COUNT", "HISTORY_INCLUDES", "PREVIOUS_SCENE") and cond.get("sceneId") not in scene_ids:
        diags.append(Diagnostic("warning", f"Condition refers to unknown scene '{cond.get('sceneId')}'", sid, path))


def _reachable(start: str, edges: dict) -> Set[str]:
    seen = {start}
    queue = deque([start])
    while queue:
        for nxt in edges.get(queue.popleft(), ()):
            if nxt not in seen:
                seen.add(nxt)
                queue.append(nxt)
    return seen


def has_errors(diags: Iterable[Diagnostic]) -> bool:
    return any(d.severity == "error" for d in diags)
