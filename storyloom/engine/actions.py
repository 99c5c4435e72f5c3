"""
Actions - commands run by choices and by scene enter/exit hooks.

Like conditions, actions are stored as authoring dicts and parsed on demand.
Composite actions (SEQUENCE, CONDITIONAL, DELAYED) keep their children in
dict form, so one malformed child only fails itself.

``execute`` returns True when the action was recognised and attempted.
Malformed and unknown actions are logged and return False.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Dict, List, Tuple, Type

from ..story.errors import ValidationError
from .conditions import is_number
from .scheduler import TimerHandle

if TYPE_CHECKING:
    from .engine import StoryEngine

logger = logging.getLogger(__name__)

DEFAULT_SLOT = "autosave"
DEFAULT_DELAY_MS = 1000


def _require_str(raw: Dict[str, Any], key: str) -> str:
    v = raw.get(key)
    if not isinstance(v, str) or not v:
        raise ValidationError(f"{raw.get('type')} requires a non-empty string '{key}'", key)
    return v


def _number(raw: Dict[str, Any], key: str, default: Any = None) -> Any:
    v = raw.get(key, default)
    if not is_number(v):
        raise ValidationError(f"{raw.get('type')} requires a numeric '{key}'", key)
    return v


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    return list(value) if isinstance(value, list) else [value]


class Action:
    type: ClassVar[str] = ""

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Action":
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type}


@dataclass
class AddItem(Action):
    type: ClassVar[str] = "ADD_ITEM"
    item_id: str
    quantity: int = 1

    @classmethod
    def from_dict(cls, raw):
        quantity = _number(raw, "quantity", 1)
        if quantity <= 0:
            raise ValidationError(f"{raw.get('type')} quantity must be positive", "quantity")
        return cls(_require_str(raw, "itemId"), quantity)

    def to_dict(self):
        return {"type": self.type, "itemId": self.item_id, "quantity": self.quantity}


@dataclass
class RemoveItem(AddItem):
    type: ClassVar[str] = "REMOVE_ITEM"


@dataclass
class SetFlag(Action):
    type: ClassVar[str] = "SET_FLAG"
    flag_name: str
    value: Any = True

    @classmethod
    def from_dict(cls, raw):
        return cls(_require_str(raw, "flagName"), raw.get("value", True))

    def to_dict(self):
        return {"type": self.type, "flagName": self.flag_name, "value": self.value}


@dataclass
class ToggleFlag(Action):
    type: ClassVar[str] = "TOGGLE_FLAG"
    flag_name: str

    @classmethod
    def from_dict(cls, raw):
        return cls(_require_str(raw, "flagName"))

    def to_dict(self):
        return {"type": self.type, "flagName": self.flag_name}


@dataclass
class SetCounter(Action):
    type: ClassVar[str] = "SET_COUNTER"
    counter_name: str
    value: float = 0

    @classmethod
    def from_dict(cls, raw):
        return cls(_require_str(raw, "counterName"), _number(raw, "value"))

    def to_dict(self):
        return {"type": self.type, "counterName": self.counter_name, "value": self.value}


@dataclass
class IncrementCounter(Action):
    type: ClassVar[str] = "INCREMENT_COUNTER"
    counter_name: str
    increment: float = 1

    @classmethod
    def from_dict(cls, raw):
        return cls(_require_str(raw, "counterName"), _number(raw, "increment", 1))

    def to_dict(self):
        return {"type": self.type, "counterName": self.counter_name, "increment": self.increment}


@dataclass
class GoToScene(Action):
    type: ClassVar[str] = "GO_TO_SCENE"
    scene_id: str

    @classmethod
    def from_dict(cls, raw):
        return cls(_require_str(raw, "sceneId"))

    def to_dict(self):
        return {"type": self.type, "sceneId": self.scene_id}


class GoBack(Action):
    type: ClassVar[str] = "GO_BACK"


@dataclass
class PlayAudio(Action):
    type: ClassVar[str] = "PLAY_AUDIO"
    id_key: ClassVar[str] = "audioId"
    kind: ClassVar[str] = "audio"
    media_id: str
    volume: float = 1.0
    loop: bool = False

    @classmethod
    def from_dict(cls, raw):
        loop = raw.get("loop", False)
        if not isinstance(loop, bool):
            raise ValidationError("loop must be a boolean", "loop")
        return cls(_require_str(raw, cls.id_key), _number(raw, "volume", 1.0), loop)

    def to_dict(self):
        return {"type": self.type, self.id_key: self.media_id, "volume": self.volume, "loop": self.loop}


@dataclass
class PlayVideo(PlayAudio):
    type: ClassVar[str] = "PLAY_VIDEO"
    id_key: ClassVar[str] = "videoId"
    kind: ClassVar[str] = "video"


@dataclass
class StopAudio(Action):
    type: ClassVar[str] = "STOP_AUDIO"
    id_key: ClassVar[str] = "audioId"
    kind: ClassVar[str] = "audio"
    media_id: str

    @classmethod
    def from_dict(cls, raw):
        return cls(_require_str(raw, cls.id_key))

    def to_dict(self):
        return {"type": self.type, self.id_key: self.media_id}


@dataclass
class StopVideo(StopAudio):
    type: ClassVar[str] = "STOP_VIDEO"
    id_key: ClassVar[str] = "videoId"
    kind: ClassVar[str] = "video"


@dataclass
class SaveGame(Action):
    type: ClassVar[str] = "SAVE_GAME"
    slot_name: str = DEFAULT_SLOT

    @classmethod
    def from_dict(cls, raw):
        slot = raw.get("slotName") or DEFAULT_SLOT
        if not isinstance(slot, str):
            raise ValidationError("slotName must be a string", "slotName")
        return cls(slot)

    def to_dict(self):
        return {"type": self.type, "slotName": self.slot_name}


@dataclass
class LoadGame(SaveGame):
    type: ClassVar[str] = "LOAD_GAME"


class ResetGame(Action):
    type: ClassVar[str] = "RESET_GAME"


@dataclass
class Sequence(Action):
    type: ClassVar[str] = "SEQUENCE"
    actions: List[Any] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw):
        actions = raw.get("actions")
        if not isinstance(actions, list):
            raise ValidationError("SEQUENCE requires an 'actions' list", "actions")
        return cls(list(actions))

    def to_dict(self):
        return {"type": self.type, "actions": list(self.actions)}


@dataclass
class Conditional(Action):
    """Run ``then_actions`` when the condition holds, else ``else_actions``."""

    type: ClassVar[str] = "CONDITIONAL"
    condition: Dict[str, Any]
    then_actions: List[Any]
    else_actions: List[Any] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw):
        condition = raw.get("condition")
        if not isinstance(condition, dict):
            raise ValidationError("CONDITIONAL requires a 'condition' object", "condition")
        if raw.get("thenActions") is None:
            raise ValidationError("CONDITIONAL requires 'thenActions'", "thenActions")
        return cls(condition, _as_list(raw.get("thenActions")), _as_list(raw.get("elseActions")))

    def to_dict(self):
        out = {"type": self.type, "condition": self.condition, "thenActions": list(self.then_actions)}
        if self.else_actions:
            out["elseActions"] = list(self.else_actions)
        return out


@dataclass
class Delayed(Action):
    type: ClassVar[str] = "DELAYED"
    action: Dict[str, Any]
    delay_ms: float = DEFAULT_DELAY_MS

    @classmethod
    def from_dict(cls, raw):
        action = raw.get("action")
        if not isinstance(action, dict):
            raise ValidationError("DELAYED requires an 'action' object", "action")
        key = "delayMs" if "delayMs" in raw else "delay"
        delay = _number(raw, key, DEFAULT_DELAY_MS)
        if delay < 0:
            raise ValidationError("delay must not be negative", key)
        return cls(action, delay)

    def to_dict(self):
        return {"type": self.type, "action": self.action, "delayMs": self.delay_ms}


@dataclass
class SetAttribute(Action):
    type: ClassVar[str] = "SET_ATTRIBUTE"
    attribute_name: str
    value: float = 0

    @classmethod
    def from_dict(cls, raw):
        return cls(_require_str(raw, "attributeName"), _number(raw, "value"))

    def to_dict(self):
        return {"type": self.type, "attributeName": self.attribute_name, "value": self.value}


@dataclass
class ModifyAttribute(Action):
    type: ClassVar[str] = "MODIFY_ATTRIBUTE"
    attribute_name: str
    delta: float = 0

    @classmethod
    def from_dict(cls, raw):
        return cls(_require_str(raw, "attributeName"), _number(raw, "delta", 0))

    def to_dict(self):
        return {"type": self.type, "attributeName": self.attribute_name, "delta": self.delta}


@dataclass
class CustomAction(Action):
    type: ClassVar[str] = "CUSTOM"
    name: str

    @classmethod
    def from_dict(cls, raw):
        return cls(_require_str(raw, "name"))

    def to_dict(self):
        return {"type": self.type, "name": self.name}


ACTION_TYPES: Dict[str, Type[Action]] = {
    a.type: a
    for a in (
        AddItem, RemoveItem, SetFlag, ToggleFlag, SetCounter, IncrementCounter,
        GoToScene, GoBack, PlayAudio, StopAudio, PlayVideo, StopVideo,
        SaveGame, LoadGame, ResetGame, Sequence, Conditional, Delayed,
        SetAttribute, ModifyAttribute, CustomAction,
    )
}


def parse_action(raw: Any) -> Action:
    if isinstance(raw, Action):
        return raw
    if not isinstance(raw, dict):
        raise ValidationError("action must be an object")
    cls = ACTION_TYPES.get(raw.get("type"))  # type: ignore[arg-type]
    if cls is None:
        raise ValidationError(f"unknown action type {raw.get('type')!r}", "type")
    return cls.from_dict(raw)


class ActionInterpreter:
    def __init__(self, engine: "StoryEngine") -> None:
        self._engine = engine
        self._custom: Dict[str, Callable[["StoryEngine"], Any]] = {}
        # plays waiting for the next tick, so a later stop can cancel them
        self._queued_plays: Dict[Tuple[str, str], List[TimerHandle]] = {}
        self._dispatch: Dict[Type[Action], Callable[[Any], bool]] = {
            AddItem: self._add_item,
            RemoveItem: self._remove_item,
            SetFlag: lambda a: self._engine.set_flag(a.flag_name, a.value),
            ToggleFlag: lambda a: self._engine.toggle_flag(a.flag_name),
            SetCounter: lambda a: self._engine.set_counter(a.counter_name, a.value),
            IncrementCounter: lambda a: self._engine.increment_counter(a.counter_name, a.increment),
            GoToScene: lambda a: self._engine.go_to_scene(a.scene_id),
            GoBack: lambda a: self._engine.go_back(),
            PlayAudio: self._play_media,
            PlayVideo: self._play_media,
            StopAudio: self._stop_media,
            StopVideo: self._stop_media,
            SaveGame: lambda a: self._engine.save_game(a.slot_name),
            LoadGame: lambda a: self._engine.load_game(a.slot_name),
            ResetGame: lambda a: self._engine.reset(),
            Sequence: self._sequence,
            Conditional: self._conditional,
            Delayed: self._delayed,
            SetAttribute: lambda a: self._engine.set_attribute(a.attribute_name, a.value),
            ModifyAttribute: lambda a: self._engine.modify_attribute(a.attribute_name, a.delta),
            CustomAction: self._custom_action,
        }

    def register(self, name: str, handler: Callable[["StoryEngine"], Any]) -> None:
        self._custom[name] = handler

    def unregister(self, name: str) -> bool:
        return self._custom.pop(name, None) is not None

    def execute(self, action: Any) -> bool:
        try:
            node = parse_action(action)
        except ValidationError as e:
            logger.error(f"Cannot execute action {action!r}: {e}")
            return False
        result = self._dispatch[type(node)](node)
        # mutators return None; recognised and attempted counts as success
        return True if result is None else bool(result)

    def execute_all(self, actions: List[Any]) -> None:
        for action in actions:
            self.execute(action)

    def _add_item(self, a: AddItem) -> bool:
        return self._engine.add_to_inventory(a.item_id, a.quantity)

    def _remove_item(self, a: RemoveItem) -> bool:
        return self._engine.remove_from_inventory(a.item_id, a.quantity)

    def _play_media(self, a: PlayAudio) -> bool:
        key = (a.kind, a.media_id)
        queued = self._queued_plays.setdefault(key, [])
        queued[:] = [h for h in queued if h.pending]

        def play() -> None:
            if handle in queued:
                queued.remove(handle)
            self._engine.play_media(a.kind, a.media_id, volume=a.volume, loop=a.loop)

        handle = self._engine.defer(play, label=f"play {a.kind}/{a.media_id}")
        queued.append(handle)
        return True

    def _stop_media(self, a: StopAudio) -> bool:
        for handle in self._queued_plays.pop((a.kind, a.media_id), []):
            self._engine.cancel_delayed(handle)
        self._engine.stop_media(a.kind, a.media_id)
        return True

    def _sequence(self, a: Sequence) -> bool:
        self.execute_all(a.actions)
        return True

    def _conditional(self, a: Conditional) -> bool:
        branch = a.then_actions if self._engine.conditions.evaluate(a.condition) else a.else_actions
        self.execute_all(branch)
        return True

    def _delayed(self, a: Delayed) -> bool:
        self._engine.schedule_action(a.action, a.delay_ms)
        return True

    def _custom_action(self, a: CustomAction) -> bool:
        handler = self._custom.get(a.name)
        if handler is None:
            logger.error(f"No action registered under {a.name!r}")
            return False
        try:
            result = handler(self._engine)
        except Exception:
            logger.exception(f"Custom action {a.name!r} failed")
            return False
        return True if result is None else bool(result)
