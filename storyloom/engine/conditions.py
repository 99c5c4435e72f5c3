"""
Conditions - declarative predicates over game state.

Condition nodes arrive as authoring dicts (``{"type": "FLAG", ...}``) and are
parsed into the dataclasses below when evaluated. The dataclasses also serve
as builders for code that writes stories::

    cond = And([HasItem("key").to_dict(), FlagCondition("door_open", value=False).to_dict()])
    choice["condition"] = cond.to_dict()

Evaluation policy:
- no condition (None or {}) -> True
- unknown or missing type -> True, logged as a warning
- a known type with bad fields -> False, logged as an error
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Dict, List, Optional, Type

from ..story.errors import ValidationError

if TYPE_CHECKING:
    from .engine import StoryEngine

logger = logging.getLogger(__name__)

TIMESTAMP_PREFIX = "__timestamp_"
VISITS_PREFIX = "__visits_"


class Operator(str, Enum):
    EQ = "==="
    NE = "!=="
    GT = ">"
    GE = ">="
    LT = "<"
    LE = "<="
    INCLUDES = "includes"


def is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def strict_equals(a: Any, b: Any) -> bool:
    """Equality without coercion: ``True`` never equals ``1``."""
    if is_number(a) and is_number(b):
        return a == b
    return type(a) is type(b) and a == b


def _ordered(a: Any, b: Any) -> bool:
    return (is_number(a) and is_number(b)) or (isinstance(a, str) and isinstance(b, str))


def compare(actual: Any, op: Optional[Operator], expected: Any, default: Callable[[Any], bool]) -> bool:
    if op is None:
        return default(actual)
    if op is Operator.EQ:
        return strict_equals(actual, expected)
    if op is Operator.NE:
        return not strict_equals(actual, expected)
    if op is Operator.INCLUDES:
        return isinstance(actual, list) and any(strict_equals(x, expected) for x in actual)
    if not _ordered(actual, expected):
        return False
    if op is Operator.GT:
        return actual > expected
    if op is Operator.GE:
        return actual >= expected
    if op is Operator.LT:
        return actual < expected
    return actual <= expected


def truthy(v: Any) -> bool:
    # JavaScript truthiness: empty string, 0, None, False are falsy; containers are truthy
    if isinstance(v, (list, dict)):
        return True
    return bool(v)


def _positive(v: Any) -> bool:
    return is_number(v) and v > 0


def _parse_operator(raw: Dict[str, Any], allow_includes: bool) -> Optional[Operator]:
    op = raw.get("operator")
    if op is None:
        return None
    try:
        parsed = Operator(op)
    except ValueError:
        raise ValidationError(f"unknown operator {op!r}", "operator") from None
    if parsed is Operator.INCLUDES and not allow_includes:
        raise ValidationError("'includes' is only valid for FLAG conditions", "operator")
    return parsed


def _require_str(raw: Dict[str, Any], key: str) -> str:
    v = raw.get(key)
    if not isinstance(v, str) or not v:
        raise ValidationError(f"{raw.get('type')} requires a non-empty string '{key}'", key)
    return v


def _require_number(raw: Dict[str, Any], key: str, default: Any = None) -> Any:
    v = raw.get(key, default)
    if not is_number(v):
        raise ValidationError(f"{raw.get('type')} requires a numeric '{key}'", key)
    return v


class Condition:
    type: ClassVar[str] = ""

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Condition":  # pragma: no cover - interface
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:  # pragma: no cover - interface
        raise NotImplementedError


def _with_op(out: Dict[str, Any], op: Optional[Operator]) -> Dict[str, Any]:
    if op is not None:
        out["operator"] = op.value
    return out


@dataclass
class HasItem(Condition):
    type: ClassVar[str] = "HAS_ITEM"
    item_id: str
    quantity: int = 1

    @classmethod
    def from_dict(cls, raw):
        return cls(_require_str(raw, "itemId"), _require_number(raw, "quantity", 1))

    def to_dict(self):
        return {"type": self.type, "itemId": self.item_id, "quantity": self.quantity}


@dataclass
class _Compare(Condition):
    """Shared shape of the name/operator/value conditions."""

    name_key: ClassVar[str] = ""
    allow_includes: ClassVar[bool] = False
    name: str
    operator: Optional[Operator] = None
    value: Any = None

    @classmethod
    def from_dict(cls, raw):
        return cls(_require_str(raw, cls.name_key), _parse_operator(raw, cls.allow_includes), raw.get("value"))

    def to_dict(self):
        out = {"type": self.type, self.name_key: self.name}
        if self.operator is not None or self.value is not None:
            out["value"] = self.value
        return _with_op(out, self.operator)


class FlagCondition(_Compare):
    type: ClassVar[str] = "FLAG"
    name_key: ClassVar[str] = "flagName"
    allow_includes: ClassVar[bool] = True


class CounterCondition(_Compare):
    type: ClassVar[str] = "COUNTER"
    name_key: ClassVar[str] = "counterName"


class AttributeCondition(_Compare):
    type: ClassVar[str] = "ATTRIBUTE"
    name_key: ClassVar[str] = "attributeName"


class VisitCount(_Compare):
    type: ClassVar[str] = "VISIT_COUNT"
    name_key: ClassVar[str] = "sceneId"


def _child_list(raw: Dict[str, Any]) -> List[Any]:
    children = raw.get("conditions")
    if not isinstance(children, list):
        raise ValidationError(f"{raw.get('type')} requires a 'conditions' list", "conditions")
    return list(children)


@dataclass
class And(Condition):
    type: ClassVar[str] = "AND"
    conditions: List[Any] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw):
        return cls(_child_list(raw))

    def to_dict(self):
        return {"type": self.type, "conditions": list(self.conditions)}


@dataclass
class Or(Condition):
    type: ClassVar[str] = "OR"
    conditions: List[Any] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw):
        return cls(_child_list(raw))

    def to_dict(self):
        return {"type": self.type, "conditions": list(self.conditions)}


@dataclass
class Not(Condition):
    type: ClassVar[str] = "NOT"
    condition: Any = None

    @classmethod
    def from_dict(cls, raw):
        child = raw.get("condition")
        if not isinstance(child, dict):
            raise ValidationError("NOT requires a 'condition' object", "condition")
        return cls(child)

    def to_dict(self):
        return {"type": self.type, "condition": self.condition}


@dataclass
class HasItemsCombination(Condition):
    """Every listed item must be held in at least the listed quantity."""

    type: ClassVar[str] = "HAS_ITEMS_COMBINATION"
    items: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw):
        items = raw.get("items")
        if not isinstance(items, list):
            raise ValidationError("HAS_ITEMS_COMBINATION requires an 'items' list", "items")
        parsed = []
        for i, entry in enumerate(items):
            if not isinstance(entry, dict):
                raise ValidationError("item entry must be an object", f"items[{i}]")
            item_id = entry.get("id", entry.get("itemId"))
            if not isinstance(item_id, str) or not item_id:
                raise ValidationError("item entry needs an id", f"items[{i}]")
            qty = entry.get("quantity", 1)
            if not is_number(qty):
                raise ValidationError("quantity must be a number", f"items[{i}].quantity")
            parsed.append({"id": item_id, "quantity": qty})
        return cls(parsed)

    def to_dict(self):
        return {"type": self.type, "items": [dict(i) for i in self.items]}


@dataclass
class TimePassed(Condition):
    type: ClassVar[str] = "TIME_PASSED"
    id: str
    milliseconds: float

    @classmethod
    def from_dict(cls, raw):
        return cls(_require_str(raw, "id"), _require_number(raw, "milliseconds"))

    def to_dict(self):
        return {"type": self.type, "id": self.id, "milliseconds": self.milliseconds}


@dataclass
class HistoryIncludes(Condition):
    type: ClassVar[str] = "HISTORY_INCLUDES"
    scene_id: str

    @classmethod
    def from_dict(cls, raw):
        return cls(_require_str(raw, "sceneId"))

    def to_dict(self):
        return {"type": self.type, "sceneId": self.scene_id}


@dataclass
class PreviousScene(Condition):
    type: ClassVar[str] = "PREVIOUS_SCENE"
    scene_id: str

    @classmethod
    def from_dict(cls, raw):
        return cls(_require_str(raw, "sceneId"))

    def to_dict(self):
        return {"type": self.type, "sceneId": self.scene_id}


@dataclass
class CustomCondition(Condition):
    type: ClassVar[str] = "CUSTOM"
    name: str

    @classmethod
    def from_dict(cls, raw):
        return cls(_require_str(raw, "name"))

    def to_dict(self):
        return {"type": self.type, "name": self.name}


CONDITION_TYPES: Dict[str, Type[Condition]] = {
    c.type: c
    for c in (
        HasItem, FlagCondition, CounterCondition, And, Or, Not, VisitCount,
        HasItemsCombination, AttributeCondition, TimePassed, HistoryIncludes,
        PreviousScene, CustomCondition,
    )
}


def parse_condition(raw: Any) -> Condition:
    """Parse one condition node. Raises ValidationError for bad shapes and unknown types."""
    if isinstance(raw, Condition):
        return raw
    if not isinstance(raw, dict):
        raise ValidationError("condition must be an object")
    cls = CONDITION_TYPES.get(raw.get("type"))  # type: ignore[arg-type]
    if cls is None:
        raise ValidationError(f"unknown condition type {raw.get('type')!r}", "type")
    return cls.from_dict(raw)


class ConditionEvaluator:
    def __init__(self, engine: "StoryEngine") -> None:
        self._engine = engine
        self._custom: Dict[str, Callable[["StoryEngine"], Any]] = {}

    def register(self, name: str, predicate: Callable[["StoryEngine"], Any]) -> None:
        self._custom[name] = predicate

    def unregister(self, name: str) -> bool:
        return self._custom.pop(name, None) is not None

    def evaluate(self, condition: Any) -> bool:
        if condition is None or (isinstance(condition, dict) and not condition):
            return True
        if isinstance(condition, dict) and condition.get("type") not in CONDITION_TYPES:
            logger.warning(f"Unknown condition type {condition.get('type')!r}, treating as satisfied")
            return True
        try:
            node = parse_condition(condition)
        except ValidationError as e:
            logger.error(f"Malformed condition {condition!r}: {e}")
            return False
        handler = getattr(self, f"_eval_{node.type.lower()}")
        return bool(handler(node))

    # --- per-type evaluation ---
    def _eval_has_item(self, c: HasItem) -> bool:
        return self._engine.has_item(c.item_id, c.quantity)

    def _eval_flag(self, c: FlagCondition) -> bool:
        return compare(self._engine.get_flag(c.name), c.operator, c.value, truthy)

    def _eval_counter(self, c: CounterCondition) -> bool:
        return compare(self._engine.get_counter(c.name), c.operator, c.value, _positive)

    def _eval_attribute(self, c: AttributeCondition) -> bool:
        return compare(self._engine.get_attribute(c.name), c.operator, c.value, _positive)

    def _eval_visit_count(self, c: VisitCount) -> bool:
        visits = self._engine.get_counter(f"{VISITS_PREFIX}{c.name}")
        return compare(visits, c.operator, c.value, _positive)

    def _eval_and(self, c: And) -> bool:
        results = [self.evaluate(child) for child in c.conditions]
        return all(results)

    def _eval_or(self, c: Or) -> bool:
        results = [self.evaluate(child) for child in c.conditions]
        return any(results)

    def _eval_not(self, c: Not) -> bool:
        return not self.evaluate(c.condition)

    def _eval_has_items_combination(self, c: HasItemsCombination) -> bool:
        return all(self._engine.has_item(i["id"], i["quantity"]) for i in c.items)

    def _eval_time_passed(self, c: TimePassed) -> bool:
        key = f"{TIMESTAMP_PREFIX}{c.id}"
        now = self._engine.now_ms()
        stamp = self._engine.get_flag(key)
        if not is_number(stamp):
            self._engine.set_flag(key, now)
            return False
        return now - stamp >= c.milliseconds

    def _eval_history_includes(self, c: HistoryIncludes) -> bool:
        return c.scene_id in self._engine.get_history()

    def _eval_previous_scene(self, c: PreviousScene) -> bool:
        history = self._engine.get_history()
        return bool(history) and history[-1] == c.scene_id

    def _eval_custom(self, c: CustomCondition) -> bool:
        predicate = self._custom.get(c.name)
        if predicate is None:
            logger.error(f"No condition registered under {c.name!r}")
            return False
        try:
            return bool(predicate(self._engine))
        except Exception:
            logger.exception(f"Custom condition {c.name!r} failed")
            return False
