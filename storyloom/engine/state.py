"""
Game state store.

Holds the mutable run state of one play session as a plain mapping::

    currentScene  scene id or None
    inventory     [{"id": str, "quantity": int}, ...]
    flags         {name: bool | number | str | list}
    counters      {name: number}
    attributes    {name: number}
    history       [scene id, ...]

Every read and write goes through a deep copy, so callers never share
containers with the store.
"""
from __future__ import annotations

import copy
import time
from typing import Any, Dict

from ..story.errors import SerializationError


STATE_KEYS = ("currentScene", "inventory", "flags", "counters", "attributes", "history")


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def empty_state() -> Dict[str, Any]:
    return {
        "currentScene": None,
        "inventory": [],
        "flags": {},
        "counters": {},
        "attributes": {},
        "history": [],
    }


def normalize_state(data: Any) -> Dict[str, Any]:
    """Validate a state coming from outside (save blob, import) and fill gaps.

    Older documents kept attributes under ``flags["attributes"]``; those are
    moved to the top-level ``attributes`` map.
    """
    if not isinstance(data, dict):
        raise SerializationError("state must be an object")
    out = empty_state()
    current = data.get("currentScene")
    if current is not None and not isinstance(current, str):
        raise SerializationError("currentScene must be a string or null", "currentScene")
    out["currentScene"] = current

    for key in ("flags", "counters", "attributes"):
        value = data.get(key)
        if value is None:
            continue
        if not isinstance(value, dict):
            raise SerializationError(f"{key} must be an object", key)
        out[key] = copy.deepcopy(value)

    legacy = out["flags"].get("attributes")
    if isinstance(legacy, dict):
        del out["flags"]["attributes"]
        merged = dict(legacy)
        merged.update(out["attributes"])
        out["attributes"] = merged

    for key in ("counters", "attributes"):
        for name, value in out[key].items():
            if not _is_number(value):
                raise SerializationError(f"{key} values must be numbers", f"{key}.{name}")

    inventory = data.get("inventory")
    if inventory is not None:
        if not isinstance(inventory, list):
            raise SerializationError("inventory must be a list", "inventory")
        items = []
        for i, entry in enumerate(inventory):
            if not isinstance(entry, dict) or not isinstance(entry.get("id"), str):
                raise SerializationError("inventory entry needs a string id", f"inventory[{i}]")
            qty = entry.get("quantity", 1)
            if not _is_number(qty) or qty <= 0:
                raise SerializationError("quantity must be a positive number", f"inventory[{i}].quantity")
            items.append({"id": entry["id"], "quantity": qty})
        out["inventory"] = items

    history = data.get("history")
    if history is not None:
        if not isinstance(history, list) or not all(isinstance(h, str) for h in history):
            raise SerializationError("history must be a list of scene ids", "history")
        out["history"] = list(history)

    # keep unknown top-level keys so foreign extensions survive a round trip
    for key, value in data.items():
        if key not in out and not key.startswith("__"):
            out[key] = copy.deepcopy(value)
    return out


class GameStateStore:
    def __init__(self, initial: Dict[str, Any] | None = None) -> None:
        self._state: Dict[str, Any] = copy.deepcopy(initial) if initial is not None else empty_state()
        self._last_updated = 0
        self._touch()

    def _touch(self) -> None:
        now = time.time_ns()
        # strictly increasing even when the clock does not advance
        self._last_updated = now if now > self._last_updated else self._last_updated + 1

    @property
    def last_updated(self) -> int:
        return self._last_updated

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._state:
            return default
        return copy.deepcopy(self._state[key])

    def set(self, key: str, value: Any) -> None:
        self._state[key] = copy.deepcopy(value)
        self._touch()

    def get_all(self) -> Dict[str, Any]:
        return copy.deepcopy(self._state)

    def replace_all(self, state: Dict[str, Any]) -> None:
        self._state = copy.deepcopy(state)
        self._touch()

    def reset(self) -> None:
        self._state = empty_state()
        self._touch()

    def has(self, key: str) -> bool:
        return key in self._state

    def remove(self, key: str) -> bool:
        if key not in self._state:
            return False
        del self._state[key]
        self._touch()
        return True
