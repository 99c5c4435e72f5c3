"""
Event Bus - string-channel publish/subscribe for engine observers.

Delivery is synchronous, in subscription order, over a snapshot of the
subscriber list taken when ``publish`` is called.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, DefaultDict, Dict, List

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]

SCENE_CHANGED = "sceneChanged"
CHOICE_MADE = "choiceMade"
INVENTORY_CHANGED = "inventoryChanged"
FLAGS_CHANGED = "flagsChanged"
COUNTERS_CHANGED = "countersChanged"
ATTRIBUTES_CHANGED = "attributesChanged"
GAME_SAVED = "gameSaved"
SAVE_ERROR = "saveError"
GAME_LOADED = "gameLoaded"
LOAD_ERROR = "loadError"
GAME_RESET = "gameReset"
GAME_DATA_IMPORTED = "gameDataImported"
IMPORT_ERROR = "importError"
MEDIA_ERROR = "mediaError"


class EventBus:
    """
    Tiny pub/sub keyed by channel name.

    - subscribe(channel, fn): register a callback, returns an unsubscribe function
    - subscribe_once(channel, fn): callback fires on the next publish only
    - publish(channel, payload): call every subscriber with the payload
    """

    def __init__(self) -> None:
        self._subs: DefaultDict[str, List[Handler]] = defaultdict(list)
        self._emit_count: DefaultDict[str, int] = defaultdict(int)

    def subscribe(self, channel: str, fn: Handler) -> Callable[[], bool]:
        """Subscribe to a channel. Returns unsubscribe function."""
        self._subs[channel].append(fn)

        def unsubscribe() -> bool:
            return self.unsubscribe(channel, fn)
        return unsubscribe

    def subscribe_once(self, channel: str, fn: Handler) -> Callable[[], bool]:
        def wrapper(payload: Any) -> None:
            # removed before the call so a re-publish from fn cannot reach it
            self.unsubscribe(channel, wrapper)
            fn(payload)

        wrapper.__wrapped__ = fn  # type: ignore[attr-defined]
        return self.subscribe(channel, wrapper)

    def unsubscribe(self, channel: str, fn: Handler) -> bool:
        """Remove the first registration of fn (or of a once-wrapper around it)."""
        subs = self._subs.get(channel)
        if not subs:
            return False
        for i, registered in enumerate(subs):
            if registered == fn or getattr(registered, "__wrapped__", None) == fn:
                subs.pop(i)
                return True
        return False

    def publish(self, channel: str, payload: Any = None) -> None:
        self._emit_count[channel] += 1
        for fn in list(self._subs.get(channel, ())):
            try:
                fn(payload)
            except Exception:
                logger.exception(f"Subscriber {fn!r} failed on '{channel}'")

    def has_listeners(self, channel: str) -> bool:
        return bool(self._subs.get(channel))

    def listener_count(self, channel: str) -> int:
        return len(self._subs.get(channel, ()))

    def get_stats(self) -> Dict[str, Any]:
        return {
            "events": dict(self._emit_count),
            "listeners": {k: len(v) for k, v in self._subs.items() if v},
            "total_emits": sum(self._emit_count.values()),
        }

    def clear(self, channel: str | None = None) -> None:
        """Drop subscribers of one channel, or of every channel."""
        if channel is None:
            self._subs.clear()
        else:
            self._subs.pop(channel, None)
