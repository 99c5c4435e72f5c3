from __future__ import annotations

import json
import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Union

from ..story.errors import NotFoundError, SerializationError, StoryError, ValidationError
from ..story.model import Choice, Scene, StoryDocument
from .actions import ActionInterpreter
from .adapters.media import IMediaBackend
from .adapters.storage import ISaveStore, MemorySaveStore
from .conditions import VISITS_PREFIX, ConditionEvaluator, is_number, truthy
from .config_io import merge_config
from .event_bus import (
    ATTRIBUTES_CHANGED, CHOICE_MADE, COUNTERS_CHANGED, FLAGS_CHANGED, GAME_DATA_IMPORTED,
    GAME_LOADED, GAME_RESET, GAME_SAVED, IMPORT_ERROR, INVENTORY_CHANGED, LOAD_ERROR,
    MEDIA_ERROR, SAVE_ERROR, SCENE_CHANGED, EventBus,
)
from .media import MediaManager
from .save_manager import SaveManager, SlotMeta
from .scheduler import Scheduler, TimerHandle
from .serializer import GameSerializer
from .state import GameStateStore, empty_state, normalize_state

logger = logging.getLogger(__name__)


class StoryEngine:
    """Runs one play session of a story document.

    Every entry point is synchronous and runs to completion. Delayed and
    deferred work sits on the scheduler until the host calls ``tick()``.
    """

    def __init__(
        self,
        story: Union[StoryDocument, Dict[str, Any], None] = None,
        *,
        save_store: Optional[ISaveStore] = None,
        media_backend: Optional[IMediaBackend] = None,
        config: Optional[dict] = None,
        clock: Optional[Callable[[], float]] = None,
        scheduler: Optional[Scheduler] = None,
        assets_dir: Optional[Path] = None,
    ) -> None:
        self.config = merge_config(config)
        self.story = story if isinstance(story, StoryDocument) else (
            StoryDocument.from_dict(story) if story is not None else StoryDocument.empty()
        )
        # wall clock in seconds; TIME_PASSED and save metadata read it
        self._clock = clock or time.time
        self.events = EventBus()
        self.state = GameStateStore()
        self.conditions = ConditionEvaluator(self)
        self.actions = ActionInterpreter(self)
        self.scheduler = scheduler or Scheduler()
        media_cfg = self.config["media"]
        self.media = MediaManager(
            self.story.resources, media_backend, assets_dir,
            default_volume=float(media_cfg.get("default_volume", 1.0)),
        )
        self.saves = SaveManager(save_store or MemorySaveStore(), GameSerializer(clock=self._clock))

        self._handles: Set[TimerHandle] = set()
        self._generation = 0
        self._closed = False
        self._entry = 0
        self._transition_depth = 0

        if media_cfg.get("preload"):
            self.media.preload()
        start = self.story.start_scene
        if start and self.story.has_scene(start):
            self.go_to_scene(start)

    # --- plumbing ---
    @contextmanager
    def _entered(self) -> Iterator[None]:
        self._entry += 1
        try:
            yield
        finally:
            self._entry -= 1

    @property
    def busy(self) -> bool:
        """True while an engine call is on the stack."""
        return self._entry > 0

    @property
    def closed(self) -> bool:
        return self._closed

    def now_ms(self) -> int:
        return int(round(self._clock() * 1000))

    def _engine_cfg(self, key: str) -> Any:
        return self.config["engine"][key]

    # --- events ---
    def on(self, channel: str, handler: Callable[[Any], None]) -> Callable[[], bool]:
        return self.events.subscribe(channel, handler)

    def off(self, channel: str, handler: Callable[[Any], None]) -> bool:
        return self.events.unsubscribe(channel, handler)

    def once(self, channel: str, handler: Callable[[Any], None]) -> Callable[[], bool]:
        return self.events.subscribe_once(channel, handler)

    # --- extension points ---
    def register_condition(self, name: str, predicate: Callable[["StoryEngine"], Any]) -> None:
        self.conditions.register(name, predicate)

    def register_action(self, name: str, handler: Callable[["StoryEngine"], Any]) -> None:
        self.actions.register(name, handler)

    # --- scheduling ---
    def defer(self, fn: Callable[[], None], delay_ms: float = 0, label: str = "") -> TimerHandle:
        """Run fn on a later tick, unless the engine is reset or closed first."""
        generation = self._generation

        def run() -> None:
            self._handles.discard(handle)
            if self._closed or generation != self._generation:
                logger.debug(f"Dropping stale scheduled call {label or fn!r}")
                return
            with self._entered():
                fn()

        handle = self.scheduler.call_later(delay_ms, run, label)
        self._handles.add(handle)
        return handle

    def schedule_action(self, action: Any, delay_ms: float) -> TimerHandle:
        label = action.get("type", "") if isinstance(action, dict) else type(action).__name__
        return self.defer(lambda: self.actions.execute(action), delay_ms, label=f"delayed {label}")

    def cancel_delayed(self, handle: TimerHandle) -> bool:
        self._handles.discard(handle)
        return handle.cancel()

    def pending_delayed(self) -> int:
        return sum(1 for h in self._handles if h.pending)

    def _cancel_pending(self) -> None:
        for handle in list(self._handles):
            handle.cancel()
        self._handles.clear()
        self._generation += 1

    def tick(self, max_tasks: int = 100) -> int:
        """Run due scheduled work. Does nothing while an engine call is in progress."""
        if self._closed or self.busy:
            return 0
        return self.scheduler.run_due(max_tasks)

    # --- media ---
    def play_media(self, kind: str, media_id: str, volume: Optional[float] = None, loop: bool = False) -> bool:
        try:
            self.media.play(kind, media_id, volume=volume, loop=loop)
            return True
        except StoryError as e:
            logger.error(f"Cannot play {kind}/{media_id}: {e}")
            self.events.publish(MEDIA_ERROR, e)
            return False

    def stop_media(self, kind: str, media_id: str) -> bool:
        try:
            return self.media.stop(kind, media_id)
        except StoryError as e:
            logger.error(f"Cannot stop {kind}/{media_id}: {e}")
            return False

    # --- navigation ---
    def get_current_scene(self) -> Optional[Scene]:
        return self.story.get_scene(self.state.get("currentScene"))

    def get_available_choices(self) -> List[Choice]:
        scene = self.get_current_scene()
        if scene is None:
            return []
        return [c for c in scene.choices if self.conditions.evaluate(c.condition)]

    def go_to_scene(self, scene_id: str) -> bool:
        if not self.story.has_scene(scene_id):
            logger.error(f"Scene {scene_id!r} does not exist")
            return False
        limit = int(self._engine_cfg("max_transition_depth"))
        if self._transition_depth >= limit:
            logger.error(f"Transition to {scene_id!r} refused: nested transitions exceed {limit}")
            return False

        self._transition_depth += 1
        try:
            with self._entered():
                previous = self.get_current_scene()
                if previous is not None and self._engine_cfg("run_exit_actions"):
                    self.actions.execute_all(previous.on_exit)

                # onExit may itself have moved elsewhere
                current = self.state.get("currentScene")
                if current is not None:
                    history = self.state.get("history", [])
                    history.append(current)
                    self.state.set("history", history)
                self.state.set("currentScene", scene_id)

                if self._engine_cfg("track_visits"):
                    self.increment_counter(f"{VISITS_PREFIX}{scene_id}")

                scene = self.story.get_scene(scene_id)
                self.actions.execute_all(scene.on_enter)
                self.events.publish(SCENE_CHANGED, scene_id)
                return True
        finally:
            self._transition_depth -= 1

    def go_back(self) -> bool:
        history = self.state.get("history", [])
        if not history:
            return False
        previous = history.pop()
        with self._entered():
            self.state.set("history", history)
            self.state.set("currentScene", previous)
            self.events.publish(SCENE_CHANGED, previous)
        return True

    def make_choice(self, index: int) -> bool:
        if isinstance(index, bool) or not isinstance(index, int):
            logger.error(f"Choice index must be an int, got {index!r}")
            return False
        with self._entered():
            choices = self.get_available_choices()
            if not 0 <= index < len(choices):
                logger.error(f"Choice {index} out of range (0..{len(choices) - 1})")
                return False
            choice = choices[index]
            self.actions.execute_all(choice.actions)
            if choice.next_scene:
                return self.go_to_scene(choice.next_scene)
            self.events.publish(CHOICE_MADE, index)
            return True

    def get_history(self) -> List[str]:
        return self.state.get("history", [])

    def get_state(self) -> Dict[str, Any]:
        return self.state.get_all()

    # --- inventory ---
    def get_inventory(self) -> List[Dict[str, Any]]:
        return self.state.get("inventory", [])

    def _find_item(self, inventory: List[Dict[str, Any]], item_id: str) -> Optional[Dict[str, Any]]:
        for entry in inventory:
            if entry.get("id") == item_id:
                return entry
        return None

    def _valid_quantity(self, item_id: str, quantity: Any) -> bool:
        if is_number(quantity) and quantity > 0:
            return True
        logger.warning(f"Ignoring inventory change of {quantity!r} for '{item_id}'")
        return False

    def add_to_inventory(self, item_id: str, quantity: int = 1) -> bool:
        if not self._valid_quantity(item_id, quantity):
            return False
        inventory = self.get_inventory()
        entry = self._find_item(inventory, item_id)
        if entry is None:
            inventory.append({"id": item_id, "quantity": quantity})
        else:
            entry["quantity"] += quantity
        self.state.set("inventory", inventory)
        self.events.publish(INVENTORY_CHANGED, self.get_inventory())
        return True

    def remove_from_inventory(self, item_id: str, quantity: int = 1) -> bool:
        if not self._valid_quantity(item_id, quantity):
            return False
        inventory = self.get_inventory()
        entry = self._find_item(inventory, item_id)
        if entry is None:
            return False
        if entry["quantity"] <= quantity:
            inventory.remove(entry)
        else:
            entry["quantity"] -= quantity
        self.state.set("inventory", inventory)
        self.events.publish(INVENTORY_CHANGED, self.get_inventory())
        return True

    def has_item(self, item_id: str, quantity: int = 1) -> bool:
        entry = self._find_item(self.get_inventory(), item_id)
        return entry is not None and entry["quantity"] >= quantity

    # --- flags / counters / attributes ---
    def _set_in(self, key: str, name: str, value: Any, channel: str) -> None:
        table = self.state.get(key, {})
        table[name] = value
        self.state.set(key, table)
        self.events.publish(channel, self.state.get(key))

    def set_flag(self, name: str, value: Any = True) -> None:
        self._set_in("flags", name, value, FLAGS_CHANGED)

    def get_flag(self, name: str, default: Any = None) -> Any:
        return self.state.get("flags", {}).get(name, default)

    def toggle_flag(self, name: str) -> None:
        self.set_flag(name, not truthy(self.get_flag(name)))

    def set_counter(self, name: str, value: float) -> None:
        self._set_in("counters", name, value, COUNTERS_CHANGED)

    def increment_counter(self, name: str, increment: float = 1) -> None:
        self.set_counter(name, self.get_counter(name) + increment)

    def get_counter(self, name: str, default: float = 0) -> float:
        return self.state.get("counters", {}).get(name, default)

    def set_attribute(self, name: str, value: float) -> None:
        self._set_in("attributes", name, value, ATTRIBUTES_CHANGED)

    def modify_attribute(self, name: str, delta: float) -> None:
        self.set_attribute(name, self.get_attribute(name) + delta)

    def get_attribute(self, name: str, default: float = 0) -> float:
        return self.state.get("attributes", {}).get(name, default)

    # --- save / load ---
    def save_game(self, slot: Optional[str] = None) -> bool:
        slot = slot or self._engine_cfg("autosave_slot")
        scene = self.get_current_scene()
        with self._entered():
            try:
                self.saves.save(slot, self.state.get_all(), description=scene.title if scene else None)
            except StoryError as e:
                logger.error(f"Saving slot '{slot}' failed: {e}")
                self.events.publish(SAVE_ERROR, e)
                return False
            self.events.publish(GAME_SAVED, slot)
            return True

    def load_game(self, slot: Optional[str] = None) -> bool:
        slot = slot or self._engine_cfg("autosave_slot")
        with self._entered():
            try:
                state = self.saves.load(slot)
                if state is None:
                    logger.info(f"Nothing saved in slot '{slot}'")
                    return False
                current = state.get("currentScene")
                if current is not None and not self.story.has_scene(current):
                    raise SerializationError(f"save refers to unknown scene {current!r}", slot)
            except StoryError as e:
                logger.error(f"Loading slot '{slot}' failed: {e}")
                self.events.publish(LOAD_ERROR, e)
                return False
            self._cancel_pending()
            self.state.replace_all(state)
            self.events.publish(GAME_LOADED, slot)
            return True

    def list_saves(self) -> List[SlotMeta]:
        return self.saves.list_saves()

    def delete_save(self, slot: str) -> bool:
        return self.saves.delete(slot)

    # --- lifecycle ---
    def reset(self) -> None:
        """Clear the session and place it at the start scene without running onEnter."""
        with self._entered():
            self._cancel_pending()
            self.state.reset()
            start = self.story.start_scene
            if start and self.story.has_scene(start):
                self.state.set("currentScene", start)
            self.events.publish(GAME_RESET, None)

    def initial_state(self) -> Dict[str, Any]:
        state = empty_state()
        state["currentScene"] = self.story.start_scene
        return state

    def export_game_data(self) -> Dict[str, Any]:
        return {"gameData": self.story.to_dict(), "initialState": self.initial_state()}

    def export_game_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.export_game_data(), ensure_ascii=False, indent=indent)

    def import_game_data(self, data: Union[Dict[str, Any], str]) -> bool:
        """Replace the story from an export document. Nothing changes on failure."""
        with self._entered():
            try:
                if isinstance(data, str):
                    try:
                        data = json.loads(data)
                    except json.JSONDecodeError as e:
                        raise SerializationError(f"invalid JSON: {e.msg}") from e
                if not isinstance(data, dict) or "gameData" not in data:
                    raise ValidationError("import document has no gameData")
                story = StoryDocument.from_dict(data["gameData"])
                initial = data.get("initialState")
                initial_state = normalize_state(initial) if initial is not None else None
                if initial_state is not None:
                    current = initial_state.get("currentScene")
                    if current is not None and not story.has_scene(current):
                        raise NotFoundError(f"initialState refers to unknown scene {current!r}", "initialState")
            except StoryError as e:
                logger.error(f"Import failed: {e}")
                self.events.publish(IMPORT_ERROR, e)
                return False

            self.story = story
            self.media.set_resources(story.resources)
            self.reset()
            if initial_state is not None:
                self.state.replace_all(initial_state)
            self.events.publish(GAME_DATA_IMPORTED, None)
            return True

    def close(self) -> None:
        """Tear down the session: pending work is dropped, media stopped, subscribers cleared."""
        if self._closed:
            return
        self._cancel_pending()
        self._closed = True
        self.media.stop_all()
        self.events.clear()
