"""
Save/Load Manager - named save slots on top of a pluggable store.

Combines:
- GameSerializer (blob format and metadata)
- ISaveStore (where blobs live)
- a per-slot metadata cache for save listings
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..story.errors import NotFoundError, PersistenceError, SerializationError
from .adapters.storage import ISaveStore
from .serializer import GameSerializer
from .state import normalize_state

logger = logging.getLogger(__name__)


# ============================================================================
# Slot Metadata
# ============================================================================

@dataclass
class SlotMeta:
    """Save slot metadata, as shown in a save list."""
    slot: str
    timestamp: Optional[int] = None  # epoch ms
    save_date: Optional[str] = None
    current_scene: Optional[str] = None
    description: Optional[str] = None
    version: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.timestamp is None

    @property
    def display_time(self) -> str:
        if not self.save_date:
            return ""
        try:
            dt = datetime.fromisoformat(self.save_date)
            return dt.strftime("%Y-%m-%d %H:%M")
        except ValueError:
            return str(self.save_date)[:16]

    def to_dict(self) -> dict:
        return {
            "slot": self.slot,
            "timestamp": self.timestamp,
            "saveDate": self.save_date,
            "currentScene": self.current_scene,
            "description": self.description,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict, slot: str) -> "SlotMeta":
        ts = data.get("timestamp")
        return cls(
            slot=slot,
            timestamp=int(ts) if isinstance(ts, (int, float)) and not isinstance(ts, bool) else None,
            save_date=data.get("saveDate"),
            current_scene=data.get("currentScene"),
            description=data.get("description"),
            version=data.get("version"),
        )


# ============================================================================
# Save Manager
# ============================================================================

class SaveManager:
    """
    Slot-level save management.

    Store and serializer errors propagate as StoryError subclasses; the
    engine turns them into saveError/loadError events.
    """

    def __init__(self, store: ISaveStore, serializer: Optional[GameSerializer] = None) -> None:
        self._store = store
        self._serializer = serializer or GameSerializer()
        self._meta_cache: Dict[str, SlotMeta] = {}

    @property
    def store(self) -> ISaveStore:
        return self._store

    # =========================================
    # Slot Operations
    # =========================================

    def save(self, slot: str, state: Dict[str, Any], description: str | None = None) -> SlotMeta:
        blob = self._serializer.serialize(state, description=description)
        if not self._store.write_slot(slot, blob):
            raise PersistenceError("save store refused the write", slot)
        self.invalidate_slot(slot)
        logger.info(f"Saved slot '{slot}'")
        return self.get_slot_meta(slot)

    def load(self, slot: str) -> Optional[Dict[str, Any]]:
        """Return the stored state without metadata, or None for an empty slot."""
        blob = self._store.read_slot(slot)
        if blob is None:
            return None
        data = self._serializer.deserialize(blob)
        state, _ = self._serializer.split_metadata(data)
        return normalize_state(state)

    def delete(self, slot: str) -> bool:
        ok = self._store.delete_slot(slot)
        self.invalidate_slot(slot)
        return ok

    def export_save(self, slot: str) -> str:
        blob = self._store.read_slot(slot)
        if blob is None:
            raise NotFoundError("no save in slot", slot)
        return blob

    def import_save(self, slot: str, blob: str) -> SlotMeta:
        """Validate a blob produced by ``export_save`` and store it under ``slot``."""
        data = self._serializer.deserialize(blob)
        state, meta = self._serializer.split_metadata(data)
        normalize_state(state)
        if not meta:
            raise SerializationError("save data has no metadata", slot)
        if not self._store.write_slot(slot, blob):
            raise PersistenceError("save store refused the write", slot)
        self.invalidate_slot(slot)
        return self.get_slot_meta(slot)

    # =========================================
    # Metadata & Cache
    # =========================================

    def get_slot_meta(self, slot: str) -> SlotMeta:
        if slot in self._meta_cache:
            return self._meta_cache[slot]
        meta = self._read_meta(slot)
        self._meta_cache[slot] = meta
        return meta

    def list_saves(self) -> List[SlotMeta]:
        """Filled slots, newest first."""
        metas = [self.get_slot_meta(s) for s in self._store.list_slots()]
        filled = [m for m in metas if not m.is_empty]
        filled.sort(key=lambda m: m.timestamp or 0, reverse=True)
        return filled

    def invalidate_slot(self, slot: str) -> None:
        self._meta_cache.pop(slot, None)

    def invalidate_all(self) -> None:
        self._meta_cache.clear()

    def _read_meta(self, slot: str) -> SlotMeta:
        try:
            blob = self._store.read_slot(slot)
            if blob is None:
                return SlotMeta(slot=slot)
            data = self._serializer.deserialize(blob)
        except Exception as e:
            logger.warning(f"Failed to read meta for slot '{slot}': {e}")
            return SlotMeta(slot=slot)
        state, meta = self._serializer.split_metadata(data)
        meta.setdefault("currentScene", state.get("currentScene"))
        return SlotMeta.from_dict(meta, slot)
