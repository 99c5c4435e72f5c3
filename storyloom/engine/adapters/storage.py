from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ...story.errors import PersistenceError

logger = logging.getLogger(__name__)

SLOT_PREFIX = "savegame_"


def sanitize_slot_name(name: str) -> str:
    # Remove characters not friendly for filesystem
    bad = '<>:"/\\|?*'
    out = ''.join('_' if ch in bad or ord(ch) < 32 else ch for ch in str(name))
    out = out.strip().strip('.')
    return out or 'autosave'


class ISaveStore(ABC):
    """Abstract save store keyed by slot name.

    Implementations store opaque text blobs and return them intact.
    ``read_slot`` returns None for a slot that was never written.
    """

    @abstractmethod
    def write_slot(self, slot: str, blob: str) -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    def read_slot(self, slot: str) -> Optional[str]:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    def list_slots(self) -> List[str]:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    def delete_slot(self, slot: str) -> bool:  # pragma: no cover - interface
        raise NotImplementedError


class MemorySaveStore(ISaveStore):
    """In-process store, for tests and throwaway sessions."""

    def __init__(self) -> None:
        self._slots: Dict[str, str] = {}

    def write_slot(self, slot: str, blob: str) -> bool:
        self._slots[str(slot)] = str(blob)
        return True

    def read_slot(self, slot: str) -> Optional[str]:
        return self._slots.get(str(slot))

    def list_slots(self) -> List[str]:
        return sorted(self._slots)

    def delete_slot(self, slot: str) -> bool:
        return self._slots.pop(str(slot), None) is not None


class FileSaveStore(ISaveStore):
    """Filesystem-based save store.

    Files:
    - savegame_<slot>.json
    """

    def __init__(self, get_base_dir: Callable[[], Path]) -> None:
        self._get_base = get_base_dir

    def _ensure_dir(self) -> Path:
        base = Path(self._get_base())
        try:
            base.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"cannot create save directory: {e}", str(base)) from e
        return base

    def _slot_path(self, slot: str) -> Path:
        return self._ensure_dir() / f"{SLOT_PREFIX}{sanitize_slot_name(slot)}.json"

    def write_slot(self, slot: str, blob: str) -> bool:
        p = self._slot_path(slot)
        tmp = p.with_suffix(".json.tmp")
        try:
            tmp.write_text(blob, encoding="utf-8")
            tmp.replace(p)
            return True
        except OSError as e:
            logger.error(f"Failed to write save slot '{slot}': {e}")
            return False

    def read_slot(self, slot: str) -> Optional[str]:
        p = self._slot_path(slot)
        if not p.exists():
            return None
        try:
            return p.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise PersistenceError(f"cannot read save slot: {e}", str(p)) from e

    def list_slots(self) -> List[str]:
        base = self._ensure_dir()
        slots = [p.stem[len(SLOT_PREFIX):] for p in base.glob(f"{SLOT_PREFIX}*.json")]
        slots.sort()
        return slots

    def delete_slot(self, slot: str) -> bool:
        p = self._slot_path(slot)
        if not p.exists():
            return False
        try:
            p.unlink()
            return True
        except OSError as e:
            logger.error(f"Failed to delete save slot '{slot}': {e}")
            return False
