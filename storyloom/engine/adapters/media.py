from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Any, List, Tuple

os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")
import pygame  # noqa: E402

from ...story.errors import MediaError

logger = logging.getLogger(__name__)


class IMediaBackend(ABC):
    """Loads and plays media resources. Handles are opaque to the engine."""

    @abstractmethod
    def load(self, kind: str, path: str) -> Any:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    def play(self, handle: Any, *, volume: float = 1.0, loop: bool = False) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    def stop(self, handle: Any) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class PygameMediaBackend(IMediaBackend):
    """pygame-based backend: ``mixer.Sound`` for audio, ``image.load`` for images.

    pygame has no video decoder, so video resources raise MediaError.
    """

    def __init__(self) -> None:
        self._mixer_ready = False

    def _ensure_mixer(self) -> None:
        if self._mixer_ready:
            return
        try:
            if not pygame.mixer.get_init():
                pygame.mixer.init()
        except pygame.error as e:
            raise MediaError(f"audio device unavailable: {e}") from e
        self._mixer_ready = True

    def load(self, kind: str, path: str) -> Any:
        try:
            if kind == "audio":
                self._ensure_mixer()
                return pygame.mixer.Sound(path)
            if kind == "images":
                return pygame.image.load(path)
        except (pygame.error, FileNotFoundError) as e:
            raise MediaError(f"cannot load {kind} resource: {e}", path) from e
        raise MediaError(f"{kind} playback is not supported by the pygame backend", path)

    def play(self, handle: Any, *, volume: float = 1.0, loop: bool = False) -> None:
        if not hasattr(handle, "play"):
            raise MediaError("resource is not playable")
        handle.set_volume(max(0.0, min(1.0, float(volume))))
        handle.play(loops=-1 if loop else 0)

    def stop(self, handle: Any) -> None:
        if hasattr(handle, "stop"):
            handle.stop()


class NullMediaBackend(IMediaBackend):
    """Backend that plays nothing and records every call (headless runs, tests)."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, Any]] = []

    def load(self, kind: str, path: str) -> Any:
        self.calls.append(("load", (kind, path)))
        return (kind, path)

    def play(self, handle: Any, *, volume: float = 1.0, loop: bool = False) -> None:
        self.calls.append(("play", (handle, volume, loop)))

    def stop(self, handle: Any) -> None:
        self.calls.append(("stop", handle))
