from __future__ import annotations

from dataclasses import dataclass


@dataclass
class StoryError(Exception):
    message: str
    path: str | None = None

    def __str__(self) -> str:  # pragma: no cover - formatting
        loc = f" (at {self.path})" if self.path else ""
        return f"{self.message}{loc}"


class ValidationError(StoryError):
    """A story document, condition or action has the wrong shape."""


class NotFoundError(StoryError):
    """A referenced scene, item, slot or resource does not exist."""


class SerializationError(StoryError):
    """A save blob or imported document could not be decoded."""


class PersistenceError(StoryError):
    """The save store failed to read or write."""


class MediaError(StoryError):
    """A media resource could not be loaded or played."""
