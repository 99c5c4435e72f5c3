"""
Media Manager - resolves story resource ids to backend handles and tracks playback.

A resource entry is either a path string or an object::

    {"src": "music/theme.ogg", "preload": true,
     "alternativeSources": [{"src": "music/theme.mp3", "type": "audio/mpeg"}]}

Sources are tried in order until the backend loads one.
"""
from __future__ import annotations

import copy
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..story.errors import MediaError
from .adapters.media import IMediaBackend, NullMediaBackend

logger = logging.getLogger(__name__)


class MediaKind(str, Enum):
    IMAGES = "images"
    AUDIO = "audio"
    VIDEO = "video"


def resource_sources(resource: Any) -> List[str]:
    if isinstance(resource, str):
        return [resource] if resource else []
    if not isinstance(resource, dict):
        return []
    sources = []
    if isinstance(resource.get("src"), str) and resource["src"]:
        sources.append(resource["src"])
    for alt in resource.get("alternativeSources") or []:
        src = alt.get("src") if isinstance(alt, dict) else alt
        if isinstance(src, str) and src:
            sources.append(src)
    return sources


class MediaManager:
    def __init__(
        self,
        resources: Optional[Dict[str, Dict[str, Any]]] = None,
        backend: Optional[IMediaBackend] = None,
        base_dir: Optional[Path] = None,
        default_volume: float = 1.0,
    ) -> None:
        self.backend = backend or NullMediaBackend()
        self.base_dir = Path(base_dir) if base_dir else None
        self.default_volume = default_volume
        self._resources: Dict[str, Dict[str, Any]] = {}
        self._cache: Dict[Tuple[str, str], Any] = {}
        self._playing: Dict[Tuple[str, str], Any] = {}
        self.set_resources(resources or {})

    def set_resources(self, resources: Dict[str, Dict[str, Any]]) -> None:
        """Replace the resource table; stops playback and drops cached handles."""
        self.stop_all()
        self._cache.clear()
        self._resources = {k.value: copy.deepcopy(resources.get(k.value) or {}) for k in MediaKind}

    def _kind(self, kind: Any) -> str:
        try:
            return MediaKind(kind).value
        except ValueError:
            raise MediaError(f"unknown media kind {kind!r}") from None

    def _full_path(self, src: str) -> str:
        if self.base_dir is None or "://" in src or Path(src).is_absolute():
            return src
        return str(self.base_dir / src)

    def has_resource(self, kind: str, media_id: str) -> bool:
        return media_id in self._resources.get(self._kind(kind), {})

    def resolve(self, kind: str, media_id: str) -> Any:
        k = self._kind(kind)
        key = (k, media_id)
        if key in self._cache:
            return self._cache[key]
        resource = self._resources[k].get(media_id)
        sources = resource_sources(resource)
        if not sources:
            raise MediaError(f"no {k} resource named {media_id!r}", media_id)
        last_error: Optional[Exception] = None
        for src in sources:
            try:
                handle = self.backend.load(k, self._full_path(src))
            except MediaError as e:
                logger.debug(f"Source {src!r} for {k}/{media_id} failed: {e}")
                last_error = e
                continue
            self._cache[key] = handle
            return handle
        raise MediaError(f"none of the sources for {k}/{media_id} could be loaded: {last_error}", media_id)

    def play(self, kind: str, media_id: str, volume: Optional[float] = None, loop: bool = False) -> None:
        k = self._kind(kind)
        handle = self.resolve(k, media_id)
        # only one instance of a given resource plays at a time
        self.stop(k, media_id)
        self.backend.play(handle, volume=self.default_volume if volume is None else volume, loop=loop)
        self._playing[(k, media_id)] = handle

    def stop(self, kind: str, media_id: str) -> bool:
        handle = self._playing.pop((self._kind(kind), media_id), None)
        if handle is None:
            return False
        try:
            self.backend.stop(handle)
        except MediaError as e:
            logger.warning(f"Stopping {kind}/{media_id} failed: {e}")
        return True

    def stop_all(self) -> None:
        for k, media_id in list(self._playing):
            self.stop(k, media_id)

    def is_playing(self, kind: str, media_id: str) -> bool:
        return (self._kind(kind), media_id) in self._playing

    def preload(self) -> int:
        """Load every resource flagged ``preload``. Returns how many loaded."""
        count = 0
        for k, table in self._resources.items():
            for media_id, resource in table.items():
                if not (isinstance(resource, dict) and resource.get("preload")):
                    continue
                try:
                    self.resolve(k, media_id)
                    count += 1
                except MediaError as e:
                    logger.warning(f"Preload of {k}/{media_id} failed: {e}")
        return count

    def add_resource(self, kind: str, media_id: str, resource: Any) -> None:
        k = self._kind(kind)
        self._resources[k][media_id] = copy.deepcopy(resource)
        self._cache.pop((k, media_id), None)

    def remove_resource(self, kind: str, media_id: str) -> bool:
        k = self._kind(kind)
        self.stop(k, media_id)
        self._cache.pop((k, media_id), None)
        return self._resources[k].pop(media_id, None) is not None

    def clear_cache(self) -> None:
        self._cache.clear()
