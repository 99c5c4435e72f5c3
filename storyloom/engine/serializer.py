from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from ..story.errors import SerializationError

logger = logging.getLogger(__name__)

SAVE_FORMAT_VERSION = "1.0"
METADATA_KEY = "__metadata"


class GameSerializer:
    """Turns a state snapshot into a save blob and back.

    The blob is a JSON object: the state keys plus ``__metadata`` carrying
    ``version``, ``timestamp`` (epoch ms) and ``saveDate`` (ISO-8601).
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or time.time

    def serialize(self, state: Dict[str, Any], description: str | None = None) -> str:
        now = self._clock()
        meta = {
            "version": SAVE_FORMAT_VERSION,
            "timestamp": int(round(now * 1000)),
            "saveDate": datetime.fromtimestamp(now).isoformat(timespec="seconds"),
        }
        if description:
            meta["description"] = description
        payload = dict(state)
        payload[METADATA_KEY] = meta
        try:
            return json.dumps(payload, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"state is not JSON-serializable: {e}") from e

    def deserialize(self, blob: str) -> Dict[str, Any]:
        try:
            data = json.loads(blob)
        except (TypeError, json.JSONDecodeError) as e:
            raise SerializationError(f"corrupt save data: {e}") from e
        if not isinstance(data, dict):
            raise SerializationError("save data must be a JSON object")
        meta = data.get(METADATA_KEY)
        version = meta.get("version") if isinstance(meta, dict) else None
        if version != SAVE_FORMAT_VERSION:
            logger.warning(f"Save format version {version!r} differs from {SAVE_FORMAT_VERSION!r}, loading anyway")
        return data

    @staticmethod
    def split_metadata(data: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        state = {k: v for k, v in data.items() if k != METADATA_KEY}
        meta = data.get(METADATA_KEY)
        return state, dict(meta) if isinstance(meta, dict) else {}
