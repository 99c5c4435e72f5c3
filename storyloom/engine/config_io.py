from __future__ import annotations

from pathlib import Path
from typing import Optional
import copy
import json
import logging

logger = logging.getLogger(__name__)


DEFAULTS = {
    "engine": {
        "max_transition_depth": 16,
        "run_exit_actions": True,
        "track_visits": True,
        "autosave_slot": "autosave",
    },
    "media": {
        "default_volume": 1.0,
        "preload": True,
    },
    "logging": {
        "level": "WARNING",
    },
}


def merge_config(overrides: Optional[dict] = None) -> dict:
    # merge defaults (shallow, per section); unknown sections are dropped
    out = copy.deepcopy(DEFAULTS)
    for section, values in (overrides or {}).items():
        if section in out and isinstance(values, dict):
            out[section].update(values)
    return out


def load_config(path: Optional[Path] = None) -> dict:
    if path is None:
        return merge_config()
    p = Path(path)
    try:
        if p.exists():
            data = json.loads(p.read_text(encoding="utf-8"))
            if isinstance(data, dict):
                return merge_config(data)
            logger.warning(f"Config {p} is not a JSON object, using defaults")
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to read config {p}: {e}")
    return merge_config()


def save_config(cfg: dict, path: Path) -> bool:
    p = Path(path)
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        # Keep only known sections (avoid bloating)
        data = merge_config(cfg)
        p.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        return True
    except OSError as e:
        logger.error(f"Failed to write config {p}: {e}")
        return False
