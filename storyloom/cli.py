from __future__ import annotations

import argparse
import json
import logging
import re
import sys
from pathlib import Path
from typing import Callable, List, Optional

from .engine.adapters.media import NullMediaBackend, PygameMediaBackend
from .engine.adapters.storage import FileSaveStore, MemorySaveStore
from .engine.config_io import load_config
from .engine.engine import StoryEngine
from .story.errors import StoryError
from .story.model import StoryDocument
from .story.validator import has_errors, validate_story

TAG_RE = re.compile(r"<[^>]+>")
SUBCOMMANDS = {"play", "validate", "export"}


def _load_document(path: Path) -> StoryDocument:
    """Read a bare story document or a ``{"gameData": ...}`` export."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict) and "gameData" in data:
        data = data["gameData"]
    return StoryDocument.from_dict(data)


def _plain(text: str) -> str:
    return TAG_RE.sub("", text).strip()


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="storyloom", description="storyloom story runner")
    sub = parser.add_subparsers(dest="cmd")

    # play subcommand (default behavior)
    p_play = sub.add_parser("play", help="Play a story in the terminal")
    p_play.add_argument("story", type=str, help="Path to a story .json (bare document or export)")
    p_play.add_argument("--saves", type=str, default=None, help="Directory for save slots (default: in memory)")
    p_play.add_argument("--assets", type=str, default=None, help="Base directory for media resources")
    p_play.add_argument("--config", type=str, default=None, help="Path to a config .json")
    p_play.add_argument("--audio", action="store_true", help="Play audio through pygame")
    p_play.add_argument("--choices", type=str, default=None, help="Comma-separated choice indices to replay, then print state")
    p_play.add_argument("--log-level", type=str, default=None, help="Logging level (DEBUG, INFO, WARNING, ...)")

    p_val = sub.add_parser("validate", help="Check a story for broken links and unknown types")
    p_val.add_argument("story", type=str, help="Path to a story .json")

    p_exp = sub.add_parser("export", help="Write the {gameData, initialState} interchange form")
    p_exp.add_argument("story", type=str, help="Path to a story .json")
    p_exp.add_argument("-o", "--output", type=str, required=True, help="Output .json path")

    # Back-compat: if user didn't specify a subcommand, treat as 'play'
    argv_list = list(argv) if argv is not None else sys.argv[1:]
    if not argv_list or argv_list[0] not in SUBCOMMANDS:
        args = p_play.parse_args(argv_list)
        args.cmd = "play"  # type: ignore[attr-defined]
    else:
        args = parser.parse_args(argv_list)

    story_path = Path(args.story)
    if not story_path.exists():
        print(f"Story not found: {story_path}")
        return 2
    try:
        doc = _load_document(story_path)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, StoryError) as e:
        print(f"Cannot read story {story_path}: {e}")
        return 2

    if args.cmd == "validate":
        diags = validate_story(doc)
        for d in diags:
            print(str(d))
        if not diags:
            print("OK")
        return 1 if has_errors(diags) else 0

    if args.cmd == "export":
        engine = StoryEngine(doc, config={"media": {"preload": False}})
        out = Path(args.output)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(engine.export_game_json(), encoding="utf-8")
        print(f"Exported: {out}")
        return 0

    cfg = load_config(Path(args.config) if args.config else None)
    level = (args.log_level or cfg["logging"].get("level") or "WARNING").upper()
    logging.basicConfig(level=getattr(logging, level, logging.WARNING), format="%(levelname)s %(name)s: %(message)s")

    backend = PygameMediaBackend() if args.audio else NullMediaBackend()
    saves_dir = Path(args.saves) if args.saves else None
    store = FileSaveStore(lambda: saves_dir) if saves_dir else MemorySaveStore()
    engine = StoryEngine(
        doc,
        save_store=store,
        media_backend=backend,
        config=cfg,
        assets_dir=Path(args.assets) if args.assets else None,
    )

    if args.choices is not None:
        return _replay(engine, args.choices)
    try:
        return play_interactive(engine)
    finally:
        engine.close()


def _replay(engine: StoryEngine, choices: str) -> int:
    try:
        indices = [int(p) for p in choices.split(",") if p.strip()]
    except ValueError:
        print(f"Invalid --choices: {choices}")
        return 2
    for n, index in enumerate(indices):
        engine.tick()
        if not engine.make_choice(index):
            print(f"Choice #{n} (index {index}) was rejected in scene {engine.state.get('currentScene')!r}", file=sys.stderr)
            return 1
    engine.tick()
    print(json.dumps(engine.get_state(), ensure_ascii=False, indent=2))
    engine.close()
    return 0


def render_scene(engine: StoryEngine, write: Callable[[str], None] = print) -> int:
    """Print the current scene with numbered choices. Returns the choice count."""
    scene = engine.get_current_scene()
    if scene is None:
        write("(no scene)")
        return 0
    write("")
    if scene.title:
        write(f"== {scene.title} ==")
    body = _plain(scene.content)
    if body:
        write(body)
    choices = engine.get_available_choices()
    for i, choice in enumerate(choices, 1):
        write(f"  {i}. {_plain(choice.text)}")
    return len(choices)


def play_interactive(
    engine: StoryEngine,
    read: Optional[Callable[[str], str]] = None,
    write: Callable[[str], None] = print,
) -> int:
    """Terminal loop: a number picks a choice, ':'-commands manage the session."""
    read = read or input
    write(f"{engine.story.title} by {engine.story.author}  (:help for commands)")
    while True:
        engine.tick()
        count = render_scene(engine, write)
        if count == 0:
            write("THE END")
            return 0
        try:
            line = read("> ").strip()
        except EOFError:
            return 0
        engine.tick()
        if not line:
            continue
        if line.startswith(":"):
            if not _command(engine, line[1:].split(), write):
                return 0
            continue
        if not line.isdigit() or not engine.make_choice(int(line) - 1):
            write(f"No such choice: {line}")


def _command(engine: StoryEngine, parts: List[str], write: Callable[[str], None]) -> bool:
    """Run one ':' command. Returns False when the session should end."""
    name = parts[0] if parts else ""
    arg: Optional[str] = parts[1] if len(parts) > 1 else None
    if name in ("quit", "q"):
        return False
    if name == "save":
        write("Saved." if engine.save_game(arg) else "Save failed.")
    elif name == "load":
        write("Loaded." if engine.load_game(arg) else "Nothing to load.")
    elif name == "saves":
        for meta in engine.list_saves():
            write(f"  {meta.slot:<12} {meta.display_time:<16} {meta.current_scene or ''}")
    elif name == "back":
        if not engine.go_back():
            write("Nothing to go back to.")
    elif name == "state":
        write(json.dumps(engine.get_state(), ensure_ascii=False, indent=2))
    elif name == "reset":
        engine.reset()
    else:
        write("Commands: :save [slot]  :load [slot]  :saves  :back  :state  :reset  :quit")
    return True


if __name__ == "__main__":
    raise SystemExit(main())
