import copy

import pytest

from storyloom.engine.adapters.media import NullMediaBackend
from storyloom.engine.adapters.storage import MemorySaveStore
from storyloom.engine.engine import StoryEngine
from storyloom.engine.scheduler import Scheduler


class FakeClock:
    """Manually advanced clock. Reads in seconds, counts whole milliseconds."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.ms = start_ms

    def __call__(self) -> float:
        return self.ms / 1000.0

    def advance_ms(self, ms: int) -> None:
        self.ms += ms


BASIC_STORY = {
    "title": "The Old House",
    "author": "Tester",
    "version": "1.0.0",
    "startScene": "start",
    "scenes": {
        "start": {
            "id": "start",
            "title": "Bedroom",
            "content": "<p>You wake up in a <b>dusty</b> room.</p>",
            "choices": [
                {"text": "Go to the hall", "nextScene": "hall"},
                {"text": "Take the key", "actions": [{"type": "ADD_ITEM", "itemId": "key", "quantity": 1}]},
                {
                    "text": "Open the vault",
                    "condition": {"type": "HAS_ITEM", "itemId": "key"},
                    "nextScene": "vault",
                },
            ],
        },
        "hall": {
            "id": "hall",
            "title": "Hall",
            "content": "A long hall.",
            "choices": [{"text": "Back to the bedroom", "nextScene": "start"}],
            "onEnter": [{"type": "SET_FLAG", "flagName": "seen_hall", "value": True}],
        },
        "vault": {"id": "vault", "title": "Vault", "content": "Treasure!", "choices": []},
    },
    "resources": {"images": {}, "audio": {"theme": "music/theme.ogg"}, "video": {}},
}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def story_data():
    return copy.deepcopy(BASIC_STORY)


@pytest.fixture
def media_backend():
    return NullMediaBackend()


@pytest.fixture
def make_engine(clock, media_backend):
    """Factory building engines that share the fake clock."""

    def factory(story=None, **kwargs):
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("scheduler", Scheduler(clock))
        kwargs.setdefault("media_backend", media_backend)
        kwargs.setdefault("save_store", MemorySaveStore())
        return StoryEngine(copy.deepcopy(story) if isinstance(story, dict) else story, **kwargs)

    return factory


@pytest.fixture
def engine(make_engine, story_data):
    return make_engine(story_data)


@pytest.fixture
def recorder():
    """Collects (channel, payload) pairs published on an engine's bus."""

    class Recorder:
        def __init__(self):
            self.events = []

        def attach(self, eng, *channels):
            for ch in channels:
                eng.on(ch, lambda payload, ch=ch: self.events.append((ch, payload)))
            return self

        def channels(self):
            return [ch for ch, _ in self.events]

    return Recorder()
