"""Tests for the action interpreter."""
import logging

import pytest

from storyloom.engine.actions import AddItem, Conditional, Delayed, PlayVideo, SetFlag, parse_action
from storyloom.engine.event_bus import GAME_RESET, INVENTORY_CHANGED
from storyloom.story.errors import ValidationError


class TestExecuteResult:
    def test_known_action_returns_true(self, engine):
        assert engine.actions.execute({"type": "SET_FLAG", "flagName": "lit"}) is True
        assert engine.get_flag("lit") is True

    def test_unknown_type_is_false(self, engine, caplog):
        with caplog.at_level(logging.ERROR):
            assert engine.actions.execute({"type": "DANCE"}) is False
        assert "DANCE" in caplog.text

    def test_malformed_is_false_and_changes_nothing(self, engine):
        before = engine.get_state()
        assert engine.actions.execute({"type": "ADD_ITEM"}) is False
        assert engine.actions.execute({"type": "SET_COUNTER", "counterName": "c", "value": "3"}) is False
        assert engine.actions.execute("SET_FLAG") is False
        assert engine.get_state() == before

    def test_execute_all_continues_after_failure(self, engine):
        engine.actions.execute_all([
            {"type": "NOPE"},
            {"type": "SET_FLAG", "flagName": "after"},
        ])
        assert engine.get_flag("after") is True


class TestStateActions:
    def test_inventory(self, engine, recorder):
        recorder.attach(engine, INVENTORY_CHANGED)
        engine.actions.execute({"type": "ADD_ITEM", "itemId": "coin", "quantity": 3})
        engine.actions.execute({"type": "REMOVE_ITEM", "itemId": "coin", "quantity": 1})

        assert engine.get_inventory() == [{"id": "coin", "quantity": 2}]
        assert recorder.events[-1] == (INVENTORY_CHANGED, [{"id": "coin", "quantity": 2}])

    def test_remove_missing_item_is_false(self, engine):
        assert engine.actions.execute({"type": "REMOVE_ITEM", "itemId": "ghost"}) is False

    def test_remove_all_drops_entry(self, engine):
        engine.add_to_inventory("coin", 2)
        engine.actions.execute({"type": "REMOVE_ITEM", "itemId": "coin", "quantity": 5})
        assert engine.get_inventory() == []

    @pytest.mark.parametrize("action_type", ["ADD_ITEM", "REMOVE_ITEM"])
    @pytest.mark.parametrize("quantity", [0, -2])
    def test_non_positive_quantity_is_rejected(self, engine, action_type, quantity):
        engine.add_to_inventory("key", 2)
        before = engine.get_state()

        assert engine.actions.execute({"type": action_type, "itemId": "key", "quantity": quantity}) is False

        assert engine.get_state() == before

    def test_set_flag_defaults_to_true(self, engine):
        engine.actions.execute({"type": "SET_FLAG", "flagName": "a"})
        engine.actions.execute({"type": "SET_FLAG", "flagName": "b", "value": "red"})
        assert engine.get_flag("a") is True
        assert engine.get_flag("b") == "red"

    def test_toggle_flag(self, engine):
        assert engine.actions.execute({"type": "TOGGLE_FLAG", "flagName": "door"}) is True
        assert engine.get_flag("door") is True
        engine.actions.execute({"type": "TOGGLE_FLAG", "flagName": "door"})
        assert engine.get_flag("door") is False

    def test_counters(self, engine):
        engine.actions.execute({"type": "INCREMENT_COUNTER", "counterName": "steps"})
        engine.actions.execute({"type": "INCREMENT_COUNTER", "counterName": "steps", "increment": 4})
        assert engine.get_counter("steps") == 5
        engine.actions.execute({"type": "SET_COUNTER", "counterName": "steps", "value": 0})
        assert engine.get_counter("steps") == 0

    def test_attributes(self, engine):
        engine.actions.execute({"type": "SET_ATTRIBUTE", "attributeName": "hp", "value": 10})
        engine.actions.execute({"type": "MODIFY_ATTRIBUTE", "attributeName": "hp", "delta": -3})
        engine.actions.execute({"type": "MODIFY_ATTRIBUTE", "attributeName": "luck", "delta": 2})
        assert engine.get_attribute("hp") == 7
        assert engine.get_attribute("luck") == 2


class TestNavigationActions:
    def test_go_to_scene(self, engine):
        assert engine.actions.execute({"type": "GO_TO_SCENE", "sceneId": "hall"}) is True
        assert engine.state.get("currentScene") == "hall"

    def test_go_to_unknown_scene_is_false(self, engine):
        assert engine.actions.execute({"type": "GO_TO_SCENE", "sceneId": "nowhere"}) is False
        assert engine.state.get("currentScene") == "start"

    def test_go_back(self, engine):
        engine.go_to_scene("hall")
        assert engine.actions.execute({"type": "GO_BACK"}) is True
        assert engine.state.get("currentScene") == "start"
        assert engine.actions.execute({"type": "GO_BACK"}) is False

    def test_reset(self, engine, recorder):
        recorder.attach(engine, GAME_RESET)
        engine.set_flag("x", 1)
        engine.actions.execute({"type": "RESET_GAME"})
        assert engine.get_flag("x") is None
        assert recorder.channels() == [GAME_RESET]

    def test_save_and_load(self, engine):
        engine.set_flag("saved", True)
        assert engine.actions.execute({"type": "SAVE_GAME", "slotName": "s1"}) is True
        engine.set_flag("saved", False)
        assert engine.actions.execute({"type": "LOAD_GAME", "slotName": "s1"}) is True
        assert engine.get_flag("saved") is True

    def test_save_uses_default_slot(self, engine):
        engine.actions.execute({"type": "SAVE_GAME"})
        assert [m.slot for m in engine.list_saves()] == ["autosave"]


class TestCompositeActions:
    def test_sequence_runs_in_order(self, engine):
        engine.actions.execute({
            "type": "SEQUENCE",
            "actions": [
                {"type": "SET_COUNTER", "counterName": "n", "value": 2},
                {"type": "BOGUS"},
                {"type": "INCREMENT_COUNTER", "counterName": "n", "increment": 3},
            ],
        })
        assert engine.get_counter("n") == 5

    def test_conditional_branches(self, engine):
        action = {
            "type": "CONDITIONAL",
            "condition": {"type": "HAS_ITEM", "itemId": "key"},
            "thenActions": [{"type": "SET_FLAG", "flagName": "branch", "value": "then"}],
            "elseActions": {"type": "SET_FLAG", "flagName": "branch", "value": "else"},
        }
        engine.actions.execute(action)
        assert engine.get_flag("branch") == "else"
        engine.add_to_inventory("key")
        engine.actions.execute(action)
        assert engine.get_flag("branch") == "then"

    def test_conditional_without_else(self, engine):
        action = {"type": "CONDITIONAL", "condition": {"type": "FLAG", "flagName": "x"}, "thenActions": []}
        assert engine.actions.execute(action) is True

    def test_conditional_needs_then(self, engine):
        assert engine.actions.execute({"type": "CONDITIONAL", "condition": {"type": "FLAG", "flagName": "x"}}) is False

    def test_delayed_waits_for_tick(self, engine, clock):
        engine.actions.execute({
            "type": "DELAYED",
            "delayMs": 500,
            "action": {"type": "SET_FLAG", "flagName": "late"},
        })
        assert engine.pending_delayed() == 1

        engine.tick()
        assert engine.get_flag("late") is None
        clock.advance_ms(500)
        engine.tick()
        assert engine.get_flag("late") is True
        assert engine.pending_delayed() == 0

    def test_delayed_default_delay(self, engine, clock):
        engine.actions.execute({"type": "DELAYED", "action": {"type": "SET_FLAG", "flagName": "late"}})
        clock.advance_ms(999)
        engine.tick()
        assert engine.get_flag("late") is None
        clock.advance_ms(1)
        engine.tick()
        assert engine.get_flag("late") is True

    def test_delayed_negative_rejected(self, engine):
        action = {"type": "DELAYED", "delay": -1, "action": {"type": "SET_FLAG", "flagName": "x"}}
        assert engine.actions.execute(action) is False
        assert engine.pending_delayed() == 0


class TestMediaActions:
    def test_play_is_deferred_to_tick(self, engine, media_backend):
        assert engine.actions.execute({"type": "PLAY_AUDIO", "audioId": "theme"}) is True
        assert not any(name == "play" for name, _ in media_backend.calls)

        engine.tick()

        assert ("play", (("audio", "music/theme.ogg"), 1.0, False)) in media_backend.calls
        assert engine.media.is_playing("audio", "theme")

    def test_stop_audio(self, engine, media_backend):
        engine.actions.execute({"type": "PLAY_AUDIO", "audioId": "theme", "loop": True, "volume": 0.5})
        engine.tick()
        engine.actions.execute({"type": "STOP_AUDIO", "audioId": "theme"})
        assert ("stop", ("audio", "music/theme.ogg")) in media_backend.calls
        assert not engine.media.is_playing("audio", "theme")

    def test_stop_cancels_queued_play(self, engine, media_backend):
        engine.actions.execute({"type": "SEQUENCE", "actions": [
            {"type": "PLAY_AUDIO", "audioId": "theme"},
            {"type": "STOP_AUDIO", "audioId": "theme"},
        ]})
        assert engine.pending_delayed() == 0

        engine.tick()

        assert not engine.media.is_playing("audio", "theme")
        assert not any(name == "play" for name, _ in media_backend.calls)

    def test_stop_leaves_other_queued_plays(self, engine):
        engine.actions.execute({"type": "PLAY_AUDIO", "audioId": "theme"})
        engine.actions.execute({"type": "STOP_VIDEO", "videoId": "theme"})

        engine.tick()

        assert engine.media.is_playing("audio", "theme")

    def test_play_after_stop_still_runs(self, engine):
        engine.actions.execute_all([
            {"type": "PLAY_AUDIO", "audioId": "theme"},
            {"type": "STOP_AUDIO", "audioId": "theme"},
            {"type": "PLAY_AUDIO", "audioId": "theme"},
        ])
        engine.tick()
        assert engine.media.is_playing("audio", "theme")

    def test_loop_must_be_bool(self, engine):
        assert engine.actions.execute({"type": "PLAY_AUDIO", "audioId": "theme", "loop": "yes"}) is False


class TestCustomActions:
    def test_registered_handler_runs(self, engine):
        engine.register_action("heal", lambda eng: eng.modify_attribute("hp", 5))
        assert engine.actions.execute({"type": "CUSTOM", "name": "heal"}) is True
        assert engine.get_attribute("hp") == 5

    def test_unregistered_is_false(self, engine):
        assert engine.actions.execute({"type": "CUSTOM", "name": "heal"}) is False

    def test_raising_handler_is_false(self, engine):
        def broken(_):
            raise RuntimeError("nope")

        engine.register_action("broken", broken)
        assert engine.actions.execute({"type": "CUSTOM", "name": "broken"}) is False

    def test_unregister(self, engine):
        engine.register_action("noop", lambda eng: None)
        assert engine.actions.unregister("noop") is True
        assert engine.actions.unregister("noop") is False


class TestBuilders:
    def test_to_dict(self):
        assert AddItem("key").to_dict() == {"type": "ADD_ITEM", "itemId": "key", "quantity": 1}
        assert SetFlag("lit").to_dict() == {"type": "SET_FLAG", "flagName": "lit", "value": True}
        assert PlayVideo("intro").to_dict() == {"type": "PLAY_VIDEO", "videoId": "intro", "volume": 1.0, "loop": False}
        assert Delayed({"type": "GO_BACK"}, 250).to_dict() == {
            "type": "DELAYED", "action": {"type": "GO_BACK"}, "delayMs": 250,
        }

    def test_parse_delay_alias(self):
        node = parse_action({"type": "DELAYED", "delay": 20, "action": {"type": "GO_BACK"}})
        assert node.delay_ms == 20

    def test_parse_conditional_wraps_single_action(self):
        node = parse_action({
            "type": "CONDITIONAL",
            "condition": {"type": "FLAG", "flagName": "x"},
            "thenActions": {"type": "GO_BACK"},
        })
        assert isinstance(node, Conditional)
        assert node.then_actions == [{"type": "GO_BACK"}]
        assert node.else_actions == []

    def test_parse_unknown_raises(self):
        with pytest.raises(ValidationError):
            parse_action({"type": "NOPE"})
