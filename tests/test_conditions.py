"""Tests for condition parsing and evaluation."""
import logging

import pytest

from storyloom.engine.conditions import (
    And, FlagCondition, HasItem, Not, Operator, Or, TimePassed, compare, parse_condition, strict_equals,
)
from storyloom.story.errors import ValidationError


def flag(name, op=None, value=None):
    cond = {"type": "FLAG", "flagName": name}
    if op is not None:
        cond["operator"] = op
        cond["value"] = value
    return cond


class TestDefaults:
    """Fail-open and fail-closed rules."""

    def test_absent_condition_is_true(self, engine):
        assert engine.conditions.evaluate(None) is True
        assert engine.conditions.evaluate({}) is True

    def test_unknown_type_fails_open(self, engine, caplog):
        with caplog.at_level(logging.WARNING):
            assert engine.conditions.evaluate({"type": "MOON_PHASE", "phase": "full"}) is True
        assert "MOON_PHASE" in caplog.text

    def test_missing_type_fails_open(self, engine):
        assert engine.conditions.evaluate({"flagName": "x"}) is True

    def test_malformed_known_type_is_false(self, engine, caplog):
        with caplog.at_level(logging.ERROR):
            assert engine.conditions.evaluate({"type": "HAS_ITEM"}) is False
        assert "Malformed condition" in caplog.text

    def test_unknown_operator_is_false(self, engine):
        engine.set_flag("x", 1)
        assert engine.conditions.evaluate(flag("x", "~=", 1)) is False

    def test_includes_only_for_flags(self, engine):
        engine.set_counter("c", 1)
        cond = {"type": "COUNTER", "counterName": "c", "operator": "includes", "value": 1}
        assert engine.conditions.evaluate(cond) is False


class TestFlagConditions:
    def test_no_operator_uses_truthiness(self, engine):
        ev = engine.conditions.evaluate
        assert ev(flag("lamp")) is False
        engine.set_flag("lamp", True)
        assert ev(flag("lamp")) is True
        engine.set_flag("lamp", 0)
        assert ev(flag("lamp")) is False
        engine.set_flag("lamp", "")
        assert ev(flag("lamp")) is False
        engine.set_flag("lamp", [])
        assert ev(flag("lamp")) is True

    def test_numeric_ordering(self, engine):
        engine.set_flag("gold", 5)
        ev = engine.conditions.evaluate
        assert ev(flag("gold", ">=", 5)) is True
        assert ev(flag("gold", ">", 5)) is False
        assert ev(flag("gold", "<", 6)) is True
        assert ev(flag("gold", "<=", 4)) is False

    def test_strict_equality(self, engine):
        engine.set_flag("open", True)
        ev = engine.conditions.evaluate
        assert ev(flag("open", "===", True)) is True
        assert ev(flag("open", "===", 1)) is False
        assert ev(flag("open", "!==", 1)) is True

    def test_unset_flag_never_orders(self, engine):
        ev = engine.conditions.evaluate
        assert ev(flag("ghost", "<", 5)) is False
        assert ev(flag("ghost", ">=", 0)) is False
        assert ev(flag("ghost", "===", None)) is True

    def test_includes(self, engine):
        engine.set_flag("visited", ["a", "b"])
        ev = engine.conditions.evaluate
        assert ev(flag("visited", "includes", "a")) is True
        assert ev(flag("visited", "includes", "c")) is False
        engine.set_flag("visited", "abc")
        assert ev(flag("visited", "includes", "a")) is False


class TestCountersAndAttributes:
    def test_counter_default_is_positive(self, engine):
        cond = {"type": "COUNTER", "counterName": "steps"}
        assert engine.conditions.evaluate(cond) is False
        engine.increment_counter("steps")
        assert engine.conditions.evaluate(cond) is True

    def test_counter_comparison(self, engine):
        engine.set_counter("steps", 3)
        cond = {"type": "COUNTER", "counterName": "steps", "operator": "===", "value": 3}
        assert engine.conditions.evaluate(cond) is True

    def test_attribute(self, engine):
        cond = {"type": "ATTRIBUTE", "attributeName": "strength", "operator": ">=", "value": 10}
        assert engine.conditions.evaluate(cond) is False
        engine.set_attribute("strength", 10)
        assert engine.conditions.evaluate(cond) is True


class TestComposites:
    def test_empty_and_is_true(self, engine):
        assert engine.conditions.evaluate({"type": "AND", "conditions": []}) is True

    def test_empty_or_is_false(self, engine):
        assert engine.conditions.evaluate({"type": "OR", "conditions": []}) is False

    def test_not(self, engine):
        assert engine.conditions.evaluate({"type": "NOT", "condition": flag("x")}) is True

    def test_and_or_need_a_list(self, engine):
        assert engine.conditions.evaluate({"type": "AND"}) is False
        assert engine.conditions.evaluate({"type": "OR", "conditions": "nope"}) is False

    def test_children_evaluated_eagerly(self, engine):
        """OR still evaluates later children after a true one, so TIME_PASSED stamps."""
        engine.set_flag("on", True)
        cond = {"type": "OR", "conditions": [flag("on"), {"type": "TIME_PASSED", "id": "t", "milliseconds": 10}]}
        assert engine.conditions.evaluate(cond) is True
        assert engine.get_flag("__timestamp_t") == engine.now_ms()

    def test_nested_unknown_child_fails_open(self, engine):
        cond = {"type": "AND", "conditions": [{"type": "WHATEVER"}, {"type": "NOT", "condition": flag("x")}]}
        assert engine.conditions.evaluate(cond) is True


class TestInventoryConditions:
    def test_has_item_default_quantity(self, engine):
        cond = {"type": "HAS_ITEM", "itemId": "key"}
        assert engine.conditions.evaluate(cond) is False
        engine.add_to_inventory("key")
        assert engine.conditions.evaluate(cond) is True

    def test_has_item_quantity(self, engine):
        engine.add_to_inventory("coin", 2)
        assert engine.conditions.evaluate({"type": "HAS_ITEM", "itemId": "coin", "quantity": 3}) is False
        engine.add_to_inventory("coin", 1)
        assert engine.conditions.evaluate({"type": "HAS_ITEM", "itemId": "coin", "quantity": 3}) is True

    def test_items_combination(self, engine):
        cond = {
            "type": "HAS_ITEMS_COMBINATION",
            "items": [{"id": "rope"}, {"itemId": "hook", "quantity": 2}],
        }
        engine.add_to_inventory("rope")
        engine.add_to_inventory("hook")
        assert engine.conditions.evaluate(cond) is False
        engine.add_to_inventory("hook")
        assert engine.conditions.evaluate(cond) is True

    def test_items_combination_needs_list(self, engine):
        assert engine.conditions.evaluate({"type": "HAS_ITEMS_COMBINATION", "items": "rope"}) is False


class TestTimeAndHistory:
    def test_time_passed_stamps_then_compares(self, engine, clock):
        cond = {"type": "TIME_PASSED", "id": "fuse", "milliseconds": 1000}
        ev = engine.conditions.evaluate

        assert ev(cond) is False
        assert engine.get_flag("__timestamp_fuse") == engine.now_ms()
        clock.advance_ms(999)
        assert ev(cond) is False
        clock.advance_ms(1)
        assert ev(cond) is True

    def test_visit_count(self, engine):
        start = {"type": "VISIT_COUNT", "sceneId": "start", "operator": ">=", "value": 1}
        hall = {"type": "VISIT_COUNT", "sceneId": "hall"}
        assert engine.conditions.evaluate(start) is True
        assert engine.conditions.evaluate(hall) is False
        engine.go_to_scene("hall")
        assert engine.conditions.evaluate(hall) is True

    def test_history_and_previous_scene(self, engine):
        includes = {"type": "HISTORY_INCLUDES", "sceneId": "start"}
        previous = {"type": "PREVIOUS_SCENE", "sceneId": "hall"}
        assert engine.conditions.evaluate(includes) is False
        engine.go_to_scene("hall")
        engine.go_to_scene("vault")
        assert engine.conditions.evaluate(includes) is True
        assert engine.conditions.evaluate(previous) is True


class TestCustomConditions:
    def test_registered_predicate(self, engine):
        engine.register_condition("is_night", lambda eng: eng.get_flag("hour", 0) >= 20)
        cond = {"type": "CUSTOM", "name": "is_night"}
        assert engine.conditions.evaluate(cond) is False
        engine.set_flag("hour", 22)
        assert engine.conditions.evaluate(cond) is True

    def test_unregistered_is_false(self, engine):
        assert engine.conditions.evaluate({"type": "CUSTOM", "name": "nope"}) is False

    def test_raising_predicate_is_false(self, engine, caplog):
        def broken(_):
            raise ValueError("bad predicate")

        engine.register_condition("broken", broken)
        with caplog.at_level(logging.ERROR):
            assert engine.conditions.evaluate({"type": "CUSTOM", "name": "broken"}) is False
        assert "bad predicate" in caplog.text

    def test_code_strings_are_not_run(self, engine):
        cond = {"type": "CUSTOM", "code": "return true"}
        assert engine.conditions.evaluate(cond) is False


class TestHelpers:
    def test_strict_equals(self):
        assert strict_equals(1, 1.0)
        assert not strict_equals(True, 1)
        assert not strict_equals("1", 1)
        assert strict_equals(None, None)

    def test_compare_mixed_types(self):
        assert compare("b", Operator.GT, "a", bool) is True
        assert compare("b", Operator.GT, 1, bool) is False

    def test_parse_unknown_raises(self):
        with pytest.raises(ValidationError):
            parse_condition({"type": "NOPE"})

    def test_builders(self):
        cond = And([HasItem("key").to_dict(), Not(FlagCondition("locked").to_dict()).to_dict()]).to_dict()
        assert cond == {
            "type": "AND",
            "conditions": [
                {"type": "HAS_ITEM", "itemId": "key", "quantity": 1},
                {"type": "NOT", "condition": {"type": "FLAG", "flagName": "locked"}},
            ],
        }
        assert Or().to_dict() == {"type": "OR", "conditions": []}
        assert FlagCondition("gold", Operator.GE, 5).to_dict() == {
            "type": "FLAG", "flagName": "gold", "operator": ">=", "value": 5,
        }
        assert TimePassed("t", 500).to_dict() == {"type": "TIME_PASSED", "id": "t", "milliseconds": 500}

    def test_parse_round_trip(self):
        raw = {"type": "FLAG", "flagName": "gold", "operator": "<", "value": 3}
        assert parse_condition(raw).to_dict() == raw
