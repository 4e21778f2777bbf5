"""
Tests for rule conditions and template rendering.
"""

import time
from unittest.mock import MagicMock, patch

import pytest

from automations.conditions import evaluate_all, evaluate_condition, safe_regex_match
from automations.templates import context_from_trigger_data, render

CONTEXT = {
    "event": {
        "type": "note.created",
        "data": {"text": "Deploy finished", "priority": 3, "urgent": True},
    },
    "subject": {"id": 12, "type": "note"},
}


class TestEvaluateAll:
    """Tests for condition lists."""

    def test_no_conditions_pass(self):
        assert evaluate_all([], CONTEXT) is True
        assert evaluate_all(None, CONTEXT) is True

    def test_all_must_pass(self):
        conditions = [
            {"field": "event.type", "operator": "==", "value": "note.created"},
            {"field": "event.data.priority", "operator": ">", "value": 5},
        ]

        assert evaluate_all(conditions, CONTEXT) is False

    @pytest.mark.parametrize(
        "operator,value,expected",
        [
            ("==", "note.created", True),
            ("!=", "note.created", False),
            ("contains", "note", True),
            ("not_contains", "decision", True),
            ("matches", r"^note\.", True),
            ("not_matches", r"^decision\.", True),
        ],
    )
    def test_text_operators(self, operator, value, expected):
        condition = {"field": "event.type", "operator": operator, "value": value}

        assert evaluate_condition(condition, CONTEXT) is expected

    @pytest.mark.parametrize(
        "operator,value,expected",
        [(">", 2, True), (">=", 3, True), ("<", 3, False), ("<=", "3", True)],
    )
    def test_numeric_operators(self, operator, value, expected):
        condition = {"field": "event.data.priority", "operator": operator, "value": value}

        assert evaluate_condition(condition, CONTEXT) is expected

    def test_numeric_with_non_number_fails(self):
        condition = {"field": "event.type", "operator": ">", "value": 1}

        assert evaluate_condition(condition, CONTEXT) is False

    def test_boolean_equality(self):
        condition = {"field": "event.data.urgent", "operator": "==", "value": "true"}

        assert evaluate_condition(condition, CONTEXT) is True

    def test_missing_field_or_operator(self):
        assert evaluate_condition({"operator": "==", "value": "x"}, CONTEXT) is False
        assert evaluate_condition({"field": "event.type", "operator": "~", "value": "x"}, CONTEXT) is False


class TestSafeRegex:
    def test_overlong_pattern_refused(self):
        assert safe_regex_match("a" * 501, "aaa") is None

    def test_nested_quantifier_refused(self):
        assert safe_regex_match("(a+)+$", "aaaa") is None

    def test_invalid_pattern(self):
        assert safe_regex_match("(unclosed", "text") is None

    def test_backtracking_pattern_bounded_by_timeout(self, settings):
        settings.HARMONIC_AUTOMATION_REGEX_TIMEOUT = 0.2
        started = time.monotonic()

        result = safe_regex_match(r"^(\w+\s?)*$", "a" * 26 + "!")

        assert time.monotonic() - started < 1.0
        assert result is not True

    def test_timeout_is_neither_match_nor_non_match(self):
        compiled = MagicMock()
        compiled.search.side_effect = TimeoutError("regex timed out")

        with patch("automations.conditions.regex.compile", return_value=compiled):
            assert safe_regex_match(r"^(\w+\s?)*$", "text") is None
            assert evaluate_condition(
                {"field": "event.type", "operator": "not_matches", "value": r"^(\w+\s?)*$"},
                CONTEXT,
            ) is False

        assert compiled.search.call_args.kwargs["timeout"] == 1.0

    def test_invalid_pattern_is_not_a_non_match(self):
        condition = {"field": "event.type", "operator": "not_matches", "value": "(unclosed"}

        assert evaluate_condition(condition, CONTEXT) is False


class TestRender:
    def test_substitutes_paths(self):
        assert render("New {{ subject.type }} #{{subject.id}}", CONTEXT) == "New note #12"

    def test_missing_path_renders_empty(self):
        assert render("Hi {{event.actor.name}}!", CONTEXT) == "Hi !"

    def test_output_is_escaped(self):
        assert render("{{x}}", {"x": "<b>"}) == "&lt;b&gt;"

    def test_trigger_data_context(self):
        context = context_from_trigger_data(
            {"scheduled_at": "2024-01-01T12:05:00+00:00", "inputs": {"topic": "budget"}}
        )

        assert render("{{inputs.topic}} at {{schedule.scheduled_at}}", context) == (
            "budget at 2024-01-01T12:05:00+00:00"
        )
