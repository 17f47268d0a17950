"""Tests for the rule card template expression language."""

from __future__ import annotations

import pytest

from sharpcoach.core.rulecards.expressions import (
    Conditional,
    Placeholder,
    TemplateSyntaxError,
    compile_template,
    format_value,
    render_template,
)

SLEEP_TEMPLATE = (
    'You slept {sleep_hours} hours. '
    '{sleep_hours < 5 ? "Rest today." : sleep_hours < 6 ? "Go easy." : "Proceed."}'
)


class TestCompile:
    def test_plain_text_has_no_fields(self):
        template = compile_template("Stay hydrated.")
        assert template.fields == set()
        assert template.render({}) == "Stay hydrated."

    def test_placeholder_parsed(self):
        template = compile_template("Your {workout_type} is done")
        assert Placeholder("workout_type") in template.nodes
        assert template.fields == {"workout_type"}

    def test_conditional_parsed(self):
        template = compile_template(SLEEP_TEMPLATE)
        conditionals = [n for n in template.nodes if isinstance(n, Conditional)]
        assert len(conditionals) == 1
        assert len(conditionals[0].branches) == 2
        assert conditionals[0].default == "Proceed."

    def test_malformed_conditional_raises(self):
        with pytest.raises(TemplateSyntaxError):
            compile_template('{sleep_hours < ? "a" : "b"}')

    def test_arbitrary_code_is_rejected(self):
        with pytest.raises(TemplateSyntaxError):
            compile_template("{__import__('os').system('ls')}")


class TestRender:
    @pytest.mark.parametrize(
        "hours,expected",
        [(4, "Rest today."), (5.5, "Go easy."), (6, "Proceed."), (8, "Proceed.")],
    )
    def test_conditional_chain(self, hours, expected):
        rendered = render_template(SLEEP_TEMPLATE, {"sleep_hours": hours})
        assert rendered.endswith(expected)

    def test_missing_field_falls_to_default(self):
        rendered = render_template(SLEEP_TEMPLATE, {})
        assert rendered.endswith("Proceed.")

    def test_missing_placeholder_left_in_place(self):
        assert render_template("Eat {meal_recommendation}", {}) == "Eat {meal_recommendation}"

    def test_non_numeric_value_never_matches(self):
        rendered = render_template('{x > 1 ? "big" : "small"}', {"x": "lots"})
        assert rendered == "small"

    def test_whole_float_drops_decimal(self):
        assert render_template("{sleep_hours} hours", {"sleep_hours": 7.0}) == "7 hours"
        assert format_value(2.5) == "2.5"

    def test_bad_template_renders_raw(self):
        raw = '{x >> 1 ? "a" : "b"}'
        assert render_template(raw, {"x": 2}) == raw
