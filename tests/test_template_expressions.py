"""Unit tests for the template mini-language."""

import pytest

from notifier.templates import MAX_NESTING, TemplateSyntaxError, evaluate_condition, render_string


class TestSubstitution:
    """Tests for {{path}} substitution."""

    def test_nested_path(self):
        """Test dotted paths walk nested mappings."""
        assert render_string("Hi {{user.firstName}}!", {"user": {"firstName": "Ana"}}) == "Hi Ana!"

    def test_missing_and_null_render_empty(self):
        """Test that unknown and null values render as nothing."""
        data = {"user": {"firstName": None}}

        assert render_string("[{{user.firstName}}][{{user.lastName}}][{{nope.x}}]", data) == "[][][]"

    def test_list_index(self):
        """Test that numeric segments index into lists."""
        assert render_string("{{items.1}}", {"items": ["a", "b"]}) == "b"
        assert render_string("{{items.5}}", {"items": ["a"]}) == ""

    def test_value_formatting(self):
        """Test stringification of numbers and booleans."""
        data = {"count": 3, "price": 12.0, "ratio": 0.5, "flag": True}

        assert render_string("{{count}} {{price}} {{ratio}} {{flag}}", data) == "3 12 0.5 true"

    def test_alternatives(self):
        """Test that || picks the first non-empty alternative."""
        template = "{{user.first_name || user.firstName || user.name}}"

        assert render_string(template, {"user": {"firstName": "Ana"}}) == "Ana"
        assert render_string(template, {"user": {"first_name": "", "name": "Bo"}}) == "Bo"
        assert render_string(template, {}) == ""

    def test_values_are_not_html_escaped(self):
        """Test that substitution inserts values verbatim."""
        assert render_string("{{link}}", {"link": "<a href='x'>x</a>"}) == "<a href='x'>x</a>"

    def test_empty_source(self):
        """Test that empty or None source renders empty."""
        assert render_string("", {"a": 1}) == ""
        assert render_string(None, {"a": 1}) == ""

    def test_unknown_tags_are_dropped(self):
        """Test that unsupported tags never reach the output."""
        assert render_string("a{{> partial}}b{{ x y }}c", {}) == "abc"


class TestConditionals:
    """Tests for {{#if}} blocks."""

    def test_truthy_path(self):
        """Test that a present, non-empty value shows the block."""
        template = "{{#if url}}<a href='{{url}}'>go</a>{{/if}}"

        assert render_string(template, {"url": "https://x"}) == "<a href='https://x'>go</a>"
        assert render_string(template, {"url": ""}) == ""
        assert render_string(template, {}) == ""

    @pytest.mark.parametrize(
        "value,expected",
        [([], False), ([1], True), ({}, True), (0, False), (1, True), ("  ", False), (False, False)],
    )
    def test_truthiness(self, value, expected):
        """Test truthiness rules for different value types."""
        assert evaluate_condition("v", {"v": value}) is expected

    def test_eq(self):
        """Test (eq a b) with paths and literals."""
        data = {"type": "reminder", "count": 2}

        assert evaluate_condition('(eq type "reminder")', data) is True
        assert evaluate_condition("(eq type 'update')", data) is False
        assert evaluate_condition("(eq count 2)", data) is True

    def test_gt(self):
        """Test (gt a b) compares numerically."""
        data = {"tickets": "3", "limit": 10}

        assert evaluate_condition("(gt tickets 1)", data) is True
        assert evaluate_condition("(gt tickets limit)", data) is False
        assert evaluate_condition("(gt name 1)", {"name": "abc"}) is False

    def test_malformed_comparison(self):
        """Test that comparisons with the wrong arity are false."""
        assert evaluate_condition("(eq a)", {"a": 1}) is False
        assert evaluate_condition("(lt a 1)", {"a": 0}) is False

    def test_nested_blocks(self):
        """Test that blocks nest."""
        template = "{{#if a}}A{{#if b}}B{{/if}}{{/if}}"

        assert render_string(template, {"a": 1, "b": 1}) == "AB"
        assert render_string(template, {"a": 1}) == "A"
        assert render_string(template, {"b": 1}) == ""

    def test_stray_and_unclosed_markers(self):
        """Test that unbalanced markers are dropped and content kept."""
        assert render_string("x{{/if}}y", {}) == "xy"
        assert render_string("{{#if missing}}kept", {}) == "kept"

    def test_nesting_limit(self):
        """Test that nesting beyond the limit is a syntax error."""
        allowed = "{{#if a}}" * MAX_NESTING + "x" + "{{/if}}" * MAX_NESTING
        too_deep = "{{#if a}}" * (MAX_NESTING + 1) + "x" + "{{/if}}" * (MAX_NESTING + 1)

        assert render_string(allowed, {"a": True}) == "x"
        with pytest.raises(TemplateSyntaxError):
            render_string(too_deep, {"a": True})
