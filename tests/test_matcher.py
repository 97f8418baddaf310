"""
Matcher tests: literals, directives, predicates, patterns and the greedy
first-fit behaviour of unordered matching.
"""

from __future__ import annotations

import asyncio
import re

import pytest

from apidriver.errors import ArgumentError, FailureKind
from apidriver.expression import Composite, Directive, Literal, Pattern, Predicate, Sequence, compile_expression
from apidriver.matcher import compute_diff, matches, strict_equal


def match(expression, actual):
    return asyncio.run(matches(expression, actual))


# ----------------------------
# Compilation
# ----------------------------

def test_compile_builds_tagged_variants():
    assert compile_expression("abc") == Literal("abc")
    assert compile_expression("$exists") == Directive("$exists")
    assert isinstance(compile_expression(re.compile("a")), Pattern)
    assert isinstance(compile_expression(lambda v: True), Predicate)
    assert isinstance(compile_expression([1, 2]), Sequence)

    comp = compile_expression({"a": 1, "$length": 2})
    assert isinstance(comp, Composite)
    assert comp.fields == (("a", Literal(1)),)
    assert comp.directives == (Directive("$length", 2),)


def test_compile_rejects_non_list_unordered_operand():
    with pytest.raises(ArgumentError):
        compile_expression({"$unordered": "abc"})
    with pytest.raises(ArgumentError):
        compile_expression({"$contains": {"a": 1}})


# ----------------------------
# Literals and structure
# ----------------------------

def test_literals_compare_strictly():
    assert match(1, 1).passed
    assert match(1, 1.0).passed
    assert match("x", "x").passed
    assert match(None, None).passed
    assert not match(True, 1).passed
    assert not match(1, True).passed
    assert not match("1", 1).passed


def test_object_expression_ignores_extra_keys():
    assert match({"a": 1}, {"a": 1, "b": 2}).passed
    assert not match({"a": 1}, {"b": 2}).passed


def test_object_expression_requires_object():
    result = match({"a": 1}, 5)
    assert not result.passed
    assert result.kind == FailureKind.JSON


def test_array_requires_equal_length():
    assert match([1, 2, 3], [1, 2, 3]).passed
    assert not match([1, 2], [1, 2, 3]).passed
    assert not match([1, 2, 3], [1, 2]).passed
    assert not match([1], {"0": 1}).passed


def test_array_items_are_expressions():
    assert match(["$string", {"$gt": 1}], ["x", 2]).passed
    assert not match(["$string", {"$gt": 1}], ["x", 0]).passed


def test_failure_path_points_at_first_mismatch():
    result = match({"a": {"b": [1, 2]}}, {"a": {"b": [1, 3]}})
    assert not result.passed
    assert result.path == "a.b[1]"
    assert result.expected == 2
    assert result.actual == 3


# ----------------------------
# Value directives
# ----------------------------

def test_exists_and_not_exists():
    assert match({"a": "$exists"}, {"a": 0}).passed
    assert not match({"a": "$exists"}, {"a": None}).passed
    assert not match({"a": "$exists"}, {}).passed

    assert match({"a": "$not-exists"}, {}).passed
    assert match({"a": "$not-exists"}, {"a": None}).passed
    assert not match({"a": "$not-exists"}, {"a": 1}).passed


def test_string_and_int():
    assert match("$string", "").passed
    assert not match("$string", 1).passed

    assert match("$int", 3).passed
    assert match("$int", 3.0).passed
    assert not match("$int", 3.5).passed
    assert not match("$int", "3").passed
    assert not match("$int", True).passed


@pytest.mark.parametrize(
    "value",
    [
        "2024-01-02",
        "2024-01-02T03:04:05Z",
        "2024-01-02T03:04:05.123+02:00",
        "Tue, 02 Jan 2024 03:04:05 GMT",
        1704164645000,
    ],
)
def test_date_accepts_common_forms(value):
    assert match("$date", value).passed


@pytest.mark.parametrize("value", ["not a date", "", None, [2024]])
def test_date_rejects_garbage(value):
    assert not match("$date", value).passed


# ----------------------------
# Key directives
# ----------------------------

def test_not_negates_inner_expression():
    assert match({"$not": {"a": 1}}, {"a": 2}).passed
    assert not match({"$not": {"a": 1}}, {"a": 1}).passed
    assert match({"a": {"$not": "$exists"}}, {}).passed


def test_length():
    assert match({"$length": 3}, [1, 2, 3]).passed
    assert match({"$length": 3}, "abc").passed
    assert not match({"$length": 2}, [1, 2, 3]).passed
    assert not match({"$length": 1}, 5).passed


def test_comparisons():
    assert match({"$gt": 3}, 4).passed
    assert not match({"$gt": 3}, 3).passed
    assert match({"$gte": 3}, 3).passed
    assert match({"$lt": 3}, 2.5).passed
    assert match({"$lte": 3}, 3).passed
    assert match({"$lt": "b"}, "a").passed
    # mixed types never compare
    assert not match({"$gt": 3}, "4").passed
    assert not match({"$gt": 0}, True).passed


def test_directives_combine_with_fields():
    expr = {"$length": 2, "$contains": [1]}
    assert match(expr, [1, 5]).passed
    assert not match(expr, [1, 5, 6]).passed
    assert not match(expr, [4, 5]).passed

    assert match({"$gte": 1, "$lte": 3}, 2).passed
    assert not match({"$gte": 1, "$lte": 3}, 4).passed


def test_unordered_requires_same_elements_any_order():
    assert match({"$unordered": [1, 2, 3]}, [3, 1, 2]).passed
    assert not match({"$unordered": [1, 2, 3]}, [1, 2]).passed
    assert not match({"$unordered": [1, 2]}, [1, 2, 3]).passed
    assert not match({"$unordered": [1, 1]}, [1, 2]).passed
    assert match({"$unordered": [{"id": 2}, {"id": 1}]}, [{"id": 1, "x": 0}, {"id": 2}]).passed


def test_contains_allows_extra_elements():
    assert match({"$contains": [2]}, [1, 2, 3]).passed
    assert match({"$contains": []}, [1]).passed
    assert not match({"$contains": [4]}, [1, 2, 3]).passed
    assert not match({"$contains": [1]}, "1").passed


def test_unordered_is_greedy_first_fit():
    # "$int" claims the 1 first, leaving nothing for the literal 1
    assert not match({"$unordered": ["$int", 1]}, [1, 2]).passed
    assert match({"$unordered": [1, "$int"]}, [1, 2]).passed


# ----------------------------
# Predicates and patterns
# ----------------------------

def test_predicate_truthiness():
    assert match(lambda v: v > 2, 3).passed
    result = match(lambda v: v > 2, 1)
    assert not result.passed
    assert result.kind == FailureKind.PREDICATE


def test_predicate_returning_none_fails():
    result = match(lambda v: None, 1)
    assert not result.passed
    assert result.kind == FailureKind.PREDICATE

    assert not match(lambda v: 0, 1).passed
    assert not match(lambda v: "", 1).passed


def test_assert_style_predicate_returns_true():
    def check(v):
        assert v == 1
        return True

    assert match(check, 1).passed
    result = match(check, 2)
    assert not result.passed
    assert isinstance(result.error, AssertionError)


def test_predicate_exception_becomes_failure():
    def boom(v):
        raise RuntimeError("nope")

    result = match({"a": boom}, {"a": 1})
    assert not result.passed
    assert result.kind == FailureKind.PREDICATE
    assert result.path == "a"
    assert "nope" in result.reason


def test_async_predicate_is_awaited():
    async def positive(v):
        await asyncio.sleep(0)
        return v > 0

    assert match(positive, 1).passed
    assert not match(positive, -1).passed


def test_pattern_matches_text_form():
    assert match(re.compile(r"^ab"), "abc").passed
    assert match(re.compile(r"^12$"), 12).passed
    result = match({"name": re.compile(r"^z")}, {"name": "abc"})
    assert not result.passed
    assert result.kind == FailureKind.TEXT
    assert not match({"name": re.compile(r".*")}, {}).passed


# ----------------------------
# Equality and diff
# ----------------------------

def test_strict_equal_nested():
    assert strict_equal({"a": [1, {"b": True}]}, {"a": [1, {"b": True}]})
    assert not strict_equal({"a": [1, {"b": True}]}, {"a": [1, {"b": 1}]})
    assert not strict_equal({"a": 1}, {"a": 1, "b": 2})


def test_compute_diff_lists_each_difference():
    diff = compute_diff({"a": 1, "c": 3}, {"a": 2, "b": 3})
    assert "a: 1 != 2" in diff
    assert "c: missing key in actual" in diff
    assert "b: unexpected key in actual" in diff
