"""
Expectation declaration and evaluation against normalized results.
"""

from __future__ import annotations

import asyncio
import re

import pytest

from apidriver.errors import ArgumentError, FailureKind
from apidriver.expectations import check, check_all, declare, forbidden, not_found, unauthorized
from apidriver.expression import Literal
from apidriver.http_executor import Result
from apidriver.stash import Stash


def verdict(expectation, result):
    return asyncio.run(check(expectation, result))


# ----------------------------
# Declaration
# ----------------------------

def test_declare_forms():
    only_status = declare(200)
    assert only_status.status_code == 200
    assert only_status.expression is None

    only_body = declare({"ok": True})
    assert only_body.status_code is None
    assert only_body.expression is not None

    both = declare(201, "created")
    assert both.status_code == 201
    assert both.expression == Literal("created")


def test_declare_requires_status_or_expression():
    with pytest.raises(ArgumentError):
        declare()
    with pytest.raises(ArgumentError):
        declare(None)


def test_declare_rejects_extra_arguments():
    with pytest.raises(ArgumentError):
        declare(200, {"a": 1}, {"b": 2})


def test_declare_treats_bool_as_expression():
    expectation = declare(True)
    assert expectation.status_code is None
    assert expectation.expression == Literal(True)


def test_declare_captures_call_site():
    expectation = declare(200)
    assert "test_expectations.py" in expectation.origin_trace
    assert "apidriver/expectations.py" not in expectation.origin_trace


# ----------------------------
# Evaluation
# ----------------------------

def test_status_and_json_expression_pass():
    expectation = declare(200, {"title": "$exists"})
    result = {"status_code": 200, "json": {"title": "Hello"}}
    assert verdict(expectation, result) is None


def test_json_expression_failure_carries_diff():
    expectation = declare(200, {"title": "$exists"})
    error = verdict(expectation, {"status_code": 200, "json": {}})

    assert error is not None
    assert error.kind == FailureKind.JSON
    assert error.name == "JSON Expression Failure"
    assert "title" in error.diff
    assert error.trace == expectation.origin_trace


def test_status_failure_shows_body():
    error = verdict(declare(200), {"status_code": 500, "json": {"error": "db down"}})

    assert error.kind == FailureKind.STATUS
    assert "Expected HTTP status code of 200 but got 500" in error.message
    assert "db down" in error.message


def test_text_literal_and_pattern_match_response_text():
    result = Result(status_code=200, text="hello world")

    assert verdict(declare("hello world"), result) is None
    assert verdict(declare(re.compile(r"^hello")), result) is None

    error = verdict(declare(re.compile(r"^bye")), result)
    assert error.kind == FailureKind.TEXT


def test_predicate_receives_whole_result():
    seen = []

    def check_result(res):
        seen.append(res)
        return res.status_code == 200 and res.json["n"] == 1

    result = Result(status_code=200, json={"n": 1}, text='{"n": 1}')
    assert verdict(declare(check_result), result) is None
    assert seen == [result]


def test_predicate_failure_chains_cause():
    def check_result(res):
        raise ValueError("bad shape")

    error = verdict(declare(check_result), Result(status_code=200))
    assert error.kind == FailureKind.PREDICATE
    assert isinstance(error.__cause__, ValueError)


def test_check_all_returns_first_failure():
    result = {"status_code": 404, "json": {"a": 1}}
    error = asyncio.run(check_all([declare({"a": 1}), declare(200), declare({"a": 2})], result))
    assert error.kind == FailureKind.STATUS


def test_resolved_substitutes_stash_references():
    async def scenario():
        stash = Stash()
        stash.set("item", {"id": 5})
        expectation = await declare(200, {"id": ":item.id", "n": {"$gt": ":item.id"}}).resolved(stash)
        return (
            await check(expectation, {"status_code": 200, "json": {"id": 5, "n": 6}}),
            await check(expectation, {"status_code": 200, "json": {"id": 5, "n": 5}}),
        )

    ok, failed = asyncio.run(scenario())
    assert ok is None
    assert failed.kind == FailureKind.JSON


# ----------------------------
# Canned predicates
# ----------------------------

@pytest.mark.parametrize(
    "predicate,status,text",
    [
        (unauthorized, 401, "Unauthorized"),
        (forbidden, 403, "Forbidden"),
        (not_found, 404, "Not Found"),
    ],
)
def test_canned_predicates(predicate, status, text):
    assert verdict(declare(predicate), Result(status_code=status, text=text)) is None

    error = verdict(declare(predicate), Result(status_code=200, text="OK"))
    assert error.kind == FailureKind.PREDICATE
