# apidriver/expectations.py
"""
Expectations: what a step declares about its response.

An Expectation pairs an optional status code with an optional compiled
expression, plus the call-site trace captured when it was declared so that a
failure (even one surfacing from a retry loop much later) points at the line
of the script that declared it.
"""

from __future__ import annotations

import json
import logging
import os
import traceback
from dataclasses import dataclass
from typing import Any, Optional

from apidriver.errors import ExpectationError, FailureKind
from apidriver.expression import (
    Expression,
    Literal,
    Pattern,
    Predicate,
    compile_expression,
    resolve_expression,
    to_plain,
)
from apidriver.helpers import step_into, validate, MISSING
from apidriver.matcher import matches, render_diff

logger = logging.getLogger(__name__)

_PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))
_MAX_TRACE_FRAMES = 12


@dataclass(frozen=True)
class Expectation:
    expression: Optional[Expression] = None
    status_code: Optional[int] = None
    origin_trace: str = ""

    async def resolved(self, stash) -> "Expectation":
        """Copy with stash references inside the expression substituted."""
        if self.expression is None:
            return self
        expression = await resolve_expression(self.expression, stash)
        return Expectation(expression, self.status_code, self.origin_trace)


def capture_trace() -> str:
    """Stack of the caller, with frames inside this package dropped."""
    frames = [
        frame for frame in traceback.extract_stack()
        if not os.path.abspath(frame.filename).startswith(_PACKAGE_DIR)
    ]
    return "".join(traceback.format_list(frames[-_MAX_TRACE_FRAMES:]))


def declare(*args: Any) -> Expectation:
    """
    Build an Expectation from `(status)`, `(expression)` or `(status, expression)`.

    A bare int first argument is always a status code.
    """
    args = list(args)
    status_code = None
    if args and isinstance(args[0], int) and not isinstance(args[0], bool):
        status_code = args.pop(0)

    validate(len(args) <= 1, f"Invalid expectation: unexpected arguments {args[1:]!r}")
    raw = args[0] if args else None
    validate(
        status_code is not None or raw is not None,
        "Invalid expectation: a status code or an expression is required",
    )

    return Expectation(
        expression=compile_expression(raw) if raw is not None else None,
        status_code=status_code,
        origin_trace=capture_trace(),
    )


# ==================== Evaluation ====================

def _field(result: Any, name: str) -> Any:
    value = step_into(result, name)
    return None if value is MISSING else value


async def check(expectation: Expectation, result: Any) -> Optional[ExpectationError]:
    """Evaluate one expectation; returns the failure, or None when it holds."""
    trace = expectation.origin_trace
    status_code = _field(result, "status_code")
    body = _field(result, "json")
    text = _field(result, "text")

    if expectation.status_code is not None and expectation.status_code != status_code:
        shown = body if body is not None else text
        return ExpectationError(
            FailureKind.STATUS,
            f"Expected HTTP status code of {expectation.status_code} but got {status_code}"
            f"\nResponse Body:\n{json.dumps(shown, indent=4, default=str)}",
            trace=trace,
            actual=result,
        )

    expression = expectation.expression
    if expression is None:
        return None

    if isinstance(expression, Pattern) or (
        isinstance(expression, Literal) and isinstance(expression.value, str)
    ):
        outcome = await matches(expression, text if text is not None else MISSING)
        if outcome.passed:
            return None
        return ExpectationError(
            FailureKind.TEXT,
            f"\nExpected:\n{to_plain(expression)!r}\nBut not found:\n{text!r}",
            trace=trace,
            actual=result,
        )

    if isinstance(expression, Predicate):
        outcome = await matches(expression, result)
        if outcome.passed:
            return None
        error = ExpectationError(
            FailureKind.PREDICATE,
            f"\nExpected:\n{expression.label}\nBut predicate not satisfied: {outcome.reason}",
            trace=trace,
            actual=result,
        )
        error.__cause__ = outcome.error
        return error

    outcome = await matches(expression, body if body is not None else MISSING)
    if outcome.passed:
        return None
    return ExpectationError(
        FailureKind.JSON,
        outcome.reason,
        trace=trace,
        diff=render_diff(expression, body, outcome),
        actual=result,
    )


async def check_all(expectations, result: Any) -> Optional[ExpectationError]:
    """Evaluate expectations in order; returns the first failure."""
    for expectation in expectations:
        error = await check(expectation, result)
        if error is not None:
            logger.warning(f"Expectation failed: {error.kind.value}")
            return error
    return None


# ==================== Canned Predicates ====================

def _canned(status_code: int, text: str):
    def predicate(result: Any) -> bool:
        actual_status = _field(result, "status_code")
        actual_text = _field(result, "text")
        assert actual_status == status_code, f"expected status {status_code}, got {actual_status}"
        assert actual_text == text, f"expected body {text!r}, got {actual_text!r}"
        return True
    predicate.__name__ = predicate.__qualname__ = text.lower().replace(" ", "_")
    return predicate


unauthorized = _canned(401, "Unauthorized")
forbidden = _canned(403, "Forbidden")
not_found = _canned(404, "Not Found")
