# apidriver/matcher.py
"""
Structural matcher: evaluates an Expression against an actual value.

`await matches(expression, actual)` returns a MatchResult; it never raises for
a mismatch, and exceptions thrown by predicates are converted into failures.
Matching is async because predicates may return awaitables.

Unordered matching ($unordered / $contains) is greedy first-fit: each expected
element, in declared order, claims the first unclaimed actual element it
matches. It is not a maximum bipartite matching, so overlapping candidates can
make the result depend on declaration order.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, List, Optional

from apidriver.errors import FailureKind
from apidriver.expression import (
    COMPARISON_DIRECTIVES,
    Composite,
    Directive,
    Expression,
    Literal,
    Pattern,
    Predicate,
    Sequence,
    compile_expression,
    to_plain,
)
from apidriver.helpers import MISSING, is_number, step_into, text_form

logger = logging.getLogger(__name__)


@dataclass
class MatchResult:
    """Verdict of a single match; `path` locates the first failing element."""
    passed: bool
    kind: Optional[FailureKind] = None
    reason: str = ""
    path: str = ""
    expected: Any = None
    actual: Any = None
    error: Optional[BaseException] = None

    def __bool__(self) -> bool:
        return self.passed


PASS = MatchResult(passed=True)


def _fail(kind: FailureKind, reason: str, path: str, expected: Any, actual: Any,
          error: Optional[BaseException] = None) -> MatchResult:
    return MatchResult(
        passed=False,
        kind=kind,
        reason=reason,
        path=path,
        expected=expected,
        actual=None if actual is MISSING else actual,
        error=error,
    )


def _join(path: str, key: Any) -> str:
    if isinstance(key, int):
        return f"{path}[{key}]"
    return f"{path}.{key}" if path else str(key)


# ==================== Public API ====================

async def matches(expression: Any, actual: Any) -> MatchResult:
    """Match `expression` (compiled or raw) against `actual`."""
    return await _match(compile_expression(expression), actual, "")


async def _match(expr: Expression, actual: Any, path: str) -> MatchResult:
    if isinstance(expr, Predicate):
        return await _match_predicate(expr, actual, path)

    if isinstance(expr, Pattern):
        if actual is MISSING or expr.regex.search(text_form(actual)) is None:
            return _fail(
                FailureKind.TEXT,
                f"/{expr.regex.pattern}/ does not match {text_form(actual)!r}",
                path, to_plain(expr), actual,
            )
        return PASS

    if isinstance(expr, Literal):
        if not strict_equal(expr.value, actual):
            return _fail(
                FailureKind.JSON,
                f"expected {expr.value!r} but got {_show(actual)}",
                path, expr.value, actual,
            )
        return PASS

    if isinstance(expr, Sequence):
        return await _match_sequence(expr, actual, path)

    if isinstance(expr, Directive):
        return await _match_directive(expr, actual, path)

    if isinstance(expr, Composite):
        return await _match_composite(expr, actual, path)

    if expr == actual:
        return PASS
    return _fail(FailureKind.JSON, "values differ", path, expr, actual)


async def _match_predicate(expr: Predicate, actual: Any, path: str) -> MatchResult:
    try:
        outcome = expr.fn(None if actual is MISSING else actual)
        if inspect.isawaitable(outcome):
            outcome = await outcome
    except Exception as e:
        logger.debug(f"Predicate {expr.label} raised: {e}")
        return _fail(
            FailureKind.PREDICATE,
            f"predicate {expr.label} raised {type(e).__name__}: {e}",
            path, to_plain(expr), actual, error=e,
        )

    # any falsy return, None included, is a failure
    if outcome:
        return PASS
    return _fail(
        FailureKind.PREDICATE,
        f"predicate {expr.label} not satisfied",
        path, to_plain(expr), actual,
    )


async def _match_sequence(expr: Sequence, actual: Any, path: str) -> MatchResult:
    if not isinstance(actual, (list, tuple)):
        return _fail(
            FailureKind.JSON,
            f"expected an array but got {_show(actual)}",
            path, to_plain(expr), actual,
        )
    if len(actual) != len(expr.items):
        return _fail(
            FailureKind.JSON,
            f"expected an array of length {len(expr.items)} but got length {len(actual)}",
            path, to_plain(expr), actual,
        )
    for idx, (item, value) in enumerate(zip(expr.items, actual)):
        result = await _match(item, value, _join(path, idx))
        if not result.passed:
            return result
    return PASS


async def _match_composite(expr: Composite, actual: Any, path: str) -> MatchResult:
    for directive in expr.directives:
        result = await _match_directive(directive, actual, path)
        if not result.passed:
            return result

    if expr.fields and not isinstance(actual, (dict, list, tuple)):
        return _fail(
            FailureKind.JSON,
            f"expected an object but got {_show(actual)}",
            path, to_plain(expr), actual,
        )

    for key, sub in expr.fields:
        result = await _match(sub, step_into(actual, key), _join(path, key))
        if not result.passed:
            return result
    return PASS


# ==================== Directives ====================

async def _match_directive(expr: Directive, actual: Any, path: str) -> MatchResult:
    op, operand = expr.op, expr.operand

    if op == "$not":
        inner = await _match(operand, actual, path)
        if inner.passed:
            return _fail(
                FailureKind.JSON,
                f"$not: {to_plain(operand)!r} unexpectedly matched {_show(actual)}",
                path, to_plain(expr), actual,
            )
        return PASS

    if op in ("$unordered", "$contains"):
        if not isinstance(actual, (list, tuple)):
            return _fail(
                FailureKind.JSON,
                f"{op}: expected an array but got {_show(actual)}",
                path, to_plain(expr), actual,
            )
        if op == "$unordered" and len(operand) != len(actual):
            return _fail(
                FailureKind.JSON,
                f"$unordered: expected {len(operand)} elements but got {len(actual)}",
                path, to_plain(expr), actual,
            )
        unmatched = await _claim_first_fit(operand, actual, path)
        if unmatched is not None:
            return _fail(
                FailureKind.JSON,
                f"{op}: no unclaimed element matches {to_plain(unmatched)!r}",
                path, to_plain(expr), actual,
            )
        return PASS

    if op == "$length":
        ok = isinstance(actual, (list, tuple, str)) and strict_equal(operand, len(actual))
        if not ok:
            return _fail(
                FailureKind.JSON,
                f"$length: expected length {operand!r} for {_show(actual)}",
                path, to_plain(expr), actual,
            )
        return PASS

    if op in COMPARISON_DIRECTIVES:
        if not _compare(op, actual, operand):
            return _fail(
                FailureKind.JSON,
                f"{op}: {_show(actual)} is not {op[1:]} {operand!r}",
                path, to_plain(expr), actual,
            )
        return PASS

    checks = {
        "$exists": lambda v: v is not MISSING and v is not None,
        "$not-exists": lambda v: v is MISSING or v is None,
        "$string": lambda v: isinstance(v, str),
        "$int": lambda v: is_number(v) and float(v).is_integer(),
        "$date": _parses_as_date,
    }
    check = checks.get(op)
    if check is None:
        return _fail(FailureKind.JSON, f"unknown directive {op}", path, op, actual)
    if not check(actual):
        return _fail(
            FailureKind.JSON,
            f"{op}: not satisfied by {_show(actual)}",
            path, op, actual,
        )
    return PASS


async def _claim_first_fit(expected: tuple, actual: Any, path: str) -> Optional[Expression]:
    """Return the first expected element without an unclaimed match, else None."""
    claimed = set()
    for item in expected:
        for idx, candidate in enumerate(actual):
            if idx in claimed:
                continue
            if (await _match(item, candidate, _join(path, idx))).passed:
                claimed.add(idx)
                break
        else:
            return item
    return None


def _compare(op: str, actual: Any, bound: Any) -> bool:
    comparable = (
        (is_number(actual) and is_number(bound))
        or (isinstance(actual, str) and isinstance(bound, str))
    )
    if not comparable:
        return False
    if op == "$gt":
        return actual > bound
    if op == "$gte":
        return actual >= bound
    if op == "$lt":
        return actual < bound
    return actual <= bound


def _parses_as_date(value: Any) -> bool:
    if isinstance(value, datetime):
        return True

    if is_number(value):
        # epoch milliseconds
        try:
            datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
            return True
        except (OverflowError, OSError, ValueError):
            return False

    if not isinstance(value, str) or not value.strip():
        return False

    text = value.strip()
    iso = text[:-1] + "+00:00" if text[-1] in "Zz" else text
    try:
        datetime.fromisoformat(iso)
        return True
    except ValueError:
        pass

    try:
        parsedate_to_datetime(text)
        return True
    except (TypeError, ValueError, IndexError):
        return False


# ==================== Equality & Diff ====================

def strict_equal(expected: Any, actual: Any) -> bool:
    """Value equality where booleans never equal numbers and absent != None."""
    if actual is MISSING:
        return False

    if isinstance(expected, bool) or isinstance(actual, bool):
        return isinstance(expected, bool) and isinstance(actual, bool) and expected == actual

    if is_number(expected) or is_number(actual):
        return is_number(expected) and is_number(actual) and expected == actual

    if isinstance(expected, dict):
        if not isinstance(actual, dict) or set(expected) != set(actual):
            return False
        return all(strict_equal(v, actual[k]) for k, v in expected.items())

    if isinstance(expected, (list, tuple)):
        if not isinstance(actual, (list, tuple)) or len(expected) != len(actual):
            return False
        return all(strict_equal(e, a) for e, a in zip(expected, actual))

    if isinstance(expected, str) or isinstance(actual, str):
        return isinstance(expected, str) and isinstance(actual, str) and expected == actual

    return expected == actual


def compute_diff(expected: Any, actual: Any, path: str = "") -> List[str]:
    """Compute a line-per-difference diff between an expression and a value."""
    diffs: List[str] = []
    label = path or "<root>"

    if isinstance(expected, dict):
        if not isinstance(actual, dict):
            diffs.append(f"{label}: expected an object, got {_show(actual)}")
            return diffs
        for key, exp_val in expected.items():
            new_path = _join(path, key)
            if isinstance(key, str) and key.startswith("$"):
                diffs.append(f"{label}: directive {key}={exp_val!r} against {_show(actual)}")
            elif key not in actual:
                if exp_val != "$not-exists":
                    diffs.append(f"{new_path}: missing key in actual")
            else:
                diffs.extend(compute_diff(exp_val, actual[key], new_path))
        for key in actual:
            if key not in expected:
                diffs.append(f"{_join(path, key)}: unexpected key in actual")
        return diffs

    if isinstance(expected, list):
        if not isinstance(actual, list):
            diffs.append(f"{label}: expected an array, got {_show(actual)}")
        elif len(expected) != len(actual):
            diffs.append(f"{label}: length mismatch (expected {len(expected)}, got {len(actual)})")
        else:
            for i, (exp_item, act_item) in enumerate(zip(expected, actual)):
                diffs.extend(compute_diff(exp_item, act_item, _join(path, i)))
        return diffs

    if isinstance(expected, str) and (expected.startswith("$") or expected.startswith("/")
                                      or expected.startswith("<predicate")):
        diffs.append(f"{label}: {expected} against {_show(actual)}")
    elif not strict_equal(expected, actual):
        diffs.append(f"{label}: {expected!r} != {_show(actual)}")

    return diffs


def render_diff(expression: Expression, actual: Any, result: MatchResult) -> str:
    lines = [f"first failure at {result.path or '<root>'}: {result.reason}"]
    lines.extend(f"  {line}" for line in compute_diff(to_plain(expression), actual))
    return "\n".join(lines)


def _show(value: Any) -> str:
    if value is MISSING:
        return "undefined"
    return repr(value)
