# apidriver/expression.py
"""
Expression model for expectations.

Raw expectation values (literals, compiled regexes, callables, dicts and lists
carrying "$" directives) are compiled once, where they are declared, into a
small tagged union. The matcher then dispatches on the variant instead of
re-sniffing the raw shape at every recursion step.

Variants:
- Literal:   exact value (strings, numbers, booleans, None, resolved JSON)
- Pattern:   compiled regular expression, matched against the text form
- Predicate: callable returning truthy / falsy (may be async, may raise)
- Directive: "$op" operator applied to the whole actual value
- Composite: mapping of field -> Expression plus directives, all must pass
- Sequence:  ordered list of Expressions, element-wise, same length
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import Any, Callable, Tuple

from apidriver.helpers import validate

# Operators that appear as mapping keys: {"$gt": 3}
KEY_DIRECTIVES = frozenset({
    "$not", "$unordered", "$contains", "$length",
    "$gt", "$gte", "$lt", "$lte",
})

# Operators that appear as bare string values: {"id": "$exists"}
VALUE_DIRECTIVES = frozenset({
    "$exists", "$not-exists", "$string", "$date", "$int",
})

COMPARISON_DIRECTIVES = frozenset({"$gt", "$gte", "$lt", "$lte"})


class Expression:
    """Marker base for compiled expressions."""
    __slots__ = ()


@dataclass(frozen=True)
class Literal(Expression):
    value: Any


@dataclass(frozen=True)
class Pattern(Expression):
    regex: "re.Pattern[str]"


@dataclass(frozen=True)
class Predicate(Expression):
    fn: Callable[[Any], Any]

    @property
    def label(self) -> str:
        return getattr(self.fn, "__qualname__", None) or repr(self.fn)


@dataclass(frozen=True)
class Directive(Expression):
    """
    A single operator.

    `operand` is an Expression for $not, a tuple of Expressions for
    $unordered / $contains, a raw value for $length and the comparisons,
    and None for the value directives.
    """
    op: str
    operand: Any = None


@dataclass(frozen=True)
class Composite(Expression):
    fields: Tuple[Tuple[str, Expression], ...] = ()
    directives: Tuple[Directive, ...] = ()


@dataclass(frozen=True)
class Sequence(Expression):
    items: Tuple[Expression, ...] = ()


# ==================== Compilation ====================

def compile_expression(raw: Any) -> Expression:
    """Compile a raw expectation value into an Expression."""
    if isinstance(raw, Expression):
        return raw

    if isinstance(raw, re.Pattern):
        return Pattern(raw)

    if callable(raw) and not isinstance(raw, type):
        return Predicate(raw)

    if isinstance(raw, str) and raw in VALUE_DIRECTIVES:
        return Directive(raw)

    if isinstance(raw, dict):
        return _compile_mapping(raw)

    if isinstance(raw, (list, tuple)):
        return Sequence(tuple(compile_expression(item) for item in raw))

    return Literal(raw)


def _compile_mapping(raw: dict) -> Composite:
    fields = []
    directives = []

    for key, value in raw.items():
        if key not in KEY_DIRECTIVES:
            fields.append((key, compile_expression(value)))
            continue

        if key == "$not":
            directives.append(Directive(key, compile_expression(value)))
        elif key in ("$unordered", "$contains"):
            validate(
                isinstance(value, (list, tuple)),
                f"{key} expects a list, got {type(value).__name__}",
            )
            directives.append(
                Directive(key, tuple(compile_expression(v) for v in value))
            )
        else:
            directives.append(Directive(key, value))

    return Composite(tuple(fields), tuple(directives))


# ==================== Stash Resolution ====================

async def resolve_expression(expression: Expression, stash) -> Expression:
    """
    Substitute stash references inside an expression.

    Only data positions are substituted (literal values and directive
    operands); patterns and predicates pass through untouched.
    """
    if isinstance(expression, Literal):
        return Literal(await stash.substitute(expression.value))

    if isinstance(expression, (Pattern, Predicate)):
        return expression

    if isinstance(expression, Directive):
        return await _resolve_directive(expression, stash)

    if isinstance(expression, Composite):
        values = await asyncio.gather(
            *(resolve_expression(expr, stash) for _, expr in expression.fields)
        )
        directives = await asyncio.gather(
            *(_resolve_directive(d, stash) for d in expression.directives)
        )
        fields = tuple(
            (key, value) for (key, _), value in zip(expression.fields, values)
        )
        return Composite(fields, tuple(directives))

    if isinstance(expression, Sequence):
        items = await asyncio.gather(
            *(resolve_expression(item, stash) for item in expression.items)
        )
        return Sequence(tuple(items))

    return expression


async def _resolve_directive(directive: Directive, stash) -> Directive:
    op, operand = directive.op, directive.operand

    if op == "$not":
        return Directive(op, await resolve_expression(operand, stash))
    if op in ("$unordered", "$contains"):
        items = await asyncio.gather(
            *(resolve_expression(item, stash) for item in operand)
        )
        return Directive(op, tuple(items))
    if op in VALUE_DIRECTIVES:
        return directive
    return Directive(op, await stash.substitute(operand))


# ==================== Rendering ====================

def to_plain(expression: Expression) -> Any:
    """Render an expression back into plain data, for diffs and logs."""
    if isinstance(expression, Literal):
        return expression.value

    if isinstance(expression, Pattern):
        return f"/{expression.regex.pattern}/"

    if isinstance(expression, Predicate):
        return f"<predicate {expression.label}>"

    if isinstance(expression, Directive):
        if expression.op in VALUE_DIRECTIVES:
            return expression.op
        return {expression.op: _plain_operand(expression)}

    if isinstance(expression, Composite):
        out = {key: to_plain(expr) for key, expr in expression.fields}
        for directive in expression.directives:
            out[directive.op] = _plain_operand(directive)
        return out

    if isinstance(expression, Sequence):
        return [to_plain(item) for item in expression.items]

    return repr(expression)


def _plain_operand(directive: Directive) -> Any:
    operand = directive.operand
    if isinstance(operand, Expression):
        return to_plain(operand)
    if isinstance(operand, tuple):
        return [to_plain(item) for item in operand]
    return operand
