# apidriver/helpers.py
"""Small shared utilities: argument validation, the MISSING sentinel, text forms."""

from __future__ import annotations

import json
from typing import Any

from apidriver.errors import ArgumentError


class _Missing:
    """Marker for an absent value (as opposed to an explicit None)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


def validate(condition: Any, msg: str) -> None:
    """Raise ArgumentError with `msg` unless `condition` holds."""
    if not condition:
        raise ArgumentError(msg)


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def text_form(value: Any) -> str:
    """Render a value the way it would appear in a JSON document or URL."""
    if isinstance(value, str):
        return value
    if value is None or value is MISSING:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if is_number(value):
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)


def step_into(value: Any, part: str) -> Any:
    """Take one dotted-path step into `value`, returning MISSING when absent."""
    if value is None or value is MISSING:
        return MISSING

    if isinstance(value, dict):
        return value.get(part, MISSING)

    if isinstance(value, (list, tuple)):
        try:
            idx = int(part)
        except ValueError:
            return MISSING
        if idx < 0 or idx >= len(value):
            return MISSING
        return value[idx]

    if isinstance(value, str):
        return MISSING

    return getattr(value, part, MISSING)
