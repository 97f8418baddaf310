# apidriver/errors.py
"""
Error taxonomy for API scripts.

Two families matter to callers:
- ExpectationError: the system under test misbehaved. Reported as a normal
  script result (pass/fail tally) rather than aborting the run.
- ContextError / ArgumentError: the script itself is wrong (unknown actor,
  unknown stash key, malformed expectation). Always fatal to the step.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class FailureKind(str, Enum):
    """Stable failure kinds carried by every ExpectationError"""
    STATUS = "Status Failure"
    TEXT = "Text Comparison Failure"
    JSON = "JSON Expression Failure"
    PREDICATE = "Predicate Failure"
    UNEXPECTED_SUCCESS = "Predicate Succeeded Unexpectedly"


class DriverError(Exception):
    """Base exception for apidriver errors."""
    pass


class ExpectationError(DriverError):
    """Raised when a declared expectation does not hold."""

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        trace: str = "",
        diff: Optional[str] = None,
        actual: Any = None,
    ):
        self.kind = kind
        self.message = message
        self.trace = trace
        self.diff = diff
        self.actual = actual
        super().__init__(self._render())

    @property
    def name(self) -> str:
        return self.kind.value

    def _render(self) -> str:
        parts = [f"{self.kind.value}: {self.message}"]
        if self.diff:
            parts.append("(expression diffed against actual follows)")
            parts.append(self.diff)
        if self.trace:
            parts.append(self.trace.rstrip())
        return "\n".join(parts)


class ContextError(DriverError):
    """Raised for script authoring mistakes against the context."""
    pass


class StashKeyError(ContextError):
    """Raised when a stash key was never stashed."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Name '{key}' not found in stash")


class KeypathError(ContextError):
    """Raised when a stashed value lacks a nested segment of a keypath."""

    def __init__(self, keypath: str, segment: str):
        self.keypath = keypath
        self.segment = segment
        super().__init__(
            f"Failed to destash keypath '{keypath}': {segment} is undefined"
        )


class ArgumentError(DriverError):
    """Raised for malformed declarations, e.g. an expectation with no status or body."""
    pass
