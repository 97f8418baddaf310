# apidriver/poller.py
"""
Poller: repeat an action until its expectations hold (until) or until the
budget runs out without them ever holding (never).

    Attempt -> Evaluate -> Succeed
                        -> ScheduleRetry -> Wait -> Attempt
                        -> GiveUp

Backoff starts at `delay_ms` and is re-derived after every attempt as
min(delay ** 2, 1000). The remaining budget shrinks by the time each attempt
took plus the upcoming delay; when that would overshoot the deadline, the last
delay collapses into whatever budget is left so the final attempt lands on the
deadline. A zero timeout means a single attempt.

The deadline is the only cancellation: an in-flight attempt always runs to
completion.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

from apidriver.errors import ExpectationError, FailureKind
from apidriver.expectations import Expectation, check

logger = logging.getLogger(__name__)

MAX_DELAY_MS = 1000.0

Evaluator = Callable[[Any], Awaitable[Optional[ExpectationError]]]


class Clock:
    """Wall clock used by the poller; swapped for a fake in tests."""

    def now_ms(self) -> float:
        return time.monotonic() * 1000.0

    async def sleep(self, ms: float) -> None:
        await asyncio.sleep(max(0.0, ms) / 1000.0)


@dataclass
class PollSpec:
    expectations: Sequence[Expectation] = field(default_factory=list)
    delay_ms: float = 10.0
    timeout_ms: float = 10000.0
    negate: bool = False

    def __post_init__(self):
        if self.delay_ms < 0:
            raise ValueError(f"delay_ms must be >= 0, got {self.delay_ms}")
        if self.timeout_ms < 0:
            raise ValueError(f"timeout_ms must be >= 0, got {self.timeout_ms}")


@dataclass(frozen=True)
class PollState:
    """Retry bookkeeping threaded through each attempt."""
    delay_ms: float
    remaining_ms: float
    attempt: int = 0
    last_error: Optional[ExpectationError] = None

    def advance(
        self, elapsed_ms: float, error: Optional[ExpectationError]
    ) -> Tuple[float, "PollState"]:
        """Return (wait before the next attempt, state for that attempt)."""
        wait = self.delay_ms
        remaining = self.remaining_ms - elapsed_ms - wait
        if remaining < 0:
            # one more attempt, as close to the deadline as the budget allows
            wait = max(0.0, self.remaining_ms - elapsed_ms)
            remaining = 0.0
        return wait, PollState(
            delay_ms=min(self.delay_ms ** 2, MAX_DELAY_MS),
            remaining_ms=remaining,
            attempt=self.attempt + 1,
            last_error=error,
        )


async def poll(
    action: Callable[[], Awaitable[Any]],
    spec: PollSpec,
    clock: Optional[Clock] = None,
    evaluate: Optional[Evaluator] = None,
) -> Any:
    """
    Run `action` repeatedly under `spec`; returns the action's final value.

    `evaluate` overrides how a value is judged (default: all of
    `spec.expectations` must hold). Raises ExpectationError on give-up.
    """
    clock = clock or Clock()
    evaluate = evaluate or _expectations_evaluator(spec.expectations)
    state = PollState(delay_ms=spec.delay_ms, remaining_ms=spec.timeout_ms)

    while True:
        started = clock.now_ms()
        value = await action()
        error = await evaluate(value)
        elapsed = clock.now_ms() - started

        if spec.negate:
            if error is None:
                raise _unexpected_success(spec, value)
            if state.remaining_ms <= 0:
                logger.debug(f"never: held for the whole budget after {state.attempt + 1} attempts")
                return value
        else:
            if error is None:
                logger.debug(f"until: satisfied on attempt {state.attempt + 1}")
                return value
            if state.remaining_ms <= 0:
                logger.debug(f"until: giving up after {state.attempt + 1} attempts")
                raise error

        wait_ms, state = state.advance(elapsed, error)
        await clock.sleep(wait_ms)


def _expectations_evaluator(expectations: Sequence[Expectation]) -> Evaluator:
    async def evaluate(value: Any) -> Optional[ExpectationError]:
        errors: List[Optional[ExpectationError]] = [
            await check(expectation, value) for expectation in expectations
        ]
        return next((e for e in errors if e is not None), None)
    return evaluate


def _unexpected_success(spec: PollSpec, value: Any) -> ExpectationError:
    trace = spec.expectations[0].origin_trace if spec.expectations else ""
    return ExpectationError(
        FailureKind.UNEXPECTED_SUCCESS,
        "One or more expectations succeeded which should not have",
        trace=trace,
        actual=value,
    )
