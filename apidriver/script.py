# apidriver/script.py
"""
Script composition.

A step is any callable taking a Context and returning a Context, None (keep
the incoming context) or an awaitable of either. Combinators below build
bigger steps out of smaller ones; `run()` executes a script and reports the
expectation tally.

    script = sequentially(
        introduce("mia", "ella"),
        step("Mia creates an item",
             as_("mia", req.post("/items", {"name": "x"}).expect(201).stash("item"))),
        concurrently(
            req.get("/items/:item.id").expect(200),
            as_("mia", req.get("/items/:item.id").until(200, {"name": "x"})),
        ),
    )
    result = await run(script)
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Union

from apidriver.config import configure_logging, get_settings
from apidriver.context import Context, Tally
from apidriver.errors import ExpectationError
from apidriver.listeners import StepLogRecorder
from apidriver.poller import PollSpec, poll

logger = logging.getLogger(__name__)

Step = Callable[[Context], Union[Context, None, Awaitable[Optional[Context]]]]


async def call_step(fn: Step, ctx: Context) -> Context:
    """Run one step, normalizing its return value to a Context."""
    out = fn(ctx)
    if inspect.isawaitable(out):
        out = await out
    return ctx if out is None else out


def _flatten(steps: Iterable[Any]) -> List[Step]:
    steps = list(steps)
    if len(steps) == 1 and isinstance(steps[0], (list, tuple)):
        return list(steps[0])
    return steps


async def _sequence(ctx: Context, steps: List[Step]) -> Context:
    for fn in steps:
        ctx = await call_step(fn, ctx)
    return ctx


# ==================== Actors ====================

def introduce(*aliases: str) -> Step:
    """Create a cookie jar per alias; the last alias becomes the current actor."""
    def introduce_step(ctx: Context) -> Context:
        for alias in aliases:
            ctx.add_actor(alias)
        if aliases:
            ctx.set_current_actor(aliases[-1])
        return ctx
    return introduce_step


def as_(alias: str, *steps: Step) -> Step:
    """
    Act as `alias`. With steps, run them as `alias` and then restore the
    previous actor; without, switch the current actor for what follows.
    """
    steps = _flatten(steps)

    async def as_step(ctx: Context) -> Context:
        if not steps:
            ctx.set_current_actor(alias)
            return ctx
        previous = ctx.current_actor
        ctx.set_current_actor(alias)
        ctx = await _sequence(ctx, steps)
        ctx.set_current_actor(previous)
        return ctx
    return as_step


# ==================== Control Flow ====================

def sequentially(*steps: Any) -> Step:
    steps = _flatten(steps)

    async def sequence_step(ctx: Context) -> Context:
        return await _sequence(ctx, steps)
    return sequence_step


def concurrently(*steps: Any) -> Step:
    """
    Start every step on its own branch of the context, wait for all of them,
    then merge the branches (later step wins on a stash key collision).

    A failing branch does not cut its siblings short: every branch runs to
    completion, then the first failure in declaration order is raised.
    """
    steps = _flatten(steps)

    async def concurrent_step(ctx: Context) -> Context:
        outcomes = await asyncio.gather(
            *(call_step(fn, ctx.branch()) for fn in steps),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return Context.merge(outcomes, base=ctx)
    return concurrent_step


def step(title: str, *steps: Step) -> Step:
    """Named group of steps; the title is pushed on the context stack while it runs."""
    steps = _flatten(steps)

    async def titled_step(ctx: Context) -> Context:
        ctx.stack.append(title)
        ctx.notify("on_step_start", list(ctx.stack), title)
        try:
            ctx = await _sequence(ctx, steps)
        except Exception as e:
            ctx.notify("on_step_end", list(ctx.stack), title, e)
            raise
        finally:
            if ctx.stack and ctx.stack[-1] == title:
                ctx.stack.pop()
        ctx.notify("on_step_end", list(ctx.stack), title, None)
        return ctx
    return titled_step


def eventually(fn: Step, timeout_ms: Optional[float] = None, delay_ms: Optional[float] = None) -> Step:
    """Retry a step on a fresh branch until it stops failing its expectations."""
    settings = get_settings()
    spec = PollSpec(
        delay_ms=settings.poll_delay_ms if delay_ms is None else delay_ms,
        timeout_ms=settings.poll_timeout_ms if timeout_ms is None else timeout_ms,
    )

    async def eventually_step(ctx: Context) -> Context:
        async def attempt() -> Union[Context, ExpectationError]:
            # each attempt counts on its own tally; only the settled one is kept
            branch = ctx.branch()
            branch.tally = Tally()
            try:
                return await call_step(fn, branch)
            except ExpectationError as e:
                return e

        async def evaluate(outcome: Any) -> Optional[ExpectationError]:
            return outcome if isinstance(outcome, ExpectationError) else None

        try:
            settled = await poll(attempt, spec, evaluate=evaluate)
        except ExpectationError:
            ctx.tally.failed += 1
            raise
        ctx.tally.passed += settled.tally.passed
        return Context.merge([settled], base=ctx)
    return eventually_step


def wait(ms: float) -> Step:
    async def wait_step(ctx: Context) -> Context:
        await asyncio.sleep(max(0.0, ms) / 1000.0)
        return ctx
    return wait_step


# ==================== Stash & Docs ====================

def stash_value(key: str, value: Any) -> Step:
    """Stash a constant (itself stash-resolved) without making a request."""
    async def stash_step(ctx: Context) -> Context:
        ctx.stash.set(key, await ctx.stash.substitute(value))
        return ctx
    return stash_step


def clear_stash() -> Step:
    def clear_step(ctx: Context) -> Context:
        ctx.stash.clear()
        return ctx
    return clear_step


def doc(message: str) -> Step:
    def doc_step(ctx: Context) -> Context:
        ctx.notify("on_doc", list(ctx.stack), message)
        return ctx
    return doc_step


def log_stash(ref: str) -> Step:
    """Log a stashed value by reference, e.g. log_stash(":item.id")."""
    keypath = ref[1:] if ref.startswith(":") else ref

    async def log_step(ctx: Context) -> Context:
        value = await ctx.stash.get_keypath(keypath)
        logger.info(f":{keypath} =\n{json.dumps(value, indent=2, default=str)}")
        return ctx
    return log_step


# ==================== Running ====================

@dataclass
class ScriptResult:
    """Outcome of a run: tallies plus the failure that stopped it, if any"""
    passed: int
    failed: int
    context: Context
    error: Optional[ExpectationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.failed == 0

    def summary(self) -> str:
        return f"{self.passed} expectations passed, {self.failed} failed"


async def run(script: Step, ctx: Any = None, listeners: Iterable[Any] = ()) -> ScriptResult:
    """
    Execute `script`. Expectation failures become part of the result;
    infrastructure errors (ContextError, ArgumentError, transport errors)
    propagate.
    """
    if ctx is None:
        ctx = Context()
    elif inspect.isawaitable(ctx):
        ctx = await ctx

    listeners = list(listeners)
    if get_settings().enable_step_logs and not any(isinstance(l, StepLogRecorder) for l in listeners):
        listeners.append(StepLogRecorder())
    for listener in listeners:
        ctx.attach(listener)

    final = ctx
    error: Optional[ExpectationError] = None
    try:
        final = await call_step(script, ctx)
    except ExpectationError as e:
        logger.warning(f"Script stopped on {e.kind.value}")
        error = e
    finally:
        for listener in listeners:
            ctx.detach(listener)

    result = ScriptResult(
        passed=ctx.tally.passed,
        failed=max(ctx.tally.failed, 1 if error is not None else 0),
        context=final,
        error=error,
    )
    logger.info(result.summary())
    return result


def run_sync(script: Step, ctx: Any = None, listeners: Iterable[Any] = ()) -> ScriptResult:
    """Synchronous wrapper for run()"""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop and loop.is_running():
        raise RuntimeError("run_sync() called inside running loop; use await run()")

    configure_logging()
    return asyncio.run(run(script, ctx, listeners))
