# apidriver/request.py
"""
Request steps.

`req` is an immutable, chainable builder; every call returns a new builder, so
partially configured requests can be shared safely:

    api = req.root_url("http://localhost:3000").headers({"X-Client": "test"})

    step = (
        api.post("/items", {"name": "widget"})
           .expect(201, {"id": "$exists"})
           .stash("item")
    )
    ctx = await step(ctx)

Calling a builder with a Context executes it: the route and options are
stash-substituted, the executor runs (once, or repeatedly for until/never),
expectations are checked, listeners notified and stash writers applied.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from apidriver.config import get_settings
from apidriver.context import Context
from apidriver.errors import ExpectationError
from apidriver.expectations import Expectation, capture_trace, check_all, declare
from apidriver.expression import Predicate
from apidriver.helpers import is_number, validate
from apidriver.http_executor import HttpxExecutor, RequestSpec
from apidriver.poller import PollSpec, poll

logger = logging.getLogger(__name__)

Handler = Callable[[RequestSpec], Awaitable[Any]]
Stasher = Callable[[Context, Any], Awaitable[None]]


@dataclass(frozen=True)
class Clauses:
    """Everything a request step has accumulated so far"""
    method: Optional[str] = None
    route: str = ""
    body: Any = None
    form: Any = None
    root_url: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    handler: Optional[Handler] = None
    expectations: Tuple[Expectation, ...] = ()
    untils: Tuple[Expectation, ...] = ()
    nevers: Tuple[Expectation, ...] = ()
    poll_timeout_ms: Optional[float] = None
    poll_delay_ms: Optional[float] = None
    request_timeout_s: Optional[float] = None
    default_expect_fn: Optional[Callable[[Any], Any]] = None
    default_expectation: Optional[Expectation] = None
    stashers: Tuple[Stasher, ...] = ()
    log: bool = False


def _body_of(result: Any) -> Any:
    if isinstance(result, dict):
        if result.get("json") is not None:
            return result["json"]
        return result.get("text", result.get("body"))
    return getattr(result, "body", result)


class Req:

    def __init__(self, clauses: Optional[Clauses] = None):
        self._clauses = clauses or Clauses()

    @property
    def clauses(self) -> Clauses:
        return self._clauses

    def _with(self, **changes: Any) -> "Req":
        return Req(replace(self._clauses, **changes))

    def __repr__(self) -> str:
        c = self._clauses
        return f"Req({c.method or '?'} {c.route!r})"

    # ==================== Configuration ====================

    def root_url(self, url: str) -> "Req":
        return self._with(root_url=url)

    def headers(self, headers: Dict[str, str]) -> "Req":
        return self._with(headers={**self._clauses.headers, **headers})

    def handler(self, fn: Handler) -> "Req":
        """Replace the executor with any async `RequestSpec -> result` callable."""
        return self._with(handler=fn)

    def timeout(self, ms: float) -> "Req":
        """Budget for until/never polling."""
        validate(is_number(ms) and ms >= 0, f"timeout must be a non-negative number, got {ms!r}")
        return self._with(poll_timeout_ms=ms)

    def delay(self, ms: float) -> "Req":
        """Initial delay between until/never attempts."""
        validate(is_number(ms) and ms >= 0, f"delay must be a non-negative number, got {ms!r}")
        return self._with(poll_delay_ms=ms)

    def request_timeout(self, seconds: float) -> "Req":
        return self._with(request_timeout_s=seconds)

    def log(self) -> "Req":
        return self._with(log=True)

    # ==================== HTTP Methods ====================

    def _method(self, method: str, route: str, body: Any = None, form: Any = None) -> "Req":
        default_expectation = None
        if self._clauses.default_expect_fn is not None:
            default_expectation = Expectation(
                expression=Predicate(self._clauses.default_expect_fn),
                origin_trace=capture_trace(),
            )
        return self._with(
            method=method,
            route=route,
            body=body,
            form=form,
            default_expectation=default_expectation,
        )

    def get(self, route: str) -> "Req":
        return self._method("GET", route)

    def head(self, route: str) -> "Req":
        return self._method("HEAD", route)

    def delete(self, route: str) -> "Req":
        return self._method("DELETE", route)

    def post(self, route: str, body: Any = None, form: Any = None) -> "Req":
        return self._method("POST", route, body, form)

    def put(self, route: str, body: Any = None, form: Any = None) -> "Req":
        return self._method("PUT", route, body, form)

    def patch(self, route: str, body: Any = None, form: Any = None) -> "Req":
        return self._method("PATCH", route, body, form)

    # ==================== Expectations ====================

    def expect(self, *args: Any) -> "Req":
        return self._with(expectations=self._clauses.expectations + (declare(*args),))

    def until(self, *args: Any, timeout_ms: Optional[float] = None) -> "Req":
        """Re-issue the request until the expectation holds."""
        args, timeout_ms = self._split_timeout(args, timeout_ms)
        changes: Dict[str, Any] = {"untils": self._clauses.untils + (declare(*args),)}
        if timeout_ms is not None:
            changes["poll_timeout_ms"] = timeout_ms
        return self._with(**changes)

    def never(self, *args: Any, timeout_ms: Optional[float] = None) -> "Req":
        """Re-issue the request for the whole budget; fail if the expectation ever holds."""
        args, timeout_ms = self._split_timeout(args, timeout_ms)
        changes: Dict[str, Any] = {"nevers": self._clauses.nevers + (declare(*args),)}
        if timeout_ms is not None:
            changes["poll_timeout_ms"] = timeout_ms
        return self._with(**changes)

    @staticmethod
    def _split_timeout(args: Tuple[Any, ...], timeout_ms: Optional[float]):
        if len(args) == 3:
            validate(timeout_ms is None, "timeout given both positionally and by keyword")
            timeout_ms = args[-1]
            args = args[:-1]
        if timeout_ms is not None:
            validate(
                is_number(timeout_ms) and timeout_ms >= 0,
                f"timeout must be a non-negative number, got {timeout_ms!r}",
            )
        return args, timeout_ms

    def default_expect(self, fn: Callable[[Any], Any]) -> "Req":
        """Predicate applied to later requests that declare no expectations of their own."""
        return self._with(default_expect_fn=fn)

    # ==================== Stashing ====================

    def stash(self, key: str, *args: Any) -> "Req":
        """
        Capture part of the result under `key` once the step's expectations pass.

            .stash("item")                         # the result body
            .stash("id", lambda res: res.json["id"])
            .stash("url", ":base", lambda base, res: base + res.json["path"])
            .stash("role", "admin")               # a constant (stash-resolved)
        """
        validate(isinstance(key, str) and key, f"stash key must be a non-empty string, got {key!r}")

        if not args:
            async def stasher(ctx: Context, result: Any) -> None:
                ctx.stash.set(key, _body_of(result))

        elif callable(args[-1]):
            scraper = args[-1]
            refs = list(args[:-1])

            async def stasher(ctx: Context, result: Any) -> None:
                values = await ctx.stash.substitute(refs)
                value = scraper(*values, result)
                if inspect.isawaitable(value):
                    value = await value
                ctx.stash.set(key, value)

        else:
            validate(len(args) == 1, "stash takes a single literal value")
            literal = args[0]

            async def stasher(ctx: Context, result: Any) -> None:
                ctx.stash.set(key, await ctx.stash.substitute(literal))

        return self._with(stashers=self._clauses.stashers + (stasher,))

    # ==================== Execution ====================

    async def __call__(self, ctx: Context) -> Context:
        c = self._clauses
        validate(c.method is not None, "request has no HTTP method; call get/post/... first")
        settings = get_settings()
        stash = ctx.stash
        actor = ctx.current_actor

        route, root_url, headers, body, form = await asyncio.gather(
            stash.substitute_route(c.route),
            stash.substitute(c.root_url if c.root_url is not None else settings.root_url),
            stash.substitute(dict(c.headers)),
            stash.substitute(c.body),
            stash.substitute(c.form),
        )
        untils, nevers, expectations = await asyncio.gather(
            _resolve_all(c.untils, stash),
            _resolve_all(c.nevers, stash),
            _resolve_all(c.expectations, stash),
        )

        request = RequestSpec(
            method=c.method,
            url=f"{root_url or ''}{route}",
            headers=headers,
            body=body,
            form=form,
            jar=ctx.jar_for_current_actor(),
            timeout_s=c.request_timeout_s,
        )
        handler = c.handler or HttpxExecutor(settings)

        async def attempt() -> Any:
            return await handler(request)

        timeout_ms = c.poll_timeout_ms if c.poll_timeout_ms is not None else settings.poll_timeout_ms
        delay_ms = c.poll_delay_ms if c.poll_delay_ms is not None else settings.poll_delay_ms

        try:
            if untils:
                result = await poll(attempt, PollSpec(untils, delay_ms, timeout_ms))
            elif nevers:
                result = await poll(attempt, PollSpec(nevers, delay_ms, timeout_ms, negate=True))
            else:
                result = await attempt()
        except ExpectationError as e:
            if c.log:
                _log_result(e.actual)
            ctx.tally.failed += 1
            raise

        if c.log:
            _log_result(result)

        checked = expectations or ([c.default_expectation] if c.default_expectation else [])
        error = await check_all(checked, result)
        if error is not None:
            ctx.tally.failed += 1
            raise error

        ctx.tally.passed += len(untils) + len(nevers) + len(expectations)
        ctx.notify("on_request_end", list(ctx.stack), actor, request, result)

        for stasher in c.stashers:
            await stasher(ctx, result)

        return ctx


async def _resolve_all(expectations: Tuple[Expectation, ...], stash) -> list:
    return list(await asyncio.gather(*(e.resolved(stash) for e in expectations)))


def _log_result(result: Any) -> None:
    if result is None:
        return
    shown = {
        "status_code": getattr(result, "status_code", None),
        "headers": getattr(result, "headers", None),
        "body": _body_of(result),
    }
    logger.info(f"log:\nvvvvvvvvv\n{json.dumps(shown, indent=2, default=str)}\n^^^^^^^^^")


req = Req()
