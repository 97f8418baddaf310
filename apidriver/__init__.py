# apidriver/__init__.py
"""
apidriver: declarative end-to-end API test scripts.

Public surface: the request builder (`req`), script combinators, the context,
the matcher and poller, and the error types.
"""

from apidriver.context import Context, Tally
from apidriver.errors import (
    ArgumentError,
    ContextError,
    DriverError,
    ExpectationError,
    FailureKind,
    KeypathError,
    StashKeyError,
)
from apidriver.expectations import Expectation, check, declare, forbidden, not_found, unauthorized
from apidriver.expression import compile_expression
from apidriver.http_executor import HttpxExecutor, Profile, RequestSpec, Result
from apidriver.listeners import LoggingListener, ScriptListener, StepLogRecorder
from apidriver.matcher import MatchResult, matches
from apidriver.poller import Clock, PollSpec, poll
from apidriver.request import Req, req
from apidriver.script import (
    ScriptResult,
    as_,
    clear_stash,
    concurrently,
    doc,
    log_stash,
    eventually,
    introduce,
    run,
    run_sync,
    sequentially,
    stash_value,
    step,
    wait,
)
from apidriver.stash import Stash

__all__ = [
    "ArgumentError",
    "Clock",
    "Context",
    "ContextError",
    "DriverError",
    "Expectation",
    "ExpectationError",
    "FailureKind",
    "HttpxExecutor",
    "KeypathError",
    "LoggingListener",
    "MatchResult",
    "PollSpec",
    "Profile",
    "Req",
    "RequestSpec",
    "Result",
    "ScriptListener",
    "ScriptResult",
    "Stash",
    "StashKeyError",
    "StepLogRecorder",
    "Tally",
    "as_",
    "check",
    "clear_stash",
    "compile_expression",
    "concurrently",
    "declare",
    "doc",
    "eventually",
    "forbidden",
    "introduce",
    "log_stash",
    "matches",
    "not_found",
    "poll",
    "req",
    "run",
    "run_sync",
    "sequentially",
    "stash_value",
    "step",
    "unauthorized",
    "wait",
]
