# apidriver/context.py
"""
Context: per-run state threaded through every step of a script.

Owned state is exactly three things:
- actors: alias -> cookie jar (httpx.Cookies)
- stash: captured values (see apidriver.stash)
- stack: titles of the steps currently executing

branch() isolates a concurrent sub-flow: the actor table is copied but the
jars inside it are shared, so requests made "as" the same actor from sibling
branches see each other's cookies; the stash history is copied so siblings do
not see each other's writes. merge() reconciles the branches afterwards.

Listeners and the pass/fail tally belong to the run, not to a branch, and are
shared by reference.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import httpx

from apidriver.errors import ContextError
from apidriver.stash import Stash

logger = logging.getLogger(__name__)


@dataclass
class Tally:
    """Expectation counters for one run."""
    passed: int = 0
    failed: int = 0


class Context:

    def __init__(
        self,
        actors: Optional[Dict[str, httpx.Cookies]] = None,
        current_actor: Optional[str] = None,
        stash: Optional[Stash] = None,
        stack: Optional[List[str]] = None,
        *,
        listeners: Optional[List[Any]] = None,
        tally: Optional[Tally] = None,
    ):
        self._actors: Dict[str, httpx.Cookies] = dict(actors or {})
        self._current_actor = current_actor
        self.stash = stash if stash is not None else Stash()
        self.stack: List[str] = list(stack or [])
        self.listeners: List[Any] = listeners if listeners is not None else []
        self.tally = tally if tally is not None else Tally()

    def __repr__(self) -> str:
        return (
            f"Context(actors={sorted(self._actors)}, current_actor={self._current_actor!r}, "
            f"stash={self.stash.keys()}, stack={self.stack})"
        )

    # ==================== Actors ====================

    @property
    def actors(self) -> Dict[str, httpx.Cookies]:
        return dict(self._actors)

    @property
    def current_actor(self) -> Optional[str]:
        return self._current_actor

    def add_actor(self, alias: str, jar: Optional[httpx.Cookies] = None) -> httpx.Cookies:
        jar = jar if jar is not None else httpx.Cookies()
        self._actors[alias] = jar
        logger.debug(f"Actor introduced: {alias}")
        return jar

    def jar_for(self, alias: str) -> httpx.Cookies:
        if alias not in self._actors:
            raise ContextError(f"Alias not found: {alias}")
        return self._actors[alias]

    def set_current_actor(self, alias: Optional[str]) -> None:
        """Switch the acting identity; None clears it."""
        if alias is not None and alias not in self._actors:
            raise ContextError(f"Alias not found: {alias}")
        self._current_actor = alias

    def jar_for_current_actor(self) -> Optional[httpx.Cookies]:
        if self._current_actor is None:
            return None
        return self.jar_for(self._current_actor)

    # ==================== Branch / Merge ====================

    def branch(self) -> "Context":
        return Context(
            actors=self._actors,
            current_actor=self._current_actor,
            stash=self.stash.branch(),
            stack=self.stack,
            listeners=self.listeners,
            tally=self.tally,
        )

    @classmethod
    def merge(cls, branches: Iterable["Context"], base: Optional["Context"] = None) -> "Context":
        """
        Fold branches back into one context.

        Actor tables are unioned (later branch wins on an alias collision) and
        stash histories merged in branch order. Current actor and stack come
        from `base` when given, else from the first branch.
        """
        branches = list(branches)
        origin = base if base is not None else (branches[0] if branches else cls())

        actors: Dict[str, httpx.Cookies] = dict(origin._actors)
        for branch in branches:
            actors.update(branch._actors)

        stashes = [origin.stash] + [b.stash for b in branches]
        return Context(
            actors=actors,
            current_actor=origin._current_actor,
            stash=Stash.merge(stashes),
            stack=origin.stack,
            listeners=origin.listeners,
            tally=origin.tally,
        )

    # ==================== Listeners ====================

    def attach(self, listener: Any) -> None:
        if listener not in self.listeners:
            self.listeners.append(listener)

    def detach(self, listener: Any) -> None:
        if listener in self.listeners:
            self.listeners.remove(listener)

    def notify(self, hook: str, *args: Any) -> None:
        """Call `hook` on every attached listener; listener errors are logged, not raised."""
        for listener in list(self.listeners):
            fn = getattr(listener, hook, None)
            if fn is None:
                continue
            try:
                fn(*args)
            except Exception:
                logger.debug(f"Listener {listener!r} failed in {hook}", exc_info=True)

    # ==================== Tally ====================

    @property
    def expectations_passed(self) -> int:
        return self.tally.passed

    @property
    def expectations_failed(self) -> int:
        return self.tally.failed
