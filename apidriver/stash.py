# apidriver/stash.py
"""
Stash: the working memory of a script run.

Values captured from earlier responses are stored under names and referenced
later with ":name" or ":name.nested.path". Writes are kept per key in order
(layered map); a lookup returns the most recent write, so re-stashing a name
shadows the earlier value without erasing its history.

Routes get special handling: ":ref" inside a route is percent-encoded before
insertion, "::ref" is inserted verbatim, and "\\:" escapes a literal colon.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Tuple
from urllib.parse import quote

from apidriver.config import get_settings
from apidriver.errors import KeypathError, StashKeyError
from apidriver.helpers import MISSING, step_into, text_form

logger = logging.getLogger(__name__)

_TOKEN = r"\w+(?:\.\w+)*"
_ENCODED_REF_RE = re.compile(r"(?<!\\)::(" + _TOKEN + ")")
_PLAIN_REF_RE = re.compile(r"(?<![:\\]):(" + _TOKEN + ")")

# encodeURIComponent leaves these unescaped
_URI_COMPONENT_SAFE = "!~*'()"


def _trace(msg: str) -> None:
    if get_settings().trace:
        logger.debug(msg)


@dataclass(frozen=True)
class StashEntry:
    key: str
    value: Any


class Stash:
    """Layered, append-only store of named values."""

    def __init__(self):
        self._data: Dict[str, List[StashEntry]] = {}
        # entries removed by clear(), keyed by id; merge() leaves them out
        self._cleared: Dict[int, StashEntry] = {}

    # ==================== Writes ====================

    def set(self, key: str, value: Any) -> StashEntry:
        """Stash `value` under `key`. Awaitables are kept as futures and settled on lookup."""
        _trace(f"stash.set: {key}")
        if inspect.isawaitable(value) and not isinstance(value, asyncio.Future):
            value = asyncio.ensure_future(value)
        entry = StashEntry(key, value)
        self._data.setdefault(key, []).append(entry)
        return entry

    def clear(self) -> None:
        """Forget every value visible here. Merges honour the removal."""
        for entries in self._data.values():
            for entry in entries:
                self._cleared[id(entry)] = entry
        self._data = {}

    # ==================== Reads ====================

    def __contains__(self, key: str) -> bool:
        return bool(self._data.get(key))

    def keys(self) -> List[str]:
        return [k for k, entries in self._data.items() if entries]

    def history(self, key: str) -> List[Any]:
        """All values written under `key`, oldest first."""
        return [entry.value for entry in self._data.get(key, [])]

    async def get(self, key: str) -> Any:
        entries = self._data.get(key)
        if not entries:
            raise StashKeyError(key)
        value = entries[-1].value
        if isinstance(value, asyncio.Future):
            value = await value
        return value

    async def get_keypath(self, keypath: str) -> Any:
        """Resolve "key.nested.path" against the most recent write of `key`."""
        parts = keypath.split(".")
        key = parts[0]
        value = await self.get(key)

        last_part = key
        for part in parts[1:]:
            if value is MISSING or value is None:
                raise KeypathError(keypath, last_part)
            last_part = part
            value = step_into(value, part)

        return None if value is MISSING else value

    async def settle(self) -> List[Any]:
        """Wait for every deferred value, surfacing the first failure."""
        pending = [
            entry.value
            for entries in self._data.values()
            for entry in entries
            if isinstance(entry.value, asyncio.Future)
        ]
        return list(await asyncio.gather(*pending))

    # ==================== Substitution ====================

    async def substitute(self, value: Any) -> Any:
        """
        Replace stash references anywhere inside `value`.

        Strings starting with ":" are keypath references. Compiled patterns and
        callables are returned untouched. Dicts, lists and tuples are rebuilt
        with the same shape.
        """
        if isinstance(value, str):
            if value.startswith(":"):
                _trace(f"stash.substitute: {value}")
                return await self.get_keypath(value[1:])
            return value

        if isinstance(value, re.Pattern) or callable(value):
            return value

        if isinstance(value, dict):
            keys = list(value.keys())
            resolved = await asyncio.gather(*(self.substitute(value[k]) for k in keys))
            return dict(zip(keys, resolved))

        if isinstance(value, (list, tuple)):
            resolved = await asyncio.gather(*(self.substitute(v) for v in value))
            return type(value)(resolved) if isinstance(value, tuple) else list(resolved)

        return value

    async def substitute_route(self, route: Any) -> Any:
        """Substitute references embedded in a route template."""
        if not isinstance(route, str):
            return route

        _trace(f"stash.substitute_route: {route}")
        tokens = self._route_tokens(route)
        if not tokens:
            return _unescape(route)

        values = await asyncio.gather(
            *(self.get_keypath(keypath) for _, _, keypath, _ in tokens)
        )

        out = route
        for (start, end, _, verbatim), value in sorted(
            zip(tokens, values), key=lambda pair: pair[0][0], reverse=True
        ):
            text = text_form(value)
            out = out[:start] + (text if verbatim else quote(text, safe=_URI_COMPONENT_SAFE)) + out[end:]
        return _unescape(out)

    @staticmethod
    def _route_tokens(route: str) -> List[Tuple[int, int, str, bool]]:
        tokens = [
            (m.start(), m.end(), m.group(1), True)
            for m in _ENCODED_REF_RE.finditer(route)
        ]
        taken = [(start, end) for start, end, _, _ in tokens]
        for m in _PLAIN_REF_RE.finditer(route):
            if any(start <= m.start() < end for start, end in taken):
                continue
            tokens.append((m.start(), m.end(), m.group(1), False))
        return tokens

    # ==================== Branch / Merge ====================

    def branch(self) -> "Stash":
        """Copy with independent per-key histories; entries themselves are shared."""
        stash = Stash()
        stash._data = {key: list(entries) for key, entries in self._data.items()}
        stash._cleared = dict(self._cleared)
        return stash

    @classmethod
    def merge(cls, stashes: Iterable["Stash"]) -> "Stash":
        """
        Union several stash histories into one.

        Entries are appended in branch order, skipping ones already present, so
        on a key collision the write from the later branch ends up most recent.
        Entries that any of the stashes cleared are dropped, while writes the
        clearing stash never saw (a sibling's) survive.
        """
        stashes = list(stashes)
        merged = cls()
        for stash in stashes:
            merged._cleared.update(stash._cleared)

        for stash in stashes:
            for key, entries in stash._data.items():
                for entry in entries:
                    if id(entry) in merged._cleared:
                        continue
                    target = merged._data.setdefault(key, [])
                    if not any(existing is entry for existing in target):
                        target.append(entry)
        return merged


def _unescape(route: str) -> str:
    return route.replace("\\:", ":")
