from __future__ import annotations

import os
import sys

import pytest

# Ensure repo root is on sys.path so `import apidriver` works when pytest is invoked
sys.path.insert(0, os.path.abspath(os.path.dirname(os.path.dirname(__file__))))

from apidriver.config import get_settings
from apidriver.poller import Clock


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch):
    for key in list(os.environ):
        if key.startswith("APIDRIVER_"):
            monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class FakeClock(Clock):
    """Manual clock: sleeping advances time instantly."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def now_ms(self) -> float:
        return self.now

    async def sleep(self, ms: float) -> None:
        self.sleeps.append(ms)
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()
