"""
Shared test configuration.
Puts bin/ on sys.path (the FLOW-HB modules import each other as siblings)
and provides a deterministic clock for scheduler tests.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

BIN_DIR = Path(__file__).resolve().parent.parent / "bin"
if str(BIN_DIR) not in sys.path:
    sys.path.insert(0, str(BIN_DIR))


class FakeClock:
    """Monotonic clock that only moves when slept on (or advanced by a probe)."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        # Real suspension point so cancellation can land here
        await asyncio.sleep(0)
        self.now += delay


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
