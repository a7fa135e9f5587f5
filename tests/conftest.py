"""Shared test fixtures."""

import asyncio

import pytest


class FakeClock:
    """Manually advanced clock with a sleep that moves time forward."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        # Let already scheduled tasks run before time moves
        await asyncio.sleep(0)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    """Fake clock starting at t=1000."""
    return FakeClock()
