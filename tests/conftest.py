"""Shared fixtures: a controllable wall clock and a sleep that advances it."""

import pytest

from tripguard.app.core.storage import reset_durable_store
from tripguard.app.services.connectivity import reset_connectivity_monitor
from tripguard.app.services.resilient_call import reset_resilient_caller


class FakeClock:
    """Wall clock in epoch seconds that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Async sleep replacement that records delays and advances the clock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep(clock: FakeClock) -> FakeSleep:
    return FakeSleep(clock)


@pytest.fixture(autouse=True)
def reset_shared_instances():
    """Keep factory singletons from leaking between tests."""
    reset_durable_store()
    reset_connectivity_monitor()
    reset_resilient_caller()
    yield
    reset_durable_store()
    reset_connectivity_monitor()
    reset_resilient_caller()
