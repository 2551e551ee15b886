"""
Shared fixtures for the identity reconciliation tests.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from reconcile.linking.contact_store import InMemoryContactStore
from reconcile.linking.coordinator import KeyLockCoordinator
from reconcile.linking.engine import ContactLinkingEngine

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock: every call returns the next second."""

    def __init__(self, start: datetime = T0):
        self.current = start

    def __call__(self) -> datetime:
        value = self.current
        self.current = value + timedelta(seconds=1)
        return value

    def set(self, value: datetime) -> None:
        self.current = value


def at(seconds: int) -> datetime:
    return T0 + timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryContactStore(clock=clock)


@pytest.fixture
def engine(store):
    return ContactLinkingEngine(store, coordinator=KeyLockCoordinator(lock_timeout_seconds=2.0))
