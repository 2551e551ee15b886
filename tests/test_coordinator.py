"""
Concurrency Coordinator Tests
=============================
Identity key derivation and the keyed lock table.
"""

import sys
import threading
import time
from pathlib import Path

import pytest

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from reconcile.linking.coordinator import KeyLockCoordinator, KeyState, identity_keys
from reconcile.linking.errors import LockTimeout
from reconcile.linking.models import Observation


def test_identity_keys_normalize_values():
    keys = identity_keys(Observation(email=" A@X.com ", phone_number="+1 (555) 010"), [3, None, 3])
    assert keys == {"email:a@x.com", "phone:+1555010", "primary:3"}


def test_identity_keys_skip_missing_values():
    assert identity_keys(Observation(phone_number="111")) == {"phone:111"}


def test_hold_locks_and_releases_keys():
    coordinator = KeyLockCoordinator(lock_timeout_seconds=1.0)

    with coordinator.hold({"email:a@x.com", "primary:1"}):
        assert coordinator.state("email:a@x.com") == KeyState.LOCKED
        assert coordinator.state("primary:1") == KeyState.LOCKED
        assert coordinator.state("phone:111") == KeyState.IDLE
        assert coordinator.active_keys() == ["email:a@x.com", "primary:1"]

    assert coordinator.state("email:a@x.com") == KeyState.IDLE
    assert coordinator.active_keys() == []
    print("✓ Keys return to IDLE and slots are dropped")


def test_keys_acquired_in_sorted_order():
    coordinator = KeyLockCoordinator(lock_timeout_seconds=1.0)
    held = coordinator.acquire(["primary:2", "email:b@x.com", "phone:1", "email:a@x.com"])
    try:
        assert [key for key, _ in held] == sorted(["primary:2", "email:b@x.com", "phone:1", "email:a@x.com"])
    finally:
        coordinator.release(held)


def test_timeout_releases_partial_acquisition():
    coordinator = KeyLockCoordinator(lock_timeout_seconds=0.1)
    blocker = coordinator.acquire(["phone:111"])
    try:
        with pytest.raises(LockTimeout) as exc_info:
            coordinator.acquire(["email:a@x.com", "phone:111"])
        assert exc_info.value.details == {'key': "phone:111"}
        assert coordinator.state("email:a@x.com") == KeyState.IDLE
    finally:
        coordinator.release(blocker)
    assert coordinator.active_keys() == []


def test_overlapping_holders_are_serialized():
    coordinator = KeyLockCoordinator(lock_timeout_seconds=5.0)
    inside = []
    overlaps = []
    guard = threading.Lock()

    def worker(keys):
        with coordinator.hold(keys):
            with guard:
                if inside:
                    overlaps.append(tuple(keys))
                inside.append(1)
            time.sleep(0.01)
            with guard:
                inside.pop()

    threads = [
        threading.Thread(target=worker, args=({"email:a@x.com", f"phone:{i}"},))
        for i in range(8)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert overlaps == []
    assert coordinator.active_keys() == []


def test_values_without_canonical_form_keep_raw_key():
    """A present value is always locked, even when normalization drops it."""
    assert identity_keys(Observation(phone_number="ext")) == {"phone:ext"}
    assert identity_keys(Observation(email="   ", phone_number="--")) == {"email:   ", "phone:--"}
