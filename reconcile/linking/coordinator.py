"""
Contact Linking Engine: Concurrency Coordinator
===============================================
Serializes identify operations whose identity keys overlap.

An identity key names one thing an observation touches:
    email:<normalized email>
    phone:<normalized phone>
    primary:<component primary id>

Each key is either IDLE (no slot registered) or LOCKED. A caller acquires its
whole key set in sorted order, so two callers can never wait on each other in
a cycle. Slots are reference counted and dropped once nobody holds or waits
on them.
"""

import logging
import threading
import time
from contextlib import contextmanager
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple

from reconcile.linking.errors import LockTimeout
from reconcile.linking.models import Observation
from reconcile.linking.normalization import normalize_email, normalize_phone

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT_SECONDS = 10.0


class KeyState(str, Enum):
    IDLE = "IDLE"
    LOCKED = "LOCKED"


def identity_keys(
    observation: Observation,
    primary_ids: Iterable[Optional[int]] = ()
) -> FrozenSet[str]:
    """Identity key set for an observation and the components it resolves to."""
    keys = set()
    # Values with no canonical form still match verbatim, so they keep a raw key
    if observation.email is not None:
        keys.add(f"email:{normalize_email(observation.email) or observation.email}")
    if observation.phone_number is not None:
        keys.add(f"phone:{normalize_phone(observation.phone_number) or observation.phone_number}")
    for primary_id in primary_ids:
        if primary_id is not None:
            keys.add(f"primary:{primary_id}")
    return frozenset(keys)


class _KeySlot:
    __slots__ = ('lock', 'refs')

    def __init__(self):
        self.lock = threading.Lock()
        self.refs = 0


class KeyLockCoordinator:
    """In-process keyed lock table."""

    def __init__(self, lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS):
        self.lock_timeout_seconds = lock_timeout_seconds
        self._registry_lock = threading.Lock()
        self._slots: Dict[str, _KeySlot] = {}

    def _checkout(self, key: str) -> _KeySlot:
        with self._registry_lock:
            slot = self._slots.get(key)
            if slot is None:
                slot = self._slots[key] = _KeySlot()
            slot.refs += 1
            return slot

    def _checkin(self, key: str, slot: _KeySlot) -> None:
        with self._registry_lock:
            slot.refs -= 1
            if slot.refs == 0:
                del self._slots[key]

    def state(self, key: str) -> KeyState:
        with self._registry_lock:
            slot = self._slots.get(key)
            if slot is not None and slot.lock.locked():
                return KeyState.LOCKED
        return KeyState.IDLE

    def active_keys(self) -> List[str]:
        with self._registry_lock:
            return sorted(self._slots)

    def acquire(self, keys: Iterable[str]) -> List[Tuple[str, _KeySlot]]:
        """
        Lock every key, in sorted order, within the configured timeout.

        Returns the held slots for `release`. On timeout everything acquired
        so far is released and LockTimeout is raised.
        """
        deadline = time.monotonic() + self.lock_timeout_seconds
        held: List[Tuple[str, _KeySlot]] = []

        for key in sorted(set(keys)):
            slot = self._checkout(key)
            remaining = max(0.0, deadline - time.monotonic())
            if not slot.lock.acquire(timeout=remaining):
                self._checkin(key, slot)
                self.release(held)
                raise LockTimeout(
                    f"Timed out after {self.lock_timeout_seconds}s waiting for identity key {key}",
                    details={'key': key}
                )
            held.append((key, slot))

        logger.debug(f"Acquired identity keys {[k for k, _ in held]}")
        return held

    def release(self, held: List[Tuple[str, _KeySlot]]) -> None:
        for key, slot in reversed(held):
            slot.lock.release()
            self._checkin(key, slot)

    @contextmanager
    def hold(self, keys: Iterable[str]) -> Iterator[None]:
        held = self.acquire(keys)
        try:
            yield
        finally:
            self.release(held)
