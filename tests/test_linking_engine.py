#!/usr/bin/env python3
"""
Contact Linking Engine Tests
============================
End-to-end identify behaviour against the in-memory store: the reference
scenarios, graph invariants, rollback and concurrent callers.

Usage:
    pytest tests/test_linking_engine.py -v
"""

import sys
import threading
import time
from pathlib import Path

import pytest

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from reconcile.linking.contact_store import InMemoryContactStore
from reconcile.linking.coordinator import KeyLockCoordinator
from reconcile.linking.engine import ContactLinkingEngine
from reconcile.linking.errors import InvalidObservation, LockTimeout, StoreFailure
from reconcile.linking.models import LinkPrecedence, Observation

from conftest import at


def assert_graph_is_flat(store):
    """Every secondary links straight to a live primary; each component has one primary."""
    records = store.all_records()
    by_id = {r.id: r for r in records}
    for record in records:
        if record.is_primary:
            assert record.linked_id is None
        else:
            assert by_id[record.linked_id].is_primary


# ============================================================================
# REFERENCE SCENARIOS
# ============================================================================

def test_first_sighting_creates_primary(engine, store):
    view = engine.identify(Observation(email="a@x.com"))

    assert view.primary_contact_id == 1
    assert view.emails == ["a@x.com"]
    assert view.phone_numbers == []
    assert view.secondary_contact_ids == []
    assert store.get(1).phone_number is None
    print("✓ New primary created")


def test_new_phone_extends_identity(engine, store):
    engine.identify(Observation(email="a@x.com"))
    view = engine.identify(Observation(email="a@x.com", phone_number="111"))

    assert view.primary_contact_id == 1
    assert view.emails == ["a@x.com"]
    assert view.phone_numbers == ["111"]
    assert view.secondary_contact_ids == [2]
    assert store.get(1).is_primary
    assert store.get(2).linked_id == 1


def test_repeat_observation_is_no_op(engine, store):
    engine.identify(Observation(email="a@x.com"))
    first = engine.identify(Observation(email="a@x.com", phone_number="111"))
    again = engine.identify(Observation(email="a@x.com", phone_number="111"))

    assert again == first
    assert len(store.all_records()) == 2
    print("✓ Repeat observation wrote nothing")


def test_bridging_observation_merges_into_older_primary(engine, store, clock):
    clock.set(at(1))
    p1 = store.create("a@x.com", None, LinkPrecedence.PRIMARY)
    clock.set(at(2))
    p2 = store.create(None, "222", LinkPrecedence.PRIMARY)
    clock.set(at(100))

    view = engine.identify(Observation(email="a@x.com", phone_number="222"))

    assert view.primary_contact_id == p1.id
    assert view.secondary_contact_ids == [p2.id, 3]
    assert view.emails == ["a@x.com"]
    assert view.phone_numbers == ["222"]
    demoted = store.get(p2.id)
    assert demoted.link_precedence == LinkPrecedence.SECONDARY
    assert demoted.linked_id == p1.id
    assert store.get(3).linked_id == p1.id
    print("✓ Merge kept the older primary")


def test_merge_follows_creation_time_not_id(engine, store, clock):
    clock.set(at(2))
    p1 = store.create("a@x.com", None, LinkPrecedence.PRIMARY)
    clock.set(at(1))
    p2 = store.create(None, "222", LinkPrecedence.PRIMARY)
    clock.set(at(100))

    view = engine.identify(Observation(email="a@x.com", phone_number="222"))

    assert view.primary_contact_id == p2.id
    assert view.secondary_contact_ids == [p1.id, 3]
    assert view.emails == ["a@x.com"]
    assert view.phone_numbers == ["222"]
    assert store.get(p1.id).linked_id == p2.id
    assert store.get(p2.id).is_primary


def test_empty_observation_is_rejected(engine, store):
    with pytest.raises(InvalidObservation):
        engine.identify(Observation())
    with pytest.raises(InvalidObservation):
        engine.identify({})
    with pytest.raises(InvalidObservation):
        engine.identify({'email': '', 'phoneNumber': ''})
    assert store.all_records() == []


# ============================================================================
# INVARIANTS
# ============================================================================

def test_dict_observation_accepted(engine):
    view = engine.identify({'email': 'a@x.com', 'phoneNumber': '111'})
    assert view.to_dict() == {
        'primaryContactId': 1,
        'emails': ['a@x.com'],
        'phoneNumbers': ['111'],
        'secondaryContactIds': [],
    }


def test_match_on_other_identity_secondary_merges_both(engine, store):
    p1 = store.create("a@x.com", None, LinkPrecedence.PRIMARY)
    s1 = store.create("a@x.com", "111", LinkPrecedence.SECONDARY, linked_id=p1.id)
    p2 = store.create("b@x.com", None, LinkPrecedence.PRIMARY)

    view = engine.identify(Observation(email="b@x.com", phone_number="111"))

    assert view.primary_contact_id == p1.id
    assert view.secondary_contact_ids == [s1.id, p2.id, 4]
    assert view.emails == ["a@x.com", "b@x.com"]
    assert_graph_is_flat(store)


def test_chain_of_merges_stays_flat(engine, store):
    engine.identify(Observation(email="a@x.com", phone_number="1"))
    engine.identify(Observation(email="b@x.com", phone_number="2"))
    engine.identify(Observation(email="c@x.com", phone_number="3"))
    engine.identify(Observation(email="b@x.com", phone_number="3"))
    view = engine.identify(Observation(email="a@x.com", phone_number="2"))

    assert view.primary_contact_id == 1
    assert view.emails == ["a@x.com", "b@x.com", "c@x.com"]
    assert view.phone_numbers == ["1", "2", "3"]
    assert store.count_by_precedence()['primary'] == 1
    assert_graph_is_flat(store)


def test_every_member_resolves_to_same_view(engine, store):
    engine.identify(Observation(email="a@x.com", phone_number="1"))
    engine.identify(Observation(email="b@x.com", phone_number="2"))
    merged = engine.identify(Observation(email="a@x.com", phone_number="2"))

    assert engine.identify(Observation(email="a@x.com", phone_number="1")) == merged
    assert engine.identify(Observation(email="b@x.com", phone_number="2")) == merged
    assert len(store.all_records()) == 3


def test_partial_observation_of_known_identity_extends(engine):
    engine.identify(Observation(email="a@x.com", phone_number="1"))
    view = engine.identify(Observation(phone_number="1"))

    # (null, "1") is a new combination even though "1" is known
    assert view.primary_contact_id == 1
    assert view.secondary_contact_ids == [2]
    assert view.phone_numbers == ["1"]


def test_soft_deleted_records_do_not_match(engine, store):
    old = store.create("a@x.com", "111", LinkPrecedence.PRIMARY)
    store.soft_delete(old.id)

    view = engine.identify(Observation(email="a@x.com", phone_number="111"))
    assert view.primary_contact_id != old.id
    assert view.secondary_contact_ids == []


# ============================================================================
# FAILURE HANDLING
# ============================================================================

class FailingCreateStore(InMemoryContactStore):
    """Fails the next create after `armed` is set."""

    def __init__(self, clock):
        super().__init__(clock=clock)
        self.armed = False

    def create(self, email, phone_number, link_precedence, linked_id=None):
        if self.armed:
            raise StoreFailure("insert failed")
        return super().create(email, phone_number, link_precedence, linked_id)


def test_failed_merge_is_rolled_back(clock):
    store = FailingCreateStore(clock)
    engine = ContactLinkingEngine(store)
    p1 = engine.identify(Observation(email="a@x.com", phone_number="1"))
    p2 = engine.identify(Observation(email="b@x.com", phone_number="2"))
    before = store.all_records()

    store.armed = True
    with pytest.raises(StoreFailure):
        engine.identify(Observation(email="a@x.com", phone_number="2"))

    assert store.all_records() == before
    assert store.get(p2.primary_contact_id).is_primary
    assert store.get(p1.primary_contact_id).is_primary
    assert engine.coordinator.active_keys() == []
    print("✓ Failed merge left no partial writes")


# ============================================================================
# CONCURRENCY
# ============================================================================

def test_concurrent_first_sightings_yield_one_primary(clock):
    store = InMemoryContactStore(clock=clock)
    engine = ContactLinkingEngine(store, coordinator=KeyLockCoordinator(lock_timeout_seconds=10.0))
    barrier = threading.Barrier(8)
    views = []
    errors = []

    def worker(i):
        barrier.wait(timeout=5)
        try:
            views.append(engine.identify(Observation(email="shared@x.com", phone_number=str(i))))
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=20)

    assert errors == []
    assert store.count_by_precedence() == {'primary': 1, 'secondary': 7}
    assert len({v.primary_contact_id for v in views}) == 1
    assert_graph_is_flat(store)


def test_concurrent_bridges_converge(clock):
    store = InMemoryContactStore(clock=clock)
    engine = ContactLinkingEngine(store, coordinator=KeyLockCoordinator(lock_timeout_seconds=10.0))
    for i in range(4):
        engine.identify(Observation(email=f"u{i}@x.com", phone_number=f"{i}"))

    def bridge(i):
        engine.identify(Observation(email=f"u{i}@x.com", phone_number=f"{i + 1}"))

    threads = [threading.Thread(target=bridge, args=(i,)) for i in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=20)

    assert store.count_by_precedence()['primary'] == 1
    assert store.get(1).is_primary
    assert_graph_is_flat(store)
    assert engine.coordinator.active_keys() == []


class SlowReadStore(InMemoryContactStore):
    """Widens the window between reading candidates and writing."""

    def find_by_email_or_phone(self, email=None, phone_number=None):
        records = super().find_by_email_or_phone(email, phone_number)
        time.sleep(0.02)
        return records


def test_concurrent_unnormalizable_values_yield_one_primary(clock):
    store = SlowReadStore(clock=clock)
    engine = ContactLinkingEngine(store, coordinator=KeyLockCoordinator(lock_timeout_seconds=10.0))
    barrier = threading.Barrier(6)
    errors = []

    def worker():
        barrier.wait(timeout=5)
        try:
            engine.identify(Observation(phone_number="ext"))
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=20)

    assert errors == []
    assert store.count_by_precedence() == {'primary': 1, 'secondary': 0}
    print("✓ Same raw phone value serialized across threads")


def test_disjoint_observations_run_in_parallel(clock):
    meeting = threading.Barrier(2)

    class RendezvousStore(InMemoryContactStore):
        """Both creates must be in flight at once or the barrier breaks."""

        def create(self, email, phone_number, link_precedence, linked_id=None):
            meeting.wait(timeout=2)
            return super().create(email, phone_number, link_precedence, linked_id)

    store = RendezvousStore(clock=clock)
    engine = ContactLinkingEngine(store, coordinator=KeyLockCoordinator(lock_timeout_seconds=10.0))
    errors = []

    def worker(email, phone):
        try:
            engine.identify(Observation(email=email, phone_number=phone))
        except Exception as e:
            errors.append(e)

    threads = [
        threading.Thread(target=worker, args=("a@x.com", "1")),
        threading.Thread(target=worker, args=("b@x.com", "2")),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert errors == []
    assert store.count_by_precedence() == {'primary': 2, 'secondary': 0}


# ============================================================================
# KEY SET WIDENING
# ============================================================================

class CountingCoordinator(KeyLockCoordinator):
    """Records every key set the engine asks for."""

    def __init__(self):
        super().__init__(lock_timeout_seconds=2.0)
        self.requested = []

    def acquire(self, keys):
        self.requested.append(frozenset(keys))
        return super().acquire(keys)


class MergeDuringPeekStore(InMemoryContactStore):
    """
    Folds contact `loser_id` into `survivor_id` right after the unlocked
    peek, as a concurrent merge committing in between would.
    """

    def __init__(self, clock, loser_id, survivor_id):
        super().__init__(clock=clock)
        self.loser_id = loser_id
        self.survivor_id = survivor_id
        self.reads = 0

    def find_by_email_or_phone(self, email=None, phone_number=None):
        self.reads += 1
        if self.reads == 2:
            loser = self.get(self.loser_id)
            self.update(
                loser.id,
                link_precedence=LinkPrecedence.SECONDARY,
                linked_id=self.survivor_id,
                expected_updated_at=loser.updated_at,
            )
        return super().find_by_email_or_phone(email, phone_number)


def seed_two_identities(store):
    survivor = store.create("a@x.com", "1", LinkPrecedence.PRIMARY)
    loser = store.create("b@x.com", "2", LinkPrecedence.PRIMARY)
    return survivor, loser


def test_key_set_widens_when_match_was_repointed(clock):
    store = MergeDuringPeekStore(clock, loser_id=2, survivor_id=1)
    seed_two_identities(store)
    coordinator = CountingCoordinator()
    engine = ContactLinkingEngine(store, coordinator=coordinator)

    view = engine.identify(Observation(email="b@x.com", phone_number="9"))

    first, second = coordinator.requested
    assert "primary:2" in first
    assert "primary:1" not in first
    assert {"primary:1", "primary:2", "email:b@x.com", "phone:9"} <= second
    assert view.primary_contact_id == 1
    assert view.secondary_contact_ids == [2, 3]
    assert store.get(3).linked_id == 1
    assert coordinator.active_keys() == []
    print("✓ Re-pointed match widened the key set and linked to the new primary")


def test_key_set_that_never_settles_times_out(clock):
    store = MergeDuringPeekStore(clock, loser_id=2, survivor_id=1)
    seed_two_identities(store)
    engine = ContactLinkingEngine(store, coordinator=CountingCoordinator(), max_key_rounds=1)

    with pytest.raises(LockTimeout) as exc_info:
        engine.identify(Observation(email="b@x.com", phone_number="9"))

    assert "primary:1" in exc_info.value.details['keys']
    assert [r.id for r in store.all_records()] == [1, 2]
    assert engine.coordinator.active_keys() == []
