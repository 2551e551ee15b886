"""
Identity Reconciliation - Contact Linking Engine
================================================
Resolves (email, phone) observations to one consolidated customer identity.

Provides:
- Strategy classification (new / no-op / extend / merge)
- Strategy execution against a ContactStore
- Identity serialization for the API
- Key-based concurrency coordination for overlapping requests
"""

from reconcile.linking.models import (
    Component,
    ContactRecord,
    IdentityView,
    LinkPrecedence,
    Observation,
    Strategy,
)
from reconcile.linking.errors import (
    Conflict,
    IdentityError,
    InvalidObservation,
    InvariantViolation,
    LockTimeout,
    StoreFailure,
)
from reconcile.linking.classifier import classify, find_exact_match
from reconcile.linking.contact_store import ContactStore, InMemoryContactStore
from reconcile.linking.coordinator import KeyLockCoordinator, KeyState, identity_keys
from reconcile.linking.executor import StrategyExecutor
from reconcile.linking.serializer import serialize
from reconcile.linking.engine import ContactLinkingEngine

__all__ = [
    'Component',
    'ContactRecord',
    'IdentityView',
    'LinkPrecedence',
    'Observation',
    'Strategy',
    'Conflict',
    'IdentityError',
    'InvalidObservation',
    'InvariantViolation',
    'LockTimeout',
    'StoreFailure',
    'classify',
    'find_exact_match',
    'ContactStore',
    'InMemoryContactStore',
    'KeyLockCoordinator',
    'KeyState',
    'identity_keys',
    'StrategyExecutor',
    'serialize',
    'ContactLinkingEngine',
]
