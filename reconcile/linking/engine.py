"""
Contact Linking Engine
======================
Resolves one (email, phone) observation to a consolidated identity.

Process:
1. Reject observations with neither value
2. Read the records touching either value and derive the identity key set
3. Lock the key set; inside one store transaction re-read the candidates
   and confirm the key set still covers them (otherwise widen and retry)
4. Classify, execute the strategy, serialize the resulting component
5. Commit, then release the keys
"""

import logging
from typing import Dict, List, Optional, Union

from reconcile.linking.classifier import classify
from reconcile.linking.contact_store import ContactStore
from reconcile.linking.coordinator import KeyLockCoordinator, identity_keys
from reconcile.linking.errors import InvalidObservation, LockTimeout
from reconcile.linking.executor import StrategyExecutor
from reconcile.linking.models import ContactRecord, IdentityView, Observation
from reconcile.linking.serializer import serialize

logger = logging.getLogger(__name__)

DEFAULT_MAX_KEY_ROUNDS = 5


class ContactLinkingEngine:
    """
    Entry point used by the API layer.

    Safe to share across request threads: every identify call serializes
    against overlapping calls through the coordinator and runs its reads and
    writes inside a single store transaction.
    """

    def __init__(
        self,
        store: ContactStore,
        coordinator: Optional[KeyLockCoordinator] = None,
        max_key_rounds: int = DEFAULT_MAX_KEY_ROUNDS
    ):
        self.store = store
        self.coordinator = coordinator or KeyLockCoordinator()
        self.executor = StrategyExecutor(store)
        self.max_key_rounds = max_key_rounds

    def identify(self, observation: Union[Observation, Dict]) -> IdentityView:
        """
        Link the observation into the identity graph and return its view.

        Raises:
            InvalidObservation: neither email nor phone number supplied
            StoreFailure, Conflict: storage failed; nothing was committed
            InvariantViolation: stored data contradicts the graph invariants
            LockTimeout: overlapping work kept the key set busy
        """
        if isinstance(observation, dict):
            observation = Observation(
                email=observation.get('email'),
                phone_number=observation.get('phone_number') or observation.get('phoneNumber'),
            )
        if observation.is_empty:
            raise InvalidObservation("Either email or phoneNumber must be provided")

        # Unlocked peek; only used to choose which keys to lock first
        peek = self.store.find_by_email_or_phone(observation.email, observation.phone_number)
        keys = identity_keys(observation, (r.primary_id() for r in peek))

        for attempt in range(1, self.max_key_rounds + 1):
            with self.coordinator.hold(keys):
                with self.store.transaction():
                    direct = self.store.find_by_email_or_phone(
                        observation.email, observation.phone_number
                    )
                    # Components whose primary key is not held may be mid-merge elsewhere
                    needed = identity_keys(observation, (r.primary_id() for r in direct))
                    if needed <= keys:
                        candidates = self._gather_candidates(direct)
                        return self._link(candidates, observation)

            logger.debug(
                f"Identity key set grew on attempt {attempt}: {sorted(needed - keys)}"
            )
            keys = keys | needed

        raise LockTimeout(
            f"Identity key set did not settle after {self.max_key_rounds} attempts",
            details={'keys': sorted(keys)}
        )

    def _link(self, candidates: List[ContactRecord], observation: Observation) -> IdentityView:
        strategy = classify(candidates, observation)
        component = self.executor.execute(strategy, candidates, observation)
        view = serialize(component)
        logger.info(
            f"identify -> {strategy.value}: primary={view.primary_contact_id} "
            f"secondaries={len(view.secondary_contact_ids)}"
        )
        return view

    def _gather_candidates(self, direct: List[ContactRecord]) -> List[ContactRecord]:
        """
        Records matching either value, plus the primary of every component
        they belong to.

        A value can match only a secondary of some component; its primary
        still has to take part in classification so that the observation
        merges the two identities instead of extending just one of them.
        """
        by_id = {record.id: record for record in direct}

        for record in direct:
            if record.is_primary or record.linked_id in by_id:
                continue
            primary = self.store.resolve_primary(record.id)
            by_id[primary.id] = primary

        return sorted(by_id.values(), key=ContactRecord.seniority)

    def close(self) -> None:
        self.store.close()
