"""
Contact Linking Engine: Strategy Executor
=========================================
Applies a classified strategy to the ContactStore and returns the resulting
component. All writes go through the store; the caller wraps execution in a
store transaction so a failure part-way through a merge leaves nothing behind.
"""

import logging
from typing import List

from reconcile.linking.classifier import find_exact_match, primaries_of
from reconcile.linking.contact_store import ContactStore
from reconcile.linking.errors import InvariantViolation
from reconcile.linking.models import (
    Component,
    ContactRecord,
    LinkPrecedence,
    Observation,
    Strategy,
)

logger = logging.getLogger(__name__)


class StrategyExecutor:
    """Performs the minimal set of writes for each Strategy."""

    def __init__(self, store: ContactStore):
        self.store = store
        self._handlers = {
            Strategy.CREATE_NEW_IDENTITY: self._create_new_identity,
            Strategy.NO_OP: self._no_op,
            Strategy.EXTEND_IDENTITY: self._extend_identity,
            Strategy.MERGE_IDENTITIES: self._merge_identities,
        }

    def execute(
        self,
        strategy: Strategy,
        candidates: List[ContactRecord],
        observation: Observation
    ) -> Component:
        handler = self._handlers[Strategy(strategy)]
        return handler(candidates, observation)

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _create_new_identity(self, candidates, observation) -> Component:
        primary = self.store.create(
            email=observation.email,
            phone_number=observation.phone_number,
            link_precedence=LinkPrecedence.PRIMARY,
        )
        logger.info(f"New identity: primary contact {primary.id}")
        return Component(primary=primary)

    def _no_op(self, candidates, observation) -> Component:
        match = find_exact_match(candidates, observation)
        if match is None:
            raise InvariantViolation("NO_OP chosen but no candidate matches exactly")
        primary = self.store.resolve_primary(match.id)
        return self._load_component(primary.id)

    def _extend_identity(self, candidates, observation) -> Component:
        primary = self._find_primary(candidates)
        secondary = self.store.create(
            email=observation.email,
            phone_number=observation.phone_number,
            link_precedence=LinkPrecedence.SECONDARY,
            linked_id=primary.id,
        )
        logger.info(f"Extended identity {primary.id} with secondary contact {secondary.id}")
        return self._load_component(primary.id)

    def _merge_identities(self, candidates, observation) -> Component:
        primaries = primaries_of(candidates)
        if len(primaries) < 2:
            raise InvariantViolation(
                f"MERGE_IDENTITIES needs at least two primaries, found {len(primaries)}"
            )

        survivor, losers = primaries[0], primaries[1:]
        for loser in losers:
            self._absorb(loser, survivor)

        secondary = self.store.create(
            email=observation.email,
            phone_number=observation.phone_number,
            link_precedence=LinkPrecedence.SECONDARY,
            linked_id=survivor.id,
        )
        logger.info(
            f"Merged identities {[p.id for p in losers]} into {survivor.id}; "
            f"new secondary contact {secondary.id}"
        )
        return self._load_component(survivor.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _absorb(self, loser: ContactRecord, survivor: ContactRecord) -> None:
        """Demote `loser` and re-point its secondaries straight at `survivor`."""
        # Read the loser's secondaries before demotion changes its shape
        members = self.store.find_component(loser.id)

        self.store.update(
            loser.id,
            link_precedence=LinkPrecedence.SECONDARY,
            linked_id=survivor.id,
            expected_updated_at=loser.updated_at,
        )

        for member in members:
            if member.id == loser.id:
                continue
            if member.is_primary:
                raise InvariantViolation(
                    f"Contact {member.id} is a primary but links to {loser.id}"
                )
            self.store.update(
                member.id,
                linked_id=survivor.id,
                expected_updated_at=member.updated_at,
            )
        logger.debug(
            f"Absorbed identity {loser.id} ({len(members) - 1} secondaries) into {survivor.id}"
        )

    def _find_primary(self, candidates: List[ContactRecord]) -> ContactRecord:
        primaries = primaries_of(candidates)
        if len(primaries) == 1:
            return primaries[0]
        if primaries:
            raise InvariantViolation(
                f"EXTEND_IDENTITY expects one primary, found {[p.id for p in primaries]}"
            )

        # Only secondaries on hand: resolve through the store
        resolved = {self.store.resolve_primary(c.id).id for c in candidates}
        if len(resolved) != 1:
            raise InvariantViolation(
                f"Candidates resolve to several primaries: {sorted(resolved)}"
            )
        return self.store.resolve_primary(candidates[0].id)

    def _load_component(self, primary_id: int) -> Component:
        records = self.store.find_component(primary_id)
        if not any(r.id == primary_id and r.is_primary for r in records):
            raise InvariantViolation(f"Primary contact {primary_id} is missing from its component")
        return Component.from_records(records)
