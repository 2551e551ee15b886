"""
Contact Linking Engine: Strategy Classifier
===========================================
Decides how a new observation relates to the records already on file.

Decision order:
1. CREATE_NEW_IDENTITY - nothing on file shares the email or the phone
2. NO_OP               - a record already holds exactly this (email, phone)
3. MERGE_IDENTITIES    - the candidates span more than one primary
4. EXTEND_IDENTITY     - one identity, new combination of values
"""

import logging
from typing import List, Optional

from reconcile.linking.models import ContactRecord, Observation, Strategy

logger = logging.getLogger(__name__)


def is_exact_match(record: ContactRecord, observation: Observation) -> bool:
    """
    Same email (or both absent) and same phone (or both absent).

    A record with no email only matches an observation with no email.
    """
    return (
        record.email == observation.email
        and record.phone_number == observation.phone_number
    )


def find_exact_match(
    candidates: List[ContactRecord],
    observation: Observation
) -> Optional[ContactRecord]:
    """Lowest-id candidate that matches the observation exactly."""
    matches = [c for c in candidates if is_exact_match(c, observation)]
    if not matches:
        return None
    return min(matches, key=lambda c: c.id)


def primaries_of(candidates: List[ContactRecord]) -> List[ContactRecord]:
    """Distinct primary records among the candidates, most senior first."""
    by_id = {c.id: c for c in candidates if c.is_primary}
    return sorted(by_id.values(), key=ContactRecord.seniority)


def classify(candidates: List[ContactRecord], observation: Observation) -> Strategy:
    """
    Pick the linking strategy for `observation`.

    The caller guarantees the observation carries at least one value.
    """
    if not candidates:
        strategy = Strategy.CREATE_NEW_IDENTITY
    elif find_exact_match(candidates, observation) is not None:
        strategy = Strategy.NO_OP
    elif len(primaries_of(candidates)) > 1:
        strategy = Strategy.MERGE_IDENTITIES
    else:
        strategy = Strategy.EXTEND_IDENTITY

    logger.debug(f"Classified observation against {len(candidates)} candidate(s): {strategy.value}")
    return strategy
