"""
Contact Linking Engine: Identity Serializer
===========================================
Turns a Component into the externally visible IdentityView.

Ordering rules:
- emails / phone numbers: the primary's value first, then secondaries in
  ascending id order; None and repeats are skipped
- secondary ids: ascending
"""

from typing import Iterable, List, Optional

from reconcile.linking.errors import InvariantViolation
from reconcile.linking.models import Component, IdentityView


def _unique_in_order(values: Iterable[Optional[str]]) -> List[str]:
    seen = set()
    ordered = []
    for value in values:
        if value is None or value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered


def _check_component(component: Component) -> None:
    primary = component.primary
    if not primary.is_primary:
        raise InvariantViolation(f"Component head {primary.id} is not a primary")
    for record in component.secondaries:
        if record.is_primary:
            raise InvariantViolation(
                f"Component of {primary.id} holds a second primary {record.id}"
            )
        if record.linked_id != primary.id:
            raise InvariantViolation(
                f"Secondary {record.id} links to {record.linked_id}, not to primary {primary.id}"
            )


def serialize(component: Component) -> IdentityView:
    """Build the IdentityView; pure and deterministic for a given component."""
    _check_component(component)

    secondaries = sorted(component.secondaries, key=lambda r: r.id)
    ordered = [component.primary] + secondaries

    return IdentityView(
        primary_contact_id=component.primary.id,
        emails=_unique_in_order(r.email for r in ordered),
        phone_numbers=_unique_in_order(r.phone_number for r in ordered),
        secondary_contact_ids=[r.id for r in secondaries],
    )
