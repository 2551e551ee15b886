"""
Contact Linking Engine: ContactStore
====================================
The storage contract the engine depends on, plus an in-process arena
implementation used by tests, the CLI and `store.backend: memory`.

All queries skip soft-deleted records.
"""

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Dict, Iterator, List, Optional

from reconcile.linking.errors import Conflict, InvariantViolation, StoreFailure
from reconcile.linking.models import ContactRecord, LinkPrecedence

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ContactStore(ABC):
    """Durable storage of ContactRecords."""

    backend = "abstract"

    @abstractmethod
    def find_by_email_or_phone(
        self,
        email: Optional[str] = None,
        phone_number: Optional[str] = None
    ) -> List[ContactRecord]:
        """Records whose email equals `email` or whose phone equals `phone_number`."""

    @abstractmethod
    def find_component(self, primary_id: int) -> List[ContactRecord]:
        """The primary with `primary_id` and every record linked to it."""

    @abstractmethod
    def get(self, record_id: int) -> Optional[ContactRecord]:
        """A single visible record, or None."""

    @abstractmethod
    def create(
        self,
        email: Optional[str],
        phone_number: Optional[str],
        link_precedence: LinkPrecedence,
        linked_id: Optional[int] = None
    ) -> ContactRecord:
        """Insert a record; the store assigns id, created_at and updated_at."""

    @abstractmethod
    def update(
        self,
        record_id: int,
        link_precedence: Optional[LinkPrecedence] = None,
        linked_id: Optional[int] = None,
        expected_updated_at: Optional[datetime] = None
    ) -> ContactRecord:
        """
        Change precedence and/or linked_id and refresh updated_at.

        Raises Conflict when `expected_updated_at` is given and differs from
        the stored value.
        """

    @abstractmethod
    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Unit of work: every write inside lands together or not at all."""

    def resolve_primary(self, record_id: int) -> ContactRecord:
        """
        Walk linked_id from any record to its component primary.

        Raises InvariantViolation when the record or its primary cannot be
        found, or when the link points at another secondary.
        """
        record = self.get(record_id)
        if record is None:
            raise InvariantViolation(f"Contact {record_id} does not exist")
        if record.is_primary:
            return record

        if record.linked_id is None:
            raise InvariantViolation(
                f"Secondary contact {record_id} has no linked primary",
                details={'record_id': record_id}
            )
        primary = self.get(record.linked_id)
        if primary is None or not primary.is_primary:
            raise InvariantViolation(
                f"Secondary contact {record_id} links to {record.linked_id}, "
                f"which is not a live primary",
                details={'record_id': record_id, 'linked_id': record.linked_id}
            )
        return primary

    def ping(self) -> bool:
        return True

    @abstractmethod
    def count_by_precedence(self) -> Dict[str, int]:
        """Live record counts keyed by link precedence value."""

    def close(self) -> None:
        pass


class InMemoryContactStore(ContactStore):
    """
    Arena of ContactRecords keyed by id.

    Each thread's open transaction keeps an undo journal; on failure the
    journal is replayed backwards so concurrent transactions on other threads
    are left untouched. Ids are never reused, like a database sequence.
    """

    backend = "memory"

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._records: Dict[int, ContactRecord] = {}
        self._next_id = 1
        self._clock = clock
        self._mutex = threading.RLock()
        self._local = threading.local()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _visible(self) -> List[ContactRecord]:
        return [r for r in self._records.values() if not r.is_deleted]

    def find_by_email_or_phone(self, email=None, phone_number=None) -> List[ContactRecord]:
        if not email and not phone_number:
            return []
        with self._mutex:
            matches = [
                r for r in self._visible()
                if (email and r.email == email)
                or (phone_number and r.phone_number == phone_number)
            ]
        return sorted(matches, key=ContactRecord.seniority)

    def find_component(self, primary_id: int) -> List[ContactRecord]:
        with self._mutex:
            members = [
                r for r in self._visible()
                if r.id == primary_id or r.linked_id == primary_id
            ]
        return sorted(members, key=lambda r: r.id)

    def get(self, record_id: int) -> Optional[ContactRecord]:
        with self._mutex:
            record = self._records.get(record_id)
        if record is None or record.is_deleted:
            return None
        return record

    def count_by_precedence(self) -> Dict[str, int]:
        counts = {p.value: 0 for p in LinkPrecedence}
        with self._mutex:
            for record in self._visible():
                counts[record.link_precedence.value] += 1
        return counts

    def all_records(self) -> List[ContactRecord]:
        """Every visible record in id order."""
        with self._mutex:
            return sorted(self._visible(), key=lambda r: r.id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, email, phone_number, link_precedence, linked_id=None) -> ContactRecord:
        with self._mutex:
            now = self._clock()
            record = ContactRecord(
                id=self._next_id,
                email=email,
                phone_number=phone_number,
                link_precedence=LinkPrecedence(link_precedence),
                linked_id=linked_id,
                created_at=now,
                updated_at=now,
            )
            self._next_id += 1
            self._records[record.id] = record
            self._journal(record.id, None)
        logger.debug(f"Created contact {record.id} ({record.link_precedence.value})")
        return record

    def update(self, record_id, link_precedence=None, linked_id=None,
               expected_updated_at=None) -> ContactRecord:
        with self._mutex:
            current = self._records.get(record_id)
            if current is None or current.is_deleted:
                raise StoreFailure(f"Contact {record_id} not found for update")
            if expected_updated_at is not None and current.updated_at != expected_updated_at:
                raise Conflict(
                    f"Contact {record_id} changed since it was read",
                    details={'record_id': record_id}
                )

            changes = {'updated_at': self._clock()}
            if link_precedence is not None:
                changes['link_precedence'] = LinkPrecedence(link_precedence)
            if linked_id is not None:
                changes['linked_id'] = linked_id
            updated = current.with_changes(**changes)
            self._records[record_id] = updated
            self._journal(record_id, current)
        return updated

    def soft_delete(self, record_id: int) -> None:
        with self._mutex:
            current = self._records[record_id]
            now = self._clock()
            self._records[record_id] = current.with_changes(deleted_at=now, updated_at=now)
            self._journal(record_id, current)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _journal(self, record_id: int, previous: Optional[ContactRecord]) -> None:
        journal = getattr(self._local, 'journal', None)
        if journal is not None:
            journal.append((record_id, previous))

    def _rollback(self, journal) -> None:
        with self._mutex:
            for record_id, previous in reversed(journal):
                if previous is None:
                    self._records.pop(record_id, None)
                else:
                    self._records[record_id] = previous
        logger.warning(f"Rolled back {len(journal)} contact write(s)")

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if getattr(self._local, 'journal', None) is not None:
            # Join the enclosing transaction
            yield
            return

        self._local.journal = []
        try:
            yield
        except BaseException:
            self._rollback(self._local.journal)
            raise
        finally:
            self._local.journal = None
