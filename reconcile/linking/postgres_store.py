"""
Contact Linking Engine: PostgreSQL ContactStore
===============================================
ContactStore backed by the `contacts` table (db/schema.sql) through the
psycopg2 pool managed by DatabaseManager.

Outside a transaction every call runs on its own pooled connection and
commits immediately. Inside `transaction()` the calling thread is bound to a
single connection until the block exits, which commits or rolls back all
writes together.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

import psycopg2

from reconcile.db_utils import DatabaseManager
from reconcile.linking.contact_store import ContactStore
from reconcile.linking.errors import Conflict, StoreFailure
from reconcile.linking.models import ContactRecord, LinkPrecedence

logger = logging.getLogger(__name__)

CONTACT_COLUMNS = (
    "id, email, phone_number, linked_id, link_precedence, "
    "created_at, updated_at, deleted_at"
)


def _row_to_record(row: tuple) -> ContactRecord:
    record_id, email, phone, linked_id, precedence, created_at, updated_at, deleted_at = row
    return ContactRecord(
        id=record_id,
        email=email,
        phone_number=phone,
        linked_id=linked_id,
        link_precedence=LinkPrecedence(precedence),
        created_at=created_at,
        updated_at=updated_at,
        deleted_at=deleted_at,
    )


class PostgresContactStore(ContactStore):
    """ContactStore over psycopg2."""

    backend = "postgres"

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager
        self._local = threading.local()

    @contextmanager
    def _cursor(self):
        conn = getattr(self._local, 'conn', None)
        try:
            if conn is not None:
                with conn.cursor() as cur:
                    yield cur
            else:
                with self.db_manager.get_cursor() as cur:
                    yield cur
        except psycopg2.Error as e:
            logger.error(f"Contact store query failed: {e}")
            raise StoreFailure(f"Contact store operation failed: {e}") from e

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if getattr(self._local, 'conn', None) is not None:
            yield
            return

        try:
            with self.db_manager.get_connection() as conn:
                self._local.conn = conn
                try:
                    yield
                finally:
                    self._local.conn = None
        except psycopg2.Error as e:
            # Pool exhaustion or a failed COMMIT
            raise StoreFailure(f"Contact store transaction failed: {e}") from e

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_email_or_phone(self, email=None, phone_number=None) -> List[ContactRecord]:
        conditions = []
        params = []
        if email:
            conditions.append("email = %s")
            params.append(email)
        if phone_number:
            conditions.append("phone_number = %s")
            params.append(phone_number)
        if not conditions:
            return []

        query = f"""
            SELECT {CONTACT_COLUMNS}
            FROM contacts
            WHERE deleted_at IS NULL
              AND ({' OR '.join(conditions)})
            ORDER BY created_at, id
        """
        with self._cursor() as cur:
            cur.execute(query, tuple(params))
            return [_row_to_record(row) for row in cur.fetchall()]

    def find_component(self, primary_id: int) -> List[ContactRecord]:
        query = f"""
            SELECT {CONTACT_COLUMNS}
            FROM contacts
            WHERE deleted_at IS NULL
              AND (id = %s OR linked_id = %s)
            ORDER BY id
        """
        with self._cursor() as cur:
            cur.execute(query, (primary_id, primary_id))
            return [_row_to_record(row) for row in cur.fetchall()]

    def get(self, record_id: int) -> Optional[ContactRecord]:
        query = f"""
            SELECT {CONTACT_COLUMNS}
            FROM contacts
            WHERE id = %s AND deleted_at IS NULL
        """
        with self._cursor() as cur:
            cur.execute(query, (record_id,))
            row = cur.fetchone()
        return _row_to_record(row) if row else None

    def count_by_precedence(self) -> Dict[str, int]:
        counts = {p.value: 0 for p in LinkPrecedence}
        with self._cursor() as cur:
            cur.execute("""
                SELECT link_precedence, COUNT(*)
                FROM contacts
                WHERE deleted_at IS NULL
                GROUP BY link_precedence
            """)
            for precedence, total in cur.fetchall():
                counts[precedence] = total
        return counts

    def ping(self) -> bool:
        return self.db_manager.check_health()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, email, phone_number, link_precedence, linked_id=None) -> ContactRecord:
        query = f"""
            INSERT INTO contacts (email, phone_number, linked_id, link_precedence)
            VALUES (%s, %s, %s, %s)
            RETURNING {CONTACT_COLUMNS}
        """
        precedence = LinkPrecedence(link_precedence).value
        with self._cursor() as cur:
            cur.execute(query, (email, phone_number, linked_id, precedence))
            record = _row_to_record(cur.fetchone())
        logger.debug(f"Inserted contact {record.id} ({precedence})")
        return record

    def update(self, record_id, link_precedence=None, linked_id=None,
               expected_updated_at=None) -> ContactRecord:
        precedence = LinkPrecedence(link_precedence).value if link_precedence else None
        query = f"""
            UPDATE contacts
            SET link_precedence = COALESCE(%s, link_precedence),
                linked_id = COALESCE(%s, linked_id),
                updated_at = clock_timestamp()
            WHERE id = %s
              AND deleted_at IS NULL
              AND (%s::timestamptz IS NULL OR updated_at = %s::timestamptz)
            RETURNING {CONTACT_COLUMNS}
        """
        with self._cursor() as cur:
            cur.execute(
                query,
                (precedence, linked_id, record_id, expected_updated_at, expected_updated_at)
            )
            row = cur.fetchone()
            if row is not None:
                return _row_to_record(row)

            cur.execute(
                "SELECT updated_at FROM contacts WHERE id = %s AND deleted_at IS NULL",
                (record_id,)
            )
            if cur.fetchone() is None:
                raise StoreFailure(f"Contact {record_id} not found for update")
        raise Conflict(
            f"Contact {record_id} changed since it was read",
            details={'record_id': record_id}
        )

    def close(self) -> None:
        self.db_manager.close()
