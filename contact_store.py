"""
Storage interface consumed by the reconciliation engine, and its sqlite
implementation.
"""

import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional, Sequence

from db_models import Contact, LinkPrecedence
from db_setup import DB_NAME, get_db_connection
from errors import StorageError

logger = logging.getLogger(__name__)

UNSET = object()


class ContactStore(ABC):
    """Persists and queries Contact rows.

    Soft-deleted rows (``deletedAt`` set) are invisible to every query.
    """

    @abstractmethod
    def find_by_email_or_phone(self, email: Optional[str], phone: Optional[str]) -> List[Contact]:
        """Contacts whose email equals ``email`` or whose phone equals ``phone``."""

    @abstractmethod
    def find_cluster_by_primary_ids(self, ids: Sequence[int]) -> List[Contact]:
        """Contacts that are one of ``ids`` or are linked to one of them."""

    @abstractmethod
    def create(
        self,
        email: Optional[str],
        phone_number: Optional[str],
        linked_id: Optional[int],
        link_precedence: LinkPrecedence,
    ) -> Contact:
        ...

    @abstractmethod
    def update(self, contact_id: int, linked_id=UNSET, link_precedence: Optional[LinkPrecedence] = None) -> Contact:
        """Change only the supplied fields; ``updatedAt`` is always bumped."""

    @abstractmethod
    def transaction(self):
        """Context manager grouping the calls of one request atomically."""


class SqliteContactStore(ContactStore):
    def __init__(self, db_name: str = DB_NAME):
        self.db_name = db_name
        self._conn: Optional[sqlite3.Connection] = None

    @contextmanager
    def transaction(self) -> Iterator["SqliteContactStore"]:
        # BEGIN IMMEDIATE takes the write lock up front, so concurrent
        # requests touching the same contacts run one after the other
        if self._conn is not None:
            yield self
            return
        try:
            conn = get_db_connection(self.db_name)
        except sqlite3.Error as exc:
            raise StorageError(f"Could not open transaction: {exc}") from exc
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as exc:
            conn.close()
            raise StorageError(f"Could not open transaction: {exc}") from exc
        self._conn = conn
        try:
            yield self
        except BaseException:
            try:
                conn.execute("ROLLBACK")
            except sqlite3.Error:
                # the original failure is the one worth reporting
                logger.exception("Rollback failed")
            raise
        else:
            try:
                conn.execute("COMMIT")
            except sqlite3.Error as exc:
                raise StorageError(f"Could not commit transaction: {exc}") from exc
        finally:
            self._conn = None
            conn.close()

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        conn = self._conn or get_db_connection(self.db_name)
        try:
            yield conn.cursor()
        except sqlite3.Error as exc:
            raise StorageError(f"Contact store failure: {exc}") from exc
        finally:
            if conn is not self._conn:
                conn.close()

    def _fetch(self, query: str, params: Sequence = ()) -> List[Contact]:
        with self._cursor() as cursor:
            cursor.execute(query, params)
            return [Contact(**dict(row)) for row in cursor.fetchall()]

    def find_by_email_or_phone(self, email: Optional[str], phone: Optional[str]) -> List[Contact]:
        conditions = []
        params = []
        if email is not None:
            conditions.append("email = ?")
            params.append(email)
        if phone is not None:
            conditions.append("phoneNumber = ?")
            params.append(phone)
        if not conditions:
            return []

        query = f"""
            SELECT * FROM Contact
            WHERE deletedAt IS NULL
            AND ({" OR ".join(conditions)})
            ORDER BY createdAt ASC, id ASC
        """
        return self._fetch(query, params)

    def find_cluster_by_primary_ids(self, ids: Sequence[int]) -> List[Contact]:
        ids = list(ids)
        if not ids:
            return []
        marks = ", ".join("?" for _ in ids)
        query = f"""
            SELECT * FROM Contact
            WHERE deletedAt IS NULL
            AND (id IN ({marks}) OR linkedId IN ({marks}))
            ORDER BY createdAt ASC, id ASC
        """
        return self._fetch(query, ids + ids)

    def get(self, contact_id: int) -> Contact:
        contacts = self._fetch("SELECT * FROM Contact WHERE id = ?", (contact_id,))
        if not contacts:
            raise StorageError(f"Contact {contact_id} not found")
        return contacts[0]

    def create(
        self,
        email: Optional[str],
        phone_number: Optional[str],
        linked_id: Optional[int],
        link_precedence: LinkPrecedence,
    ) -> Contact:
        now = datetime.now().isoformat(timespec="microseconds")
        with self._cursor() as cursor:
            cursor.execute("""
                INSERT INTO Contact (phoneNumber, email, linkedId, linkPrecedence, createdAt, updatedAt)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (phone_number, email, linked_id, LinkPrecedence(link_precedence).value, now, now))
            contact_id = cursor.lastrowid
        logger.debug("Inserted contact %s (%s)", contact_id, link_precedence)
        return self.get(contact_id)

    def update(self, contact_id: int, linked_id=UNSET, link_precedence: Optional[LinkPrecedence] = None) -> Contact:
        assignments = ["updatedAt = ?"]
        params = [datetime.now().isoformat(timespec="microseconds")]
        if linked_id is not UNSET:
            assignments.append("linkedId = ?")
            params.append(linked_id)
        if link_precedence is not None:
            assignments.append("linkPrecedence = ?")
            params.append(LinkPrecedence(link_precedence).value)
        params.append(contact_id)

        with self._cursor() as cursor:
            cursor.execute(f"UPDATE Contact SET {', '.join(assignments)} WHERE id = ?", params)
            if cursor.rowcount == 0:
                raise StorageError(f"Contact {contact_id} not found")
        return self.get(contact_id)
