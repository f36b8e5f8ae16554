"""In-memory ContactStore (no database). Rows are kept in a dict keyed by id."""

from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Sequence

from contact_store import UNSET, ContactStore
from db_models import Contact, LinkPrecedence
from errors import StorageError


def _sort_key(contact: Contact):
    return (contact.createdAt, contact.id)


class InMemoryContactStore(ContactStore):
    def __init__(self) -> None:
        self._rows: Dict[int, Contact] = {}
        self._next_id = 1

    @contextmanager
    def transaction(self) -> Iterator["InMemoryContactStore"]:
        snapshot = {cid: row.model_copy() for cid, row in self._rows.items()}
        next_id = self._next_id
        try:
            yield self
        except BaseException:
            self._rows = snapshot
            self._next_id = next_id
            raise

    def _visible(self) -> List[Contact]:
        rows = [row for row in self._rows.values() if row.deletedAt is None]
        return [row.model_copy() for row in sorted(rows, key=_sort_key)]

    def find_by_email_or_phone(self, email: Optional[str], phone: Optional[str]) -> List[Contact]:
        if email is None and phone is None:
            return []
        return [
            c for c in self._visible()
            if (email is not None and c.email == email)
            or (phone is not None and c.phoneNumber == phone)
        ]

    def find_cluster_by_primary_ids(self, ids: Sequence[int]) -> List[Contact]:
        wanted = set(ids)
        return [c for c in self._visible() if c.id in wanted or c.linkedId in wanted]

    def create(
        self,
        email: Optional[str],
        phone_number: Optional[str],
        linked_id: Optional[int],
        link_precedence: LinkPrecedence,
    ) -> Contact:
        now = datetime.now()
        contact = Contact(
            id=self._next_id,
            email=email,
            phoneNumber=phone_number,
            linkedId=linked_id,
            linkPrecedence=link_precedence,
            createdAt=now,
            updatedAt=now,
        )
        return self.add(contact)

    def update(self, contact_id: int, linked_id=UNSET, link_precedence: Optional[LinkPrecedence] = None) -> Contact:
        if contact_id not in self._rows:
            raise StorageError(f"Contact {contact_id} not found")
        changes = {"updatedAt": datetime.now()}
        if linked_id is not UNSET:
            changes["linkedId"] = linked_id
        if link_precedence is not None:
            changes["linkPrecedence"] = LinkPrecedence(link_precedence)
        self._rows[contact_id] = self._rows[contact_id].model_copy(update=changes)
        return self._rows[contact_id].model_copy()

    # Seeding helpers

    def add(self, contact: Contact) -> Contact:
        """Store a fully built contact, keeping its id and timestamps."""
        if contact.id in self._rows:
            raise StorageError(f"Contact {contact.id} already exists")
        self._rows[contact.id] = contact.model_copy()
        self._next_id = max(self._next_id, contact.id + 1)
        return contact.model_copy()

    def get(self, contact_id: int) -> Contact:
        if contact_id not in self._rows:
            raise StorageError(f"Contact {contact_id} not found")
        return self._rows[contact_id].model_copy()

    def all(self) -> List[Contact]:
        return self._visible()
