"""
Pytest configuration and shared fixtures.
"""

from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from config import get_settings
from contact_store import SqliteContactStore
from db_models import Contact, LinkPrecedence
from db_setup import get_db_connection, init_db
from memory_store import InMemoryContactStore


def make_contact(
    id: int,
    email=None,
    phone=None,
    linked_id=None,
    precedence=LinkPrecedence.PRIMARY,
    created_at="2023-04-01T00:00:00",
) -> Contact:
    created = datetime.fromisoformat(created_at)
    return Contact(
        id=id,
        email=email,
        phoneNumber=phone,
        linkedId=linked_id,
        linkPrecedence=precedence,
        createdAt=created,
        updatedAt=created,
    )


def insert_contact(db_name: str, contact: Contact) -> None:
    """Write a seed row straight into sqlite, keeping its id and timestamps."""
    conn = get_db_connection(db_name)
    conn.execute(
        """
        INSERT INTO Contact (id, phoneNumber, email, linkedId, linkPrecedence, createdAt, updatedAt, deletedAt)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            contact.id,
            contact.phoneNumber,
            contact.email,
            contact.linkedId,
            contact.linkPrecedence.value,
            contact.createdAt.isoformat(timespec="microseconds"),
            contact.updatedAt.isoformat(timespec="microseconds"),
            contact.deletedAt.isoformat(timespec="microseconds") if contact.deletedAt else None,
        ),
    )
    conn.close()


@pytest.fixture
def memory_store() -> InMemoryContactStore:
    return InMemoryContactStore()


@pytest.fixture
def db_name(tmp_path) -> str:
    path = str(tmp_path / "contacts.db")
    init_db(path)
    return path


@pytest.fixture
def sqlite_store(db_name) -> SqliteContactStore:
    return SqliteContactStore(db_name)


@pytest.fixture(params=["memory", "sqlite"])
def store(request):
    """Each store implementation, for tests of the shared interface."""
    if request.param == "memory":
        return InMemoryContactStore()
    return request.getfixturevalue("sqlite_store")


@pytest.fixture
def seed(store):
    """Insert fully specified contacts into whichever store is under test."""

    def _seed(*contacts: Contact) -> None:
        for contact in contacts:
            if isinstance(store, InMemoryContactStore):
                store.add(contact)
            else:
                insert_contact(store.db_name, contact)

    return _seed


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("DB_NAME", str(tmp_path / "api.db"))
    get_settings.cache_clear()

    from main import app

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    get_settings.cache_clear()
