"""Shared pytest fixtures for docstore tests."""

from __future__ import annotations

import itertools
from typing import Any

import pytest

from docstore.runtime.context import CallContext
from docstore.runtime.crud_service import CrudService
from docstore.runtime.crypto import hash_password
from docstore.runtime.record_store import RecordStore
from docstore.runtime.rule_engine import RuleEngine

OWNER_ID = "user-ivan"
OTHER_ID = "user-john"


@pytest.fixture
def books_seed() -> dict[str, dict[str, dict[str, Any]]]:
    """Five books; ratings 5, 3, 4, 4, 6 with a duplicated author."""
    return {
        "books": {
            "b1": {"title": "Dune", "author": "Herbert", "rating": 5, "_ownerId": OWNER_ID},
            "b2": {"title": "Emma", "author": "Austen", "rating": 3, "_ownerId": OTHER_ID},
            "b3": {"title": "Solaris", "author": "Lem", "rating": 4, "_ownerId": OWNER_ID},
            "b4": {"title": "Persuasion", "author": "Austen", "rating": 4, "_ownerId": OTHER_ID},
            "b5": {"title": "Neuromancer", "author": "Gibson", "rating": 6, "_ownerId": OWNER_ID},
        }
    }


@pytest.fixture
def books(books_seed: dict[str, Any]) -> list[dict[str, Any]]:
    """The book fixture as a record list, annotated with _id."""
    return [{**record, "_id": record_id} for record_id, record in books_seed["books"].items()]


@pytest.fixture
def sequential_ids():
    """Id factory yielding id-1, id-2, ..."""
    counter = itertools.count(1)
    return lambda: f"id-{next(counter)}"


@pytest.fixture
def store(books_seed: dict[str, Any], sequential_ids) -> RecordStore:
    return RecordStore(books_seed, id_factory=sequential_ids)


@pytest.fixture
def protected_seed() -> dict[str, dict[str, dict[str, Any]]]:
    password_hash = hash_password("123456")
    return {
        "users": {
            OWNER_ID: {"username": "Ivan", "email": "ivan@abv.bg", "hashedPassword": password_hash},
            OTHER_ID: {"username": "John", "email": "john@abv.bg", "hashedPassword": password_hash},
        },
        "sessions": {},
    }


@pytest.fixture
def protected_store(protected_seed: dict[str, Any]) -> RecordStore:
    return RecordStore(protected_seed)


@pytest.fixture
def owner(protected_store: RecordStore) -> CallContext:
    """Caller owning b1, b3 and b5."""
    return CallContext(user=protected_store.get_one("users", OWNER_ID))


@pytest.fixture
def other(protected_store: RecordStore) -> CallContext:
    """Caller owning b2 and b4."""
    return CallContext(user=protected_store.get_one("users", OTHER_ID))


@pytest.fixture
def guest() -> CallContext:
    return CallContext()


@pytest.fixture
def make_crud(store: RecordStore, protected_store: RecordStore):
    """Build a CrudService over the fixture stores with the given rules."""

    def _make(rules: dict[str, Any] | None = None) -> CrudService:
        return CrudService(store, protected_store, RuleEngine(rules, lookup=store.get_one))

    return _make
