"""
Pytest configuration and shared test helpers for backend tests.
"""
import copy
import os
import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

# Skip heavy server startup (MongoDB, scheduler) when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import pytest
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

# Shared TestClient fixture so tests can use in-process requests without a running server.
from fastapi.testclient import TestClient
from server import app


# =============================================================================
# In-memory collections
#
# Just enough of the motor collection API for the services under test:
# equality / $gte / $gt / $lt / $lte / $ne / $in filters (dotted paths and
# array membership included) and $set / $inc / $push / $pull updates, plus deletes.
# =============================================================================

def _resolve(doc, path):
    value = doc
    for part in path.split("."):
        if isinstance(value, list):
            value = [item.get(part) for item in value if isinstance(item, dict)]
        elif isinstance(value, dict):
            value = value.get(part)
        else:
            return None
    return value


def _matches_condition(actual, condition):
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for op, arg in condition.items():
            if op == "$gte":
                ok = actual is not None and actual >= arg
            elif op == "$gt":
                ok = actual is not None and actual > arg
            elif op == "$lt":
                ok = actual is not None and actual < arg
            elif op == "$lte":
                ok = actual is not None and actual <= arg
            elif op == "$ne":
                ok = arg not in actual if isinstance(actual, list) else actual != arg
            elif op == "$in":
                ok = any(a in arg for a in actual) if isinstance(actual, list) else actual in arg
            else:
                raise NotImplementedError(op)
            if not ok:
                return False
        return True
    if isinstance(actual, list) and not isinstance(condition, list):
        return condition in actual
    return actual == condition


def _matches(doc, query):
    return all(_matches_condition(_resolve(doc, key), cond) for key, cond in (query or {}).items())


def _set_path(doc, path, value):
    parts = path.split(".")
    for part in parts[:-1]:
        doc = doc.setdefault(part, {})
    doc[parts[-1]] = value


def _pull_matches(item, condition):
    if isinstance(condition, dict) and isinstance(item, dict):
        return all(item.get(k) == v for k, v in condition.items())
    return item == condition


def _apply_update(doc, update):
    for path, value in update.get("$set", {}).items():
        _set_path(doc, path, copy.deepcopy(value))
    for path, value in update.get("$inc", {}).items():
        _set_path(doc, path, (_resolve(doc, path) or 0) + value)
    for path, value in update.get("$push", {}).items():
        doc.setdefault(path, []).append(copy.deepcopy(value))
    for path, value in update.get("$pull", {}).items():
        doc[path] = [item for item in doc.get(path, []) if not _pull_matches(item, value)]


def _project(doc, projection):
    doc = copy.deepcopy(doc)
    if not projection:
        return doc
    included = [k for k, v in projection.items() if v and k != "_id"]
    if included:
        return {k: doc[k] for k in included if k in doc}
    for key, value in projection.items():
        if not value:
            doc.pop(key, None)
    return doc


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs
        self._skip = 0
        self._limit = None

    def sort(self, key, direction=1):
        self._docs.sort(key=lambda d: d.get(key), reverse=direction == -1)
        return self

    def skip(self, n):
        self._skip = n
        return self

    def limit(self, n):
        self._limit = n
        return self

    async def to_list(self, length=None):
        docs = self._docs[self._skip:]
        if self._limit:
            docs = docs[: self._limit]
        if length:
            docs = docs[:length]
        return docs


class FakeCollection:
    def __init__(self, unique=()):
        self.docs = []
        self.unique = unique

    def _first(self, query):
        return next((d for d in self.docs if _matches(d, query)), None)

    async def insert_one(self, document):
        for key in self.unique:
            if any(d.get(key) == document.get(key) for d in self.docs):
                raise DuplicateKeyError(f"duplicate key: {key}={document.get(key)}")
        self.docs.append(copy.deepcopy(document))
        return SimpleNamespace(inserted_id=document.get(self.unique[0]) if self.unique else None)

    async def find_one(self, query=None, projection=None, sort=None):
        matches = [d for d in self.docs if _matches(d, query)]
        if sort:
            key, direction = sort[0]
            matches.sort(key=lambda d: d.get(key), reverse=direction == -1)
        return _project(matches[0], projection) if matches else None

    async def find_one_and_update(self, query, update, projection=None, return_document=ReturnDocument.BEFORE):
        doc = self._first(query)
        if doc is None:
            return None
        before = _project(doc, projection)
        _apply_update(doc, update)
        return _project(doc, projection) if return_document == ReturnDocument.AFTER else before

    async def update_one(self, query, update):
        doc = self._first(query)
        if doc is None:
            return SimpleNamespace(matched_count=0, modified_count=0)
        _apply_update(doc, update)
        return SimpleNamespace(matched_count=1, modified_count=1)

    async def delete_one(self, query):
        doc = self._first(query)
        if doc is None:
            return SimpleNamespace(deleted_count=0)
        self.docs.remove(doc)
        return SimpleNamespace(deleted_count=1)

    async def delete_many(self, query):
        keep = [d for d in self.docs if not _matches(d, query)]
        deleted = len(self.docs) - len(keep)
        self.docs[:] = keep
        return SimpleNamespace(deleted_count=deleted)

    def find(self, query=None, projection=None):
        return FakeCursor([_project(d, projection) for d in self.docs if _matches(d, query)])

    async def count_documents(self, query):
        return sum(1 for d in self.docs if _matches(d, query))


class FakeDatabase:
    UNIQUE_KEYS = {
        "accounts": ("account_id",),
        "credit_holds": ("hold_id",),
        "credit_transactions": ("transaction_id",),
        "articles": ("article_id",),
        "generation_jobs": ("job_id",),
        "stripe_events": ("event_id",),
    }

    def __init__(self):
        self._collections = {}

    def __getitem__(self, name):
        if name not in self._collections:
            self._collections[name] = FakeCollection(self.UNIQUE_KEYS.get(name, ()))
        return self._collections[name]

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]


@pytest.fixture
def fake_db():
    """In-memory database patched in for every service (they share database.get_db)."""
    db = FakeDatabase()
    with patch("database.database.get_db", return_value=db):
        yield db


@pytest.fixture
def make_account(fake_db):
    """Insert an account document and return it."""
    from textbuilder.models.account import Account

    def _make(credits=0, **fields):
        account = Account(email=fields.pop("email", "writer@example.com"), credits=credits, **fields)
        doc = account.model_dump()
        fake_db.accounts.docs.append(doc)
        return doc

    return _make


@pytest.fixture
def auth_headers():
    """Bearer headers for an account id."""
    from auth import create_account_token

    def _headers(account_id, email="writer@example.com"):
        return {"Authorization": f"Bearer {create_account_token(account_id, email)}"}

    return _headers


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app). Use for unit-style API tests."""
    return TestClient(app)
