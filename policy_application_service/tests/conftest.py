# Shared fixtures: in-memory doubles for Motor and blob storage, plus a TestClient wired to them
import copy
import datetime
from types import SimpleNamespace
from typing import Dict, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from policy_application_service.app.dependencies.identity import get_current_identity, get_websocket_identity
from policy_application_service.app.dependencies.services import get_optional_kafka_producer, get_reconciler
from policy_application_service.app.main import app
from policy_application_service.app.models import Identity
from policy_application_service.app.service.coordinator import CoordinatorHub, get_coordinator_hub
from policy_application_service.app.service.interfaces.blob_storage import AbstractBlobStorage
from policy_application_service.app.service.reconciler import AttachmentReconciler
from policy_application_service.app.service.wizard.sessions import WizardSessionRegistry, get_wizard_registry
from policy_application_service.infrastructure.database.connection import get_db

FIXED_UPLOAD_MS = 1_700_000_000_000
FIXED_TODAY = datetime.date(2025, 6, 1)

OWNER = Identity(id="agent-owner-0001", email="Owner@Example.com")
RECIPIENT = Identity(id="agent-recipient-0002", email="agent2@example.com")
OUTSIDER = Identity(id="agent-outsider-0003", email="outsider@example.com")


def _matches(doc: dict, query: dict) -> bool:
    for key, expected in query.items():
        if isinstance(expected, dict) and "$in" in expected:
            if doc.get(key) not in expected["$in"]:
                return False
        elif doc.get(key) != expected:
            return False
    return True


class FakeCursor:
    def __init__(self, docs: List[dict]):
        self._docs = docs

    def sort(self, key, direction=1):
        self._docs = sorted(self._docs, key=lambda d: d.get(key), reverse=direction == -1)
        return self

    def skip(self, count: int):
        self._docs = self._docs[count:]
        return self

    def limit(self, count: int):
        self._docs = self._docs[:count]
        return self

    async def to_list(self, length: Optional[int] = None):
        docs = self._docs if length is None else self._docs[:length]
        return [copy.deepcopy(d) for d in docs]


class FakeCollection:
    """Enough of AsyncIOMotorCollection for the stores, including unique indexes."""

    def __init__(self, unique_keys: Tuple[Tuple[str, ...], ...] = ()):
        self.docs: List[dict] = []
        self.unique_keys = unique_keys

    def _check_unique(self, candidate: dict, ignore: Optional[dict] = None):
        for key in self.unique_keys:
            for existing in self.docs:
                if existing is ignore:
                    continue
                if all(existing.get(k) == candidate.get(k) for k in key):
                    raise DuplicateKeyError(f"E11000 duplicate key on {key}")

    async def insert_one(self, doc: dict):
        doc = copy.deepcopy(doc)
        self._check_unique(doc)
        self.docs.append(doc)
        return SimpleNamespace(inserted_id=doc.get("id"))

    async def find_one(self, query: dict):
        for doc in self.docs:
            if _matches(doc, query):
                return copy.deepcopy(doc)
        return None

    def find(self, query: Optional[dict] = None):
        return FakeCursor([d for d in self.docs if _matches(d, query or {})])

    async def count_documents(self, query: dict) -> int:
        return sum(1 for d in self.docs if _matches(d, query))

    async def delete_one(self, query: dict):
        for index, doc in enumerate(self.docs):
            if _matches(doc, query):
                del self.docs[index]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def replace_one(self, query: dict, replacement: dict, upsert: bool = False):
        for index, doc in enumerate(self.docs):
            if _matches(doc, query):
                self.docs[index] = copy.deepcopy(replacement)
                return SimpleNamespace(matched_count=1, upserted_id=None)
        if upsert:
            await self.insert_one(replacement)
            return SimpleNamespace(matched_count=0, upserted_id=replacement.get("id"))
        return SimpleNamespace(matched_count=0, upserted_id=None)

    async def find_one_and_update(self, query: dict, update: dict, upsert: bool = False, return_document=ReturnDocument.BEFORE):
        for index, doc in enumerate(self.docs):
            if _matches(doc, query):
                updated = {**copy.deepcopy(doc), **copy.deepcopy(update.get("$set", {}))}
                self._check_unique(updated, ignore=doc)
                self.docs[index] = updated
                return copy.deepcopy(updated if return_document == ReturnDocument.AFTER else doc)
        if not upsert:
            return None
        # Equality fields of the filter become fields of the inserted document.
        inserted = {k: v for k, v in query.items() if not isinstance(v, dict)}
        inserted.update(copy.deepcopy(update.get("$setOnInsert", {})))
        inserted.update(copy.deepcopy(update.get("$set", {})))
        self._check_unique(inserted)
        self.docs.append(inserted)
        return copy.deepcopy(inserted) if return_document == ReturnDocument.AFTER else None


class FakeDatabase:
    def __init__(self):
        self.collections: Dict[str, FakeCollection] = {
            "policies": FakeCollection(unique_keys=(("id",),)),
            "policy_shares": FakeCollection(unique_keys=(("policy_id", "recipient_email"),)),
            "notifications": FakeCollection(unique_keys=(("id",),)),
            "profiles": FakeCollection(unique_keys=(("id",),)),
        }

    def __getitem__(self, name: str) -> FakeCollection:
        return self.collections.setdefault(name, FakeCollection())

    async def command(self, name: str):
        return {"ok": 1}


class FakeBlobStorage(AbstractBlobStorage):
    """Records uploads by path. Paths ending with a name in `fail_on` raise."""

    def __init__(self, fail_on=()):
        self.uploads: Dict[str, Tuple[bytes, Optional[str]]] = {}
        self.attempted: List[str] = []
        self.fail_on = set(fail_on)

    async def upload(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        self.attempted.append(path)
        if any(path.endswith(name) for name in self.fail_on):
            raise PermissionError(f"Quota exceeded for {path}")
        if path in self.uploads:
            raise FileExistsError(path)
        self.uploads[path] = (data, content_type)
        return f"https://storage.test/policy-documents/{path}"

@pytest.fixture
def fake_db():
    return FakeDatabase()

@pytest.fixture
def blob_storage():
    return FakeBlobStorage()

@pytest.fixture
def reconciler(blob_storage):
    return AttachmentReconciler(blob_storage, clock_ms=lambda: FIXED_UPLOAD_MS)

@pytest.fixture
def blob_storage_factory():
    return FakeBlobStorage

@pytest.fixture
def upload_ms():
    return FIXED_UPLOAD_MS

@pytest.fixture
def today():
    return FIXED_TODAY

@pytest.fixture
def owner():
    return OWNER

@pytest.fixture
def recipient():
    return RECIPIENT

@pytest.fixture
def outsider():
    return OUTSIDER


class SignedIn:
    """Holds the identity the overridden auth dependencies resolve to."""

    def __init__(self, identity):
        self.identity = identity

    def switch(self, identity):
        self.identity = identity


@pytest.fixture
def signed_in(owner):
    return SignedIn(owner)

@pytest.fixture
def wizard_registry():
    return WizardSessionRegistry()

@pytest.fixture
def client(fake_db, reconciler, signed_in, wizard_registry):
    hub = CoordinatorHub()
    app.dependency_overrides[get_db] = lambda: fake_db
    app.dependency_overrides[get_current_identity] = lambda: signed_in.identity
    app.dependency_overrides[get_websocket_identity] = lambda: signed_in.identity
    app.dependency_overrides[get_reconciler] = lambda: reconciler
    app.dependency_overrides[get_optional_kafka_producer] = lambda: None
    app.dependency_overrides[get_wizard_registry] = lambda: wizard_registry
    app.dependency_overrides[get_coordinator_hub] = lambda: hub
    yield TestClient(app)
    app.dependency_overrides.clear()
