"""Pytest configuration and shared fixtures."""

import hashlib
import itertools
import math
import shutil
import tempfile
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from site_knowledge._config import ConfigManager
from site_knowledge._embedding import EmbeddingError, EmbeddingService
from site_knowledge._sync import SyncEngine
from site_knowledge.knowledge_base import KnowledgeBase
from site_knowledge.models import CONTENT_FIELDS, RemoteRecord
from site_knowledge.record_store import RecordStore
from site_knowledge.remote import RemoteUnreachableError
from site_knowledge.utils import tokenize


class FakeClock:
    """Monotonic clock that advances one second per reading."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class FakeRemote:
    """In-memory remote store with the RemoteStoreClient interface.

    Every mutation is appended to ``mutations`` as (operation, remote_id) so
    tests can assert on what was sent and in which order.
    """

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.records: dict[str, RemoteRecord] = {}
        self.mutations: list[tuple[str, str]] = []
        self.offline = False
        self.fail_list = False
        self.fail_ids: set[str] = set()
        self.fail_creates = False
        self.token: str | None = None
        self.login_calls: list[str] = []
        self._ids = itertools.count(1)

    # Test helpers

    def seed(self, **fields) -> RemoteRecord:
        """Add a record as if another installation had created it."""
        remote_id = fields.pop("id", None) or f"r{next(self._ids)}"
        fields.setdefault("updated_at", self.clock())
        record = RemoteRecord(id=remote_id, **fields)
        self.records[remote_id] = record
        return record

    def edit(self, remote_id: str, **fields) -> RemoteRecord:
        """Change a record as if another installation had edited it."""
        record = replace(self.records[remote_id], updated_at=self.clock(), **fields)
        self.records[remote_id] = record
        return record

    def live(self) -> list[RemoteRecord]:
        return [r for r in self.records.values() if not r.is_deleted]

    # RemoteStoreClient interface

    @property
    def is_authenticated(self) -> bool:
        return self.token is not None

    def _check_online(self) -> None:
        if self.offline:
            raise RemoteUnreachableError("connection refused")

    def probe(self) -> None:
        self._check_online()

    def login(self, identity: str, password: str) -> dict:
        self._check_online()
        self.login_calls.append(identity)
        self.token = "token"
        return {"id": "u1"}

    def logout(self) -> None:
        self.token = None

    def list_all(self, include_deleted: bool = True) -> list[RemoteRecord]:
        self._check_online()
        if self.fail_list:
            raise RuntimeError("list failed")
        records = sorted(self.records.values(), key=lambda r: r.updated_at)
        if not include_deleted:
            records = [r for r in records if not r.is_deleted]
        return records

    def _apply(self, remote_id: str, fields: dict) -> RemoteRecord:
        values = {k: v for k, v in fields.items() if k in CONTENT_FIELDS}
        if "approved" in fields:
            values["approved"] = bool(fields["approved"])
        if "is_deleted" in fields:
            values["is_deleted"] = bool(fields["is_deleted"])
        record = replace(self.records[remote_id], updated_at=self.clock(), **values)
        self.records[remote_id] = record
        return record

    def create(self, fields: dict) -> RemoteRecord:
        self._check_online()
        if self.fail_creates:
            raise RemoteUnreachableError("create failed")
        remote_id = f"r{next(self._ids)}"
        self.records[remote_id] = RemoteRecord(id=remote_id)
        self.mutations.append(("create", remote_id))
        return self._apply(remote_id, fields)

    def update(self, remote_id: str, fields: dict) -> RemoteRecord:
        self._check_online()
        if remote_id in self.fail_ids:
            raise RemoteUnreachableError(f"update of {remote_id} failed")
        self.mutations.append(("update", remote_id))
        return self._apply(remote_id, fields)

    def soft_delete(self, remote_id: str) -> None:
        self._check_online()
        if remote_id in self.fail_ids:
            raise RemoteUnreachableError(f"delete of {remote_id} failed")
        self.mutations.append(("soft_delete", remote_id))
        self._apply(remote_id, {"is_deleted": True})

    def close(self) -> None:
        pass


class FakeEmbeddingService(EmbeddingService):
    """Deterministic bag-of-words embeddings; no model download needed."""

    DIMENSIONS = 256

    def __init__(self) -> None:
        super().__init__(model=None)
        self.calls = 0

    def generate_embedding(self, text: str) -> list[float]:
        tokens = tokenize(text)
        if not tokens:
            raise EmbeddingError("Cannot generate embedding for empty text")
        self.calls += 1
        vector = [0.0] * self.DIMENSIONS
        for token in tokens:
            digest = hashlib.md5(token.encode()).digest()
            vector[int.from_bytes(digest[:4], "big") % self.DIMENSIONS] += 1.0
        norm = math.sqrt(sum(v * v for v in vector))
        return [v / norm for v in vector]

    def generate_embeddings(self, texts: list[str]) -> list[list[float]]:
        return [self.generate_embedding(text) for text in texts]


class BrokenEmbeddingService(EmbeddingService):
    """Embedding service whose model cannot be loaded."""

    def __init__(self) -> None:
        super().__init__(model=None)

    def generate_embedding(self, text: str) -> list[float]:
        raise EmbeddingError("model unavailable")

    def generate_embeddings(self, texts: list[str]) -> list[list[float]]:
        raise EmbeddingError("model unavailable")


def make_fields(question: str = "How do I rotate the logs?", **overrides) -> dict:
    """Build a complete set of record fields."""
    fields = {
        "site_name": "Lab A",
        "category": "Database",
        "subcategory": "Logs",
        "question": question,
        "answer": "Run logrotate -f /etc/logrotate.conf",
        "additional_info": "",
    }
    fields.update(overrides)
    return fields


@pytest.fixture
def temp_dir():
    """Create a temporary directory, removed after the test."""
    path = tempfile.mkdtemp()
    yield Path(path)
    shutil.rmtree(path)


@pytest.fixture
def clock():
    """Shared clock for the engine and the fake remote."""
    return FakeClock()


@pytest.fixture
def remote(clock):
    """Create an empty in-memory remote store."""
    return FakeRemote(clock)


@pytest.fixture
def store():
    """Create an in-memory record store."""
    record_store = RecordStore(":memory:")
    yield record_store
    record_store.close()


@pytest.fixture
def config(temp_dir):
    """Create a configuration manager in a temporary directory."""
    return ConfigManager(temp_dir)


@pytest.fixture
def engine(store, remote, config, clock):
    """Create a sync engine over the in-memory store and fake remote."""
    sync_engine = SyncEngine(store, remote, config, clock=clock)
    yield sync_engine
    sync_engine.close()


@pytest.fixture
def embedding_service():
    """Create a deterministic fake embedding service."""
    return FakeEmbeddingService()


@pytest.fixture
def temp_kb(temp_dir, embedding_service, remote):
    """Create a temporary knowledge base wired to the fake remote."""
    kb = KnowledgeBase(
        base_path=temp_dir / "kb",
        embedding_service=embedding_service,
        remote=remote,
    )
    yield kb
    kb.close()


@pytest.fixture
def populated_kb(temp_kb):
    """Create a knowledge base with sample records."""
    temp_kb.add(
        site_name="Lab A",
        category="Network",
        subcategory="VPN",
        question="How do I reset the VPN password?",
        answer="Use the self-service portal under Account > VPN.",
        approved=True,
    )
    temp_kb.add(
        site_name="Lab A",
        category="Database",
        subcategory="Backups",
        question="Where are the nightly database backups stored?",
        answer="On the NAS under /backups/db, kept for 30 days.",
        approved=True,
    )
    temp_kb.add(
        site_name="Lab B",
        category="Printing",
        subcategory="Queues",
        question="How do I clear a stuck print queue?",
        answer="Restart the spooler service on the print server.",
    )
    return temp_kb
