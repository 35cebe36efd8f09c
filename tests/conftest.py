"""
Shared test fixtures — in-memory document store, sweeper, async DB, API client.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from sweeper.database import drop_db, get_db, init_db, make_engine, make_session_factory
from sweeper.main import app
from sweeper.models.sweep_run import SweepRun
from sweeper.services.cleanup_tasks import RetentionPolicy
from sweeper.services.document_store import DELETE_FIELD, Document, DocumentStore
from sweeper.services.retention_sweeper import RetentionSweeper
from sweeper.services.run_history import make_run_recorder

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def days_ago(n: float) -> datetime:
    return NOW - timedelta(days=n)


def days_ahead(n: float) -> datetime:
    return NOW + timedelta(days=n)


# ── In-memory document store ────────────────────────────

class FakeStore(DocumentStore):
    """Dict-backed DocumentStore that records every batch it commits.

    Queries return documents in id order. ``fail_on[(op, collection)]`` makes
    the matching call raise; ``fail_after[(op, collection)] = n`` lets the
    first n calls through first.
    """

    def __init__(self):
        self.collections: dict[str, dict[str, dict]] = {}
        self.deleted_batches: list[tuple[str, list[str]]] = []
        self.updated_batches: list[list[tuple[str, str, dict]]] = []
        self.lookups: list[tuple[str, str]] = []
        self.queries: list[tuple[str, int]] = []
        self.fail_on: dict[tuple[str, str], Exception] = {}
        self.fail_after: dict[tuple[str, str], int] = {}
        self._calls: dict[tuple[str, str], int] = {}

    # helpers
    def add(self, collection: str, doc_id: str, **data) -> None:
        self.collections.setdefault(collection, {})[doc_id] = dict(data)

    def ids(self, collection: str) -> set[str]:
        return set(self.collections.get(collection, {}))

    def data(self, collection: str, doc_id: str) -> dict:
        return self.collections[collection][doc_id]

    def _maybe_fail(self, op: str, collection: str) -> None:
        key = (op, collection)
        self._calls[key] = self._calls.get(key, 0) + 1
        if key in self.fail_on and self._calls[key] > self.fail_after.get(key, 0):
            raise self.fail_on[key]

    @staticmethod
    def _matches(data: dict, flt) -> bool:
        if flt.field not in data:
            return False
        value = data[flt.field]
        try:
            if flt.op == "<":
                return value is not None and value < flt.value
            if flt.op == "==":
                return value == flt.value
            return value is not None if flt.value is None else value != flt.value
        except TypeError:
            return False

    def _select(self, collection, filters):
        docs = self.collections.get(collection, {})
        return [
            (doc_id, data)
            for doc_id, data in sorted(docs.items())
            if all(self._matches(data, f) for f in filters)
        ]

    # DocumentStore
    async def query(self, collection, filters=(), limit=100, start_after=None):
        self._maybe_fail("query", collection)
        self.queries.append((collection, limit))
        rows = self._select(collection, filters)
        if start_after is not None:
            rows = [(i, d) for i, d in rows if i > start_after.id]
        return [Document(collection, doc_id, dict(data)) for doc_id, data in rows[:limit]]

    async def batch_delete(self, documents):
        if not documents:
            return
        self._maybe_fail("batch_delete", documents[0].collection)
        for doc in documents:
            self.collections.get(doc.collection, {}).pop(doc.id, None)
        self.deleted_batches.append((documents[0].collection, [d.id for d in documents]))

    async def batch_update(self, updates):
        if not updates:
            return 0
        self._maybe_fail("batch_update", updates[0][0].collection)
        # documents deleted since they were read are skipped
        present = [
            (doc, fields) for doc, fields in updates
            if doc.id in self.collections.get(doc.collection, {})
        ]
        for doc, fields in present:
            stored = self.collections[doc.collection][doc.id]
            for key, value in fields.items():
                if value is DELETE_FIELD:
                    stored.pop(key, None)
                else:
                    stored[key] = value
        if present:
            self.updated_batches.append([(d.collection, d.id, f) for d, f in present])
        return len(present)

    async def get_by_id(self, collection, document_id):
        self._maybe_fail("get", collection)
        self.lookups.append((collection, document_id))
        data = self.collections.get(collection, {}).get(document_id)
        return Document(collection, document_id, dict(data)) if data is not None else None

    async def count(self, collection, filters=()):
        self._maybe_fail("count", collection)
        return len(self._select(collection, filters))


class YieldingStore(FakeStore):
    """FakeStore that suspends on every call, like a network-backed store.

    Lets concurrent tasks interleave between one task's query and its commit.
    """

    async def query(self, *args, **kwargs):
        await asyncio.sleep(0)
        return await super().query(*args, **kwargs)

    async def batch_delete(self, documents):
        await asyncio.sleep(0)
        return await super().batch_delete(documents)

    async def batch_update(self, updates):
        await asyncio.sleep(0)
        return await super().batch_update(updates)

    async def get_by_id(self, collection, document_id):
        await asyncio.sleep(0)
        return await super().get_by_id(collection, document_id)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def policy():
    """Default windows, no pause between batches."""
    return RetentionPolicy(batch_size=100, batch_delay=0)


@pytest.fixture
def sweeper(store, policy):
    return RetentionSweeper(store, policy=policy, interval=3600, clock=lambda: NOW)


# ── Test Database (SQLite in-memory) ────────────────────

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture()
async def db_engine():
    engine = make_engine(TEST_DB_URL)
    await init_db(engine)
    yield engine
    await drop_db(engine)
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest_asyncio.fixture()
async def client(session_factory, store, policy):
    """API client with a fake-store sweeper and the test DB injected."""

    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.state.sweeper = RetentionSweeper(
        store,
        policy=policy,
        interval=3600,
        clock=lambda: NOW,
        recorder=make_run_recorder(session_factory),
    )

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.state.sweeper = None
    app.dependency_overrides.clear()


# ── Sample campus data ──────────────────────────────────

@pytest.fixture
def seeded_store(store):
    """A small campus dataset touching every rule, with no overlap between rules."""
    # chat messages: expired / live
    store.add("chat_messages", "msg_expired_1", clubId="c1", createdAt=days_ago(8), expiresAt=days_ago(1))
    store.add("chat_messages", "msg_expired_2", clubId="c2", createdAt=days_ago(10), expiresAt=days_ago(3))
    store.add("chat_messages", "msg_live", clubId="c1", createdAt=days_ago(1), expiresAt=days_ahead(6))
    # old reactions / old media on messages that have not expired
    store.add(
        "chat_messages", "msg_old_reactions", clubId="c1", createdAt=days_ago(120),
        expiresAt=days_ahead(30), reactions={"👍": ["u1"]}, reactionCount=1,
    )
    store.add(
        "chat_messages", "msg_old_media", clubId="c1", createdAt=days_ago(45),
        expiresAt=days_ahead(30), mediaAttachments=[{"url": "gs://bucket/a.jpg"}],
    )
    store.add(
        "chat_messages", "msg_bad_media", clubId="c1", createdAt=days_ago(2),
        expiresAt=days_ahead(5), mediaAttachments=[{"url": "gs://bucket/b.jpg"}, {"url": ""}],
    )

    store.add("pending_approvals", "appr_expired", clubId="c1", expiresAt=days_ago(2))
    store.add("pending_approvals", "appr_live", clubId="c1", expiresAt=days_ahead(20))

    store.add("notifications", "notif_old", createdAt=days_ago(31))
    store.add("notifications", "notif_new", createdAt=days_ago(29))

    store.add("user_presence", "u_stale", lastSeen=days_ago(2))
    store.add("user_presence", "u_online", lastSeen=NOW - timedelta(minutes=5))

    store.add("chat_rooms", "room_1", clubId="c1")
    store.add("chat_participants", "part_ok", chatRoomId="room_1", clubId="c1")
    store.add("chat_participants", "part_orphan", chatRoomId="room_gone", clubId="c1")

    store.add("events", "event_1", title="Welcome week")
    store.add("event_comments", "comment_ok", eventId="event_1")
    store.add("event_comments", "comment_orphan", eventId="event_gone")
    store.add("user_event_interactions", "inter_ok", eventId="event_1")
    store.add("user_event_interactions", "inter_orphan", eventId="event_gone")

    store.add("clubs", "c1", name="Chess", pinnedMessages=["msg_live", "msg_deleted_long_ago"])
    return store
