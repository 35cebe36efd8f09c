"""
Retention Sweeper — document store boundary.

The sweeper only ever talks to the remote store through ``DocumentStore``:
filtered queries with a limit, atomic batched deletes and updates, point
lookups and server-side counts. ``FirestoreStore`` implements it over the
async Firestore client from the Firebase Admin SDK.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

from google.api_core import exceptions as google_exceptions
from google.cloud.firestore import DELETE_FIELD  # noqa: F401  (re-exported for batch_update callers)
from google.cloud.firestore_v1.base_query import FieldFilter as FirestoreFieldFilter

from sweeper.services.errors import (
    TRANSIENT_GOOGLE_ERRORS,
    UNAVAILABLE_GOOGLE_ERRORS,
    DocumentGoneError,
    StoreUnavailableError,
    TransientStoreError,
)

logger = logging.getLogger(__name__)

FILTER_OPS = ("<", "==", "!=")


@dataclass(frozen=True)
class FieldFilter:
    """Single-field predicate. ``FieldFilter(f, "!=", None)`` means "f is non-null"."""

    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in FILTER_OPS:
            raise ValueError(f"Unsupported filter operator: {self.op!r}")


@dataclass(frozen=True)
class Document:
    """Read-only view of one stored document."""

    collection: str
    id: str
    data: dict = field(default_factory=dict)
    # Backend snapshot, kept so the document can serve as a query cursor
    raw: Any = field(default=None, repr=False, compare=False)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


class DocumentStore(ABC):
    """Collection-scoped operations the sweeper needs from the remote store."""

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        limit: int = 100,
        start_after: Optional[Document] = None,
    ) -> list[Document]:
        """Return up to ``limit`` documents matching every filter.

        Result order is whatever the store uses natively; ``start_after``
        resumes after a document returned by an earlier call.
        """

    @abstractmethod
    async def batch_delete(self, documents: Sequence[Document]) -> None:
        """Delete all documents in one atomic batch (all or nothing)."""

    @abstractmethod
    async def batch_update(self, updates: Sequence[tuple[Document, dict]]) -> int:
        """Apply field updates in one atomic batch. ``DELETE_FIELD`` removes a field.

        Documents deleted by another writer since they were read are skipped.
        Returns the number of documents actually updated.
        """

    @abstractmethod
    async def get_by_id(self, collection: str, document_id: str) -> Optional[Document]:
        """Point lookup; ``None`` when the document does not exist."""

    @abstractmethod
    async def count(self, collection: str, filters: Sequence[FieldFilter] = ()) -> int:
        """Server-side count of matching documents."""


class FirestoreStore(DocumentStore):
    """``DocumentStore`` over ``google.cloud.firestore.AsyncClient``.

    Every remote call runs under ``timeout`` seconds. Timeouts and transport
    or quota errors surface as ``TransientStoreError``; credential and
    permission problems (and missing composite indexes) as
    ``StoreUnavailableError``.
    """

    def __init__(self, client: Any, timeout: float = 30.0):
        self._client = client
        self._timeout = timeout

    async def _call(self, what: str, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise TransientStoreError(f"{what} timed out after {self._timeout}s") from e
        except google_exceptions.NotFound as e:
            raise DocumentGoneError(f"{what} failed: {e}") from e
        except (ConnectionError,) + TRANSIENT_GOOGLE_ERRORS as e:
            raise TransientStoreError(f"{what} failed: {e}") from e
        except UNAVAILABLE_GOOGLE_ERRORS as e:
            raise StoreUnavailableError(f"{what} failed: {e}") from e

    def _build_query(self, collection: str, filters: Iterable[FieldFilter]):
        query = self._client.collection(collection)
        for f in filters:
            query = query.where(filter=FirestoreFieldFilter(f.field, f.op, f.value))
        return query

    def _reference(self, document: Document):
        return self._client.collection(document.collection).document(document.id)

    async def query(self, collection, filters=(), limit=100, start_after=None):
        query = self._build_query(collection, filters)
        if start_after is not None and start_after.raw is not None:
            query = query.start_after(start_after.raw)
        query = query.limit(limit)
        snapshots = await self._call(f"query {collection}", query.get())
        return [
            Document(collection=collection, id=s.id, data=s.to_dict() or {}, raw=s)
            for s in snapshots
        ]

    async def batch_delete(self, documents):
        if not documents:
            return
        batch = self._client.batch()
        for doc in documents:
            batch.delete(self._reference(doc))
        await self._call(f"batch delete ({len(documents)} docs)", batch.commit())

    async def _commit_updates(self, updates):
        batch = self._client.batch()
        for doc, fields in updates:
            batch.update(self._reference(doc), fields)
        await self._call(f"batch update ({len(updates)} docs)", batch.commit())

    async def batch_update(self, updates):
        if not updates:
            return 0
        try:
            await self._commit_updates(updates)
            return len(updates)
        except DocumentGoneError:
            # Firestore rejects the whole batch; retry once with the survivors
            pass

        survivors = [
            (doc, fields)
            for doc, fields in updates
            if await self.get_by_id(doc.collection, doc.id) is not None
        ]
        logger.info(
            "↪️ batch update: %d of %d docs deleted concurrently, skipped",
            len(updates) - len(survivors), len(updates),
        )
        if survivors:
            await self._commit_updates(survivors)
        return len(survivors)

    async def get_by_id(self, collection, document_id):
        ref = self._client.collection(collection).document(document_id)
        snapshot = await self._call(f"get {collection}/{document_id}", ref.get())
        if not snapshot.exists:
            return None
        return Document(collection=collection, id=snapshot.id, data=snapshot.to_dict() or {}, raw=snapshot)

    async def count(self, collection, filters=()):
        aggregation = self._build_query(collection, filters).count(alias="count")
        results = await self._call(f"count {collection}", aggregation.get())
        if not results or not results[0]:
            return 0
        return int(results[0][0].value or 0)
