"""
Retention Sweeper — cleanup tasks.

One task per retention or integrity rule. Every task is self-contained and
idempotent, and ``CleanupTask.run`` never raises: failures are caught,
classified and reported in the returned ``TaskResult``.

Two shapes of task:

* Batched purge (TTL / expiry / field clear, club purge): query a batch,
  commit one atomic delete or update covering exactly that batch, pause,
  repeat until the query comes back empty.
* Reconciliation (orphans, pinned lists, media references): scan one page
  of candidates, resolve references with point lookups, commit a single
  batch. The page start rotates through the collection between runs, so
  large collections converge over several sweeps.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sweeper.services.document_store import DELETE_FIELD, Document, DocumentStore, FieldFilter
from sweeper.services.errors import ErrorKind, classify_error

logger = logging.getLogger(__name__)

# ── collections ──
CHAT_MESSAGES = "chat_messages"
PENDING_APPROVALS = "pending_approvals"
NOTIFICATIONS = "notifications"
USER_PRESENCE = "user_presence"
CHAT_PARTICIPANTS = "chat_participants"
CHAT_ROOMS = "chat_rooms"
EVENT_COMMENTS = "event_comments"
USER_EVENT_INTERACTIONS = "user_event_interactions"
EVENTS = "events"
CLUBS = "clubs"


@dataclass(frozen=True)
class RetentionPolicy:
    """Batching and retention windows shared by all tasks."""

    batch_size: int = 100
    batch_delay: float = 0.1  # seconds between batches of one task
    notification_retention: timedelta = timedelta(days=30)
    media_retention: timedelta = timedelta(days=30)
    reaction_retention: timedelta = timedelta(days=90)
    presence_retention: timedelta = timedelta(days=1)

    @classmethod
    def from_settings(cls, s) -> "RetentionPolicy":
        return cls(
            batch_size=s.sweep_batch_size,
            batch_delay=s.sweep_batch_delay_ms / 1000,
            notification_retention=timedelta(days=s.notification_retention_days),
            media_retention=timedelta(days=s.media_retention_days),
            reaction_retention=timedelta(days=s.reaction_retention_days),
            presence_retention=timedelta(hours=s.presence_retention_hours),
        )


@dataclass
class TaskResult:
    name: str
    cleaned: int = 0
    batches: int = 0
    malformed: int = 0
    ok: bool = True
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    duration_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "cleaned": self.cleaned,
            "batches": self.batches,
            "malformed": self.malformed,
            "ok": self.ok,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "duration_ms": round(self.duration_ms, 2),
        }


def _valid_document_id(value: Any) -> bool:
    """Firestore ids are non-empty strings without a path separator."""
    return isinstance(value, str) and bool(value) and "/" not in value


# ─────────────────────────────────────────────────────────────────────
# base
# ─────────────────────────────────────────────────────────────────────

class CleanupTask(ABC):
    """A single retention or integrity rule over one collection."""

    name: str = ""
    collection: str = ""

    def __init__(self, policy: RetentionPolicy):
        self.policy = policy

    async def run(self, store: DocumentStore, now: Optional[datetime] = None) -> TaskResult:
        """Execute the task once. Never raises."""
        now = now or datetime.now(timezone.utc)
        result = TaskResult(name=self.name)
        started = time.perf_counter()
        logger.debug("🧹 %s: starting", self.name)
        try:
            await self._execute(store, now, result)
        except Exception as e:
            result.ok = False
            result.error = str(e) or type(e).__name__
            result.error_kind = classify_error(e)
            if result.error_kind is ErrorKind.INTERNAL:
                logger.exception("❌ %s: failed after cleaning %d", self.name, result.cleaned)
            else:
                logger.error(
                    "❌ %s: aborted (%s) after cleaning %d: %s",
                    self.name, result.error_kind.value, result.cleaned, e,
                )
        else:
            if result.cleaned or result.malformed:
                logger.info(
                    "✅ %s: cleaned %d (%d malformed) in %d batch(es)",
                    self.name, result.cleaned, result.malformed, result.batches,
                )
        finally:
            result.duration_ms = (time.perf_counter() - started) * 1000
        return result

    @abstractmethod
    async def _execute(self, store: DocumentStore, now: datetime, result: TaskResult) -> None:
        ...


# ─────────────────────────────────────────────────────────────────────
# batched purge
# ─────────────────────────────────────────────────────────────────────

class BatchedPurgeTask(CleanupTask):
    """Query → atomic batch → pause, until nothing matches."""

    apply_delay = True

    @abstractmethod
    def filters(self, now: datetime) -> list[FieldFilter]:
        ...

    async def _apply(self, store: DocumentStore, documents: list[Document]) -> int:
        """Commit one batch; returns how many documents it changed."""
        await store.batch_delete(documents)
        return len(documents)

    async def _execute(self, store, now, result):
        # cutoff is fixed for the whole invocation
        filters = self.filters(now)
        while True:
            documents = await store.query(self.collection, filters, limit=self.policy.batch_size)
            if not documents:
                break

            applied = await self._apply(store, documents)
            result.batches += 1
            result.cleaned += applied

            if self.apply_delay and self.policy.batch_delay > 0:
                await asyncio.sleep(self.policy.batch_delay)

    async def count_eligible(self, store: DocumentStore, now: Optional[datetime] = None) -> int:
        """Documents the next run would process, without touching them."""
        now = now or datetime.now(timezone.utc)
        return await store.count(self.collection, self.filters(now))


class RetentionPurgeTask(BatchedPurgeTask):
    """Delete documents whose timestamp ``field`` is older than the cutoff.

    With ``retention=None`` the field holds a per-document expiry and the
    cutoff is ``now`` itself.
    """

    def __init__(
        self,
        policy: RetentionPolicy,
        name: str,
        collection: str,
        field: str,
        retention: Optional[timedelta] = None,
    ):
        super().__init__(policy)
        self.name = name
        self.collection = collection
        self.field = field
        self.retention = retention

    def filters(self, now):
        cutoff = now - self.retention if self.retention is not None else now
        return [FieldFilter(self.field, "<", cutoff)]


class FieldClearTask(BatchedPurgeTask):
    """Strip ``target_field`` from documents older than ``retention``.

    ``updates`` must delete ``target_field`` so that a cleared document stops
    matching the non-null filter and the loop terminates.
    """

    def __init__(
        self,
        policy: RetentionPolicy,
        name: str,
        collection: str,
        target_field: str,
        retention: timedelta,
        updates: dict,
        age_field: str = "createdAt",
    ):
        super().__init__(policy)
        if updates.get(target_field) is not DELETE_FIELD:
            raise ValueError(f"{name}: updates must delete {target_field!r}")
        self.name = name
        self.collection = collection
        self.target_field = target_field
        self.retention = retention
        self.updates = updates
        self.age_field = age_field

    def filters(self, now):
        return [
            FieldFilter(self.age_field, "<", now - self.retention),
            FieldFilter(self.target_field, "!=", None),
        ]

    async def _apply(self, store, documents):
        return await store.batch_update([(doc, dict(self.updates)) for doc in documents])


class ExpiredMediaTask(FieldClearTask):
    """Drop attachment metadata from old messages.

    Deleting the objects themselves from Cloud Storage is not done here;
    their URLs are logged so they can be removed out of band.
    """

    def __init__(self, policy: RetentionPolicy):
        super().__init__(
            policy,
            name="expired_media_attachments",
            collection=CHAT_MESSAGES,
            target_field="mediaAttachments",
            retention=policy.media_retention,
            updates={"mediaAttachments": DELETE_FIELD},
        )

    async def _apply(self, store, documents):
        for doc in documents:
            attachments = doc.get("mediaAttachments")
            if not isinstance(attachments, list):
                continue
            for attachment in attachments:
                if isinstance(attachment, dict) and attachment.get("url"):
                    logger.debug("🗑️ %s: storage object left behind: %s", self.name, attachment["url"])
        return await super()._apply(store, documents)


class ClubPurgeTask(BatchedPurgeTask):
    """Delete every document of one club from a collection (admin removal)."""

    apply_delay = False

    def __init__(self, policy: RetentionPolicy, collection: str, club_id: str):
        super().__init__(policy)
        self.name = f"club_{collection}"
        self.collection = collection
        self.club_id = club_id

    def filters(self, now):
        return [FieldFilter("clubId", "==", self.club_id)]


# ─────────────────────────────────────────────────────────────────────
# reconciliation
# ─────────────────────────────────────────────────────────────────────

class ReconcileTask(CleanupTask):
    """One page of candidates per run, one batched write per run."""

    def __init__(self, policy: RetentionPolicy):
        super().__init__(policy)
        # last document of the previous page; None restarts from the top
        self._cursor: Optional[Document] = None

    def candidate_filters(self) -> list[FieldFilter]:
        return []

    async def _execute(self, store, now, result):
        page = await store.query(
            self.collection,
            self.candidate_filters(),
            limit=self.policy.batch_size,
            start_after=self._cursor,
        )
        if page:
            await self._reconcile(store, page, now, result)
        # only advance once the page has been handled
        self._cursor = page[-1] if len(page) >= self.policy.batch_size else None

    @abstractmethod
    async def _reconcile(
        self, store: DocumentStore, page: list[Document], now: datetime, result: TaskResult
    ) -> None:
        ...


class _ExistenceCache:
    """Per-run memo of point lookups against one collection."""

    def __init__(self, store: DocumentStore, collection: str):
        self._store = store
        self._collection = collection
        self._seen: dict[str, bool] = {}

    async def exists(self, document_id: str) -> bool:
        if document_id not in self._seen:
            found = await self._store.get_by_id(self._collection, document_id)
            self._seen[document_id] = found is not None
        return self._seen[document_id]


class OrphanReferenceTask(ReconcileTask):
    """Delete documents whose ``ref_field`` points at a missing document."""

    def __init__(
        self,
        policy: RetentionPolicy,
        name: str,
        collection: str,
        ref_field: str,
        target_collection: str,
    ):
        super().__init__(policy)
        self.name = name
        self.collection = collection
        self.ref_field = ref_field
        self.target_collection = target_collection

    async def _reconcile(self, store, page, now, result):
        targets = _ExistenceCache(store, self.target_collection)
        orphans: list[Document] = []
        malformed = 0

        for doc in page:
            ref_id = doc.get(self.ref_field)
            if not _valid_document_id(ref_id):
                malformed += 1
                orphans.append(doc)
                continue
            if not await targets.exists(ref_id):
                orphans.append(doc)

        if orphans:
            await store.batch_delete(orphans)
            result.batches += 1
            result.cleaned += len(orphans)
            result.malformed += malformed


class PinnedMessagesTask(ReconcileTask):
    """Remove pinned-message ids that no longer resolve to a chat message."""

    name = "orphaned_pinned_messages"
    collection = CLUBS

    async def _reconcile(self, store, page, now, result):
        messages = _ExistenceCache(store, CHAT_MESSAGES)
        updates: list[tuple[Document, dict]] = []
        removed = malformed = 0

        for club in page:
            pinned = club.get("pinnedMessages")
            if pinned is None:
                continue
            if not isinstance(pinned, list):
                updates.append((club, {"pinnedMessages": []}))
                malformed += 1
                removed += 1
                continue

            kept = []
            for message_id in pinned:
                if not _valid_document_id(message_id):
                    malformed += 1
                elif await messages.exists(message_id):
                    kept.append(message_id)
            if len(kept) != len(pinned):
                updates.append((club, {"pinnedMessages": kept}))
                removed += len(pinned) - len(kept)

        if updates:
            await store.batch_update(updates)
            result.batches += 1
            result.cleaned += removed
            result.malformed += malformed


class MediaReferencesTask(ReconcileTask):
    """Remove attachment entries without a usable ``url`` from chat messages.

    Messages past the media retention window are left to ``ExpiredMediaTask``,
    and messages past their own ``expiresAt`` to the expiry purge, so no two
    tasks write the same document in one sweep.
    """

    name = "orphaned_media_references"
    collection = CHAT_MESSAGES

    def candidate_filters(self):
        return [FieldFilter("mediaAttachments", "!=", None)]

    @staticmethod
    def _before(message: Document, field: str, cutoff: datetime) -> bool:
        value = message.get(field)
        try:
            return value is not None and value < cutoff
        except TypeError:
            return False

    async def _reconcile(self, store, page, now, result):
        media_cutoff = now - self.policy.media_retention
        updates: list[tuple[Document, dict]] = []
        removed = malformed = 0

        for message in page:
            attachments = message.get("mediaAttachments")
            if attachments is None:
                continue
            if self._before(message, "createdAt", media_cutoff) or self._before(message, "expiresAt", now):
                continue
            if not isinstance(attachments, list):
                updates.append((message, {"mediaAttachments": DELETE_FIELD}))
                malformed += 1
                removed += 1
                continue

            valid = []
            for attachment in attachments:
                if not isinstance(attachment, dict):
                    malformed += 1
                    continue
                url = attachment.get("url")
                if isinstance(url, str) and url.strip():
                    valid.append(attachment)
            if len(valid) != len(attachments):
                updates.append((message, {"mediaAttachments": valid}))
                removed += len(attachments) - len(valid)

        if updates:
            await store.batch_update(updates)
            result.batches += 1
            result.cleaned += removed
            result.malformed += malformed


# ─────────────────────────────────────────────────────────────────────
# registries
# ─────────────────────────────────────────────────────────────────────

CLUB_SCOPED_COLLECTIONS = (CHAT_MESSAGES, PENDING_APPROVALS, CHAT_PARTICIPANTS)


def build_default_tasks(policy: RetentionPolicy) -> list[CleanupTask]:
    """Every task a full sweep runs."""
    return [
        RetentionPurgeTask(policy, "expired_chat_messages", CHAT_MESSAGES, "expiresAt"),
        RetentionPurgeTask(policy, "expired_approval_requests", PENDING_APPROVALS, "expiresAt"),
        RetentionPurgeTask(
            policy, "expired_notifications", NOTIFICATIONS, "createdAt", policy.notification_retention,
        ),
        RetentionPurgeTask(
            policy, "expired_presence", USER_PRESENCE, "lastSeen", policy.presence_retention,
        ),
        ExpiredMediaTask(policy),
        FieldClearTask(
            policy,
            name="expired_reactions",
            collection=CHAT_MESSAGES,
            target_field="reactions",
            retention=policy.reaction_retention,
            updates={"reactions": DELETE_FIELD, "reactionCount": 0},
        ),
        OrphanReferenceTask(
            policy, "orphaned_chat_participants", CHAT_PARTICIPANTS, "chatRoomId", CHAT_ROOMS,
        ),
        OrphanReferenceTask(policy, "orphaned_event_comments", EVENT_COMMENTS, "eventId", EVENTS),
        OrphanReferenceTask(
            policy, "orphaned_event_interactions", USER_EVENT_INTERACTIONS, "eventId", EVENTS,
        ),
        PinnedMessagesTask(policy),
        MediaReferencesTask(policy),
    ]


def build_club_tasks(policy: RetentionPolicy, club_id: str) -> list[ClubPurgeTask]:
    return [ClubPurgeTask(policy, collection, club_id) for collection in CLUB_SCOPED_COLLECTIONS]
