"""
Retention Sweeper — scheduler and fan-out/fan-in over the cleanup tasks.

Lifecycle: ``stopped → running → stopped`` via ``start()`` / ``stop()``;
``dispose()`` is terminal. ``start()`` runs one sweep immediately and then
one sweep per interval. ``stop()`` only disarms the timer: a sweep already in
flight runs to completion (``drain()`` waits for it).

A sweep runs every task concurrently and waits for all of them. Tasks
report their own failures, so a sweep never raises and one broken task
never holds back the others or the next scheduled sweep.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional, Sequence

from sweeper.services.cleanup_tasks import (
    BatchedPurgeTask,
    CleanupTask,
    RetentionPolicy,
    TaskResult,
    build_club_tasks,
    build_default_tasks,
)
from sweeper.services.document_store import DocumentStore
from sweeper.services.errors import classify_error

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_S = 6 * 3600


class SweeperState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    DISPOSED = "disposed"


@dataclass
class SweepReport:
    """Outcome of one full sweep."""

    trigger: str
    started_at: datetime
    finished_at: datetime
    results: dict[str, TaskResult] = field(default_factory=dict)

    @property
    def total_cleaned(self) -> int:
        return sum(r.cleaned for r in self.results.values())

    @property
    def failed(self) -> list[str]:
        return [name for name, r in self.results.items() if not r.ok]

    @property
    def succeeded(self) -> list[str]:
        return [name for name, r in self.results.items() if r.ok]

    @property
    def duration_ms(self) -> float:
        return (self.finished_at - self.started_at).total_seconds() * 1000

    def to_dict(self) -> dict:
        return {
            "trigger": self.trigger,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_ms": round(self.duration_ms, 2),
            "total_cleaned": self.total_cleaned,
            "failed": self.failed,
            "results": {name: r.to_dict() for name, r in self.results.items()},
        }


RunRecorder = Callable[[SweepReport], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RetentionSweeper:
    """Periodically enforces retention and integrity rules on a document store.

    Attributes:
        policy: Batching and retention windows handed to every task.
        interval: Seconds between scheduled sweeps.
        last_report: Report of the most recent full sweep, if any.

    Example:
        >>> sweeper = RetentionSweeper(FirestoreStore(client))
        >>> sweeper.start()            # eager sweep + every 6 hours
        >>> stats = await sweeper.get_statistics()
        >>> sweeper.stop()
        >>> await sweeper.drain()
    """

    def __init__(
        self,
        store: DocumentStore,
        policy: Optional[RetentionPolicy] = None,
        interval: float = DEFAULT_INTERVAL_S,
        tasks: Optional[Sequence[CleanupTask]] = None,
        clock: Callable[[], datetime] = _utcnow,
        recorder: Optional[RunRecorder] = None,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._store = store
        self.policy = policy or RetentionPolicy()
        self.interval = interval
        self._clock = clock
        self._recorder = recorder

        task_list = list(tasks) if tasks is not None else build_default_tasks(self.policy)
        self._tasks: dict[str, CleanupTask] = {}
        for task in task_list:
            if task.name in self._tasks:
                raise ValueError(f"Duplicate cleanup task name: {task.name}")
            self._tasks[task.name] = task

        self._state = SweeperState.STOPPED
        self._timer_task: Optional[asyncio.Task] = None
        self._sweep_task: Optional[asyncio.Task] = None
        self._sweep_lock = asyncio.Lock()
        self._next_run_at: Optional[float] = None
        self.last_report: Optional[SweepReport] = None

    @classmethod
    def from_settings(cls, store: DocumentStore, s, recorder: Optional[RunRecorder] = None) -> "RetentionSweeper":
        return cls(
            store,
            policy=RetentionPolicy.from_settings(s),
            interval=s.sweep_interval_seconds,
            recorder=recorder,
        )

    # ── lifecycle ─────────────────────────────────────────

    @property
    def state(self) -> SweeperState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SweeperState.RUNNING

    @property
    def task_names(self) -> list[str]:
        return list(self._tasks)

    @property
    def time_until_next_sweep(self) -> Optional[float]:
        """Seconds until the next scheduled sweep, or None when stopped."""
        if not self.is_running or self._next_run_at is None:
            return None
        remaining = self._next_run_at - asyncio.get_running_loop().time()
        return max(0.0, remaining)

    def start(self) -> None:
        """Run one sweep now and arm the periodic timer. Must be called inside a running loop."""
        if self._state is SweeperState.DISPOSED:
            raise RuntimeError("RetentionSweeper has been disposed")
        if self._state is SweeperState.RUNNING:
            logger.warning("Retention sweeper already running — start() ignored")
            return

        loop = asyncio.get_running_loop()
        self._state = SweeperState.RUNNING
        self._launch_sweep("startup")
        self._next_run_at = loop.time() + self.interval
        self._timer_task = loop.create_task(self._timer_loop(), name="retention-sweeper-timer")
        logger.info("🧹 Retention sweeper started (every %.1fh)", self.interval / 3600)

    def stop(self) -> None:
        """Disarm the timer. An in-flight sweep is left to finish."""
        if self._timer_task is not None:
            self._timer_task.cancel()
            self._timer_task = None
        self._next_run_at = None
        if self._state is SweeperState.RUNNING:
            self._state = SweeperState.STOPPED
            logger.info("🛑 Retention sweeper stopped")

    def dispose(self) -> None:
        """Stop for good; start() raises afterwards."""
        self.stop()
        if self._state is not SweeperState.DISPOSED:
            self._state = SweeperState.DISPOSED
            logger.info("🔥 Retention sweeper disposed")

    async def drain(self) -> None:
        """Wait for the scheduled sweep currently in flight, if any."""
        if self._sweep_task is not None and not self._sweep_task.done():
            await asyncio.gather(self._sweep_task, return_exceptions=True)

    async def _timer_loop(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            while True:
                await asyncio.sleep(self.interval)
                self._next_run_at = loop.time() + self.interval
                self._launch_sweep("timer")
        finally:
            self._next_run_at = None

    def _launch_sweep(self, trigger: str) -> None:
        # the sweep task is not a child of the timer, so stop() leaves it alone
        pending = self._sweep_task is not None and not self._sweep_task.done()
        if pending or self._sweep_lock.locked():
            logger.warning("⏭️ Previous sweep still running — skipping %s sweep", trigger)
            return
        self._sweep_task = asyncio.get_running_loop().create_task(
            self.run_full_sweep(trigger=trigger), name=f"retention-sweep-{trigger}"
        )

    # ── operations ────────────────────────────────────────

    async def run_full_sweep(self, trigger: str = "manual") -> SweepReport:
        """Run every cleanup task concurrently and wait for all of them. Never raises."""
        async with self._sweep_lock:
            started_at = self._clock()
            tasks = list(self._tasks.values())
            logger.info("🧹 Retention sweep (%s): running %d tasks", trigger, len(tasks))

            outcomes = await asyncio.gather(
                *(task.run(self._store, started_at) for task in tasks),
                return_exceptions=True,
            )

            results: dict[str, TaskResult] = {}
            for task, outcome in zip(tasks, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error("❌ %s: escaped its error handling: %r", task.name, outcome)
                    outcome = TaskResult(
                        name=task.name,
                        ok=False,
                        error=str(outcome) or type(outcome).__name__,
                        error_kind=classify_error(outcome),
                    )
                results[task.name] = outcome

            report = SweepReport(
                trigger=trigger,
                started_at=started_at,
                finished_at=self._clock(),
                results=results,
            )
            self.last_report = report

        if report.failed:
            logger.warning(
                "⚠️ Retention sweep (%s) done: %d cleaned, %d/%d tasks failed (%s)",
                trigger, report.total_cleaned, len(report.failed), len(results),
                ", ".join(report.failed),
            )
        else:
            logger.info("✅ Retention sweep (%s) done: %d cleaned", trigger, report.total_cleaned)

        await self._record(report)
        return report

    async def run_task(self, name: str) -> TaskResult:
        """Run a single cleanup task by name. Raises KeyError for unknown names."""
        task = self._tasks[name]
        return await task.run(self._store, self._clock())

    async def run_club_scoped_cleanup(self, club_id: str) -> dict[str, TaskResult]:
        """Delete a club's messages, approvals and participants, regardless of age."""
        if not club_id or not club_id.strip():
            raise ValueError("club_id is required")

        logger.info("🧹 Club cleanup for %s", club_id)
        tasks = build_club_tasks(self.policy, club_id)
        results = await asyncio.gather(*(task.run(self._store, self._clock()) for task in tasks))
        total = sum(r.cleaned for r in results)
        logger.info("✅ Club cleanup for %s done: %d documents removed", club_id, total)
        return {r.name: r for r in results}

    async def get_statistics(self) -> dict[str, int]:
        """Documents currently eligible under each batched purge policy.

        Read-only; a count that fails is logged and left out of the mapping.
        """
        now = self._clock()
        purge_tasks = [t for t in self._tasks.values() if isinstance(t, BatchedPurgeTask)]
        counts = await asyncio.gather(
            *(t.count_eligible(self._store, now) for t in purge_tasks),
            return_exceptions=True,
        )

        stats: dict[str, int] = {}
        for task, count in zip(purge_tasks, counts):
            if isinstance(count, BaseException):
                logger.error("❌ Statistics for %s failed: %s", task.name, count)
                continue
            stats[task.name] = count
        return stats

    async def _record(self, report: SweepReport) -> None:
        if self._recorder is None:
            return
        try:
            await self._recorder(report)
        except Exception as e:
            logger.warning("Failed to record sweep run: %s", e)
