"""
Retention Sweeper — sweep run history.

Persists one ``SweepRun`` row per full sweep, so a stalled cleanup shows up
as failing runs or as eligible counts that keep growing.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sweeper.models.sweep_run import SweepRun
from sweeper.services.retention_sweeper import RunRecorder, SweepReport

logger = logging.getLogger(__name__)


def make_run_recorder(session_factory: async_sessionmaker) -> RunRecorder:
    """Build the recorder the sweeper calls after every full sweep."""

    async def record_sweep_run(report: SweepReport) -> None:
        row = SweepRun(
            trigger=report.trigger,
            started_at=report.started_at,
            finished_at=report.finished_at,
            duration_ms=report.duration_ms,
            total_cleaned=report.total_cleaned,
            failed_tasks=len(report.failed),
            results={name: r.to_dict() for name, r in report.results.items()},
        )
        async with session_factory() as session:
            session.add(row)
            await session.commit()
        logger.debug("Recorded sweep run %s (%s)", row.id, report.trigger)

    return record_sweep_run


async def list_sweep_runs(db: AsyncSession, limit: int = 20) -> list[SweepRun]:
    """Most recent sweep runs, newest first."""
    result = await db.execute(
        select(SweepRun).order_by(SweepRun.started_at.desc()).limit(limit)
    )
    return list(result.scalars().all())


def serialize_sweep_run(run: SweepRun) -> dict:
    return {
        "id": run.id,
        "trigger": run.trigger,
        "started_at": run.started_at.isoformat() if run.started_at else None,
        "finished_at": run.finished_at.isoformat() if run.finished_at else None,
        "duration_ms": run.duration_ms,
        "total_cleaned": run.total_cleaned,
        "failed_tasks": run.failed_tasks,
        "results": run.results or {},
    }
