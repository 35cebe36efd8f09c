"""
API Routes — health and retention sweeper administration.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from sweeper.database import get_db
from sweeper.schemas import (
    ClubCleanupResponse,
    HealthResponse,
    NamedTaskResultResponse,
    StatisticsResponse,
    SweepReportResponse,
    SweepRunListResponse,
    SweeperStatusResponse,
)
from sweeper.services.firebase import is_initialized
from sweeper.services.retention_sweeper import RetentionSweeper
from sweeper.services.run_history import list_sweep_runs, serialize_sweep_run

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

router = APIRouter()


def get_sweeper(request: Request) -> RetentionSweeper:
    """FastAPI dependency — the sweeper owned by the app lifespan."""
    sweeper = getattr(request.app.state, "sweeper", None)
    if sweeper is None:
        raise HTTPException(status_code=503, detail="Retention sweeper is not configured")
    return sweeper


# ── Health ──────────────────────────────────────────────

@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health(request: Request):
    sweeper = getattr(request.app.state, "sweeper", None)
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=VERSION,
        firebase=is_initialized(),
        sweeper=sweeper.state.value if sweeper else None,
    )


# ── Sweeper ─────────────────────────────────────────────

@router.get("/sweeper", response_model=SweeperStatusResponse, tags=["sweeper"])
async def sweeper_status(sweeper: RetentionSweeper = Depends(get_sweeper)):
    last = sweeper.last_report
    return SweeperStatusResponse(
        state=sweeper.state.value,
        is_running=sweeper.is_running,
        interval_hours=sweeper.interval / 3600,
        next_sweep_in_s=sweeper.time_until_next_sweep,
        tasks=sweeper.task_names,
        last_report=last.to_dict() if last else None,
    )


@router.post("/sweeper/sweeps", response_model=SweepReportResponse, tags=["sweeper"])
async def trigger_sweep(sweeper: RetentionSweeper = Depends(get_sweeper)):
    """Run a full sweep now and wait for it. Queues behind a sweep already in flight."""
    report = await sweeper.run_full_sweep(trigger="manual")
    return report.to_dict()


@router.get("/sweeper/sweeps", response_model=SweepRunListResponse, tags=["sweeper"])
async def sweep_history(
    limit: int = Query(20, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    runs = await list_sweep_runs(db, limit=limit)
    return {"runs": [serialize_sweep_run(r) for r in runs], "total": len(runs)}


@router.get("/sweeper/statistics", response_model=StatisticsResponse, tags=["sweeper"])
async def sweeper_statistics(sweeper: RetentionSweeper = Depends(get_sweeper)):
    stats = await sweeper.get_statistics()
    return StatisticsResponse(statistics=stats, total_eligible=sum(stats.values()))


@router.post("/sweeper/tasks/{name}", response_model=NamedTaskResultResponse, tags=["sweeper"])
async def run_task(name: str, sweeper: RetentionSweeper = Depends(get_sweeper)):
    try:
        result = await sweeper.run_task(name)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown cleanup task: {name}")
    return {"name": result.name, **result.to_dict()}


@router.post(
    "/sweeper/clubs/{club_id}/cleanup",
    response_model=ClubCleanupResponse,
    tags=["sweeper"],
)
async def club_cleanup(club_id: str, sweeper: RetentionSweeper = Depends(get_sweeper)):
    try:
        results = await sweeper.run_club_scoped_cleanup(club_id)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    logger.info("Club %s cleanup requested via API", club_id)
    return {
        "club_id": club_id,
        "total_cleaned": sum(r.cleaned for r in results.values()),
        "results": {name: r.to_dict() for name, r in results.items()},
    }
