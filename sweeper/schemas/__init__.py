"""
Campus Retention Sweeper — Pydantic response schemas.
"""

from datetime import datetime

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    firebase: bool = False
    sweeper: str | None = None


class TaskResultResponse(BaseModel):
    cleaned: int = 0
    batches: int = 0
    malformed: int = 0
    ok: bool = True
    error: str | None = None
    error_kind: str | None = None
    duration_ms: float = 0.0


class NamedTaskResultResponse(TaskResultResponse):
    name: str


class SweepReportResponse(BaseModel):
    trigger: str
    started_at: datetime | str
    finished_at: datetime | str
    duration_ms: float
    total_cleaned: int
    failed: list[str]
    results: dict[str, TaskResultResponse]


class SweepRunResponse(BaseModel):
    id: str
    trigger: str
    started_at: datetime | str | None = None
    finished_at: datetime | str | None = None
    duration_ms: float | None = None
    total_cleaned: int = 0
    failed_tasks: int = 0
    results: dict[str, TaskResultResponse] = {}


class SweepRunListResponse(BaseModel):
    runs: list[SweepRunResponse]
    total: int


class SweeperStatusResponse(BaseModel):
    state: str
    is_running: bool
    interval_hours: float
    next_sweep_in_s: float | None = None
    tasks: list[str]
    last_report: SweepReportResponse | None = None


class StatisticsResponse(BaseModel):
    statistics: dict[str, int]
    total_eligible: int


class ClubCleanupResponse(BaseModel):
    club_id: str
    total_cleaned: int
    results: dict[str, TaskResultResponse]
