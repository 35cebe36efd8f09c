"""
Campus Retention Sweeper — Sweep run model.
One row per full sweep, so operators can see whether cleanup is keeping up.
"""

import uuid

from sqlalchemy import Column, String, DateTime, Integer, Float, JSON, func, Index

from sweeper.database import Base


class SweepRun(Base):
    """Outcome of one full retention sweep."""
    __tablename__ = "sweep_runs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # What started it: "startup", "timer", "manual"
    trigger = Column(String(20), nullable=False)

    started_at = Column(DateTime(timezone=True), nullable=False)
    finished_at = Column(DateTime(timezone=True), nullable=False)
    duration_ms = Column(Float, default=0.0)

    total_cleaned = Column(Integer, default=0)
    failed_tasks = Column(Integer, default=0)

    # task name → {"cleaned", "batches", "ok", "error", "error_kind", "malformed", "duration_ms"}
    results = Column(JSON, default=dict)

    recorded_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_sweep_runs_started_at", "started_at"),
    )

    def __repr__(self):
        return f"<SweepRun {self.trigger} @ {self.started_at} — {self.total_cleaned} cleaned>"
