"""
FastAPI Application — entry point.

Hosts the retention sweeper for the lifetime of the process and exposes
its admin routes.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from sweeper.config import settings
from sweeper.database import init_db, close_db, async_session
from sweeper.routes import router, VERSION
from sweeper.services.document_store import FirestoreStore
from sweeper.services.firebase import init_firebase, get_firestore_client
from sweeper.services.retention_sweeper import RetentionSweeper
from sweeper.services.run_history import make_run_recorder

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)

logger = logging.getLogger(__name__)


def build_sweeper() -> RetentionSweeper | None:
    """Wire the sweeper to Firestore, or return None when Firebase is disabled."""
    fb_ok = init_firebase(
        cred_path=settings.firebase_cred_path,
        project_id=settings.firebase_project_id,
    )
    if not fb_ok:
        return None

    store = FirestoreStore(get_firestore_client(), timeout=settings.store_call_timeout_s)
    return RetentionSweeper.from_settings(
        store, settings, recorder=make_run_recorder(async_session)
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown hook."""
    logger.info("🚀 Starting Campus Retention Sweeper v%s", VERSION)
    await init_db()
    logger.info("✅ Database ready")

    sweeper = build_sweeper()
    app.state.sweeper = sweeper
    if sweeper is None:
        logger.info("ℹ️ Retention sweeper disabled (no Firebase credentials)")
    elif settings.sweep_enabled:
        sweeper.start()
    else:
        logger.info("ℹ️ Periodic sweeps disabled (SWEEP_ENABLED=false) — on-demand only")

    yield

    # Shutdown: disarm the timer, let the in-flight sweep finish
    if sweeper is not None:
        sweeper.dispose()
        await sweeper.drain()
    await close_db()
    logger.info("👋 Shutdown complete")


app = FastAPI(
    title="Campus Retention Sweeper",
    description=(
        "Enforces retention and referential-integrity rules over the "
        "campus app's Firestore collections."
    ),
    version=VERSION,
    lifespan=lifespan,
)

app.include_router(router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "Campus Retention Sweeper",
        "version": VERSION,
        "docs": "/docs",
    }
