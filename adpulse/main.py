"""AdPulse - FastAPI Application Entry Point.

Incremental ad-metrics cache and conversion-funnel engine.
"""

import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adpulse.database import init_db, test_connection
from adpulse.scheduler.jobs import start_scheduler, stop_scheduler
from adpulse.api.metrics_routes import router as metrics_router
from adpulse.api.collect_routes import router as collect_router
from adpulse.core.logging import get_logger
from adpulse.services.collector import RefreshOrchestrator
from adpulse.wiring import get_collector

logger = get_logger("main")

VERSION = "1.0.0"

# No background scheduler where the process is frozen between requests
IS_SERVERLESS = bool(
    os.environ.get("VERCEL") or os.environ.get("AWS_LAMBDA_FUNCTION_NAME")
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 AdPulse starting up...")
    if test_connection():
        init_db()
    else:
        logger.error("❌ Database NOT connected: reads and refreshes will fail")

    if IS_SERVERLESS:
        logger.info("Serverless environment: refreshes only via POST /collect/refresh")
    else:
        start_scheduler()
    yield
    # Stops new batches; collections already in flight run to completion
    stop_scheduler()
    for source in get_collector().sources.values():
        await source.close()
    logger.info("AdPulse shut down")


app = FastAPI(
    title="AdPulse",
    description="Database-first ad performance metrics with conversion funnels, refreshed in the background.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(metrics_router)
app.include_router(collect_router)


@app.get("/health", tags=["System"])
async def health_check(collector: RefreshOrchestrator = Depends(get_collector)):
    """Liveness plus database reachability and refresh progress."""
    last = collector.last_report
    database_ok = test_connection(collector.store.engine)
    return {
        "status": "healthy" if database_ok else "degraded",
        "service": "adpulse",
        "version": VERSION,
        "database": database_ok,
        "collections_in_flight": len(collector.guard),
        "last_refresh": last.finished_at.isoformat() if last and last.finished_at else None,
    }
