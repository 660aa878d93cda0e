"""
FastAPI application for the betting-edge engine
Includes REST API, scheduled jobs, and monitoring
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import List

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

from edge_engine.core.engine_config import EngineConfig
from edge_engine.models import SessionLocal, get_db
from edge_engine.schemas import DailyKPIOut, DailyRecommendationOut, PublishResponse
from edge_engine.services.kpi import kpi_timeline
from edge_engine.services.odds import OddsAPIClient
from edge_engine.services.publisher import find_published, run_publish_cycle
from edge_engine.services.settlement import capture_closing_lines, run_grade_cycle

# Logging setup
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

APP_NAME = "Betting Edge Engine"
APP_VERSION = "1.0"

# Scheduler instance
scheduler = BackgroundScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting %s", APP_NAME)

    config = EngineConfig.from_env()
    publish_hour = int(os.getenv("PUBLISH_CRON_HOUR", "11"))
    publish_minute = int(os.getenv("PUBLISH_CRON_MINUTE", "0"))
    timezone = config.publish_timezone

    scheduler.add_job(
        _publish_job,
        CronTrigger(hour=publish_hour, minute=publish_minute, timezone=timezone),
        id="daily_publish",
        name="Publish Daily Card",
        replace_existing=True,
    )

    # Most games finish overnight; grade hourly through that window
    grade_hours = os.getenv("GRADE_CRON_HOURS", "23,0-6")
    scheduler.add_job(
        _grade_job,
        CronTrigger(hour=grade_hours, minute=15, timezone=timezone),
        id="grade_results",
        name="Grade Completed Legs",
        replace_existing=True,
    )

    scheduler.add_job(
        _closing_lines_job,
        IntervalTrigger(minutes=config.closing_window_minutes),
        id="capture_closing_lines",
        name="Capture Closing Lines",
        replace_existing=True,
    )

    scheduler.start()
    logger.info(
        "Scheduler started: publish@%02d:%02d, grading at hours %s, "
        "closing lines every %dmin (%s)",
        publish_hour, publish_minute, grade_hours, config.closing_window_minutes, timezone,
    )

    yield

    logger.info("Shutting down %s", APP_NAME)
    scheduler.shutdown()


app = FastAPI(
    title=APP_NAME,
    description="Daily singles and parlays from cross-book odds edges",
    version=APP_VERSION,
    lifespan=lifespan,
)

# CORS (adjust origins for production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_config() -> EngineConfig:
    return EngineConfig.from_env()


def get_client(config: EngineConfig = Depends(get_config)) -> OddsAPIClient:
    try:
        return OddsAPIClient(timeout=config.fetch_timeout_seconds)
    except ValueError as exc:
        raise HTTPException(status_code=503, detail=str(exc))


# ============================================================================
# SCHEDULED JOBS
# ============================================================================

def _run_job(name: str, cycle) -> None:
    db = SessionLocal()
    try:
        config = EngineConfig.from_env()
        client = OddsAPIClient(timeout=config.fetch_timeout_seconds)
        results = cycle(db, client, config)
        logger.info("%s: %s", name, results)
    except Exception as exc:
        logger.error("%s job failed: %s", name, exc, exc_info=True)
    finally:
        db.close()


def _publish_job():
    """Publish today's card. A re-run on a published date is a no-op."""
    _run_job("Publish", run_publish_cycle)


def _grade_job():
    """Settle legs whose games have finished, then bets and KPIs."""
    _run_job("Grade", run_grade_cycle)


def _closing_lines_job():
    """Capture closing prices for legs about to start."""
    _run_job("Closing lines", capture_closing_lines)


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/")
async def root():
    return {
        "app": APP_NAME,
        "version": APP_VERSION,
        "status": "operational",
        "timestamp": datetime.utcnow().isoformat(),
    }


@app.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """Health check endpoint"""
    health = {"status": "healthy", "database": "connected", "scheduler": "running"}

    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Health check database error: %s", e)
        health["status"] = "degraded"
        health["database"] = f"error: {e}"

    if not scheduler.running:
        health["status"] = "degraded"
        health["scheduler"] = "stopped"

    return health


@app.get("/api/recommendations/{reco_date}", response_model=DailyRecommendationOut)
def get_recommendation(reco_date: date, db: Session = Depends(get_db)):
    """The published card for a date, with its bets and legs."""
    reco = find_published(db, reco_date)
    if reco is None:
        raise HTTPException(status_code=404, detail=f"No card published for {reco_date}")
    return DailyRecommendationOut.model_validate(reco)


@app.get("/api/kpis", response_model=List[DailyKPIOut])
def get_kpis(
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
):
    """Daily KPI rows for the last ``days`` days, oldest first."""
    return [DailyKPIOut.model_validate(row) for row in kpi_timeline(db, days=days)]


# ============================================================================
# TRIGGERS
# ============================================================================

@app.post("/api/publish", response_model=PublishResponse)
def trigger_publish(
    db: Session = Depends(get_db),
    client: OddsAPIClient = Depends(get_client),
    config: EngineConfig = Depends(get_config),
):
    """Run the publish cycle now.  Idempotent per recommendation date."""
    logger.info("Manual publish triggered")
    try:
        return PublishResponse(**run_publish_cycle(db, client, config))
    except Exception as exc:
        logger.error("Manual publish failed: %s", exc, exc_info=True)
        raise HTTPException(status_code=500, detail=str(exc))


@app.post("/api/grade")
def trigger_grade(
    db: Session = Depends(get_db),
    client: OddsAPIClient = Depends(get_client),
    config: EngineConfig = Depends(get_config),
):
    """Run the grade cycle now.  Already-settled legs are skipped."""
    logger.info("Manual grade triggered")
    return run_grade_cycle(db, client, config)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
