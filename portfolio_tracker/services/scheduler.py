# portfolio_tracker/services/scheduler.py
"""
Background jobs.

    daily_snapshot_job              CronTrigger at SNAPSHOT_HOUR_UTC, snapshots every portfolio
    corporate_action_detection_job  IntervalTrigger, creates PENDING actions for every portfolio

Jobs open their own database session. A failure for one portfolio is
logged by the service and the run continues with the next one.

Usage:
    scheduler = start_scheduler(get_snapshot_service(), get_corporate_action_detector())
    ...
    shutdown_scheduler()
"""

import logging
import uuid

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from portfolio_tracker.config import settings
from portfolio_tracker.database import SessionLocal
from portfolio_tracker.services.corporate_actions import CorporateActionDetector
from portfolio_tracker.services.performance import SnapshotService
from portfolio_tracker.utils.context import clear_correlation_id, set_correlation_id
from portfolio_tracker.utils.date_utils import utc_today

logger = logging.getLogger(__name__)

SNAPSHOT_JOB_ID = "daily_snapshot_job"
DETECTION_JOB_ID = "corporate_action_detection_job"

_SCHEDULER: BackgroundScheduler | None = None


# =============================================================================
# JOBS
# =============================================================================

def run_snapshot_job(snapshot_service: SnapshotService) -> int:
    """Snapshot every portfolio for the current UTC day. Returns the number written."""
    set_correlation_id(f"job-snapshot-{uuid.uuid4().hex[:8]}")
    db = SessionLocal()
    try:
        as_of = utc_today()
        written = snapshot_service.snapshot_all(db, as_of)
        logger.info(f"Snapshot job finished for {as_of}: {written} portfolio(s)")
        return written
    except Exception:
        logger.exception("Snapshot job failed")
        db.rollback()
        return 0
    finally:
        db.close()
        clear_correlation_id()


def run_detection_job(detector: CorporateActionDetector) -> int:
    """Run corporate-action detection for every portfolio. Returns the number of actions created."""
    set_correlation_id(f"job-detect-{uuid.uuid4().hex[:8]}")
    db = SessionLocal()
    try:
        created = detector.detect_all(db)
        logger.info(f"Detection job finished: {created} new action(s)")
        return created
    except Exception:
        logger.exception("Detection job failed")
        db.rollback()
        return 0
    finally:
        db.close()
        clear_correlation_id()


# =============================================================================
# LIFECYCLE
# =============================================================================

def start_scheduler(
        snapshot_service: SnapshotService,
        detector: CorporateActionDetector,
) -> BackgroundScheduler:
    """Start the background scheduler and register both jobs. Idempotent."""
    global _SCHEDULER

    if _SCHEDULER is not None:
        return _SCHEDULER

    scheduler = BackgroundScheduler(timezone="UTC")

    scheduler.add_job(
        run_snapshot_job,
        trigger=CronTrigger(hour=settings.snapshot_hour_utc, minute=0, timezone="UTC"),
        id=SNAPSHOT_JOB_ID,
        kwargs={"snapshot_service": snapshot_service},
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )

    scheduler.add_job(
        run_detection_job,
        trigger=IntervalTrigger(minutes=settings.detection_interval_minutes),
        id=DETECTION_JOB_ID,
        kwargs={"detector": detector},
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )

    scheduler.start()
    _SCHEDULER = scheduler

    logger.info(
        f"Scheduler started: snapshots daily at {settings.snapshot_hour_utc:02d}:00 UTC, "
        f"detection every {settings.detection_interval_minutes} minute(s)"
    )
    return scheduler


def shutdown_scheduler() -> None:
    global _SCHEDULER

    if _SCHEDULER:
        _SCHEDULER.shutdown(wait=False)
        _SCHEDULER = None
        logger.info("Scheduler shut down")


def get_scheduler() -> BackgroundScheduler | None:
    return _SCHEDULER
