# tests/services/test_scheduler.py
"""
Tests for the background jobs and scheduler lifecycle.
"""

from datetime import date
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.orm import sessionmaker

from portfolio_tracker.models import PerformanceSnapshot
from portfolio_tracker.services import scheduler
from portfolio_tracker.services.performance import SnapshotService
from portfolio_tracker.utils.context import get_correlation_id


@pytest.fixture
def job_sessions(db_engine):
    """Patch the scheduler's session factory onto the test database."""
    factory = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    with patch.object(scheduler, "SessionLocal", factory):
        yield factory


class TestJobs:

    def test_snapshot_job_snapshots_every_portfolio(self, db, job_sessions, make_portfolio, record, oracle):
        first = make_portfolio(name="One")
        make_portfolio(name="Two", owner_id="someone-else")
        record(first, "DEPOSIT", date(2024, 1, 2), "100")

        written = scheduler.run_snapshot_job(SnapshotService(oracle))

        assert written == 2
        assert db.query(PerformanceSnapshot).count() == 2
        assert get_correlation_id() is None

    def test_detection_job_returns_created_count(self, job_sessions):
        detector = MagicMock()
        detector.detect_all.return_value = 3

        assert scheduler.run_detection_job(detector) == 3

    def test_job_failure_is_contained(self):
        session = MagicMock()
        detector = MagicMock()
        detector.detect_all.side_effect = RuntimeError("provider down")

        with patch.object(scheduler, "SessionLocal", return_value=session):
            assert scheduler.run_detection_job(detector) == 0

        session.rollback.assert_called_once()
        session.close.assert_called_once()


class TestLifecycle:

    def test_start_registers_jobs_once(self):
        try:
            started = scheduler.start_scheduler(MagicMock(), MagicMock())

            assert scheduler.start_scheduler(MagicMock(), MagicMock()) is started
            assert scheduler.get_scheduler() is started
            assert started.get_job(scheduler.SNAPSHOT_JOB_ID) is not None
            assert started.get_job(scheduler.DETECTION_JOB_ID) is not None
        finally:
            scheduler.shutdown_scheduler()

        assert scheduler.get_scheduler() is None
