"""Tests for crashed-job and zombie query recovery."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from logging_config import query_id_var
from services.query_recovery import (
    _query_id_from_job,
    on_query_job_failure,
    on_query_job_success,
    recover_zombie_queries,
)
from services.query_state import utcnow


def _job(*args):
    job = MagicMock()
    job.id = f"llm-query-{args[0] if args else '?'}"
    job.args = list(args)
    return job


@pytest.fixture
def mock_publisher():
    with patch("services.query_recovery.EventPublisher") as mock_cls:
        yield mock_cls.return_value


class TestQueryIdFromJob:
    def test_int_arg(self):
        assert _query_id_from_job(_job(5)) == 5

    def test_string_arg(self):
        assert _query_id_from_job(_job("12")) == 12

    def test_no_args(self):
        assert _query_id_from_job(_job()) is None

    def test_non_numeric(self):
        assert _query_id_from_job(_job("abc")) is None


class TestOnQueryJobFailure:
    def test_marks_running_query_failed(self, patch_session, make_query, mock_publisher):
        db = patch_session
        query = make_query(status="running", started_at=utcnow())

        on_query_job_failure(_job(query.id), None, RuntimeError, RuntimeError("worker died"), None)

        db.refresh(query)
        assert query.status == "failed"
        assert query.error.startswith("Query job crashed: RuntimeError: worker died")
        assert query.completed_at is not None
        mock_publisher.query_status_updated.assert_called_once()

    def test_pending_query_also_failed(self, patch_session, make_query, mock_publisher):
        db = patch_session
        query = make_query(status="pending")

        on_query_job_failure(_job(query.id), None, None, None, None)

        db.refresh(query)
        assert query.status == "failed"
        assert "UnknownError" in query.error

    def test_completed_query_untouched(self, patch_session, make_query, mock_publisher):
        db = patch_session
        query = make_query(status="completed", response="done")

        on_query_job_failure(_job(query.id), None, RuntimeError, RuntimeError("late"), None)

        db.refresh(query)
        assert query.status == "completed"
        assert query.error is None
        mock_publisher.query_status_updated.assert_not_called()

    def test_missing_query(self, patch_session, mock_publisher):
        on_query_job_failure(_job(4242), None, RuntimeError, RuntimeError("x"), None)
        mock_publisher.query_status_updated.assert_not_called()

    def test_bad_job_args(self, mock_publisher):
        with patch("database.SessionLocal") as mock_session:
            on_query_job_failure(_job(), None, RuntimeError, RuntimeError("x"), None)
        mock_session.assert_not_called()

    def test_never_raises(self, make_query):
        broken = MagicMock()
        broken.get.side_effect = RuntimeError("db down")
        with patch("database.SessionLocal", return_value=broken):
            on_query_job_failure(_job(1), None, RuntimeError, RuntimeError("x"), None)
        broken.close.assert_called_once()


def test_success_hook_only_logs(caplog):
    with caplog.at_level("INFO", logger="services.query_recovery"):
        on_query_job_success(_job(3), None, "completed")
    assert "query 3 is completed" in caplog.text


class TestRecoverZombieQueries:
    def test_stale_running_query_recovered(self, patch_session, make_query, mock_publisher):
        db = patch_session
        query = make_query(status="running", started_at=utcnow() - timedelta(seconds=2000))

        assert recover_zombie_queries(threshold_seconds=900) == 1

        db.refresh(query)
        assert query.status == "failed"
        assert "zombie threshold" in query.error
        assert query.duration_ms >= 2_000_000

    def test_recent_running_query_left_alone(self, patch_session, make_query, mock_publisher):
        db = patch_session
        query = make_query(status="running", started_at=utcnow() - timedelta(seconds=10))

        assert recover_zombie_queries(threshold_seconds=900) == 0

        db.refresh(query)
        assert query.status == "running"

    def test_pending_and_terminal_ignored(self, patch_session, make_query, mock_publisher):
        old = utcnow() - timedelta(seconds=5000)
        make_query(status="pending")
        make_query(status="completed", started_at=old)
        make_query(status="failed", started_at=old)

        assert recover_zombie_queries(threshold_seconds=900) == 0
        mock_publisher.query_status_updated.assert_not_called()

    def test_default_threshold_from_settings(self, patch_session, make_query, mock_publisher):
        make_query(status="running", started_at=utcnow() - timedelta(seconds=120))
        with patch("services.query_recovery.settings") as mock_settings:
            mock_settings.ZOMBIE_QUERY_THRESHOLD_SECONDS = 60
            assert recover_zombie_queries() == 1

    def test_publish_failure_does_not_stop_sweep(self, patch_session, make_query):
        old = utcnow() - timedelta(seconds=5000)
        make_query(status="running", started_at=old)
        make_query(status="running", started_at=old)

        with patch("ws.broadcast.broadcast", side_effect=ConnectionError("redis down")):
            assert recover_zombie_queries(threshold_seconds=900) == 2


class TestTaskWrappers:
    def test_execute_query_job_sets_query_id(self):
        seen = {}

        def fake_execute(query_id):
            seen["ctx"] = query_id_var.get()
            return "completed"

        with patch("services.query_jobs.execute_query", side_effect=fake_execute):
            from tasks import execute_query_job
            assert execute_query_job(17) == "completed"

        assert seen["ctx"] == "17"
        assert query_id_var.get() == ""

    def test_recover_zombie_queries_job(self):
        with patch("services.query_recovery.recover_zombie_queries", return_value=3):
            from tasks import recover_zombie_queries_job
            assert recover_zombie_queries_job() == 3
