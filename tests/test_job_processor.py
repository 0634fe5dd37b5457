"""Tests for job selection and dispatch."""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from conftest import make_improvement_job, make_repository

from coverage_improver.core.lock import JobQueueLock
from coverage_improver.core.models import Job, JobStatus, JobType
from coverage_improver.core.settings import settings
from coverage_improver.services.job_processor import JobProcessor


def _queue(db, job: Job, minutes_ago: int) -> Job:
    job.created_at = datetime.now() - timedelta(minutes=minutes_ago)
    db.save_job(job)
    return job


def _finish(job: Job) -> Job:
    job.complete()
    return job


@pytest.fixture
def processor(db, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "queue_lock_timeout_seconds", 0.1)
    analysis = MagicMock()
    analysis.execute.side_effect = _finish
    orchestrator = MagicMock()
    orchestrator.execute.side_effect = _finish
    return JobProcessor(
        db,
        analysis_processor=analysis,
        orchestrator=orchestrator,
        lock_dir=tmp_path / "locks",
    )


class TestClaimNextJob:
    """Test the concurrency rules applied when claiming work."""

    def test_claim_next_job__picks_oldest_pending_analysis(self, db, processor):
        repository = make_repository(db)
        older = _queue(db, Job.create_analysis(repository.id), minutes_ago=10)
        _queue(db, Job.create_analysis(repository.id), minutes_ago=5)

        claimed = processor.claim_next_job(JobType.ANALYSIS)

        assert claimed.id == older.id
        assert claimed.status == JobStatus.RUNNING
        assert db.get_job(older.id).status == JobStatus.RUNNING

    def test_claim_next_job__allows_one_analysis_system_wide(self, db, processor):
        first = make_repository(db, url="https://github.com/acme/first")
        second = make_repository(db, url="https://github.com/acme/second")
        _queue(db, Job.create_analysis(first.id), minutes_ago=10)
        _queue(db, Job.create_analysis(second.id), minutes_ago=5)

        assert processor.claim_next_job(JobType.ANALYSIS) is not None
        assert processor.claim_next_job(JobType.ANALYSIS) is None

    def test_claim_next_job__skips_repositories_with_running_improvement(self, db, processor):
        busy = make_repository(db, url="https://github.com/acme/busy")
        idle = make_repository(db, url="https://github.com/acme/idle")
        running = _queue(db, make_improvement_job(busy.id, ["f1"]), minutes_ago=30)
        running.start()
        db.save_job(running)
        _queue(db, make_improvement_job(busy.id, ["f2"]), minutes_ago=20)
        idle_job = _queue(db, make_improvement_job(idle.id, ["f3"]), minutes_ago=10)

        claimed = processor.claim_next_job(JobType.IMPROVEMENT)

        assert claimed.id == idle_job.id

    def test_claim_next_job__returns_none_when_queue_locked(self, db, processor, tmp_path):
        repository = make_repository(db)
        job = _queue(db, Job.create_analysis(repository.id), minutes_ago=1)

        with JobQueueLock(JobType.ANALYSIS, lock_dir=tmp_path / "locks").acquire() as acquired:
            assert acquired
            assert processor.claim_next_job(JobType.ANALYSIS) is None

        assert db.get_job(job.id).status == JobStatus.PENDING

    def test_claim_next_job__analysis_lock_does_not_block_improvements(self, db, processor, tmp_path):
        repository = make_repository(db)
        job = _queue(db, make_improvement_job(repository.id, ["f1"]), minutes_ago=1)

        with JobQueueLock(JobType.ANALYSIS, lock_dir=tmp_path / "locks").acquire() as acquired:
            assert acquired
            claimed = processor.claim_next_job(JobType.IMPROVEMENT)

        assert claimed.id == job.id

    def test_claim_next_job__ignores_other_job_type(self, db, processor):
        repository = make_repository(db)
        _queue(db, Job.create_analysis(repository.id), minutes_ago=1)

        assert processor.claim_next_job(JobType.IMPROVEMENT) is None


class TestExecuteJob:
    """Test dispatch and the last-resort failure handling."""

    def test_process_next_job__dispatches_by_type(self, db, processor):
        repository = make_repository(db)
        _queue(db, make_improvement_job(repository.id, ["f1"]), minutes_ago=1)

        result = processor.process_next_job(JobType.IMPROVEMENT)

        assert result.status == JobStatus.COMPLETED
        processor.orchestrator.execute.assert_called_once()
        processor.analysis_processor.execute.assert_not_called()

    def test_process_next_job__returns_none_when_idle(self, processor):
        assert processor.process_next_job(JobType.ANALYSIS) is None

    def test_execute_job__fails_job_on_unexpected_error(self, db, processor):
        repository = make_repository(db)
        job = Job.create_analysis(repository.id)
        job.start()
        db.save_job(job)
        processor.analysis_processor.execute.side_effect = RuntimeError("disk full")

        result = processor.execute_job(job)

        assert result.status == JobStatus.FAILED
        assert result.error == "Unexpected error: disk full"
        assert db.get_job(job.id).status == JobStatus.FAILED
