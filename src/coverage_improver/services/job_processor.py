"""Picks the next runnable job of a type and hands it to its processor."""

import logging
from pathlib import Path

from coverage_improver.core.database import CoverageDatabase
from coverage_improver.core.lock import JobQueueLock
from coverage_improver.core.models import Job, JobStatus, JobType
from coverage_improver.services.analysis_processor import AnalysisJobProcessor
from coverage_improver.services.job_orchestrator import JobOrchestrator

logger = logging.getLogger(__name__)


class JobProcessor:
    """Applies the concurrency rules and dispatches jobs.

    At most one analysis job runs system-wide. Improvement jobs run one at a
    time per repository, so different repositories may improve in parallel.
    """

    def __init__(
        self,
        db: CoverageDatabase | None = None,
        analysis_processor: AnalysisJobProcessor | None = None,
        orchestrator: JobOrchestrator | None = None,
        lock_dir: Path | None = None,
    ):
        self.db = db or CoverageDatabase()
        self.analysis_processor = analysis_processor or AnalysisJobProcessor(self.db)
        self.orchestrator = orchestrator or JobOrchestrator(self.db)
        self.locks = {job_type: JobQueueLock(job_type, lock_dir) for job_type in JobType}

    def process_next_job(self, job_type: JobType) -> Job | None:
        """Run the next eligible job of ``job_type`` to completion, if there is one."""
        job = self.claim_next_job(job_type)
        if job is None:
            return None
        return self.execute_job(job)

    def claim_next_job(self, job_type: JobType) -> Job | None:
        """Select the next eligible pending job and mark it running."""
        with self.locks[job_type].acquire() as acquired:
            if not acquired:
                logger.debug(f"Job queue is locked, skipping {job_type.value} tick")
                return None

            job = self._select_job(job_type)
            if job is None:
                return None

            job.start()
            self.db.save_job(job)
            logger.info(f"Claimed {job.type.value} job {job.id} for repository {job.repository_id}")
            return job

    def _select_job(self, job_type: JobType) -> Job | None:
        if job_type == JobType.ANALYSIS:
            if self.db.find_running_jobs(JobType.ANALYSIS):
                return None
            pending = self.db.find_pending_jobs(JobType.ANALYSIS, limit=1)
            return pending[0] if pending else None

        busy_repositories = {job.repository_id for job in self.db.find_running_jobs(JobType.IMPROVEMENT)}
        for job in self.db.find_pending_jobs(JobType.IMPROVEMENT):
            if job.repository_id not in busy_repositories:
                return job
        return None

    def execute_job(self, job: Job) -> Job:
        """Dispatch ``job`` by type; failures end up on the job, never in the caller."""
        try:
            if job.is_analysis:
                return self.analysis_processor.execute(job)
            return self.orchestrator.execute(job)
        except Exception as e:
            logger.exception(f"Unhandled error while processing job {job.id}: {e}")
            if job.status == JobStatus.RUNNING:
                job.fail(f"Unexpected error: {e}")
                self.db.save_job(job)
            return job
