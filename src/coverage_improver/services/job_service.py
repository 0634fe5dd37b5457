"""Commands and queries behind the CLI: repositories, jobs and coverage reports."""

import logging
import math

from coverage_improver.core.database import CoverageDatabase
from coverage_improver.core.errors import (
    AIProviderError,
    ConflictError,
    InvalidValueError,
    NotFoundError,
)
from coverage_improver.core.github_client import GitHubApiClient
from coverage_improver.core.models import (
    BranchInfo,
    CoverageFile,
    CoverageFileStatus,
    CoverageFileView,
    CoverageReportView,
    CoverageSummary,
    GitHubRepo,
    Job,
    JobStatus,
    JobType,
)
from coverage_improver.core.settings import settings
from coverage_improver.services.ai_providers import PROVIDERS

logger = logging.getLogger(__name__)


class JobService:
    """Creates, cancels and looks up jobs, and shapes coverage data for display."""

    def __init__(self, db: CoverageDatabase | None = None, github: GitHubApiClient | None = None):
        self.db = db or CoverageDatabase()
        self._github = github

    @property
    def github(self) -> GitHubApiClient:
        if self._github is None:
            self._github = GitHubApiClient()
        return self._github

    def add_repository(self, url: str, branch: str | None = None) -> GitHubRepo:
        """Register a repository, asking GitHub for its default branch when a token is configured."""
        candidate = GitHubRepo.from_url(url, branch=branch or "main")
        existing = self.db.get_repository_by_url(candidate.url)
        if existing:
            if branch and existing.branch != branch:
                existing.branch = branch
                self.db.save_repository(existing)
            return existing

        if self._github is not None or settings.github_token:
            info = self.github.get_repo_info(candidate.owner, candidate.name)
            candidate.default_branch = info.default_branch
            if branch is None:
                candidate.branch = info.default_branch
            elif not self.github.branch_exists(candidate.owner, candidate.name, branch):
                raise NotFoundError(f"Branch {branch} not found in {candidate.full_name}")

        self.db.save_repository(candidate)
        logger.info(f"Added repository {candidate.full_name} ({candidate.branch})")
        return candidate

    def list_repositories(self) -> list[GitHubRepo]:
        return self.db.list_repositories()

    def get_repository(self, repository_id: str) -> GitHubRepo:
        repository = self.db.get_repository(repository_id)
        if repository is None:
            raise NotFoundError(f"Repository not found: {repository_id}")
        return repository

    def delete_repository(self, repository_id: str) -> None:
        """Delete a repository with its coverage files and jobs, unless a job is still running."""
        self.get_repository(repository_id)
        if self.db.find_running_jobs(repository_id=repository_id):
            raise ConflictError(f"Repository {repository_id} has a running job")
        self.db.delete_repository(repository_id)

    def get_branches(self, repository_id: str) -> list[BranchInfo]:
        repository = self.get_repository(repository_id)
        return self.github.list_branches(repository.owner, repository.name)

    def analyze_repository(self, url: str, branch: str | None = None) -> Job:
        """Queue an analysis job, registering the repository on first use.

        Raises:
            ConflictError: If an analysis of the repository is already pending or running
        """
        repository = self.db.get_or_create_repository(url, branch=branch or "main")
        if branch and repository.branch != branch:
            repository.branch = branch
            self.db.save_repository(repository)

        active = [
            job
            for job in self.db.find_jobs_by_repository(repository.id, JobType.ANALYSIS)
            if job.status in (JobStatus.PENDING, JobStatus.RUNNING)
        ]
        if active:
            raise ConflictError(f"Analysis already {active[0].status.value} for {repository.full_name}: {active[0].id}")

        job = Job.create_analysis(repository.id)
        self.db.save_job(job)
        logger.info(f"Queued analysis job {job.id} for {repository.full_name}")
        return job

    def start_improvement(self, repository_id: str, file_ids: list[str], ai_provider: str | None = None) -> Job:
        """Queue an improvement job for one or more coverage files of a repository.

        Every file must exist, belong to the repository, live in the same
        project directory and have no other pending or running job. Only
        pending files qualify; they are marked improving before the job is
        queued, and an improved file has to be re-analyzed first.

        Raises:
            InvalidStatusTransitionError: If a file is not pending
        """
        self.get_repository(repository_id)
        provider = ai_provider or settings.default_ai_provider
        if provider not in PROVIDERS:
            raise AIProviderError(f"Unknown AI provider: {provider}. Available: {', '.join(PROVIDERS)}")
        if not file_ids:
            raise InvalidValueError("At least one file is required")

        files = self._load_target_files(repository_id, list(dict.fromkeys(file_ids)))

        job = Job.create_improvement(repository_id, [f.id for f in files], provider)
        for coverage_file in files:
            coverage_file.mark_as_improving()
        self.db.save_coverage_files(files)
        self.db.save_job(job)

        logger.info(f"Queued improvement job {job.id} for {len(files)} file(s) with {provider}")
        return job

    def _load_target_files(self, repository_id: str, file_ids: list[str]) -> list[CoverageFile]:
        files = []
        for file_id in file_ids:
            coverage_file = self.db.get_coverage_file(file_id)
            if coverage_file is None:
                raise NotFoundError(f"Coverage file not found: {file_id}")
            if coverage_file.repository_id != repository_id:
                raise InvalidValueError(f"Coverage file {file_id} does not belong to repository {repository_id}")
            if self.db.find_active_jobs_for_file(file_id):
                raise ConflictError(f"{coverage_file.path} already has an improvement job in progress")
            files.append(coverage_file)

        if len({f.project_dir for f in files}) > 1:
            raise InvalidValueError("All files of one improvement job must belong to the same project directory")
        return files

    def cancel_job(self, job_id: str) -> Job:
        """Mark a pending or running job as cancelled and release its files.

        A running job notices at its next phase boundary and stops there.
        """
        job = self.get_job(job_id)
        job.cancel()
        self.db.save_job(job)

        for coverage_file in self.db.get_coverage_files(job.file_ids):
            if coverage_file.status == CoverageFileStatus.IMPROVING:
                coverage_file.reset_to_pending()
                self.db.save_coverage_file(coverage_file)

        logger.info(f"Cancelled job {job.id}")
        return job

    def get_job(self, job_id: str) -> Job:
        job = self.db.get_job(job_id)
        if job is None:
            raise NotFoundError(f"Job not found: {job_id}")
        return job

    def list_jobs_by_repository(self, repository_id: str, job_type: JobType | None = None) -> list[Job]:
        return self.db.find_jobs_by_repository(repository_id, job_type)

    def list_pending_jobs(self, job_type: JobType | None = None) -> list[Job]:
        return self.db.find_pending_jobs(job_type)

    def list_jobs(self, limit: int = 50) -> list[Job]:
        return self.db.list_jobs(limit)

    def get_coverage_report(
        self,
        repository_id: str,
        threshold: float | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> CoverageReportView:
        """Summary plus one page of files, worst coverage first."""
        if page < 1 or page_size < 1:
            raise InvalidValueError("page and page_size must be positive")

        self.get_repository(repository_id)
        threshold = settings.coverage_threshold if threshold is None else threshold
        files = self.db.find_coverage_files_by_repository(repository_id)

        average = round(sum(f.coverage_percentage for f in files) / len(files), 2) if files else 0.0
        summary = CoverageSummary(
            total_files=len(files),
            average_coverage=average,
            files_below_threshold=sum(1 for f in files if f.coverage_percentage < threshold),
            files_improving=sum(1 for f in files if f.status == CoverageFileStatus.IMPROVING),
            files_improved=sum(1 for f in files if f.status == CoverageFileStatus.IMPROVED),
            threshold=threshold,
        )

        start = (page - 1) * page_size
        views = [
            CoverageFileView(file=f, needs_improvement=f.needs_improvement(threshold))
            for f in files[start : start + page_size]
        ]
        return CoverageReportView(
            repository_id=repository_id,
            summary=summary,
            files=views,
            page=page,
            page_size=page_size,
            total_pages=max(1, math.ceil(len(files) / page_size)),
        )
