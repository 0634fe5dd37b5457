"""Job entity and its status state machine."""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field

from coverage_improver.core.errors import InvalidStatusTransitionError, InvalidValueError, JobStateError
from coverage_improver.core.models.value_objects import GitHubPrUrl


class JobStatus(str, Enum):
    """Lifecycle status shared by analysis and improvement jobs."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    def can_transition_to(self, target: "JobStatus") -> bool:
        return target in _JOB_TRANSITIONS[self]

    @property
    def is_terminal(self) -> bool:
        return not _JOB_TRANSITIONS[self]

    @classmethod
    def from_string(cls, value: str) -> "JobStatus":
        try:
            return cls(value)
        except ValueError:
            raise InvalidValueError(f"Invalid job status: {value}") from None


_JOB_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class JobType(str, Enum):
    """Discriminator between the two job pipelines."""

    ANALYSIS = "analysis"
    IMPROVEMENT = "improvement"


CANCELLED_MESSAGE = "Job cancelled by user"


class Job(BaseModel):
    """A unit of background work against one repository.

    Analysis jobs target no files and record file counters on completion.
    Improvement jobs target one or more coverage files and record the pull
    request URL on completion. All mutations go through the methods below,
    which enforce the status table and stamp ``updated_at``.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    repository_id: str
    type: JobType
    status: JobStatus = JobStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    file_ids: list[str] = Field(default_factory=list, description="Target coverage file ids (improvement only)")
    ai_provider: str | None = Field(default=None, description="AI provider name (improvement only)")
    pr_url: str | None = None
    error: str | None = None
    files_found: int | None = Field(default=None, description="Source files discovered (analysis only)")
    files_below_threshold: int | None = Field(default=None, description="Files under threshold (analysis only)")
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @classmethod
    def create_analysis(cls, repository_id: str) -> "Job":
        return cls(repository_id=repository_id, type=JobType.ANALYSIS)

    @classmethod
    def create_improvement(cls, repository_id: str, file_ids: list[str], ai_provider: str) -> "Job":
        if not file_ids:
            raise InvalidValueError("An improvement job needs at least one target file")
        return cls(
            repository_id=repository_id,
            type=JobType.IMPROVEMENT,
            file_ids=list(dict.fromkeys(file_ids)),
            ai_provider=ai_provider,
        )

    @property
    def is_analysis(self) -> bool:
        return self.type == JobType.ANALYSIS

    @property
    def is_improvement(self) -> bool:
        return self.type == JobType.IMPROVEMENT

    @property
    def file_count(self) -> int:
        return len(self.file_ids)

    def _transition_to(self, target: JobStatus) -> None:
        if not self.status.can_transition_to(target):
            raise InvalidStatusTransitionError(self.status.value, target.value)
        self.status = target
        self.updated_at = datetime.now()

    def start(self) -> None:
        self._transition_to(JobStatus.RUNNING)
        self.progress = 0
        self.error = None

    def update_progress(self, progress: int) -> None:
        if self.status != JobStatus.RUNNING:
            raise JobStateError(f"Cannot update progress of a {self.status.value} job")
        if not 0 <= progress <= 100:
            raise InvalidValueError(f"Progress must be between 0 and 100, got {progress}")
        self.progress = progress
        self.updated_at = datetime.now()

    def complete(
        self,
        pr_url: str | None = None,
        files_found: int | None = None,
        files_below_threshold: int | None = None,
    ) -> None:
        if pr_url is not None:
            pr_url = GitHubPrUrl.create(pr_url).value
        self._transition_to(JobStatus.COMPLETED)
        self.progress = 100
        self.pr_url = pr_url
        if files_found is not None:
            self.files_found = files_found
        if files_below_threshold is not None:
            self.files_below_threshold = files_below_threshold

    def fail(self, message: str) -> None:
        self._transition_to(JobStatus.FAILED)
        self.error = message

    def cancel(self) -> None:
        """Force a pending or running job to failed with the cancellation message."""
        if self.status not in (JobStatus.PENDING, JobStatus.RUNNING):
            raise InvalidStatusTransitionError(self.status.value, JobStatus.FAILED.value)
        self.status = JobStatus.FAILED
        self.error = CANCELLED_MESSAGE
        self.updated_at = datetime.now()
