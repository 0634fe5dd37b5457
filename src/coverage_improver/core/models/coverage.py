"""Coverage file entity and parsed coverage report models."""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from coverage_improver.core.errors import InvalidStatusTransitionError
from coverage_improver.core.models.value_objects import CoveragePercentage, FilePath


class CoverageFileStatus(str, Enum):
    """Improvement status of a tracked source file."""

    PENDING = "pending"
    IMPROVING = "improving"
    IMPROVED = "improved"


class CoverageFile(BaseModel):
    """Coverage of one source file in one repository, as of the last measurement."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    repository_id: str
    path: str = Field(description="Source path relative to the project directory")
    coverage_percentage: float
    uncovered_lines: list[int] = Field(default_factory=list)
    status: CoverageFileStatus = CoverageFileStatus.PENDING
    project_dir: str | None = Field(default=None, description="Monorepo sub-directory holding package.json")
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @field_validator("path", mode="before")
    @classmethod
    def validate_path(cls, v: str) -> str:
        return FilePath.create(v).value

    @field_validator("coverage_percentage", mode="before")
    @classmethod
    def validate_coverage(cls, v: float) -> float:
        return CoveragePercentage.create(v).value

    @field_validator("uncovered_lines")
    @classmethod
    def validate_uncovered_lines(cls, v: list[int]) -> list[int]:
        return sorted(set(v))

    @property
    def file_path(self) -> FilePath:
        return FilePath.create(self.path)

    def needs_improvement(self, threshold: float) -> bool:
        return self.coverage_percentage < threshold and self.status == CoverageFileStatus.PENDING

    def mark_as_improving(self) -> None:
        if self.status != CoverageFileStatus.PENDING:
            raise InvalidStatusTransitionError(self.status.value, CoverageFileStatus.IMPROVING.value)
        self.status = CoverageFileStatus.IMPROVING
        self.updated_at = datetime.now()

    def mark_as_improved(self, coverage_percentage: float, uncovered_lines: list[int]) -> None:
        if self.status != CoverageFileStatus.IMPROVING:
            raise InvalidStatusTransitionError(self.status.value, CoverageFileStatus.IMPROVED.value)
        self.coverage_percentage = CoveragePercentage.create(coverage_percentage).value
        self.uncovered_lines = sorted(set(uncovered_lines))
        self.status = CoverageFileStatus.IMPROVED
        self.updated_at = datetime.now()

    def reset_to_pending(self) -> None:
        if self.status == CoverageFileStatus.IMPROVED:
            raise InvalidStatusTransitionError(self.status.value, CoverageFileStatus.PENDING.value)
        self.status = CoverageFileStatus.PENDING
        self.updated_at = datetime.now()

    def update_coverage(self, coverage_percentage: float, uncovered_lines: list[int]) -> None:
        self.coverage_percentage = CoveragePercentage.create(coverage_percentage).value
        self.uncovered_lines = sorted(set(uncovered_lines))
        self.updated_at = datetime.now()


class FileCoverage(BaseModel):
    """Coverage of a single file as read from a coverage report."""

    path: str
    lines_covered: int = 0
    lines_total: int = 0
    percentage: float = 0.0
    uncovered_lines: list[int] = Field(default_factory=list)


class CoverageReport(BaseModel):
    """Parsed coverage report, files ordered worst-first."""

    files: list[FileCoverage] = Field(default_factory=list)
    total_coverage: float = 0.0

    def find(self, path: str) -> FileCoverage | None:
        for file in self.files:
            if file.path == path:
                return file
        return None


class CoverageSummary(BaseModel):
    """Aggregate view over a repository's coverage files."""

    total_files: int
    average_coverage: float
    files_below_threshold: int
    files_improving: int
    files_improved: int
    threshold: float


class CoverageFileView(BaseModel):
    """Coverage file enriched with its improvement flag for display."""

    file: CoverageFile
    needs_improvement: bool


class CoverageReportView(BaseModel):
    """Paginated coverage report for one repository."""

    repository_id: str
    summary: CoverageSummary
    files: list[CoverageFileView]
    page: int = 1
    page_size: int = 50
    total_pages: int = 1
