"""Models package for coverage-improver.

Re-exports all model types from submodules for convenience.
"""

from coverage_improver.core.models.coverage import (
    CoverageFile,
    CoverageFileStatus,
    CoverageFileView,
    CoverageReport,
    CoverageReportView,
    CoverageSummary,
    FileCoverage,
)
from coverage_improver.core.models.execution import (
    BranchInfo,
    CommandResult,
    ProjectDirectory,
    PullRequestInfo,
    RepositoryInfo,
    SandboxResult,
    SourceFile,
    TargetFile,
    TestGenerationRequest,
    TestGenerationResult,
)
from coverage_improver.core.models.job import CANCELLED_MESSAGE, Job, JobStatus, JobType
from coverage_improver.core.models.repository import GitHubRepo, parse_github_url
from coverage_improver.core.models.value_objects import CoveragePercentage, FilePath, GitHubPrUrl

__all__ = [
    # Coverage
    "CoverageFile",
    "CoverageFileStatus",
    "CoverageFileView",
    "CoverageReport",
    "CoverageReportView",
    "CoverageSummary",
    "FileCoverage",
    # Execution
    "BranchInfo",
    "CommandResult",
    "ProjectDirectory",
    "PullRequestInfo",
    "RepositoryInfo",
    "SandboxResult",
    "SourceFile",
    "TargetFile",
    "TestGenerationRequest",
    "TestGenerationResult",
    # Jobs
    "CANCELLED_MESSAGE",
    "Job",
    "JobStatus",
    "JobType",
    # Repository
    "GitHubRepo",
    "parse_github_url",
    # Value objects
    "CoveragePercentage",
    "FilePath",
    "GitHubPrUrl",
]
