"""Iterative AI-driven coverage improvement for one or more files of a repository."""

import logging
import posixpath
import shutil
from collections.abc import Callable
from pathlib import Path

from pydantic import BaseModel, Field

from coverage_improver.core.command_runner import CommandRunner, PackageManager
from coverage_improver.core.coverage_parser import CoverageParser
from coverage_improver.core.database import CoverageDatabase
from coverage_improver.core.errors import (
    CoverageFileNotFoundError,
    InvalidStatusTransitionError,
    InvalidValueError,
    JobCancelledError,
    NotFoundError,
    ScopeViolationError,
    TestGenerationError,
)
from coverage_improver.core.file_scope import is_pipeline_byproduct, is_test_file, is_valid_test_content
from coverage_improver.core.git_service import GitService
from coverage_improver.core.github_client import GitHubApiClient
from coverage_improver.core.models import (
    CoverageFile,
    CoverageFileStatus,
    CoverageReport,
    FileCoverage,
    Job,
    JobStatus,
    TargetFile,
    TestGenerationRequest,
)
from coverage_improver.core.project_layout import find_existing_test_file, project_has_test_script
from coverage_improver.core.settings import settings
from coverage_improver.services.ai_providers import AIProvider, get_provider

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, str], None]

MAX_LISTED_LINES = 10


def _same_path(report_path: str, target_path: str) -> bool:
    return report_path == target_path


def _same_basename_and_parent(report_path: str, target_path: str) -> bool:
    parent = posixpath.basename(posixpath.dirname(target_path))
    return (
        bool(parent)
        and posixpath.basename(report_path) == posixpath.basename(target_path)
        and posixpath.basename(posixpath.dirname(report_path)) == parent
    )


def _same_basename(report_path: str, target_path: str) -> bool:
    return posixpath.basename(report_path) == posixpath.basename(target_path)


# Ordered from most to least confident. Coverage tools and monorepo layouts
# disagree about path roots, so looser matches are only tried when stricter ones fail.
PATH_MATCHERS: list[tuple[str, Callable[[str, str], bool]]] = [
    ("exact", _same_path),
    ("basename+parent", _same_basename_and_parent),
    ("basename", _same_basename),
]


def match_file_coverage(report: CoverageReport, target_path: str) -> FileCoverage | None:
    """Find the report entry for ``target_path`` using the matchers in order."""
    for strategy, matcher in PATH_MATCHERS:
        for file in report.files:
            if matcher(file.path, target_path):
                if strategy != "exact":
                    logger.debug(f"Matched {target_path} to {file.path} by {strategy}")
                return file
    return None


class ImprovementTarget(BaseModel):
    """Loop-local state for one file being improved."""

    coverage_file: CoverageFile
    source: str
    coverage: float
    uncovered_lines: list[int] = Field(default_factory=list)
    original_uncovered_lines: list[int] = Field(default_factory=list)

    @property
    def path(self) -> str:
        return self.coverage_file.path


class ImprovementOutcome(BaseModel):
    attempts: int
    test_files: list[str]
    aggregate_coverage: float | None = None


class JobOrchestrator:
    """Runs improvement jobs end to end.

    Clone, install, branch, then up to ``max_retries`` rounds of AI
    generation and re-measurement, each round told only the lines that are
    still uncovered. Only test files may survive into the commit; anything
    else fails the job. Target files are reset to pending on every failure
    and the clone is always removed.
    """

    def __init__(
        self,
        db: CoverageDatabase,
        git: GitService | None = None,
        github: GitHubApiClient | None = None,
        runner: CommandRunner | None = None,
        provider_factory: Callable[[str], AIProvider] = get_provider,
        coverage_threshold: float | None = None,
        max_retries: int | None = None,
        require_aggregate_threshold: bool | None = None,
        progress_callback: ProgressCallback | None = None,
    ):
        self.db = db
        self.git = git or GitService()
        self.github = github or GitHubApiClient()
        self.runner = runner or CommandRunner()
        self.provider_factory = provider_factory
        self.coverage_threshold = (
            settings.coverage_threshold if coverage_threshold is None else coverage_threshold
        )
        self.max_retries = settings.max_retries if max_retries is None else max_retries
        if self.max_retries < 1:
            raise InvalidValueError(f"max_retries must be at least 1, got {self.max_retries}")
        self.require_aggregate_threshold = (
            settings.require_aggregate_threshold
            if require_aggregate_threshold is None
            else require_aggregate_threshold
        )
        self.progress_callback = progress_callback

    def execute(self, job: Job) -> Job:
        """Run an improvement job to a terminal state and return it."""
        clone_path: Path | None = None

        try:
            if job.status == JobStatus.PENDING:
                job.start()
            self.db.save_job(job)
            self._emit(job, 5, f"Starting improvement for {job.file_count} file(s)")

            repository = self.db.get_repository(job.repository_id)
            if repository is None:
                raise NotFoundError(f"Repository not found: {job.repository_id}")
            coverage_files = self._load_coverage_files(job)

            clone_path = self.git.get_temp_dir(job.id)
            self.git.clone(repository.clone_url, clone_path, repository.branch)
            self._checkpoint(job, 10, "Repository cloned")

            project_dir = clone_path / coverage_files[0].project_dir if coverage_files[0].project_dir else clone_path
            package_manager = self.runner.detect_package_manager(project_dir)
            install = self.runner.install_dependencies(project_dir, package_manager)
            if not install.succeeded:
                logger.warning(f"Dependency install exited with {install.exit_code}, continuing")
            self._checkpoint(job, 15, "Dependencies installed")

            label = coverage_files[0].path if len(coverage_files) == 1 else f"{len(coverage_files)}-files"
            branch = self.git.generate_branch_name(label)
            self.git.create_branch(clone_path, branch)
            self._checkpoint(job, 20, f"Created branch {branch}")

            targets = [self._read_target(project_dir, cf) for cf in coverage_files]
            outcome = self._improve(job, clone_path, project_dir, package_manager, targets)

            self._checkpoint(job, 70, "Validating changed files")
            test_files = self._enforce_scope(clone_path)

            self._checkpoint(job, 80, "Committing changes")
            self.git.commit_and_push(clone_path, branch, self._commit_message(targets), test_files)

            self._checkpoint(job, 90, "Creating pull request")
            pull_request = self.github.create_pull_request(
                owner=repository.owner,
                repo=repository.name,
                title=self._pr_title(targets),
                body=self._pr_body(targets, outcome),
                head=branch,
                base=repository.branch,
            )

            job.complete(pr_url=pull_request.url)
            self.db.save_job(job)

            for target in targets:
                target.coverage_file.mark_as_improved(target.coverage, target.uncovered_lines)
                self.db.save_coverage_file(target.coverage_file)

            self._emit(job, 100, f"Pull request created: {pull_request.url}")
            logger.info(f"Improvement job {job.id} completed: {pull_request.url}")

        except JobCancelledError:
            logger.info(f"Improvement job {job.id} stopped after cancellation")
            job = self.db.get_job(job.id) or job
            self._reset_coverage_files(job)

        except Exception as e:
            logger.error(f"Improvement job {job.id} failed: {e}")
            stored = self.db.get_job(job.id)
            if stored is not None and stored.status == JobStatus.FAILED:
                job = stored
            elif job.status == JobStatus.RUNNING:
                job.fail(str(e))
                self.db.save_job(job)
            self._reset_coverage_files(job)
            self._emit(job, job.progress, f"Failed: {e}")

        finally:
            if clone_path is not None:
                self.git.cleanup_work_dir(clone_path)

        return job

    def _improve(
        self,
        job: Job,
        clone_path: Path,
        project_dir: Path,
        package_manager: PackageManager,
        targets: list[ImprovementTarget],
    ) -> ImprovementOutcome:
        provider = self.provider_factory(job.ai_provider or settings.default_ai_provider)
        has_test_script = project_has_test_script(project_dir)
        project_prefix = project_dir.relative_to(clone_path).as_posix()
        existing_test = find_existing_test_file(project_dir, targets[0].path) if len(targets) == 1 else None

        attempt = 0
        aggregate: float | None = None
        generated_test: str | None = None
        test_files: list[str] = []

        while attempt < self.max_retries and not self._converged(targets, aggregate):
            attempt += 1
            progress_base = 25 + (35 * (attempt - 1)) // self.max_retries
            self._checkpoint(job, progress_base, f"Generating tests (attempt {attempt}/{self.max_retries})")

            request = TestGenerationRequest(
                files=[
                    TargetFile(file_path=t.path, file_content=t.source, uncovered_lines=t.uncovered_lines)
                    for t in targets
                ],
                project_dir=project_dir,
                existing_test_path=generated_test or existing_test,
            )
            result = provider.generate_tests(request)

            test_files = [f for f in self.git.get_changed_files(clone_path) if is_test_file(f)]
            if not test_files:
                if attempt < self.max_retries:
                    logger.warning(f"Attempt {attempt}: AI did not create a test file, retrying")
                    continue
                raise TestGenerationError("AI failed to create a test file after all attempts")

            invalid = [f for f in test_files if not self._has_valid_test_content(clone_path / f)]
            if invalid:
                if attempt < self.max_retries:
                    logger.warning(f"Attempt {attempt}: invalid test content in {', '.join(invalid)}, retrying")
                    continue
                raise TestGenerationError(
                    f"AI failed to produce valid test content after all attempts: {', '.join(invalid)}"
                )

            generated_test = result.test_file_path or self._project_relative(test_files[0], project_prefix)

            self._checkpoint(job, progress_base + 10, f"Running tests (attempt {attempt})")
            report = self._measure(project_dir, package_manager, has_test_script)
            aggregate = report.total_coverage
            self._apply_measurement(report, targets)

            summary = ", ".join(f"{t.path}: {t.coverage:.1f}%" for t in targets)
            logger.info(f"Attempt {attempt}/{self.max_retries} for job {job.id}: {summary}")

        if not test_files:
            raise TestGenerationError("No test file was generated")

        return ImprovementOutcome(attempts=attempt, test_files=test_files, aggregate_coverage=aggregate)

    def _converged(self, targets: list[ImprovementTarget], aggregate: float | None) -> bool:
        if any(t.coverage < self.coverage_threshold for t in targets):
            return False
        if self.require_aggregate_threshold:
            return aggregate is not None and aggregate >= self.coverage_threshold
        return True

    def _measure(self, project_dir: Path, package_manager: PackageManager, has_test_script: bool) -> CoverageReport:
        coverage_dir = project_dir / "coverage"
        shutil.rmtree(coverage_dir, ignore_errors=True)

        result = self.runner.run_tests_with_coverage(project_dir, package_manager, has_test_script)
        if not result.succeeded:
            logger.warning(f"Test run exited with {result.exit_code}")

        try:
            return CoverageParser(project_root=project_dir).parse(coverage_dir)
        except CoverageFileNotFoundError as e:
            logger.warning(f"{e}, treating coverage as zero")
            return CoverageReport(files=[], total_coverage=0.0)

    def _apply_measurement(self, report: CoverageReport, targets: list[ImprovementTarget]) -> None:
        """Record fresh coverage per target and persist it so progress is visible mid-job."""
        for target in targets:
            measured = match_file_coverage(report, target.path)
            if measured is None:
                logger.warning(f"{target.path} not found in coverage report, using total coverage")
                target.coverage = report.total_coverage
                continue

            target.coverage = measured.percentage
            target.uncovered_lines = list(measured.uncovered_lines)
            target.coverage_file.update_coverage(measured.percentage, measured.uncovered_lines)
            self.db.save_coverage_file(target.coverage_file)

    def _enforce_scope(self, clone_path: Path) -> list[str]:
        """Revert install/test byproducts, then fail if anything but tests remains changed."""
        byproducts = [f for f in self.git.get_changed_files(clone_path) if is_pipeline_byproduct(f)]
        if byproducts:
            logger.info(f"Reverting {len(byproducts)} files touched by install or test runs")
            self.git.restore_files(clone_path, byproducts)

        remaining = self.git.get_changed_files(clone_path)
        violations = [f for f in remaining if not is_test_file(f)]
        if violations:
            raise ScopeViolationError(violations)
        if not remaining:
            raise TestGenerationError("No test file was generated")
        return remaining

    def _load_coverage_files(self, job: Job) -> list[CoverageFile]:
        if not job.file_ids:
            raise InvalidValueError(f"Improvement job {job.id} has no target files")

        coverage_files = []
        for file_id in job.file_ids:
            coverage_file = self.db.get_coverage_file(file_id)
            if coverage_file is None:
                raise NotFoundError(f"Coverage file not found: {file_id}")
            if coverage_file.repository_id != job.repository_id:
                raise InvalidValueError(f"Coverage file {file_id} does not belong to repository {job.repository_id}")
            if coverage_file.status == CoverageFileStatus.PENDING:
                coverage_file.mark_as_improving()
                self.db.save_coverage_file(coverage_file)
            elif coverage_file.status != CoverageFileStatus.IMPROVING:
                raise InvalidStatusTransitionError(coverage_file.status.value, CoverageFileStatus.IMPROVING.value)
            coverage_files.append(coverage_file)
        return coverage_files

    def _read_target(self, project_dir: Path, coverage_file: CoverageFile) -> ImprovementTarget:
        source_path = project_dir / coverage_file.path
        if not source_path.is_file():
            raise NotFoundError(f"Source file not found: {coverage_file.path}")
        return ImprovementTarget(
            coverage_file=coverage_file,
            source=source_path.read_text(encoding="utf-8"),
            coverage=coverage_file.coverage_percentage,
            uncovered_lines=list(coverage_file.uncovered_lines),
            original_uncovered_lines=list(coverage_file.uncovered_lines),
        )

    def _reset_coverage_files(self, job: Job) -> None:
        for file_id in job.file_ids:
            coverage_file = self.db.get_coverage_file(file_id)
            if coverage_file is not None and coverage_file.status == CoverageFileStatus.IMPROVING:
                coverage_file.reset_to_pending()
                self.db.save_coverage_file(coverage_file)

    def _checkpoint(self, job: Job, progress: int, message: str) -> None:
        """Persist progress unless the job was cancelled since the last phase."""
        stored = self.db.get_job(job.id)
        if stored is not None and stored.status == JobStatus.FAILED:
            raise JobCancelledError(job.id)
        job.update_progress(progress)
        self.db.save_job(job)
        self._emit(job, progress, message)

    def _emit(self, job: Job, progress: int, message: str) -> None:
        logger.debug(f"[{job.id}] {progress}% {message}")
        if self.progress_callback:
            self.progress_callback(job.id, progress, message)

    @staticmethod
    def _has_valid_test_content(path: Path) -> bool:
        return path.is_file() and is_valid_test_content(path.read_text(encoding="utf-8", errors="replace"))

    @staticmethod
    def _project_relative(path: str, project_prefix: str) -> str:
        if project_prefix in ("", ".") or not path.startswith(project_prefix + "/"):
            return path
        return path[len(project_prefix) + 1 :]

    @staticmethod
    def _commit_message(targets: list[ImprovementTarget]) -> str:
        if len(targets) == 1:
            return f"test: improve coverage for {targets[0].path}\n\nCoverage: {targets[0].coverage:.1f}%"
        lines = "\n".join(f"- {t.path}: {t.coverage:.1f}%" for t in targets)
        return f"test: improve coverage for {len(targets)} files\n\n{lines}"

    @staticmethod
    def _pr_title(targets: list[ImprovementTarget]) -> str:
        if len(targets) == 1:
            return f"Improve test coverage for {posixpath.basename(targets[0].path)}"
        return f"Improve test coverage for {len(targets)} files"

    @staticmethod
    def _pr_body(targets: list[ImprovementTarget], outcome: ImprovementOutcome) -> str:
        if len(targets) == 1:
            target = targets[0]
            lines = ", ".join(str(n) for n in target.original_uncovered_lines[:MAX_LISTED_LINES])
            if len(target.original_uncovered_lines) > MAX_LISTED_LINES:
                lines += ", ..."
            return (
                "## Summary\n"
                f"Adds generated tests for `{target.path}`.\n\n"
                "### Results\n"
                f"- **Final coverage:** {target.coverage:.1f}%\n"
                f"- **AI attempts:** {outcome.attempts}\n"
                f"- **Lines targeted:** {lines or 'none'}\n\n"
                "---\nGenerated by Coverage Improver"
            )

        average = sum(t.coverage for t in targets) / len(targets)
        file_list = "\n".join(f"- `{t.path}` ({t.coverage:.1f}%)" for t in targets)
        return (
            "## Summary\n"
            f"Adds generated tests for {len(targets)} files.\n\n"
            f"### Files\n{file_list}\n\n"
            "### Results\n"
            f"- **Average coverage:** {average:.1f}%\n"
            f"- **AI attempts:** {outcome.attempts}\n\n"
            "---\nGenerated by Coverage Improver"
        )
