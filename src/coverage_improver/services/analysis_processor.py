"""Analysis jobs: measure a repository's coverage and store one record per source file."""

import logging
from pathlib import Path

from coverage_improver.core.command_runner import CommandRunner
from coverage_improver.core.coverage_parser import CoverageParser
from coverage_improver.core.database import CoverageDatabase
from coverage_improver.core.errors import CoverageFileNotFoundError, JobCancelledError, NotFoundError, SandboxError
from coverage_improver.core.git_service import GitService
from coverage_improver.core.models import CoverageFile, CoverageReport, GitHubRepo, Job, JobStatus
from coverage_improver.core.project_layout import find_project_directory
from coverage_improver.core.reconciliation import count_below_threshold, reconcile
from coverage_improver.core.sandbox import SANDBOX_WORKSPACE, DockerSandbox
from coverage_improver.core.settings import settings

logger = logging.getLogger(__name__)


class AnalysisJobProcessor:
    """Clones a repository, runs its tests with coverage and replaces its coverage records.

    When the sandbox is enabled the clone, install and test run happen inside
    the Docker sandbox and only the coverage report and source tree come back.
    """

    def __init__(
        self,
        db: CoverageDatabase,
        git: GitService | None = None,
        runner: CommandRunner | None = None,
        sandbox: DockerSandbox | None = None,
        coverage_threshold: float | None = None,
        sandbox_enabled: bool | None = None,
    ):
        self.db = db
        self.git = git or GitService()
        self.runner = runner or CommandRunner()
        self.sandbox = sandbox
        self.coverage_threshold = (
            settings.coverage_threshold if coverage_threshold is None else coverage_threshold
        )
        self.sandbox_enabled = settings.sandbox_enabled if sandbox_enabled is None else sandbox_enabled

    def execute(self, job: Job) -> Job:
        work_dir: Path | None = None

        try:
            if job.status == JobStatus.PENDING:
                job.start()
            self._progress(job, 5)

            repository = self.db.get_repository(job.repository_id)
            if repository is None:
                raise NotFoundError(f"Repository not found: {job.repository_id}")

            work_dir = self.git.get_temp_dir(job.id)
            if self.sandbox_enabled:
                report, project_dir = self._analyze_in_sandbox(repository, work_dir)
            else:
                report, project_dir = self._analyze_locally(job, repository, work_dir)
            self._progress(job, 80)

            coverage_files = [
                CoverageFile(
                    repository_id=repository.id,
                    path=file.path,
                    coverage_percentage=file.percentage,
                    uncovered_lines=file.uncovered_lines,
                    project_dir=project_dir,
                )
                for file in report.files
            ]
            self.db.replace_coverage_files(repository.id, coverage_files)
            below_threshold = count_below_threshold(report, self.coverage_threshold)

            repository.mark_as_analyzed()
            self.db.save_repository(repository)

            job.complete(files_found=len(coverage_files), files_below_threshold=below_threshold)
            self.db.save_job(job)
            logger.info(
                f"Analysis of {repository.full_name} found {len(coverage_files)} files, "
                f"{below_threshold} below {self.coverage_threshold}% (total {report.total_coverage}%)"
            )

        except JobCancelledError:
            logger.info(f"Analysis job {job.id} stopped after cancellation")
            job = self.db.get_job(job.id) or job

        except Exception as e:
            logger.error(f"Analysis job {job.id} failed: {e}")
            stored = self.db.get_job(job.id)
            if stored is not None and stored.status == JobStatus.FAILED:
                job = stored
            elif job.status == JobStatus.RUNNING:
                job.fail(str(e))
                self.db.save_job(job)

        finally:
            if work_dir is not None:
                self.git.cleanup_work_dir(work_dir)

        return job

    def _analyze_locally(self, job: Job, repository: GitHubRepo, clone_path: Path) -> tuple[CoverageReport, str | None]:
        self.git.clone(repository.clone_url, clone_path, repository.branch)
        self._progress(job, 10)

        project = find_project_directory(clone_path)
        self._progress(job, 20)

        if project is None:
            logger.warning(f"No package.json found in {repository.full_name}, every source file counts as uncovered")
            return reconcile(CoverageReport(), clone_path), None

        package_manager = self.runner.detect_package_manager(project.path)
        install = self.runner.install_dependencies(project.path, package_manager)
        if not install.succeeded:
            logger.warning(f"Dependency install exited with {install.exit_code}, continuing")
        self._progress(job, 40)

        result = self.runner.run_tests_with_coverage(project.path, package_manager, project.has_test_script)
        if not result.succeeded:
            logger.warning(f"Test run exited with {result.exit_code}, using whatever coverage was written")
        self._progress(job, 60)

        try:
            report = CoverageParser(project_root=project.path).parse(project.path / "coverage")
        except CoverageFileNotFoundError as e:
            logger.warning(str(e))
            report = CoverageReport()

        relative = project.path.relative_to(clone_path).as_posix()
        return reconcile(report, project.path), None if relative == "." else relative

    def _analyze_in_sandbox(self, repository: GitHubRepo, work_dir: Path) -> tuple[CoverageReport, str | None]:
        sandbox = self.sandbox or DockerSandbox()
        result = sandbox.run_analysis(repository.url, repository.branch, work_dir)
        if not result.success:
            raise SandboxError(result.error or "Sandbox analysis failed")

        report = CoverageReport()
        if result.coverage_json is not None:
            report = CoverageParser(project_root=SANDBOX_WORKSPACE).parse_istanbul_data(result.coverage_json)

        if result.sources_dir is not None:
            report = reconcile(report, result.sources_dir)
        return report, None

    def _progress(self, job: Job, progress: int) -> None:
        stored = self.db.get_job(job.id)
        if stored is not None and stored.status == JobStatus.FAILED:
            raise JobCancelledError(job.id)
        job.update_progress(progress)
        self.db.save_job(job)
