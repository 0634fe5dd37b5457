"""Tests for JobService commands and queries."""

from unittest.mock import MagicMock

import pytest
from conftest import make_coverage_file, make_improvement_job, make_repository

from coverage_improver.core.errors import (
    AIProviderError,
    ConflictError,
    InvalidStatusTransitionError,
    InvalidValueError,
    NotFoundError,
)
from coverage_improver.core.models import CoverageFileStatus, JobStatus, JobType, RepositoryInfo
from coverage_improver.core.settings import settings
from coverage_improver.services.job_service import JobService


@pytest.fixture
def github():
    client = MagicMock()
    client.get_repo_info.return_value = RepositoryInfo(
        owner="acme",
        name="widgets",
        full_name="acme/widgets",
        default_branch="develop",
        url="https://github.com/acme/widgets",
    )
    return client


@pytest.fixture
def service(db, github):
    return JobService(db, github=github)


class TestRepositories:
    """Test repository registration and removal."""

    def test_add_repository__uses_github_default_branch(self, service, github):
        repository = service.add_repository("git@github.com:acme/widgets.git")

        assert repository.url == "https://github.com/acme/widgets"
        assert repository.branch == "develop"
        assert repository.default_branch == "develop"
        github.get_repo_info.assert_called_once_with("acme", "widgets")

    def test_add_repository__keeps_explicit_branch(self, service):
        repository = service.add_repository("https://github.com/acme/widgets", branch="release")

        assert repository.branch == "release"
        assert repository.default_branch == "develop"

    def test_add_repository__rejects_unknown_branch(self, service, github, db):
        github.branch_exists.return_value = False

        with pytest.raises(NotFoundError, match="Branch ghost not found"):
            service.add_repository("https://github.com/acme/widgets", branch="ghost")

        assert service.list_repositories() == []

    def test_add_repository__without_token_defaults_to_main(self, db, monkeypatch):
        monkeypatch.setattr(settings, "github_token", "")

        repository = JobService(db).add_repository("https://github.com/acme/widgets")

        assert repository.branch == "main"

    def test_add_repository__returns_existing_and_updates_branch(self, service, db, github):
        first = service.add_repository("https://github.com/acme/widgets")

        second = service.add_repository("https://github.com/acme/widgets.git", branch="feature")

        assert second.id == first.id
        assert db.get_repository(first.id).branch == "feature"
        assert github.get_repo_info.call_count == 1
        assert len(service.list_repositories()) == 1

    def test_get_repository__raises_for_unknown_id(self, service):
        with pytest.raises(NotFoundError):
            service.get_repository("missing")

    def test_delete_repository__refuses_while_job_runs(self, service, db):
        repository = make_repository(db)
        job = service.analyze_repository(repository.url)
        job.start()
        db.save_job(job)

        with pytest.raises(ConflictError):
            service.delete_repository(repository.id)

    def test_delete_repository__removes_repository(self, service, db):
        repository = make_repository(db)

        service.delete_repository(repository.id)

        assert db.get_repository(repository.id) is None


class TestAnalyzeRepository:
    def test_analyze_repository__registers_repository_and_queues_job(self, service, db):
        job = service.analyze_repository("https://github.com/acme/gadgets", branch="dev")

        repository = db.get_repository(job.repository_id)
        assert repository.full_name == "acme/gadgets"
        assert repository.branch == "dev"
        assert job.type == JobType.ANALYSIS
        assert job.status == JobStatus.PENDING

    def test_analyze_repository__rejects_duplicate_active_analysis(self, service):
        service.analyze_repository("https://github.com/acme/gadgets")

        with pytest.raises(ConflictError, match="Analysis already pending"):
            service.analyze_repository("https://github.com/acme/gadgets")

    def test_analyze_repository__allows_new_analysis_after_completion(self, service, db):
        first = service.analyze_repository("https://github.com/acme/gadgets")
        first.start()
        first.complete(files_found=0, files_below_threshold=0)
        db.save_job(first)

        second = service.analyze_repository("https://github.com/acme/gadgets")

        assert second.id != first.id


class TestStartImprovement:
    """Test validation and file status changes when queuing improvements."""

    def test_start_improvement__marks_files_improving(self, service, db):
        repository = make_repository(db)
        a = make_coverage_file(repository.id, path="src/a.ts", db=db)
        b = make_coverage_file(repository.id, path="src/b.ts", db=db)

        job = service.start_improvement(repository.id, [a.id, b.id, a.id], ai_provider="openai")

        assert job.file_ids == [a.id, b.id]
        assert job.ai_provider == "openai"
        assert db.get_job(job.id).status == JobStatus.PENDING
        assert {f.status for f in db.get_coverage_files([a.id, b.id])} == {CoverageFileStatus.IMPROVING}

    def test_start_improvement__rejects_already_improved_file(self, service, db):
        repository = make_repository(db)
        pending = make_coverage_file(repository.id, path="src/a.ts", db=db)
        improved = make_coverage_file(
            repository.id, path="src/b.ts", coverage=95.0, status=CoverageFileStatus.IMPROVED, db=db
        )

        with pytest.raises(InvalidStatusTransitionError):
            service.start_improvement(repository.id, [pending.id, improved.id])

        assert db.get_coverage_file(pending.id).status == CoverageFileStatus.PENDING
        assert db.get_coverage_file(improved.id).status == CoverageFileStatus.IMPROVED
        assert service.list_pending_jobs() == []

    def test_start_improvement__rejects_unknown_provider(self, service, db):
        repository = make_repository(db)
        coverage_file = make_coverage_file(repository.id, db=db)

        with pytest.raises(AIProviderError, match="Unknown AI provider"):
            service.start_improvement(repository.id, [coverage_file.id], ai_provider="gemini")

    def test_start_improvement__rejects_empty_file_list(self, service, db):
        repository = make_repository(db)

        with pytest.raises(InvalidValueError):
            service.start_improvement(repository.id, [])

    def test_start_improvement__rejects_file_of_other_repository(self, service, db):
        repository = make_repository(db)
        other = make_repository(db, url="https://github.com/acme/other")
        foreign = make_coverage_file(other.id, db=db)

        with pytest.raises(InvalidValueError, match="does not belong"):
            service.start_improvement(repository.id, [foreign.id])

    def test_start_improvement__rejects_unknown_file(self, service, db):
        repository = make_repository(db)

        with pytest.raises(NotFoundError):
            service.start_improvement(repository.id, ["missing"])

    def test_start_improvement__rejects_file_with_active_job(self, service, db):
        repository = make_repository(db)
        coverage_file = make_coverage_file(repository.id, db=db)
        make_improvement_job(repository.id, [coverage_file.id], db=db)

        with pytest.raises(ConflictError, match="already has an improvement job"):
            service.start_improvement(repository.id, [coverage_file.id])

    def test_start_improvement__rejects_mixed_project_dirs(self, service, db):
        repository = make_repository(db)
        web = make_coverage_file(repository.id, path="src/a.ts", project_dir="web", db=db)
        api = make_coverage_file(repository.id, path="src/b.ts", project_dir="api", db=db)

        with pytest.raises(InvalidValueError, match="same project directory"):
            service.start_improvement(repository.id, [web.id, api.id])

        assert db.get_coverage_file(web.id).status == CoverageFileStatus.PENDING


class TestCancelJob:
    def test_cancel_job__fails_job_and_releases_files(self, service, db):
        repository = make_repository(db)
        coverage_file = make_coverage_file(repository.id, db=db)
        job = service.start_improvement(repository.id, [coverage_file.id], ai_provider="claude")

        cancelled = service.cancel_job(job.id)

        assert cancelled.status == JobStatus.FAILED
        assert cancelled.error == "Job cancelled by user"
        assert db.get_job(job.id).status == JobStatus.FAILED
        assert db.get_coverage_file(coverage_file.id).status == CoverageFileStatus.PENDING

    def test_cancel_job__raises_for_unknown_job(self, service):
        with pytest.raises(NotFoundError):
            service.cancel_job("missing")


class TestCoverageReport:
    """Test the summary and pagination of the coverage report."""

    def test_get_coverage_report__summarizes_files(self, service, db):
        repository = make_repository(db)
        make_coverage_file(repository.id, path="src/a.ts", coverage=20.0, db=db)
        make_coverage_file(repository.id, path="src/b.ts", coverage=60.0, status=CoverageFileStatus.IMPROVING, db=db)
        make_coverage_file(repository.id, path="src/c.ts", coverage=100.0, status=CoverageFileStatus.IMPROVED, db=db)

        report = service.get_coverage_report(repository.id, threshold=80.0)

        assert report.summary.total_files == 3
        assert report.summary.average_coverage == 60.0
        assert report.summary.files_below_threshold == 2
        assert report.summary.files_improving == 1
        assert report.summary.files_improved == 1
        assert [view.file.path for view in report.files] == ["src/a.ts", "src/b.ts", "src/c.ts"]
        assert [view.needs_improvement for view in report.files] == [True, False, False]

    def test_get_coverage_report__paginates_worst_first(self, service, db):
        repository = make_repository(db)
        for index in range(5):
            make_coverage_file(repository.id, path=f"src/f{index}.ts", coverage=float(index * 10), db=db)

        report = service.get_coverage_report(repository.id, page=2, page_size=2)

        assert [view.file.path for view in report.files] == ["src/f2.ts", "src/f3.ts"]
        assert report.total_pages == 3
        assert report.summary.total_files == 5

    def test_get_coverage_report__empty_repository(self, service, db):
        repository = make_repository(db)

        report = service.get_coverage_report(repository.id)

        assert report.summary.total_files == 0
        assert report.summary.average_coverage == 0.0
        assert report.total_pages == 1
        assert report.files == []

    @pytest.mark.parametrize("page,page_size", [(0, 10), (1, 0)])
    def test_get_coverage_report__rejects_invalid_paging(self, service, db, page, page_size):
        repository = make_repository(db)

        with pytest.raises(InvalidValueError):
            service.get_coverage_report(repository.id, page=page, page_size=page_size)
