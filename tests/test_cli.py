"""Tests for cli.py."""

from unittest.mock import patch

import pytest
from click.testing import CliRunner
from conftest import make_coverage_file, make_repository

from coverage_improver.cli import cli
from coverage_improver.core.errors import ConflictError, NotFoundError
from coverage_improver.core.models import (
    CoverageFileView,
    CoverageReportView,
    CoverageSummary,
    Job,
    JobStatus,
)


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def mock_service():
    with patch("coverage_improver.cli.JobService") as service_class:
        yield service_class.return_value


def test_add_repo__prints_repository_id(runner, mock_service) -> None:
    repository = make_repository()
    mock_service.add_repository.return_value = repository

    result = runner.invoke(cli, ["add-repo", "https://github.com/acme/widgets", "--branch", "main"])

    assert result.exit_code == 0
    assert "Tracking acme/widgets" in result.output
    assert repository.id in result.output
    mock_service.add_repository.assert_called_once_with("https://github.com/acme/widgets", "main")


def test_repos__hints_when_nothing_tracked(runner, mock_service) -> None:
    mock_service.list_repositories.return_value = []

    result = runner.invoke(cli, ["repos"])

    assert result.exit_code == 0
    assert "No repositories tracked yet" in result.output


def test_analyze__exits_with_error_on_conflict(runner, mock_service) -> None:
    mock_service.analyze_repository.side_effect = ConflictError("Analysis already running for acme/widgets: 123")

    with patch("coverage_improver.cli.CoverageDatabase"):
        result = runner.invoke(cli, ["analyze", "https://github.com/acme/widgets"])

    assert result.exit_code == 1
    assert "Analysis already running" in result.output


def test_analyze__now_runs_job_in_process(runner, mock_service) -> None:
    job = Job.create_analysis("repo-1")
    mock_service.analyze_repository.return_value = job
    finished = job.model_copy()
    finished.start()
    finished.complete(files_found=4, files_below_threshold=1)

    with (
        patch("coverage_improver.cli.CoverageDatabase"),
        patch("coverage_improver.cli.JobProcessor") as processor_class,
    ):
        processor_class.return_value.execute_job.return_value = finished
        result = runner.invoke(cli, ["analyze", "https://github.com/acme/widgets", "--now"])

    assert result.exit_code == 0
    processor_class.return_value.execute_job.assert_called_once_with(job)
    assert "completed" in result.output


def test_coverage__shows_summary_and_files(runner, mock_service) -> None:
    coverage_file = make_coverage_file("repo-1", path="src/parser.ts", coverage=12.5, uncovered_lines=[4, 9])
    mock_service.get_coverage_report.return_value = CoverageReportView(
        repository_id="repo-1",
        summary=CoverageSummary(
            total_files=1,
            average_coverage=12.5,
            files_below_threshold=1,
            files_improving=0,
            files_improved=0,
            threshold=80.0,
        ),
        files=[CoverageFileView(file=coverage_file, needs_improvement=True)],
    )

    result = runner.invoke(cli, ["coverage", "repo-1", "--threshold", "80"])

    assert result.exit_code == 0
    assert "Files: 1" in result.output
    assert "Average coverage: 12.50%" in result.output
    mock_service.get_coverage_report.assert_called_once_with("repo-1", 80.0, 1, 50)


def test_improve__rejects_unknown_provider_choice(runner, mock_service) -> None:
    result = runner.invoke(cli, ["improve", "repo-1", "file-1", "--provider", "gemini"])

    assert result.exit_code == 2
    mock_service.start_improvement.assert_not_called()


def test_improve__queues_job_for_all_files(runner, mock_service) -> None:
    job = Job.create_improvement("repo-1", ["file-1", "file-2"], "openai")
    mock_service.start_improvement.return_value = job

    with patch("coverage_improver.cli.CoverageDatabase"):
        result = runner.invoke(cli, ["improve", "repo-1", "file-1", "file-2", "--provider", "openai"])

    assert result.exit_code == 0
    assert "for 2 file(s)" in result.output
    mock_service.start_improvement.assert_called_once_with("repo-1", ["file-1", "file-2"], "openai")


def test_status__unknown_job_exits_with_error(runner, mock_service) -> None:
    mock_service.get_job.side_effect = NotFoundError("Job not found: nope")

    result = runner.invoke(cli, ["status", "nope"])

    assert result.exit_code == 1
    assert "Job not found: nope" in result.output


def test_cancel__confirms_cancellation(runner, mock_service) -> None:
    job = Job.create_analysis("repo-1")
    job.cancel()
    mock_service.cancel_job.return_value = job

    result = runner.invoke(cli, ["cancel", job.id])

    assert result.exit_code == 0
    assert f"Cancelled job {job.id}" in result.output
    assert job.status == JobStatus.FAILED


def test_jobs__reports_empty_queue(runner, mock_service) -> None:
    mock_service.list_pending_jobs.return_value = []

    result = runner.invoke(cli, ["jobs", "--pending"])

    assert result.exit_code == 0
    assert "No jobs found" in result.output


def test_process_next__reports_idle_queue(runner) -> None:
    with patch("coverage_improver.cli.JobProcessor") as processor_class:
        processor_class.return_value.process_next_job.return_value = None
        result = runner.invoke(cli, ["process-next", "--type", "analysis"])

    assert result.exit_code == 0
    assert "No eligible jobs" in result.output
    processor_class.return_value.process_next_job.assert_called_once()


def test_remove_repo__requires_confirmation(runner, mock_service) -> None:
    result = runner.invoke(cli, ["remove-repo", "repo-1"], input="n\n")

    assert result.exit_code == 1
    mock_service.delete_repository.assert_not_called()
