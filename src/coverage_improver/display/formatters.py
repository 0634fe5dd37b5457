"""Rich formatting utilities for repositories, jobs and coverage reports."""

from rich.table import Table

from coverage_improver.core.models import (
    BranchInfo,
    CoverageFileStatus,
    CoverageReportView,
    GitHubRepo,
    Job,
    JobStatus,
)
from coverage_improver.display.console import console

MAX_LISTED_LINES = 8


def _format_timestamp(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "never"


def _format_coverage(percentage: float, threshold: float) -> str:
    color = "green" if percentage >= threshold else "yellow" if percentage >= threshold / 2 else "red"
    return f"[{color}]{percentage:.2f}%[/{color}]"


def _format_status(status: JobStatus) -> str:
    color = {
        JobStatus.PENDING: "yellow",
        JobStatus.RUNNING: "cyan",
        JobStatus.COMPLETED: "green",
        JobStatus.FAILED: "red",
    }[status]
    return f"[{color}]{status.value}[/]"


def _format_lines(lines: list[int]) -> str:
    if not lines:
        return "-"
    shown = ", ".join(str(n) for n in lines[:MAX_LISTED_LINES])
    return f"{shown}, ..." if len(lines) > MAX_LISTED_LINES else shown


def create_repositories_table(repositories: list[GitHubRepo]) -> Table:
    """Create a Rich table for displaying tracked repositories."""
    table = Table(title="Repositories")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Repository", style="magenta")
    table.add_column("Branch", style="blue")
    table.add_column("Default", style="blue")
    table.add_column("Last Analyzed", style="green")

    for repository in repositories:
        table.add_row(
            repository.id,
            repository.full_name,
            repository.branch,
            repository.default_branch,
            _format_timestamp(repository.last_analyzed_at),
        )

    return table


def create_branches_table(branches: list[BranchInfo]) -> Table:
    table = Table(title="Branches")
    table.add_column("Name", style="cyan")
    table.add_column("Default", justify="center")

    for branch in branches:
        table.add_row(branch.name, "[green]yes[/green]" if branch.is_default else "")

    return table


def create_jobs_table(jobs: list[Job]) -> Table:
    """Create a Rich table for displaying jobs, newest first."""
    table = Table(title="Jobs")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Type", style="magenta")
    table.add_column("Status", style="bold")
    table.add_column("Progress", justify="right")
    table.add_column("Files", justify="right")
    table.add_column("Created", style="green")
    table.add_column("Result")

    for job in jobs:
        if job.pr_url:
            result = job.pr_url
        elif job.error:
            result = f"[red]{job.error}[/red]"
        elif job.files_found is not None:
            result = f"{job.files_found} found, {job.files_below_threshold} below threshold"
        else:
            result = ""

        table.add_row(
            job.id,
            job.type.value,
            _format_status(job.status),
            f"{job.progress}%",
            str(job.file_count) if job.is_improvement else "-",
            _format_timestamp(job.created_at),
            result,
        )

    return table


def create_coverage_table(report: CoverageReportView) -> Table:
    """Create a Rich table for one page of a coverage report."""
    threshold = report.summary.threshold
    table = Table(title=f"Coverage (page {report.page}/{report.total_pages})")
    table.add_column("File ID", style="cyan", no_wrap=True)
    table.add_column("Path", style="magenta")
    table.add_column("Coverage", justify="right")
    table.add_column("Status")
    table.add_column("Uncovered Lines", style="dim")

    for view in report.files:
        coverage_file = view.file
        status = coverage_file.status.value
        if view.needs_improvement:
            status = f"[yellow]{status} (needs improvement)[/yellow]"
        elif coverage_file.status == CoverageFileStatus.IMPROVED:
            status = f"[green]{status}[/green]"

        path = f"{coverage_file.project_dir}/{coverage_file.path}" if coverage_file.project_dir else coverage_file.path
        table.add_row(
            coverage_file.id,
            path,
            _format_coverage(coverage_file.coverage_percentage, threshold),
            status,
            _format_lines(coverage_file.uncovered_lines),
        )

    return table


def display_coverage_report(report: CoverageReportView) -> None:
    """Display the coverage summary followed by the file table."""
    summary = report.summary
    console.print(f"\n[bold]Coverage Report: {report.repository_id}[/bold]")
    console.print(f"Files: {summary.total_files}")
    console.print(f"Average coverage: {_format_coverage(summary.average_coverage, summary.threshold)}")
    console.print(f"Below {summary.threshold}%: {summary.files_below_threshold}")
    console.print(f"Improving: {summary.files_improving}  Improved: {summary.files_improved}")

    if report.files:
        console.print(create_coverage_table(report))
    else:
        console.print("[yellow]No coverage data. Run 'coverage-improver analyze' first.[/yellow]")


def display_job(job: Job) -> None:
    """Display the details of a single job."""
    console.print(f"\n[bold]Job {job.id}[/bold]")
    console.print(f"Type: {job.type.value}")
    console.print(f"Repository: {job.repository_id}")
    console.print(f"Status: {_format_status(job.status)}")
    console.print(f"Progress: {job.progress}%")
    console.print(f"Created: {_format_timestamp(job.created_at)}")
    console.print(f"Updated: {_format_timestamp(job.updated_at)}")

    if job.is_improvement:
        console.print(f"AI provider: {job.ai_provider}")
        console.print(f"Files: {', '.join(job.file_ids)}")
    if job.files_found is not None:
        console.print(f"Files found: {job.files_found}")
        console.print(f"Files below threshold: {job.files_below_threshold}")
    if job.pr_url:
        console.print(f"Pull request: [green]{job.pr_url}[/green]")
    if job.error:
        console.print(f"[red]Error: {job.error}[/red]")
