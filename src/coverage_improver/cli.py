"""Main CLI dispatcher for coverage-improver."""

import functools
import logging
import sys
import time
from collections.abc import Callable

import click
from rich.logging import RichHandler
from rich.table import Table

from coverage_improver.core.database import CoverageDatabase
from coverage_improver.core.errors import CoverageImproverError
from coverage_improver.core.models import JobType
from coverage_improver.core.settings import settings
from coverage_improver.display.console import console
from coverage_improver.display.formatters import (
    create_branches_table,
    create_jobs_table,
    create_repositories_table,
    display_coverage_report,
    display_job,
)
from coverage_improver.services.ai_providers import PROVIDERS, available_providers
from coverage_improver.services.job_processor import JobProcessor
from coverage_improver.services.job_service import JobService
from coverage_improver.services.scheduler import JobScheduler

logger = logging.getLogger(__name__)


def handles_errors(func: Callable) -> Callable:
    """Print domain errors in red and exit with status 1 instead of a traceback."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except CoverageImproverError as e:
            console.print(f"[red]{e}[/red]")
            sys.exit(1)

    return wrapper


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose or settings.debug_mode else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


@click.group()
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Coverage Improver - raise TypeScript test coverage with AI-generated pull requests.

    Analyze a GitHub repository to find poorly covered files, then queue
    improvement jobs that generate tests and open a pull request.
    """
    _configure_logging(verbose)


@cli.command("add-repo")
@click.argument("url")
@click.option("--branch", "-b", default=None, help="Branch to analyze (defaults to the repository default)")
@handles_errors
def add_repo(url: str, branch: str | None) -> None:
    """Register a GitHub repository."""
    repository = JobService().add_repository(url, branch)
    console.print(f"[green]Tracking {repository.full_name}[/green] ({repository.branch})")
    console.print(f"Repository ID: [cyan]{repository.id}[/cyan]")


@cli.command("repos")
def list_repos() -> None:
    """List tracked repositories."""
    repositories = JobService().list_repositories()
    if not repositories:
        console.print("[yellow]No repositories tracked yet[/yellow]")
        console.print("[dim]Run 'coverage-improver add-repo <url>' to add one[/dim]")
        return
    console.print(create_repositories_table(repositories))


@cli.command("remove-repo")
@click.argument("repository_id")
@click.confirmation_option(prompt="Delete this repository with all its coverage data and jobs?")
@handles_errors
def remove_repo(repository_id: str) -> None:
    """Delete a repository with its coverage files and jobs."""
    JobService().delete_repository(repository_id)
    console.print(f"[green]Deleted repository {repository_id}[/green]")


@cli.command()
@click.argument("repository_id")
@handles_errors
def branches(repository_id: str) -> None:
    """List the branches of a tracked repository on GitHub."""
    console.print(create_branches_table(JobService().get_branches(repository_id)))


@cli.command()
@click.argument("url")
@click.option("--branch", "-b", default=None, help="Branch to analyze")
@click.option("--now", is_flag=True, default=False, help="Run the analysis in this process instead of queueing it")
@handles_errors
def analyze(url: str, branch: str | None, now: bool) -> None:
    """Queue a coverage analysis of a repository."""
    db = CoverageDatabase()
    job = JobService(db).analyze_repository(url, branch)
    console.print(f"Queued analysis job [cyan]{job.id}[/cyan]")

    if now:
        job = JobProcessor(db).execute_job(job)
        display_job(job)


@cli.command()
@click.argument("repository_id")
@click.option("--threshold", "-t", type=float, default=None, help="Coverage threshold (default from settings)")
@click.option("--page", type=int, default=1, show_default=True)
@click.option("--page-size", type=int, default=50, show_default=True)
@handles_errors
def coverage(repository_id: str, threshold: float | None, page: int, page_size: int) -> None:
    """Show the coverage report of a repository, worst files first."""
    report = JobService().get_coverage_report(repository_id, threshold, page, page_size)
    display_coverage_report(report)


@cli.command()
@click.argument("repository_id")
@click.argument("file_ids", nargs=-1, required=True)
@click.option(
    "--provider",
    "-p",
    type=click.Choice(sorted(PROVIDERS)),
    default=None,
    help="AI provider (default from settings)",
)
@click.option("--now", is_flag=True, default=False, help="Run the improvement in this process instead of queueing it")
@handles_errors
def improve(repository_id: str, file_ids: tuple[str, ...], provider: str | None, now: bool) -> None:
    """Queue an improvement job for one or more coverage files."""
    db = CoverageDatabase()
    job = JobService(db).start_improvement(repository_id, list(file_ids), provider)
    console.print(f"Queued improvement job [cyan]{job.id}[/cyan] for {job.file_count} file(s)")

    if now:
        job = JobProcessor(db).execute_job(job)
        display_job(job)


@cli.command()
@click.argument("job_id")
@handles_errors
def status(job_id: str) -> None:
    """Show the status of a job."""
    display_job(JobService().get_job(job_id))


@cli.command()
@click.option("--repo", "repository_id", default=None, help="Only jobs of this repository")
@click.option("--pending", is_flag=True, default=False, help="Only pending jobs, oldest first")
@click.option("--limit", type=int, default=50, show_default=True)
def jobs(repository_id: str | None, pending: bool, limit: int) -> None:
    """List jobs."""
    service = JobService()
    if pending:
        found = service.list_pending_jobs()
    elif repository_id:
        found = service.list_jobs_by_repository(repository_id)
    else:
        found = service.list_jobs(limit)

    if not found:
        console.print("[yellow]No jobs found[/yellow]")
        return
    console.print(create_jobs_table(found[:limit]))


@cli.command()
@click.argument("job_id")
@handles_errors
def cancel(job_id: str) -> None:
    """Cancel a pending or running job."""
    job = JobService().cancel_job(job_id)
    console.print(f"[green]Cancelled job {job.id}[/green]")


@cli.command("process-next")
@click.option(
    "--type",
    "job_type",
    type=click.Choice([t.value for t in JobType]),
    default=None,
    help="Only process this job type (default: one of each)",
)
def process_next(job_type: str | None) -> None:
    """Process the next eligible job and exit."""
    processor = JobProcessor()
    job_types = [JobType(job_type)] if job_type else list(JobType)

    processed = False
    for current_type in job_types:
        job = processor.process_next_job(current_type)
        if job is not None:
            processed = True
            display_job(job)

    if not processed:
        console.print("[yellow]No eligible jobs[/yellow]")


@cli.command()
@click.option("--interval", type=float, default=None, help="Polling interval in seconds (default from settings)")
def worker(interval: float | None) -> None:
    """Run the job scheduler until interrupted."""
    scheduler = JobScheduler(JobProcessor())
    scheduler.start(interval)
    console.print("[cyan]Worker running, press Ctrl+C to stop[/cyan]")

    try:
        while scheduler.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping worker, waiting for running jobs...[/yellow]")
    finally:
        scheduler.stop()


@cli.command()
def providers() -> None:
    """List AI providers and whether they are usable here."""
    table = Table(title="AI Providers")
    table.add_column("Name", style="cyan")
    table.add_column("Available")
    table.add_column("Default", justify="center")

    available = available_providers()
    for name in PROVIDERS:
        table.add_row(
            name,
            "[green]yes[/green]" if name in available else "[red]no[/red]",
            "*" if name == settings.default_ai_provider else "",
        )

    console.print(table)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
