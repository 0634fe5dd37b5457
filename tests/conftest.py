"""Shared test fixtures and helpers."""

import json
import subprocess
from pathlib import Path

import pytest

from coverage_improver.core.database import CoverageDatabase
from coverage_improver.core.models import CoverageFile, CoverageFileStatus, GitHubRepo, Job


@pytest.fixture
def db(tmp_path) -> CoverageDatabase:
    """Fresh database in a temporary directory."""
    return CoverageDatabase(tmp_path / "test.db")


def make_repository(db: CoverageDatabase | None = None, url: str = "https://github.com/acme/widgets", **overrides):
    """Create a GitHubRepo, saving it when a database is given."""
    repository = GitHubRepo.from_url(url, branch=overrides.pop("branch", "main"))
    for key, value in overrides.items():
        setattr(repository, key, value)
    if db is not None:
        db.save_repository(repository)
    return repository


def make_coverage_file(
    repository_id: str,
    path: str = "src/utils.ts",
    coverage: float = 50.0,
    uncovered_lines: list[int] | None = None,
    status: CoverageFileStatus = CoverageFileStatus.PENDING,
    db: CoverageDatabase | None = None,
    **overrides,
) -> CoverageFile:
    """Create a CoverageFile with sensible defaults, saving it when a database is given."""
    coverage_file = CoverageFile(
        repository_id=repository_id,
        path=path,
        coverage_percentage=coverage,
        uncovered_lines=[3, 4] if uncovered_lines is None else uncovered_lines,
        status=status,
        **overrides,
    )
    if db is not None:
        db.save_coverage_file(coverage_file)
    return coverage_file


def make_improvement_job(
    repository_id: str,
    file_ids: list[str],
    ai_provider: str = "claude",
    db: CoverageDatabase | None = None,
) -> Job:
    job = Job.create_improvement(repository_id, file_ids, ai_provider)
    if db is not None:
        db.save_job(job)
    return job


def make_istanbul_entry(statement_lines: list[int], hits: list[int]) -> dict:
    """Build one file entry of a coverage-final.json mapping."""
    return {
        "statementMap": {
            str(i): {"start": {"line": line, "column": 0}, "end": {"line": line, "column": 10}}
            for i, line in enumerate(statement_lines)
        },
        "s": {str(i): count for i, count in enumerate(hits)},
    }


def write_istanbul_report(coverage_dir: Path, data: dict) -> Path:
    coverage_dir.mkdir(parents=True, exist_ok=True)
    report_path = coverage_dir / "coverage-final.json"
    report_path.write_text(json.dumps(data))
    return report_path


def init_git_repo(path: Path, files: dict[str, str]) -> Path:
    """Create a git repository at ``path`` with one commit holding ``files``."""
    path.mkdir(parents=True, exist_ok=True)
    subprocess.run(["git", "init", "-b", "main"], cwd=path, check=True, capture_output=True)
    subprocess.run(["git", "config", "user.email", "test@example.com"], cwd=path, check=True)
    subprocess.run(["git", "config", "user.name", "Test User"], cwd=path, check=True)

    for relative, content in files.items():
        file_path = path / relative
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content)

    subprocess.run(["git", "add", "."], cwd=path, check=True)
    subprocess.run(["git", "commit", "-m", "Initial commit"], cwd=path, check=True, capture_output=True)
    return path
