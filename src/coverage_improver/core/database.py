"""SQLite persistence for repositories, coverage files and jobs."""

import json
import logging
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from coverage_improver.core.migrations import MigrationRunner
from coverage_improver.core.models import (
    CoverageFile,
    CoverageFileStatus,
    GitHubRepo,
    Job,
    JobStatus,
    JobType,
)
from coverage_improver.core.settings import settings

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (JobStatus.PENDING.value, JobStatus.RUNNING.value)


class CoverageDatabase:
    """Manages the SQLite database shared by the CLI and the scheduler."""

    def __init__(self, db_path: Path | None = None):
        if db_path is None:
            db_path = settings.resolved_database_path
        else:
            db_path = Path(db_path)

        self.db_path = db_path.resolve()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._create_tables()
        self._run_migrations()

    @contextmanager
    def _get_db_connection(self) -> Generator[sqlite3.Connection]:
        """Context manager that ensures database connections are properly closed."""
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _run_migrations(self) -> None:
        applied_migrations = MigrationRunner(self.db_path).run_migrations()
        if applied_migrations:
            logger.debug(f"Applied migrations: {applied_migrations}")

    def _create_tables(self) -> None:
        with self._get_db_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS repositories (
                    id TEXT PRIMARY KEY,
                    url TEXT NOT NULL UNIQUE,
                    owner TEXT NOT NULL,
                    name TEXT NOT NULL,
                    branch TEXT NOT NULL,
                    default_branch TEXT NOT NULL,
                    last_analyzed_at TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS coverage_files (
                    id TEXT PRIMARY KEY,
                    repository_id TEXT NOT NULL,
                    path TEXT NOT NULL,
                    coverage_percentage REAL NOT NULL,
                    uncovered_lines TEXT NOT NULL DEFAULT '[]',
                    status TEXT NOT NULL,
                    project_dir TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (repository_id) REFERENCES repositories(id) ON DELETE CASCADE
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_coverage_files_repository
                ON coverage_files(repository_id)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    repository_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    progress INTEGER NOT NULL DEFAULT 0,
                    file_ids TEXT NOT NULL DEFAULT '[]',
                    ai_provider TEXT,
                    pr_url TEXT,
                    error TEXT,
                    files_found INTEGER,
                    files_below_threshold INTEGER,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (repository_id) REFERENCES repositories(id) ON DELETE CASCADE
                )
            """)

    # Repositories

    def save_repository(self, repository: GitHubRepo) -> None:
        with self._get_db_connection() as conn:
            conn.execute(
                """
                INSERT INTO repositories (id, url, owner, name, branch, default_branch, last_analyzed_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    branch = excluded.branch,
                    default_branch = excluded.default_branch,
                    last_analyzed_at = excluded.last_analyzed_at
                """,
                (
                    repository.id,
                    repository.url,
                    repository.owner,
                    repository.name,
                    repository.branch,
                    repository.default_branch,
                    repository.last_analyzed_at.isoformat() if repository.last_analyzed_at else None,
                    repository.created_at.isoformat(),
                ),
            )

    def _row_to_repository(self, row: tuple) -> GitHubRepo:
        return GitHubRepo(
            id=row[0],
            url=row[1],
            owner=row[2],
            name=row[3],
            branch=row[4],
            default_branch=row[5],
            last_analyzed_at=datetime.fromisoformat(row[6]) if row[6] else None,
            created_at=datetime.fromisoformat(row[7]),
        )

    _REPOSITORY_COLUMNS = "id, url, owner, name, branch, default_branch, last_analyzed_at, created_at"

    def get_repository(self, repository_id: str) -> GitHubRepo | None:
        with self._get_db_connection() as conn:
            row = conn.execute(
                f"SELECT {self._REPOSITORY_COLUMNS} FROM repositories WHERE id = ?", (repository_id,)
            ).fetchone()
        return self._row_to_repository(row) if row else None

    def get_repository_by_url(self, url: str) -> GitHubRepo | None:
        with self._get_db_connection() as conn:
            row = conn.execute(f"SELECT {self._REPOSITORY_COLUMNS} FROM repositories WHERE url = ?", (url,)).fetchone()
        return self._row_to_repository(row) if row else None

    def list_repositories(self) -> list[GitHubRepo]:
        with self._get_db_connection() as conn:
            rows = conn.execute(f"SELECT {self._REPOSITORY_COLUMNS} FROM repositories ORDER BY created_at").fetchall()
        return [self._row_to_repository(row) for row in rows]

    def delete_repository(self, repository_id: str) -> bool:
        with self._get_db_connection() as conn:
            cursor = conn.execute("DELETE FROM repositories WHERE id = ?", (repository_id,))
            return cursor.rowcount > 0

    def get_or_create_repository(self, url: str, branch: str = "main") -> GitHubRepo:
        """Return the tracked repository for ``url``, registering it on first reference."""
        candidate = GitHubRepo.from_url(url, branch=branch)
        existing = self.get_repository_by_url(candidate.url)
        if existing:
            return existing
        self.save_repository(candidate)
        logger.info(f"Tracking new repository {candidate.full_name}")
        return candidate

    # Coverage files

    _COVERAGE_FILE_COLUMNS = (
        "id, repository_id, path, coverage_percentage, uncovered_lines, status, project_dir, created_at, updated_at"
    )

    def _coverage_file_params(self, coverage_file: CoverageFile) -> tuple:
        return (
            coverage_file.id,
            coverage_file.repository_id,
            coverage_file.path,
            coverage_file.coverage_percentage,
            json.dumps(coverage_file.uncovered_lines),
            coverage_file.status.value,
            coverage_file.project_dir,
            coverage_file.created_at.isoformat(),
            coverage_file.updated_at.isoformat(),
        )

    def _row_to_coverage_file(self, row: tuple) -> CoverageFile:
        return CoverageFile(
            id=row[0],
            repository_id=row[1],
            path=row[2],
            coverage_percentage=row[3],
            uncovered_lines=json.loads(row[4]) if row[4] else [],
            status=CoverageFileStatus(row[5]),
            project_dir=row[6],
            created_at=datetime.fromisoformat(row[7]),
            updated_at=datetime.fromisoformat(row[8]),
        )

    def save_coverage_file(self, coverage_file: CoverageFile) -> None:
        self.save_coverage_files([coverage_file])

    def save_coverage_files(self, coverage_files: list[CoverageFile]) -> None:
        with self._get_db_connection() as conn:
            conn.executemany(
                f"""
                INSERT OR REPLACE INTO coverage_files ({self._COVERAGE_FILE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [self._coverage_file_params(f) for f in coverage_files],
            )

    def get_coverage_file(self, file_id: str) -> CoverageFile | None:
        with self._get_db_connection() as conn:
            row = conn.execute(
                f"SELECT {self._COVERAGE_FILE_COLUMNS} FROM coverage_files WHERE id = ?", (file_id,)
            ).fetchone()
        return self._row_to_coverage_file(row) if row else None

    def get_coverage_files(self, file_ids: list[str]) -> list[CoverageFile]:
        """Files for ``file_ids`` in the given order; unknown ids are skipped."""
        files = [self.get_coverage_file(file_id) for file_id in file_ids]
        return [f for f in files if f is not None]

    def find_coverage_files_by_repository(self, repository_id: str) -> list[CoverageFile]:
        with self._get_db_connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {self._COVERAGE_FILE_COLUMNS} FROM coverage_files
                WHERE repository_id = ?
                ORDER BY coverage_percentage ASC, path ASC
                """,
                (repository_id,),
            ).fetchall()
        return [self._row_to_coverage_file(row) for row in rows]

    def delete_coverage_files_by_repository(self, repository_id: str) -> int:
        with self._get_db_connection() as conn:
            cursor = conn.execute("DELETE FROM coverage_files WHERE repository_id = ?", (repository_id,))
            return cursor.rowcount

    def replace_coverage_files(self, repository_id: str, coverage_files: list[CoverageFile]) -> None:
        """Delete every coverage row of the repository and insert ``coverage_files`` in one transaction."""
        with self._get_db_connection() as conn:
            conn.execute("DELETE FROM coverage_files WHERE repository_id = ?", (repository_id,))
            conn.executemany(
                f"""
                INSERT INTO coverage_files ({self._COVERAGE_FILE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [self._coverage_file_params(f) for f in coverage_files],
            )

    # Jobs

    _JOB_COLUMNS = (
        "id, repository_id, type, status, progress, file_ids, ai_provider, pr_url, error, "
        "files_found, files_below_threshold, created_at, updated_at"
    )

    def save_job(self, job: Job) -> None:
        with self._get_db_connection() as conn:
            conn.execute(
                f"""
                INSERT OR REPLACE INTO jobs ({self._JOB_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job.id,
                    job.repository_id,
                    job.type.value,
                    job.status.value,
                    job.progress,
                    json.dumps(job.file_ids),
                    job.ai_provider,
                    job.pr_url,
                    job.error,
                    job.files_found,
                    job.files_below_threshold,
                    job.created_at.isoformat(),
                    job.updated_at.isoformat(),
                ),
            )

    def _row_to_job(self, row: tuple) -> Job:
        return Job(
            id=row[0],
            repository_id=row[1],
            type=JobType(row[2]),
            status=JobStatus.from_string(row[3]),
            progress=row[4],
            file_ids=json.loads(row[5]) if row[5] else [],
            ai_provider=row[6],
            pr_url=row[7],
            error=row[8],
            files_found=row[9],
            files_below_threshold=row[10],
            created_at=datetime.fromisoformat(row[11]),
            updated_at=datetime.fromisoformat(row[12]),
        )

    def get_job(self, job_id: str) -> Job | None:
        with self._get_db_connection() as conn:
            row = conn.execute(f"SELECT {self._JOB_COLUMNS} FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return self._row_to_job(row) if row else None

    def find_pending_jobs(self, job_type: JobType | None = None, limit: int | None = None) -> list[Job]:
        """Pending jobs, oldest first."""
        query = f"SELECT {self._JOB_COLUMNS} FROM jobs WHERE status = ?"
        params: list = [JobStatus.PENDING.value]
        if job_type is not None:
            query += " AND type = ?"
            params.append(job_type.value)
        query += " ORDER BY created_at ASC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._get_db_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_job(row) for row in rows]

    def find_running_jobs(self, job_type: JobType | None = None, repository_id: str | None = None) -> list[Job]:
        query = f"SELECT {self._JOB_COLUMNS} FROM jobs WHERE status = ?"
        params: list = [JobStatus.RUNNING.value]
        if job_type is not None:
            query += " AND type = ?"
            params.append(job_type.value)
        if repository_id is not None:
            query += " AND repository_id = ?"
            params.append(repository_id)

        with self._get_db_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_job(row) for row in rows]

    def find_jobs_by_repository(self, repository_id: str, job_type: JobType | None = None) -> list[Job]:
        """Jobs of a repository, newest first."""
        query = f"SELECT {self._JOB_COLUMNS} FROM jobs WHERE repository_id = ?"
        params: list = [repository_id]
        if job_type is not None:
            query += " AND type = ?"
            params.append(job_type.value)
        query += " ORDER BY created_at DESC"

        with self._get_db_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_job(row) for row in rows]

    def find_active_jobs_for_file(self, file_id: str) -> list[Job]:
        """Pending or running improvement jobs that target ``file_id``."""
        with self._get_db_connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {self._JOB_COLUMNS} FROM jobs
                WHERE type = ? AND status IN (?, ?)
                """,
                (JobType.IMPROVEMENT.value, *ACTIVE_STATUSES),
            ).fetchall()
        jobs = [self._row_to_job(row) for row in rows]
        return [job for job in jobs if file_id in job.file_ids]

    def list_jobs(self, limit: int = 50) -> list[Job]:
        with self._get_db_connection() as conn:
            rows = conn.execute(
                f"SELECT {self._JOB_COLUMNS} FROM jobs ORDER BY created_at DESC LIMIT ?", (limit,)
            ).fetchall()
        return [self._row_to_job(row) for row in rows]
