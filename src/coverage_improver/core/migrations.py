"""Database migrations for coverage-improver."""

import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any


class Migration(ABC):
    """Base class for database migrations."""

    @property
    @abstractmethod
    def version(self) -> str:
        """Version identifier for this migration."""

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description of this migration."""

    @abstractmethod
    def up(self, conn: sqlite3.Connection) -> None:
        """Apply the migration."""


def _add_column(conn: sqlite3.Connection, table: str, definition: str) -> None:
    try:
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {definition}")
    except sqlite3.OperationalError as e:
        if "duplicate column name" not in str(e).lower():
            raise


class Migration001AddJobQueueIndexes(Migration):
    """Indexes backing the scheduler's pending/running lookups."""

    @property
    def version(self) -> str:
        return "001"

    @property
    def description(self) -> str:
        return "Add (type, status, created_at) and (repository_id, status) indexes on jobs"

    def up(self, conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_jobs_type_status_created
            ON jobs(type, status, created_at)
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_jobs_repository_status
            ON jobs(repository_id, status)
        """)


class Migration002AddProjectDir(Migration):
    """Monorepo sub-directory for coverage files."""

    @property
    def version(self) -> str:
        return "002"

    @property
    def description(self) -> str:
        return "Add project_dir column to coverage_files for monorepo projects"

    def up(self, conn: sqlite3.Connection) -> None:
        _add_column(conn, "coverage_files", "project_dir TEXT")


class Migration003AddAnalysisCounters(Migration):
    """Counters recorded by completed analysis jobs."""

    @property
    def version(self) -> str:
        return "003"

    @property
    def description(self) -> str:
        return "Add files_found and files_below_threshold columns to jobs"

    def up(self, conn: sqlite3.Connection) -> None:
        _add_column(conn, "jobs", "files_found INTEGER")
        _add_column(conn, "jobs", "files_below_threshold INTEGER")


class MigrationRunner:
    """Manages database migrations."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.migrations: list[Migration] = [
            Migration001AddJobQueueIndexes(),
            Migration002AddProjectDir(),
            Migration003AddAnalysisCounters(),
        ]

    def _get_db_connection(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _ensure_migrations_table(self, conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS _coverage_improver_migrations (
                version TEXT PRIMARY KEY,
                description TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """)

    def _is_migration_applied(self, conn: sqlite3.Connection, version: str) -> bool:
        cursor = conn.execute("SELECT 1 FROM _coverage_improver_migrations WHERE version = ?", (version,))
        return cursor.fetchone() is not None

    def _mark_migration_applied(self, conn: sqlite3.Connection, migration: Migration) -> None:
        conn.execute(
            """
            INSERT INTO _coverage_improver_migrations (version, description, applied_at)
            VALUES (?, ?, ?)
            """,
            (migration.version, migration.description, datetime.now().isoformat()),
        )

    def run_migrations(self) -> list[str]:
        """Run all pending migrations."""
        applied_migrations = []

        with self._get_db_connection() as conn:
            self._ensure_migrations_table(conn)

            for migration in self.migrations:
                if not self._is_migration_applied(conn, migration.version):
                    migration.up(conn)
                    self._mark_migration_applied(conn, migration)
                    applied_migrations.append(f"{migration.version}: {migration.description}")

        return applied_migrations

    def get_migration_status(self) -> dict[str, Any]:
        """Get status of all migrations."""
        status: dict[str, Any] = {"applied": [], "pending": [], "total": len(self.migrations)}

        with self._get_db_connection() as conn:
            self._ensure_migrations_table(conn)

            for migration in self.migrations:
                migration_info = {"version": migration.version, "description": migration.description}
                if self._is_migration_applied(conn, migration.version):
                    status["applied"].append(migration_info)
                else:
                    status["pending"].append(migration_info)

        return status
