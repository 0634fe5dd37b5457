"""Cross-process locks around claiming queued jobs.

Claiming reads the queue and flips one job to running. Two workers doing that
at once could both pass the concurrency checks, so every claim of a job type
happens under that type's lock file, kept next to the database.
"""

import fcntl
import logging
import os
import time
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from coverage_improver.core.models import JobType
from coverage_improver.core.settings import settings

logger = logging.getLogger(__name__)


def default_lock_dir() -> Path:
    return settings.resolved_database_path.parent


class JobQueueLock:
    """Exclusive claim lock for one job type.

    Analysis and improvement claims use separate files and never wait on each
    other. The holder writes its pid into the file so a worker that gives up
    can say who is blocking it.
    """

    def __init__(self, job_type: JobType, lock_dir: Path | None = None, timeout: float | None = None):
        self.job_type = job_type
        self.lock_dir = lock_dir or default_lock_dir()
        self.timeout = settings.queue_lock_timeout_seconds if timeout is None else timeout

    @property
    def lock_file_path(self) -> Path:
        return self.lock_dir / f"{self.job_type.value}-queue.lock"

    def holder_pid(self) -> int | None:
        """Pid recorded by the current or last holder, if any."""
        try:
            content = self.lock_file_path.read_text().strip()
        except FileNotFoundError:
            return None
        return int(content) if content.isdigit() else None

    @contextmanager
    def acquire(self) -> Generator[bool]:
        """Try to take the lock for up to ``timeout`` seconds.

        Yields:
            True if this worker may claim a job, False if another worker held the lock throughout.
        """
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self.timeout

        with open(self.lock_file_path, "a+") as lock_file:
            acquired = False
            while not acquired:
                try:
                    fcntl.flock(lock_file, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    acquired = True
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        break
                    time.sleep(0.05)

            if not acquired:
                logger.debug(f"{self.job_type.value} queue held by pid {self.holder_pid()}, giving up")
                yield False
                return

            lock_file.seek(0)
            lock_file.truncate()
            lock_file.write(f"{os.getpid()}\n")
            lock_file.flush()
            try:
                yield True
            finally:
                fcntl.flock(lock_file, fcntl.LOCK_UN)
