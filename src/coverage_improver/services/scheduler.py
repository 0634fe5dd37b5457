"""Background polling loops that drain the job queue."""

import logging
import threading

from coverage_improver.core.models import JobType
from coverage_improver.core.settings import settings
from coverage_improver.services.job_processor import JobProcessor

logger = logging.getLogger(__name__)


class JobScheduler:
    """One daemon thread per job type, each ticking every ``interval_seconds``.

    Analysis and improvement queues poll independently so a long analysis
    never delays improvements. A failing tick is logged and the loop keeps
    going.
    """

    def __init__(self, processor: JobProcessor):
        self.processor = processor
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def is_running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self, interval_seconds: float | None = None) -> None:
        if self.is_running:
            return

        interval = interval_seconds or settings.poll_interval_seconds
        self._stop_event.clear()
        self._threads = [
            threading.Thread(
                target=self._run_loop,
                args=(job_type, interval),
                name=f"{job_type.value}-scheduler",
                daemon=True,
            )
            for job_type in JobType
        ]
        for thread in self._threads:
            thread.start()
        logger.info(f"Job scheduler started, polling every {interval}s")

    def stop(self, timeout: float | None = None) -> None:
        """Signal the loops to stop and wait for in-flight jobs to finish."""
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        logger.info("Job scheduler stopped")

    def _run_loop(self, job_type: JobType, interval: float) -> None:
        self._tick(job_type)
        while not self._stop_event.wait(interval):
            self._tick(job_type)

    def _tick(self, job_type: JobType) -> None:
        try:
            job = self.processor.process_next_job(job_type)
            if job is not None:
                logger.info(f"{job_type.value} job {job.id} finished as {job.status.value}")
        except Exception as e:
            logger.exception(f"Scheduler tick for {job_type.value} jobs failed: {e}")
