"""Polling worker loops and the stale-job sweep."""

import asyncio
from datetime import timedelta

from services.embedding_worker.EmbeddingWorker import EmbeddingWorker
from shared.db.JobQueue import JobQueue
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import WorkerSettings
from shared.models.job import JobStatus


class WorkerPool:
    """Runs WORKER_COUNT polling loops plus one sweep loop in the current event loop.

    The atomic claim in the job queue is the only coordination between loops,
    so several pools (processes) may share one database.
    """

    def __init__(
        self,
        helper_config: HelperConfig,
        worker: EmbeddingWorker,
        job_queue: JobQueue,
        settings: WorkerSettings | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._worker = worker
        self._job_queue = job_queue
        self.settings = settings or WorkerSettings.from_config(helper_config)
        self._tasks: list[asyncio.Task] = []
        self._active_jobs: dict[str, str] = {}
        self._processed: dict[str, int] = {status.value: 0 for status in JobStatus}
        self._running = False

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    def start(self) -> None:
        """Start the polling loops and the sweep loop."""
        if self._running:
            return
        self._running = True
        for number in range(1, self.settings.worker_count + 1):
            self._tasks.append(asyncio.create_task(self._poll_loop(f"worker-{number}")))
        self._tasks.append(asyncio.create_task(self._sweep_loop()))
        self.logging.info(
            "Started %d embedding workers (poll every %.0fs, sweep every %.0fs).",
            self.settings.worker_count, self.settings.poll_interval, self.settings.sweep_interval,
        )

    async def stop(self) -> None:
        """Cancel all loops and wait for them to finish. A job cut off here is recovered by the sweep."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        self.logging.info("Stopped embedding workers.")

    ##########################################
    ################# LOOPS ##################
    ##########################################

    async def run_once(self, worker_name: str = "once") -> JobStatus | None:
        """Claim and process at most one job.

        Returns:
            JobStatus | None: The resulting job status, or None if nothing was due.
        """
        job = await asyncio.to_thread(self._job_queue.claim_next)
        if job is None:
            return None

        self.logging.info(
            "%s claimed job %s for %s '%s' (attempt %d/%d).",
            worker_name, job.id, job.entity_kind.value, job.entity_id, job.attempts, job.max_attempts,
            job_event="claimed",
        )
        self._active_jobs[worker_name] = job.id
        try:
            status = await self._worker.process_job(job)
        finally:
            self._active_jobs.pop(worker_name, None)
        self._processed[status.value] += 1
        return status

    async def _poll_loop(self, worker_name: str) -> None:
        while self._running:
            try:
                status = await self.run_once(worker_name)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logging.exception("%s loop error: %s", worker_name, e)
                status = None
            # drain the queue without pausing, sleep only when idle
            if status is None:
                await asyncio.sleep(self.settings.poll_interval)

    async def _sweep_loop(self) -> None:
        timeout = timedelta(seconds=self.settings.stale_timeout)
        while self._running:
            try:
                await asyncio.to_thread(self._job_queue.reclaim_stale, None, timeout)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logging.exception("Stale job sweep failed: %s", e)
            await asyncio.sleep(self.settings.sweep_interval)

    ##########################################
    ################ GETTER ##################
    ##########################################

    def is_running(self) -> bool:
        return self._running

    def get_status(self) -> dict:
        """Report whether the loops run, which jobs are in flight and what was processed so far."""
        return {
            "running": self._running,
            "worker_count": self.settings.worker_count,
            "active_jobs": dict(self._active_jobs),
            "processed": dict(self._processed),
        }
