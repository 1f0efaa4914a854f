"""
Deferred task submission backed by APScheduler.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Protocol

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler

from attio_sync.utils.logging import get_logger

logger = get_logger(__name__)


class TaskQueue(Protocol):
    def submit(self, action: str, payload: Dict[str, Any], delay: Optional[float] = None) -> Any: ...


class SchedulerTaskQueue:
    """
    Submits sync jobs as one-off APScheduler jobs.

    The scheduler is started on first submission. A delayed job gets a
    date trigger at now + delay; otherwise it runs as soon as a worker
    is free.
    """

    def __init__(
        self,
        scheduler: Optional[BackgroundScheduler] = None,
        executor: str = "default",
        job_func: Optional[Callable[..., Any]] = None,
    ):
        self.scheduler = scheduler or BackgroundScheduler()
        self.executor = executor
        self._job_func = job_func

        if scheduler is None and executor != "default":
            self.scheduler.add_executor(ThreadPoolExecutor(), alias=executor)

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Attio sync scheduler started", executor=self.executor)

    def submit(self, action: str, payload: Dict[str, Any], delay: Optional[float] = None):
        """
        Schedule a sync job.

        Args:
            action: Job action (sync, delete, sync_deal, batch_create...)
            payload: Keyword arguments for the job (model_name, model_id...)
            delay: Seconds to wait before running

        Returns:
            The APScheduler job
        """
        from attio_sync.jobs.sync_job import perform_sync_job

        self.start()

        run_date = datetime.now() + timedelta(seconds=delay) if delay else None
        job = self.scheduler.add_job(
            self._job_func or perform_sync_job,
            trigger="date",
            run_date=run_date,
            kwargs={**payload, "action": action},
            name=f"Attio {action}",
            executor=self.executor,
            misfire_grace_time=None,
        )

        logger.debug(
            "Enqueued Attio sync job",
            action=action,
            model_name=payload.get("model_name"),
            model_id=payload.get("model_id"),
            delay=delay,
        )
        return job

    def shutdown(self, wait: bool = True) -> None:
        """Shutdown the scheduler gracefully."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Attio sync scheduler shutdown")
