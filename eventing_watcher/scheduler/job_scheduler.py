"""Job scheduling for reconciliation passes."""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger


logger = structlog.get_logger(__name__)

RECONCILE_JOB_ID = "eventing_reconciliation"


def parse_cron_expression(cron_expression: str) -> CronTrigger:
    """
    Build a trigger from a cron expression.

    Five fields are minute hour day month day_of_week; a sixth leading field is seconds.
    """
    cron_parts = cron_expression.split()
    if len(cron_parts) == 6:
        second = cron_parts.pop(0)
    elif len(cron_parts) == 5:
        second = "0"
    else:
        raise ValueError(f"Invalid cron expression: {cron_expression}")

    return CronTrigger(
        second=second,
        minute=cron_parts[0],
        hour=cron_parts[1],
        day=cron_parts[2],
        month=cron_parts[3],
        day_of_week=cron_parts[4],
    )


class JobScheduler:
    """Manages scheduled jobs using APScheduler.

    Jobs never overlap with themselves: a tick that fires while the previous
    run is still going is skipped.
    """

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self.jobs: Dict[str, Any] = {}
        self.running = False

    async def start(self):
        """Start the job scheduler."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        self.scheduler.start()
        self.running = True
        logger.info("Job scheduler started")

    async def stop(self):
        """Stop the job scheduler."""
        if not self.running:
            return

        self.scheduler.shutdown(wait=False)
        self.running = False
        logger.info("Job scheduler stopped")

    def _add_job(self, job_id: str, func: Callable, trigger, kind: str, schedule: Any, description: Optional[str]):
        if job_id in self.jobs:
            logger.warning("Job already exists, replacing", job_id=job_id)
            self.remove_job(job_id)

        job = self.scheduler.add_job(
            func=func,
            trigger=trigger,
            id=job_id,
            name=description or job_id,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
        )
        self.jobs[job_id] = {
            "job": job,
            "type": kind,
            "schedule": schedule,
            "description": description,
            "added_at": datetime.now(timezone.utc),
        }
        return job

    def add_cron_job(self, job_id: str, func: Callable, cron_expression: str, description: Optional[str] = None):
        """Add a cron-scheduled job. Raises ValueError for an unusable expression."""
        trigger = parse_cron_expression(cron_expression)
        self._add_job(job_id, func, trigger, "cron", cron_expression, description)
        logger.info("Added cron job", job_id=job_id, cron=cron_expression, description=description)

    def add_interval_job(self, job_id: str, func: Callable, seconds: int, description: Optional[str] = None):
        """Add an interval-based job."""
        trigger = IntervalTrigger(seconds=max(1, int(seconds)))
        self._add_job(job_id, func, trigger, "interval", int(seconds), description)
        logger.info("Added interval job", job_id=job_id, interval_seconds=seconds, description=description)

    def remove_job(self, job_id: str) -> bool:
        """Remove a scheduled job."""
        if job_id not in self.jobs:
            logger.warning("Job not found", job_id=job_id)
            return False

        self.scheduler.remove_job(job_id)
        del self.jobs[job_id]
        logger.info("Removed job", job_id=job_id)
        return True

    def get_job_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Get status information for a job."""
        if job_id not in self.jobs:
            return None

        job_info = self.jobs[job_id]
        scheduler_job = self.scheduler.get_job(job_id)
        if scheduler_job is None:
            return None

        next_run = getattr(scheduler_job, "next_run_time", None)
        return {
            "job_id": job_id,
            "name": scheduler_job.name,
            "type": job_info["type"],
            "schedule": job_info["schedule"],
            "next_run": next_run.isoformat() if next_run else None,
            "added_at": job_info["added_at"].isoformat(),
        }

    def list_jobs(self) -> List[Dict[str, Any]]:
        """List all scheduled jobs."""
        return [s for s in (self.get_job_status(job_id) for job_id in self.jobs) if s]


def schedule_reconciliation(
    scheduler: JobScheduler,
    func: Callable,
    *,
    cron_expression: str,
    fallback_interval_seconds: int,
) -> str:
    """
    Register the reconciliation job. Returns "cron", or "interval" when the cron
    expression is rejected and the fixed-interval fallback is used.
    """
    try:
        scheduler.add_cron_job(RECONCILE_JOB_ID, func, cron_expression, description="Eventing reconciliation pass")
        return "cron"
    except ValueError as e:
        logger.error("Failed to schedule cron job; using fixed interval", cron=cron_expression, error=str(e))

    scheduler.add_interval_job(
        RECONCILE_JOB_ID,
        func,
        fallback_interval_seconds,
        description="Eventing reconciliation pass (interval fallback)",
    )
    return "interval"
