"""Scheduler module for driving reconciliation passes."""

from .job_scheduler import RECONCILE_JOB_ID, JobScheduler, schedule_reconciliation

__all__ = ["JobScheduler", "RECONCILE_JOB_ID", "schedule_reconciliation"]
