from __future__ import annotations

import pytest
from apscheduler.triggers.cron import CronTrigger

from eventing_watcher.scheduler.job_scheduler import (
    RECONCILE_JOB_ID,
    JobScheduler,
    parse_cron_expression,
    schedule_reconciliation,
)


async def _noop() -> None:
    return None


def test_parse_cron_expression_builds_trigger() -> None:
    trigger = parse_cron_expression("*/5 * * * *")
    assert isinstance(trigger, CronTrigger)


@pytest.mark.parametrize("expr", ["* * *", "99 * * * *", "* * * * * * *", "70 * * * * *"])
def test_parse_cron_expression_rejects_bad_input(expr: str) -> None:
    with pytest.raises(ValueError):
        parse_cron_expression(expr)


def test_valid_cron_schedules_cron_job() -> None:
    scheduler = JobScheduler()
    mode = schedule_reconciliation(scheduler, _noop, cron_expression="*/5 * * * *", fallback_interval_seconds=300)

    assert mode == "cron"
    status = scheduler.get_job_status(RECONCILE_JOB_ID)
    assert status is not None
    assert status["type"] == "cron"
    assert status["schedule"] == "*/5 * * * *"


def test_six_field_cron_with_seconds_schedules_cron_job() -> None:
    scheduler = JobScheduler()
    mode = schedule_reconciliation(scheduler, _noop, cron_expression="0 */5 * * * *", fallback_interval_seconds=300)

    assert mode == "cron"
    assert scheduler.get_job_status(RECONCILE_JOB_ID)["type"] == "cron"


@pytest.mark.parametrize("expr", ["* * *", "99 * * * *"])
def test_rejected_cron_falls_back_to_interval(expr: str) -> None:
    scheduler = JobScheduler()
    mode = schedule_reconciliation(scheduler, _noop, cron_expression=expr, fallback_interval_seconds=120)

    assert mode == "interval"
    status = scheduler.get_job_status(RECONCILE_JOB_ID)
    assert status is not None
    assert status["type"] == "interval"
    assert status["schedule"] == 120
    assert [j["job_id"] for j in scheduler.list_jobs()] == [RECONCILE_JOB_ID]


def test_rescheduling_replaces_existing_job() -> None:
    scheduler = JobScheduler()
    scheduler.add_interval_job(RECONCILE_JOB_ID, _noop, 60)
    scheduler.add_cron_job(RECONCILE_JOB_ID, _noop, "0 * * * *")

    assert len(scheduler.list_jobs()) == 1
    assert scheduler.get_job_status(RECONCILE_JOB_ID)["type"] == "cron"
    assert scheduler.remove_job(RECONCILE_JOB_ID) is True
    assert scheduler.remove_job(RECONCILE_JOB_ID) is False
    assert scheduler.get_job_status(RECONCILE_JOB_ID) is None


@pytest.mark.asyncio
async def test_start_and_stop_are_idempotent() -> None:
    scheduler = JobScheduler()
    scheduler.add_interval_job(RECONCILE_JOB_ID, _noop, 3600)
    await scheduler.start()
    await scheduler.start()
    assert scheduler.running is True
    assert scheduler.get_job_status(RECONCILE_JOB_ID)["next_run"] is not None
    await scheduler.stop()
    await scheduler.stop()
    assert scheduler.running is False
