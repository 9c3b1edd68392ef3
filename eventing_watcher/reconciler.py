"""Reconciliation pass: fetch, evaluate, persist and alert for every eventing function."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

import structlog

from eventing_watcher.health.evaluator import (
    BREACH_BACKLOG_EXCEEDED,
    BREACH_EXECUTION_FAILURES,
    BREACH_MESSAGES,
    BREACH_REDEPLOY_REQUIRED,
    BREACH_TIMEOUTS,
    STATUS_DEPLOYED,
    STATUS_ERROR,
    STATUS_PAUSED,
    Breach,
    Evaluation,
    Thresholds,
    evaluate,
    fetch_error_evaluation,
)
from eventing_watcher.health.state import HealthState
from eventing_watcher.notifications.alerts import AlertEvent, AlertSeverity
from eventing_watcher.storage.status_store import StatusRecord, StatusStore


logger = structlog.get_logger(__name__)

BREACH_SEVERITY = {
    BREACH_REDEPLOY_REQUIRED: AlertSeverity.WARNING,
    BREACH_BACKLOG_EXCEEDED: AlertSeverity.ERROR,
    BREACH_EXECUTION_FAILURES: AlertSeverity.WARNING,
    BREACH_TIMEOUTS: AlertSeverity.WARNING,
}

DEGRADED_STATUSES = frozenset({STATUS_ERROR, STATUS_PAUSED})

LIST_FAILURE_MESSAGE = "Error checking Couchbase function stats"
CLEANUP_FAILURE_MESSAGE = "Error removing decommissioned functions from status store"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _iso_ms(ts_ms: int) -> str:
    return datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc).isoformat()


def _error_text(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


@dataclass(frozen=True)
class HealthVerdict:
    function_name: str
    status: str
    message: str
    breaches: tuple[Breach, ...]
    timestamp: int

    @classmethod
    def from_evaluation(cls, function_name: str, evaluation: Evaluation, *, timestamp: int) -> HealthVerdict:
        return cls(
            function_name=function_name,
            status=evaluation.status,
            message=evaluation.message,
            breaches=tuple(evaluation.breaches),
            timestamp=int(timestamp),
        )


@dataclass
class FunctionOutcome:
    function_name: str
    verdict: HealthVerdict | None = None
    previous: StatusRecord | None = None
    alerts: list[AlertEvent] = field(default_factory=list)
    error: str | None = None

    @property
    def transitioned(self) -> bool:
        return bool(self.verdict and self.previous and self.previous.status != self.verdict.status)


@dataclass
class PassResult:
    ok: bool
    functions: list[str] = field(default_factory=list)
    outcomes: list[FunctionOutcome] = field(default_factory=list)
    alerts: list[AlertEvent] = field(default_factory=list)
    removed_rows: int = 0
    error: str | None = None

    @property
    def verdicts(self) -> list[HealthVerdict]:
        return [o.verdict for o in self.outcomes if o.verdict is not None]


def transition_alert(previous: StatusRecord | None, verdict: HealthVerdict) -> AlertEvent | None:
    """
    Alert for a status change between the last persisted record and this pass.

    A function seen for the first time has no previous record and never
    produces a transition alert.
    """
    if previous is None or previous.status == verdict.status:
        return None

    prev_status = previous.status
    cur_status = verdict.status
    if cur_status in DEGRADED_STATUSES:
        severity = AlertSeverity.WARNING
        message = f"Function status changed from {prev_status} to {cur_status}"
    elif cur_status == STATUS_DEPLOYED and prev_status in DEGRADED_STATUSES:
        severity = AlertSeverity.INFO
        message = f"Function recovered: status changed from {prev_status} to {cur_status}"
    else:
        severity = AlertSeverity.INFO
        message = f"Function status changed from {prev_status} to {cur_status}"

    return AlertEvent(
        severity=severity,
        message=message,
        function_name=verdict.function_name,
        context={
            "functionName": verdict.function_name,
            "previousStatus": prev_status,
            "currentStatus": cur_status,
            "message": verdict.message,
            "timestamp": _iso_ms(verdict.timestamp),
        },
    )


def breach_alerts(verdict: HealthVerdict) -> list[AlertEvent]:
    """One alert per distinct breach kind, independent of any status change."""
    alerts: list[AlertEvent] = []
    seen: set[str] = set()
    for breach in verdict.breaches:
        if breach.kind in seen:
            continue
        seen.add(breach.kind)
        alerts.append(
            AlertEvent(
                severity=BREACH_SEVERITY.get(breach.kind, AlertSeverity.WARNING),
                message=BREACH_MESSAGES.get(breach.kind, breach.kind),
                function_name=verdict.function_name,
                context=dict(breach.detail),
            )
        )
    return alerts


class Reconciler:
    """Runs reconciliation passes and owns the watcher health state.

    Collaborators:
    - stats: `async list_functions() -> list[str]`, `async fetch_function_stats(name) -> RawFunctionStats`
    - store: StatusStore (blocking; called from worker threads)
    - notifier: `async send(message, severity, function_name=None, context=None) -> bool`
    """

    def __init__(
        self,
        *,
        stats: Any,
        store: StatusStore,
        notifier: Any,
        thresholds: Thresholds,
        health: HealthState | None = None,
        concurrency: int = 5,
        now_ms: Callable[[], int] = _now_ms,
    ):
        self.stats = stats
        self.store = store
        self.notifier = notifier
        self.thresholds = thresholds
        self.health = health or HealthState()
        self.concurrency = max(1, int(concurrency))
        self._now_ms = now_ms
        self._pass_lock = asyncio.Lock()

    @property
    def pass_in_progress(self) -> bool:
        return self._pass_lock.locked()

    async def run_pass_if_idle(self) -> PassResult | None:
        """Run a pass unless one is already in flight (scheduler ticks and on-demand triggers)."""
        if self._pass_lock.locked():
            logger.warning("Reconciliation pass already running; skipping trigger")
            return None
        return await self.run_pass()

    async def run_pass(self) -> PassResult:
        async with self._pass_lock:
            return await self._run_pass()

    async def _run_pass(self) -> PassResult:
        started = time.monotonic()
        self.health.mark_pass_started()
        logger.info("Running reconciliation pass")

        try:
            listed = await self.stats.list_functions()
            names = list(dict.fromkeys(str(n) for n in listed if n))
        except Exception as exc:
            err = _error_text(exc)
            logger.error("Failed to list eventing functions; pass aborted", error=err)
            self.health.mark_pass_failed(f"function list fetch failed: {err}")
            alert = AlertEvent(
                severity=AlertSeverity.ERROR,
                message=LIST_FAILURE_MESSAGE,
                context={"error": err, "stage": "initial function list fetch"},
            )
            await self._notify(alert)
            return PassResult(ok=False, alerts=[alert], error=err)

        logger.info("Found eventing functions", function_count=len(names))

        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(name: str) -> FunctionOutcome:
            async with semaphore:
                return await self._reconcile_function_safe(name)

        outcomes = list(await asyncio.gather(*(_bounded(n) for n in names)))
        alerts = [a for o in outcomes for a in o.alerts]

        # Runs only after every per-function write of this pass has completed.
        try:
            removed = await asyncio.to_thread(self.store.delete_not_in, names)
        except Exception as exc:
            err = _error_text(exc)
            logger.error("Failed to remove decommissioned functions; pass aborted", error=err)
            self.health.mark_pass_failed(f"status cleanup failed: {err}")
            alert = AlertEvent(
                severity=AlertSeverity.ERROR,
                message=CLEANUP_FAILURE_MESSAGE,
                context={"error": err, "stage": "decommissioned function cleanup"},
            )
            await self._notify(alert)
            alerts.append(alert)
            return PassResult(ok=False, functions=names, outcomes=outcomes, alerts=alerts, error=err)

        self.health.mark_pass_succeeded(self._pass_records(names, outcomes))
        failed = [o.function_name for o in outcomes if o.error]
        logger.info(
            "Finished reconciliation pass",
            function_count=len(names),
            alerts=len(alerts),
            failed_functions=failed,
            removed_rows=removed,
            elapsed_ms=int((time.monotonic() - started) * 1000),
        )
        return PassResult(ok=True, functions=names, outcomes=outcomes, alerts=alerts, removed_rows=removed)

    def _pass_records(self, names: list[str], outcomes: list[FunctionOutcome]) -> list[StatusRecord]:
        """
        Latest record per live function as of this pass. A function whose unit
        failed keeps the record published by the previous pass, if any.
        """
        prior = {r.function_name: r for r in (self.health.published_records() or [])}
        by_name = {o.function_name: o for o in outcomes}
        records: list[StatusRecord] = []
        for name in names:
            outcome = by_name.get(name)
            if outcome is not None and outcome.verdict is not None:
                v = outcome.verdict
                records.append(StatusRecord(v.function_name, v.status, v.message, v.timestamp))
            elif name in prior:
                records.append(prior[name])
        return records

    async def _reconcile_function_safe(self, name: str) -> FunctionOutcome:
        try:
            return await self._reconcile_function(name)
        except Exception as exc:
            err = _error_text(exc)
            logger.exception("Error checking function", function_name=name, error=err)
            alert = AlertEvent(
                severity=AlertSeverity.ERROR,
                message=f"Error checking Couchbase function: {name}",
                function_name=name,
                context={"error": err, "stage": "individual function check"},
            )
            await self._notify(alert)
            return FunctionOutcome(function_name=name, alerts=[alert], error=err)

    async def _reconcile_function(self, name: str) -> FunctionOutcome:
        log = logger.bind(function_name=name)

        try:
            raw = await self.stats.fetch_function_stats(name)
        except Exception as exc:
            err = _error_text(exc)
            log.warning("Failed to fetch function stats", error=err)
            evaluation = fetch_error_evaluation(exc)
        else:
            evaluation = evaluate(raw, self.thresholds)

        if evaluation.breaches:
            log.warning(
                "Function breaches detected",
                status=evaluation.status,
                breaches=[{"kind": b.kind, **b.detail} for b in evaluation.breaches],
            )

        previous = await asyncio.to_thread(self.store.get_latest, name)
        if previous is None:
            log.info("First observation of function", status=evaluation.status)

        verdict = HealthVerdict.from_evaluation(name, evaluation, timestamp=self._now_ms())
        await asyncio.to_thread(self.store.append_status, name, verdict.status, verdict.message, verdict.timestamp)

        outcome = FunctionOutcome(function_name=name, verdict=verdict, previous=previous)
        transition = transition_alert(previous, verdict)
        if transition is not None:
            log.info("Function status transition", previous=previous.status, current=verdict.status)
            outcome.alerts.append(transition)
        outcome.alerts.extend(breach_alerts(verdict))

        for alert in outcome.alerts:
            await self._notify(alert)

        log.debug("Function reconciled", status=verdict.status, message=verdict.message, alerts=len(outcome.alerts))
        return outcome

    async def _notify(self, alert: AlertEvent) -> bool:
        try:
            return bool(
                await self.notifier.send(
                    alert.message,
                    alert.severity,
                    function_name=alert.function_name,
                    context=alert.context,
                )
            )
        except Exception as exc:
            logger.error("Notifier failed; continuing", alert=alert.message, error=_error_text(exc))
            return False
