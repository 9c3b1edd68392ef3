from __future__ import annotations

import pytest
from structlog.testing import capture_logs

from eventing_watcher.couchbase.models import ExecutionStats, FailureStats, FunctionStatus, RawFunctionStats
from eventing_watcher.health.evaluator import (
    BREACH_BACKLOG_EXCEEDED,
    BREACH_EXECUTION_FAILURES,
    BREACH_REDEPLOY_REQUIRED,
    BREACH_TIMEOUTS,
    NORMAL_MESSAGE,
    Thresholds,
    evaluate,
    fetch_error_evaluation,
    normalize_status,
)


def _stats(
    *,
    composite: str = "deployed",
    redeploy: bool = False,
    backlog: int = 0,
    update_failure: int = 0,
    delete_failure: int = 0,
    timeouts: int = 0,
) -> RawFunctionStats:
    return RawFunctionStats(
        name="f1",
        status=FunctionStatus(
            composite_status=composite,
            deployment_status="deployed",
            processing_status="running",
            redeploy_required=redeploy,
        ),
        execution=ExecutionStats(on_update_failure=update_failure, on_delete_failure=delete_failure),
        failure=FailureStats(timeout_count=timeouts),
        backlog_size=backlog,
    )


def test_healthy_function_has_no_breaches() -> None:
    ev = evaluate(_stats(backlog=10), Thresholds(backlog_threshold=1000))
    assert ev.status == "deployed"
    assert ev.breaches == ()
    assert ev.message == NORMAL_MESSAGE
    assert ev.healthy is True


@pytest.mark.parametrize("backlog", [0, 5000])
@pytest.mark.parametrize("composite", ["deployed", "paused", "undeployed"])
def test_redeploy_required_always_breaches(backlog: int, composite: str) -> None:
    ev = evaluate(_stats(composite=composite, redeploy=True, backlog=backlog, timeouts=3), Thresholds(100))
    assert BREACH_REDEPLOY_REQUIRED in ev.breach_kinds()
    assert ev.message == "Function requires redeployment"
    breach = next(b for b in ev.breaches if b.kind == BREACH_REDEPLOY_REQUIRED)
    assert breach.detail["status"] == composite
    assert breach.detail["processingStatus"] == "running"


@pytest.mark.parametrize(
    ("backlog", "threshold", "breached"),
    [
        (999, 1000, False),
        (1000, 1000, False),
        (1001, 1000, True),
        (0, 0, False),
        (1, 0, True),
    ],
)
def test_backlog_breach_is_strictly_greater_than_threshold(backlog: int, threshold: int, breached: bool) -> None:
    ev = evaluate(_stats(backlog=backlog), Thresholds(backlog_threshold=threshold))
    assert (BREACH_BACKLOG_EXCEEDED in ev.breach_kinds()) is breached


def test_backlog_scenario_message_and_detail() -> None:
    ev = evaluate(_stats(backlog=1500), Thresholds(backlog_threshold=1000))
    assert ev.breach_kinds() == [BREACH_BACKLOG_EXCEEDED]
    assert ev.message == "DCP backlog size exceeds threshold"
    assert ev.breaches[0].detail == {"backlogSize": 1500, "threshold": 1000}
    assert ev.status == "deployed"


def test_all_breaches_reported_in_precedence_order() -> None:
    ev = evaluate(
        _stats(redeploy=True, backlog=2000, update_failure=1, delete_failure=2, timeouts=4),
        Thresholds(backlog_threshold=1000),
    )
    assert ev.breach_kinds() == [
        BREACH_REDEPLOY_REQUIRED,
        BREACH_BACKLOG_EXCEEDED,
        BREACH_EXECUTION_FAILURES,
        BREACH_TIMEOUTS,
    ]
    failures = ev.breaches[2]
    assert failures.detail == {"onUpdateFailure": 1, "onDeleteFailure": 2}
    assert ev.breaches[3].detail == {"timeoutCount": 4}


def test_headline_follows_precedence_when_higher_breaches_absent() -> None:
    ev = evaluate(_stats(delete_failure=1, timeouts=2), Thresholds(backlog_threshold=1000))
    assert ev.message == "Function execution failures detected"
    ev = evaluate(_stats(timeouts=2), Thresholds(backlog_threshold=1000))
    assert ev.message == "Function timeouts detected"


def test_evaluate_is_deterministic() -> None:
    stats = _stats(redeploy=True, backlog=2000, timeouts=1)
    thresholds = Thresholds(backlog_threshold=1000)
    assert evaluate(stats, thresholds) == evaluate(stats, thresholds)


def test_unknown_status_defaults_to_undeployed() -> None:
    assert normalize_status("weird-state", function_name="f1") == "undeployed"
    assert normalize_status("  Paused ") == "paused"
    ev = evaluate(_stats(composite="mystery"), Thresholds(backlog_threshold=10))
    assert ev.status == "undeployed"


def test_fetch_error_evaluation_is_forced_error_without_breaches() -> None:
    ev = fetch_error_evaluation(RuntimeError("HTTP error! status: 500"))
    assert ev.status == "error"
    assert ev.message == "Error checking function: HTTP error! status: 500"
    assert ev.breaches == ()


def test_negative_threshold_rejected() -> None:
    with pytest.raises(ValueError):
        Thresholds(backlog_threshold=-1)


def test_unknown_status_logs_warning() -> None:
    with capture_logs() as logs:
        ev = evaluate(_stats(composite="mystery"), Thresholds(backlog_threshold=10))

    assert ev.status == "undeployed"
    warnings = [e for e in logs if e["event"] == "Unrecognized function status; treating as undeployed"]
    assert len(warnings) == 1
    assert warnings[0]["log_level"] == "warning"
    assert warnings[0]["raw_status"] == "mystery"
    assert warnings[0]["function_name"] == "f1"


def test_known_status_logs_nothing() -> None:
    with capture_logs() as logs:
        normalize_status("deployed", function_name="f1")
    assert logs == []
