"""Classification of raw eventing function stats into a health verdict."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

from eventing_watcher.couchbase.models import RawFunctionStats


logger = structlog.get_logger(__name__)

STATUS_DEPLOYED = "deployed"
STATUS_UNDEPLOYED = "undeployed"
STATUS_PAUSED = "paused"
STATUS_DEPLOYING = "deploying"
STATUS_UNDEPLOYING = "undeploying"
STATUS_ERROR = "error"

KNOWN_STATUSES = frozenset(
    {STATUS_DEPLOYED, STATUS_UNDEPLOYED, STATUS_PAUSED, STATUS_DEPLOYING, STATUS_UNDEPLOYING, STATUS_ERROR}
)

BREACH_REDEPLOY_REQUIRED = "redeploy_required"
BREACH_BACKLOG_EXCEEDED = "backlog_exceeded"
BREACH_EXECUTION_FAILURES = "execution_failures"
BREACH_TIMEOUTS = "timeouts"

# Order decides which breach drives the headline message.
BREACH_PRECEDENCE = (
    BREACH_REDEPLOY_REQUIRED,
    BREACH_BACKLOG_EXCEEDED,
    BREACH_EXECUTION_FAILURES,
    BREACH_TIMEOUTS,
)

BREACH_MESSAGES = {
    BREACH_REDEPLOY_REQUIRED: "Function requires redeployment",
    BREACH_BACKLOG_EXCEEDED: "DCP backlog size exceeds threshold",
    BREACH_EXECUTION_FAILURES: "Function execution failures detected",
    BREACH_TIMEOUTS: "Function timeouts detected",
}

NORMAL_MESSAGE = "Function is operating normally"


@dataclass(frozen=True)
class Thresholds:
    backlog_threshold: int

    def __post_init__(self) -> None:
        if int(self.backlog_threshold) < 0:
            raise ValueError("backlog_threshold must be >= 0")


@dataclass(frozen=True)
class Breach:
    kind: str
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Evaluation:
    status: str
    message: str
    breaches: tuple[Breach, ...] = ()

    @property
    def healthy(self) -> bool:
        return self.status != STATUS_ERROR and not self.breaches

    def breach_kinds(self) -> list[str]:
        return [b.kind for b in self.breaches]


def normalize_status(raw_status: str, *, function_name: str = "") -> str:
    s = str(raw_status or "").strip().lower()
    if s in KNOWN_STATUSES:
        return s
    logger.warning(
        "Unrecognized function status; treating as undeployed",
        function_name=function_name,
        raw_status=raw_status,
    )
    return STATUS_UNDEPLOYED


def find_breaches(stats: RawFunctionStats, thresholds: Thresholds) -> list[Breach]:
    """All applicable breaches, in precedence order. Rules are independent of each other."""
    breaches: list[Breach] = []

    if stats.status.redeploy_required:
        breaches.append(
            Breach(
                BREACH_REDEPLOY_REQUIRED,
                {
                    "status": stats.status.composite_status,
                    "deploymentStatus": stats.status.deployment_status,
                    "processingStatus": stats.status.processing_status,
                },
            )
        )

    threshold = int(thresholds.backlog_threshold)
    if stats.backlog_size > threshold:
        breaches.append(Breach(BREACH_BACKLOG_EXCEEDED, {"backlogSize": stats.backlog_size, "threshold": threshold}))

    update_failures = stats.execution.on_update_failure
    delete_failures = stats.execution.on_delete_failure
    if update_failures > 0 or delete_failures > 0:
        breaches.append(
            Breach(
                BREACH_EXECUTION_FAILURES,
                {"onUpdateFailure": update_failures, "onDeleteFailure": delete_failures},
            )
        )

    if stats.failure.timeout_count > 0:
        breaches.append(Breach(BREACH_TIMEOUTS, {"timeoutCount": stats.failure.timeout_count}))

    return breaches


def headline_message(breaches: list[Breach] | tuple[Breach, ...]) -> str:
    kinds = {b.kind for b in breaches}
    for kind in BREACH_PRECEDENCE:
        if kind in kinds:
            return BREACH_MESSAGES[kind]
    return NORMAL_MESSAGE


def evaluate(stats: RawFunctionStats, thresholds: Thresholds) -> Evaluation:
    raw_status = stats.status.composite_status or stats.status.deployment_status
    status = normalize_status(raw_status, function_name=stats.name)
    breaches = find_breaches(stats, thresholds)
    return Evaluation(status=status, message=headline_message(breaches), breaches=tuple(breaches))


def fetch_error_evaluation(cause: BaseException | str) -> Evaluation:
    """Verdict for a function whose stats could not be fetched. Never carries breaches."""
    text = str(cause) if not isinstance(cause, BaseException) else (str(cause) or type(cause).__name__)
    return Evaluation(status=STATUS_ERROR, message=f"Error checking function: {text}", breaches=())
