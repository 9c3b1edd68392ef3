from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


CURL_VERBS = ("get", "post", "head", "put", "delete")


def _coerce_int(value: Any, *, default: int = 0) -> int:
    try:
        if value is None:
            return default
        return int(value)
    except (TypeError, ValueError):
        return default


def _coerce_str(value: Any) -> str:
    return str(value or "").strip()


@dataclass(frozen=True)
class FunctionStatus:
    composite_status: str
    deployment_status: str
    processing_status: str
    redeploy_required: bool

    @classmethod
    def from_payload(cls, payload: Any, *, name: str) -> FunctionStatus:
        """
        Accepts either the single-function shape `{"app": {...}}` or the
        list shape `{"apps": [{"name": ..., ...}]}` returned by some server versions.
        """
        if not isinstance(payload, dict):
            raise ValueError("Unexpected status response (not a JSON object)")

        app = payload.get("app")
        if app is None and isinstance(payload.get("apps"), list):
            for item in payload["apps"]:
                if isinstance(item, dict) and item.get("name") == name:
                    app = item
                    break
        if not isinstance(app, dict):
            raise ValueError(f"Status response has no entry for function {name!r}")

        return cls(
            composite_status=_coerce_str(app.get("composite_status")),
            deployment_status=_coerce_str(app.get("deployment_status")),
            processing_status=_coerce_str(app.get("processing_status")),
            redeploy_required=bool(app.get("redeploy_required", False)),
        )


@dataclass(frozen=True)
class ExecutionStats:
    on_update_success: int = 0
    on_update_failure: int = 0
    on_delete_success: int = 0
    on_delete_failure: int = 0
    agg_queue_size: int = 0
    feedback_queue_size: int = 0
    curl: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> ExecutionStats:
        if not isinstance(payload, dict):
            raise ValueError("Unexpected execution stats response (not a JSON object)")
        raw_curl = payload.get("curl") if isinstance(payload.get("curl"), dict) else {}
        return cls(
            on_update_success=_coerce_int(payload.get("on_update_success")),
            on_update_failure=_coerce_int(payload.get("on_update_failure")),
            on_delete_success=_coerce_int(payload.get("on_delete_success")),
            on_delete_failure=_coerce_int(payload.get("on_delete_failure")),
            agg_queue_size=_coerce_int(payload.get("agg_queue_size")),
            feedback_queue_size=_coerce_int(payload.get("feedback_queue_size")),
            curl={verb: _coerce_int(raw_curl.get(verb)) for verb in CURL_VERBS},
        )


@dataclass(frozen=True)
class FailureStats:
    timeout_count: int = 0
    # Every other numeric counter the server reports (bucket_op_exception_count, curl_failure_count, ...).
    exception_counts: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> FailureStats:
        if not isinstance(payload, dict):
            raise ValueError("Unexpected failure stats response (not a JSON object)")
        counts: dict[str, int] = {}
        for key, value in payload.items():
            if key == "timeout_count" or isinstance(value, (dict, list, bool)):
                continue
            if isinstance(value, (int, float)):
                counts[str(key)] = int(value)
        return cls(timeout_count=_coerce_int(payload.get("timeout_count")), exception_counts=counts)


@dataclass(frozen=True)
class RawFunctionStats:
    """Snapshot of one function's server-reported state, fetched in one pass."""

    name: str
    status: FunctionStatus
    execution: ExecutionStats
    failure: FailureStats
    backlog_size: int


def parse_backlog(payload: Any) -> int:
    if not isinstance(payload, dict):
        raise ValueError("Unexpected backlog response (not a JSON object)")
    if "dcp_backlog" not in payload:
        raise ValueError("Backlog response is missing dcp_backlog")
    return _coerce_int(payload.get("dcp_backlog"))
