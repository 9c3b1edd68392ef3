from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable

from eventing_watcher.storage.status_store import StatusRecord


def format_uptime(delta: timedelta) -> str:
    seconds = max(0, int(delta.total_seconds()))
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, rem = divmod(rem, 60)
    return f"{days}d {hours}h {minutes}m {rem}s"


@dataclass(frozen=True)
class HealthSnapshot:
    healthy: bool
    reason: str | None
    last_pass_started_ts: float | None
    last_pass_finished_ts: float | None
    last_pass_ok: bool | None
    records: tuple[StatusRecord, ...] | None


class HealthState:
    """
    Watcher health owned by the reconciler and read by the health server.

    Only the reconciler calls the mark_* methods; readers take a snapshot.
    `records` holds the function verdicts of the last completed pass, so a
    pass that is still running is never visible to readers.
    """

    def __init__(self, *, clock=time.time, monotonic=time.monotonic):
        self._lock = threading.Lock()
        self._clock = clock
        self._monotonic = monotonic
        self._started_monotonic = monotonic()
        self._healthy = True
        self._reason: str | None = None
        self._last_started: float | None = None
        self._last_finished: float | None = None
        self._last_ok: bool | None = None
        self._records: tuple[StatusRecord, ...] | None = None

    def mark_pass_started(self) -> None:
        with self._lock:
            self._last_started = self._clock()

    def mark_pass_succeeded(self, records: Iterable[StatusRecord] | None = None) -> None:
        with self._lock:
            if records is not None:
                self._records = tuple(sorted(records, key=lambda r: r.function_name))
            self._healthy = True
            self._reason = None
            self._last_finished = self._clock()
            self._last_ok = True

    def mark_pass_failed(self, reason: str) -> None:
        with self._lock:
            self._healthy = False
            self._reason = reason
            self._last_finished = self._clock()
            self._last_ok = False

    def mark_unhealthy(self, reason: str) -> None:
        with self._lock:
            self._healthy = False
            self._reason = reason

    def publish_records(self, records: Iterable[StatusRecord]) -> None:
        with self._lock:
            self._records = tuple(sorted(records, key=lambda r: r.function_name))

    def published_records(self) -> list[StatusRecord] | None:
        with self._lock:
            return None if self._records is None else list(self._records)

    @property
    def healthy(self) -> bool:
        with self._lock:
            return self._healthy

    def snapshot(self) -> HealthSnapshot:
        with self._lock:
            return HealthSnapshot(
                healthy=self._healthy,
                reason=self._reason,
                last_pass_started_ts=self._last_started,
                last_pass_finished_ts=self._last_finished,
                last_pass_ok=self._last_ok,
                records=self._records,
            )

    def uptime(self) -> timedelta:
        return timedelta(seconds=max(0.0, self._monotonic() - self._started_monotonic))

    def uptime_text(self) -> str:
        return format_uptime(self.uptime())
