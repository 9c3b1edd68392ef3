from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx
import structlog

from eventing_watcher.couchbase.models import (
    ExecutionStats,
    FailureStats,
    FunctionStatus,
    RawFunctionStats,
    parse_backlog,
)


logger = structlog.get_logger(__name__)


class CouchbaseApiError(RuntimeError):
    """A request to the Eventing REST API failed (transport, HTTP status or payload)."""

    def __init__(self, message: str, *, endpoint: str, status_code: int | None = None):
        super().__init__(message)
        self.endpoint = endpoint
        self.status_code = status_code


@dataclass(frozen=True)
class CouchbaseConfig:
    base_url: str
    username: str
    password: str
    timeout_seconds: float = 30.0


async def _get_json(
    client: httpx.AsyncClient,
    cfg: CouchbaseConfig,
    endpoint: str,
    *,
    params: dict[str, Any] | None = None,
) -> Any:
    url = f"{cfg.base_url.rstrip('/')}{endpoint}"
    logger.debug("Fetching from Couchbase", url=url, params=params)
    try:
        resp = await client.get(
            url,
            params=params,
            auth=(cfg.username, cfg.password),
            headers={"Content-Type": "application/json"},
            timeout=cfg.timeout_seconds,
        )
    except httpx.HTTPError as exc:
        raise CouchbaseApiError(f"{type(exc).__name__}: {exc}", endpoint=endpoint) from exc

    if resp.status_code >= 400:
        raise CouchbaseApiError(
            f"HTTP error! status: {resp.status_code}", endpoint=endpoint, status_code=resp.status_code
        )
    try:
        return resp.json()
    except ValueError as exc:
        raise CouchbaseApiError(
            f"Invalid JSON from {endpoint}: {exc}", endpoint=endpoint, status_code=resp.status_code
        ) from exc


def _decode(endpoint: str, decode, payload: Any):
    try:
        return decode(payload)
    except ValueError as exc:
        raise CouchbaseApiError(str(exc), endpoint=endpoint) from exc


async def list_functions(client: httpx.AsyncClient, cfg: CouchbaseConfig) -> list[str]:
    endpoint = "/api/v1/list/functions"
    data = await _get_json(client, cfg, endpoint)
    functions = data.get("functions") if isinstance(data, dict) else None
    if not isinstance(functions, list):
        raise CouchbaseApiError("Unexpected function list response (missing 'functions')", endpoint=endpoint)
    names = [str(f).strip() for f in functions if isinstance(f, str) and f.strip()]
    logger.info("Fetched function list", function_count=len(names))
    return names


async def get_status(client: httpx.AsyncClient, cfg: CouchbaseConfig, *, name: str) -> FunctionStatus:
    endpoint = f"/api/v1/status/{quote(name, safe='')}"
    data = await _get_json(client, cfg, endpoint)
    return _decode(endpoint, lambda p: FunctionStatus.from_payload(p, name=name), data)


async def get_execution_stats(client: httpx.AsyncClient, cfg: CouchbaseConfig, *, name: str) -> ExecutionStats:
    endpoint = "/getExecutionStats"
    data = await _get_json(client, cfg, endpoint, params={"name": name})
    return _decode(endpoint, ExecutionStats.from_payload, data)


async def get_failure_stats(client: httpx.AsyncClient, cfg: CouchbaseConfig, *, name: str) -> FailureStats:
    endpoint = "/getFailureStats"
    data = await _get_json(client, cfg, endpoint, params={"name": name})
    return _decode(endpoint, FailureStats.from_payload, data)


async def get_backlog(client: httpx.AsyncClient, cfg: CouchbaseConfig, *, name: str) -> int:
    endpoint = "/getDcpEventsRemaining"
    data = await _get_json(client, cfg, endpoint, params={"name": name})
    return _decode(endpoint, parse_backlog, data)


class EventingStatsClient:
    """Binds an httpx client and Couchbase credentials for the reconciler."""

    def __init__(self, client: httpx.AsyncClient, cfg: CouchbaseConfig):
        self.client = client
        self.cfg = cfg

    async def list_functions(self) -> list[str]:
        return await list_functions(self.client, self.cfg)

    async def fetch_function_stats(self, name: str) -> RawFunctionStats:
        status, execution, failure, backlog = await asyncio.gather(
            get_status(self.client, self.cfg, name=name),
            get_execution_stats(self.client, self.cfg, name=name),
            get_failure_stats(self.client, self.cfg, name=name),
            get_backlog(self.client, self.cfg, name=name),
        )
        return RawFunctionStats(
            name=name,
            status=status,
            execution=execution,
            failure=failure,
            backlog_size=backlog,
        )
