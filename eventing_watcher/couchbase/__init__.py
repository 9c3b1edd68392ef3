"""Read-only client for the Couchbase Eventing REST API."""

from .client import CouchbaseApiError, CouchbaseConfig, EventingStatsClient
from .models import ExecutionStats, FailureStats, FunctionStatus, RawFunctionStats

__all__ = [
    "CouchbaseApiError",
    "CouchbaseConfig",
    "EventingStatsClient",
    "ExecutionStats",
    "FailureStats",
    "FunctionStatus",
    "RawFunctionStats",
]
