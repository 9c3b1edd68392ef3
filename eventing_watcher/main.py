"""Main entry point for the eventing watcher."""

import argparse
import asyncio
import logging
import os
import sys
from typing import Optional

import httpx
import structlog
import uvicorn
from fastapi import FastAPI

from eventing_watcher.config import ConfigError, WatcherConfig, load_config
from eventing_watcher.couchbase.client import CouchbaseConfig, EventingStatsClient
from eventing_watcher.health.evaluator import Thresholds
from eventing_watcher.health.state import HealthState
from eventing_watcher.notifications.alerts import AlertSeverity
from eventing_watcher.notifications.router import AlertRouter
from eventing_watcher.reconciler import Reconciler
from eventing_watcher.scheduler.job_scheduler import JobScheduler, schedule_reconciliation
from eventing_watcher.server import create_app
from eventing_watcher.storage.status_store import StatusStore


logger = structlog.get_logger(__name__)


def configure_logging(level_name: str) -> None:
    level = logging.getLevelName(str(level_name).upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    # Credentials travel in request auth/URLs; keep transport chatter out of the logs.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def build_reconciler(
    config: WatcherConfig,
    http_client: httpx.AsyncClient,
    *,
    store: StatusStore,
    health: HealthState,
    notifier: AlertRouter,
) -> Reconciler:
    stats = EventingStatsClient(
        http_client,
        CouchbaseConfig(
            base_url=config.couchbase_host,
            username=config.couchbase_username,
            password=config.couchbase_password,
            timeout_seconds=config.request_timeout_seconds,
        ),
    )
    return Reconciler(
        stats=stats,
        store=store,
        notifier=notifier,
        thresholds=Thresholds(backlog_threshold=config.dcp_backlog_threshold),
        health=health,
        concurrency=config.check_concurrency,
    )


def build_app(config: WatcherConfig) -> FastAPI:
    """Wire the health server, the scheduled reconciler and their shared resources."""
    store = StatusStore(config.db_path)
    health = HealthState()
    http_client = httpx.AsyncClient(verify=config.verify_tls)
    notifier = AlertRouter.from_config(http_client, config)
    reconciler = build_reconciler(config, http_client, store=store, health=health, notifier=notifier)
    job_scheduler = JobScheduler()

    app = create_app(store=store, health=health, reconciler=reconciler, job_scheduler=job_scheduler)
    app.state.background_tasks = set()

    @app.on_event("startup")
    async def start_watcher() -> None:
        try:
            mode = schedule_reconciliation(
                job_scheduler,
                reconciler.run_pass_if_idle,
                cron_expression=config.cron_schedule,
                fallback_interval_seconds=config.fallback_interval_seconds,
            )
            await job_scheduler.start()
        except Exception as exc:
            logger.exception("Failed to start Couchbase Eventing Watcher", error=str(exc))
            health.mark_unhealthy(f"startup failed: {exc}")
            await notifier.send(
                "Failed to start Couchbase Eventing Watcher",
                AlertSeverity.ERROR,
                context={"error": f"{type(exc).__name__}: {exc}"},
            )
            raise

        if mode == "cron":
            context = {"cronSchedule": config.cron_schedule}
        else:
            context = {"interval": f"{config.fallback_interval_seconds} seconds"}
        await notifier.send(
            f"Couchbase Eventing Watcher started with {mode} scheduler",
            AlertSeverity.INFO,
            context=context,
        )

        # Initial pass right away; later passes follow the schedule.
        task = asyncio.create_task(reconciler.run_pass_if_idle())
        app.state.background_tasks.add(task)
        task.add_done_callback(app.state.background_tasks.discard)
        logger.info("Couchbase Eventing Watcher started", scheduler=mode, port=config.health_check_port)

    @app.on_event("shutdown")
    async def stop_watcher() -> None:
        await job_scheduler.stop()
        for task in list(app.state.background_tasks):
            task.cancel()
        await http_client.aclose()
        logger.info("Couchbase Eventing Watcher stopped")

    return app


async def run_once(config: WatcherConfig) -> int:
    """Run a single reconciliation pass and exit (cron jobs, smoke checks)."""
    store = StatusStore(config.db_path)
    store.ensure_schema()
    health = HealthState()
    async with httpx.AsyncClient(verify=config.verify_tls) as http_client:
        notifier = AlertRouter.from_config(http_client, config)
        reconciler = build_reconciler(config, http_client, store=store, health=health, notifier=notifier)
        result = await reconciler.run_pass()
    logger.info("Single pass finished", ok=result.ok, functions=len(result.functions), alerts=len(result.alerts))
    return 0 if result.ok else 1


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Couchbase Eventing Watcher")
    parser.add_argument(
        "--config",
        default=os.getenv("EVENTING_WATCHER_CONFIG"),
        help="Path to YAML config (environment variables override file values)",
    )
    parser.add_argument("--once", action="store_true", help="Run one reconciliation pass and exit")
    parser.add_argument("--log-level", default=None, help="Logging level (DEBUG, INFO, WARNING, ...)")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        configure_logging(args.log_level or "INFO")
        logger.error("Invalid configuration", error=str(exc))
        return 2

    configure_logging(args.log_level or config.log_level)

    if args.once:
        return asyncio.run(run_once(config))

    app = build_app(config)
    uvicorn.run(app, host=config.health_check_host, port=config.health_check_port, log_level="warning")
    return 0


if __name__ == "__main__":
    sys.exit(main())
