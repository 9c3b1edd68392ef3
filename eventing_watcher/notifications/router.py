"""Routes alerts to the configured webhook transport."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from eventing_watcher.config import ALERT_TYPE_NONE, ALERT_TYPE_SLACK, ALERT_TYPE_TEAMS, WatcherConfig
from eventing_watcher.notifications.alerts import AlertEvent, AlertSeverity
from eventing_watcher.notifications.slack import SlackConfig, send_slack_alert
from eventing_watcher.notifications.teams import TeamsConfig, send_teams_alert


logger = structlog.get_logger(__name__)


class AlertRouter:
    """Notifier used by the reconciler and the process bootstrap.

    `send` never raises: delivery problems are logged and reported as False.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        alert_type: int,
        slack: SlackConfig | None = None,
        teams: TeamsConfig | None = None,
    ):
        self.client = client
        self.alert_type = int(alert_type)
        self.slack = slack
        self.teams = teams

    @classmethod
    def from_config(cls, client: httpx.AsyncClient, config: WatcherConfig) -> "AlertRouter":
        slack = SlackConfig(webhook_url=config.slack_webhook_url) if config.slack_webhook_url else None
        teams = TeamsConfig(webhook_url=config.teams_webhook_url) if config.teams_webhook_url else None
        return cls(client, alert_type=config.alert_type, slack=slack, teams=teams)

    async def send(
        self,
        message: str,
        severity: AlertSeverity | str = AlertSeverity.INFO,
        function_name: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> bool:
        event = AlertEvent(
            severity=AlertSeverity(severity),
            message=message,
            function_name=function_name,
            context=dict(context or {}),
        )
        return await self.send_event(event)

    async def send_event(self, event: AlertEvent) -> bool:
        logger.info(
            "Sending alert",
            alert_type=self.alert_type,
            severity=event.severity.value,
            function_name=event.function_name,
            alert=event.message,
        )
        try:
            if self.alert_type == ALERT_TYPE_NONE:
                logger.info("Alerts disabled; not sending", alert=event.message)
                return True
            if self.alert_type == ALERT_TYPE_SLACK and self.slack is not None:
                return await send_slack_alert(self.client, self.slack, event)
            if self.alert_type == ALERT_TYPE_TEAMS and self.teams is not None:
                return await send_teams_alert(self.client, self.teams, event)
        except Exception as exc:
            logger.exception("Unexpected error sending alert", alert=event.message, error=str(exc))
            return False

        logger.warning("No usable alert transport; alert dropped", alert_type=self.alert_type, alert=event.message)
        return False
