from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from eventing_watcher.notifications.alerts import AlertEvent, AlertSeverity, format_context_value


logger = structlog.get_logger(__name__)

SLACK_COLORS = {
    AlertSeverity.INFO: "#36a64f",
    AlertSeverity.WARNING: "#ffa500",
    AlertSeverity.ERROR: "#ff0000",
}


@dataclass(frozen=True)
class SlackConfig:
    webhook_url: str


def build_slack_payload(event: AlertEvent) -> dict[str, Any]:
    severity = AlertSeverity(event.severity)
    blocks: list[dict[str, Any]] = [
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*{severity.value.upper()}*: {event.message}"},
        }
    ]
    if event.function_name:
        blocks.append(
            {
                "type": "section",
                "fields": [{"type": "mrkdwn", "text": f"*Function:*\n{event.function_name}"}],
            }
        )
    if event.context:
        # Slack caps a section at 10 fields.
        items = list(event.context.items())[:10]
        blocks.append(
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*{key}:*\n{format_context_value(value)}"} for key, value in items
                ],
            }
        )
    return {
        "text": f"{severity.value.upper()}: {event.message}",
        "attachments": [{"color": SLACK_COLORS[severity], "blocks": blocks}],
    }


async def send_slack_alert(client: httpx.AsyncClient, config: SlackConfig, event: AlertEvent) -> bool:
    payload = build_slack_payload(event)
    try:
        resp = await client.post(config.webhook_url, json=payload, timeout=15.0)
        if resp.status_code >= 400:
            logger.error(
                "Failed to send Slack alert",
                status_code=resp.status_code,
                body=resp.text[:200],
                alert=event.message,
            )
            return False
    except httpx.HTTPError as e:
        msg = f"{type(e).__name__}: {e}"
        logger.error("Failed to send Slack alert", error=msg.replace(config.webhook_url, "<redacted>"), alert=event.message)
        return False
    logger.info("Sent Slack alert", alert=event.message, severity=event.severity.value)
    return True
