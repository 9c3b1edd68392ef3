from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from eventing_watcher.notifications.alerts import AlertEvent, AlertSeverity, format_context_value


logger = structlog.get_logger(__name__)

TEAMS_COLORS = {
    AlertSeverity.INFO: "2DC72D",
    AlertSeverity.WARNING: "FFA500",
    AlertSeverity.ERROR: "FF0000",
}


@dataclass(frozen=True)
class TeamsConfig:
    webhook_url: str


def format_teams_title(message: str, severity: AlertSeverity) -> str:
    return f"**{AlertSeverity(severity).value.upper()}**: {message}"


def build_teams_payload(event: AlertEvent) -> dict[str, Any]:
    severity = AlertSeverity(event.severity)
    facts: list[dict[str, str]] = []
    if event.function_name:
        facts.append({"name": "Function", "value": event.function_name})
    for key, value in (event.context or {}).items():
        facts.append({"name": str(key), "value": format_context_value(value)})

    return {
        "@type": "MessageCard",
        "@context": "http://schema.org/extensions",
        "themeColor": TEAMS_COLORS[severity],
        "summary": event.message,
        "sections": [
            {
                "activityTitle": format_teams_title(event.message, severity),
                "facts": facts,
                "markdown": True,
            }
        ],
    }


async def send_teams_alert(client: httpx.AsyncClient, config: TeamsConfig, event: AlertEvent) -> bool:
    logger.debug("Preparing to send Teams alert", alert=event.message, severity=event.severity.value)
    payload = build_teams_payload(event)
    try:
        resp = await client.post(config.webhook_url, json=payload, timeout=15.0)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        msg = f"{type(e).__name__}: {e}"
        logger.error("Failed to send Teams alert", error=msg.replace(config.webhook_url, "<redacted>"), alert=event.message)
        return False
    logger.info("Sent Teams alert", alert=event.message, severity=event.severity.value)
    return True
