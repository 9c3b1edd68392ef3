"""Alert delivery through Slack or Teams incoming webhooks."""

from .alerts import AlertEvent, AlertSeverity
from .router import AlertRouter

__all__ = ["AlertEvent", "AlertRouter", "AlertSeverity"]
