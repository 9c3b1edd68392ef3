from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class AlertEvent:
    """One alert to deliver. Never persisted; lives for a single send attempt."""

    severity: AlertSeverity
    message: str
    function_name: str | None = None
    context: dict[str, Any] = field(default_factory=dict)


def format_context_value(value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False, indent=2, default=str)
    except (TypeError, ValueError):
        return str(value)
