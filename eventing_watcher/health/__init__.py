"""Health evaluation of eventing functions and watcher health state."""

from .evaluator import Breach, Evaluation, Thresholds, evaluate, fetch_error_evaluation
from .state import HealthSnapshot, HealthState

__all__ = [
    "Breach",
    "Evaluation",
    "HealthSnapshot",
    "HealthState",
    "Thresholds",
    "evaluate",
    "fetch_error_evaluation",
]
