"""Alert evaluation, storage, dispatch and scheduling."""

from kpiwatch.core.alerts.dispatcher import DispatchResult, NotificationDispatcher
from kpiwatch.core.alerts.evaluator import Evaluation, evaluate
from kpiwatch.core.alerts.reconciler import AlertReconciler, ReconcileResult
from kpiwatch.core.alerts.scheduler import AlertScheduler, CheckRunSummary
from kpiwatch.core.alerts.store import AlertConfig, AlertStore, StatusSummary

__all__ = [
    "DispatchResult",
    "NotificationDispatcher",
    "Evaluation",
    "evaluate",
    "AlertReconciler",
    "ReconcileResult",
    "AlertScheduler",
    "CheckRunSummary",
    "AlertConfig",
    "AlertStore",
    "StatusSummary",
]
