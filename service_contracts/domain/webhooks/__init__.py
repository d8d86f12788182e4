"""Webhooks domain - Square event reconciliation"""

from .reconciler import LoggingNotifier, Notifier, WebhookReconciler
from .router import router

__all__ = ["router", "WebhookReconciler", "Notifier", "LoggingNotifier"]
