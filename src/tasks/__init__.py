"""Rental Token Service Tasks Module."""

from src.tasks.celery_app import celery_app
from src.tasks.payments import reconcile_stale, reconcile_transaction

__all__ = [
    "celery_app",
    "reconcile_stale",
    "reconcile_transaction",
]
