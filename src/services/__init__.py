"""Rental Token Service Layer.

Business logic for token balances, metered actions and M-Pesa purchases.
Each service wraps one AsyncSession and can be reused across API endpoints
and Celery tasks.
"""

from src.services.authorizer_service import ActionAuthorizer, AuthorizationResult
from src.services.ledger_service import LedgerService
from src.services.package_service import PackageService
from src.services.payment_service import PaymentService, PendingPayment
from src.services.reconcile_service import PaymentStatusResult, ReconcileService

__all__ = [
    "ActionAuthorizer",
    "AuthorizationResult",
    "LedgerService",
    "PackageService",
    "PaymentService",
    "PaymentStatusResult",
    "PendingPayment",
    "ReconcileService",
]
