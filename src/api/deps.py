"""Common FastAPI dependencies for API endpoints."""

import logging
from typing import Annotated, NoReturn

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import get_current_user, require_role
from src.core.exceptions import (
    AuthorizationError,
    InsufficientBalanceError,
    NotFoundError,
    PaymentProviderError,
    TokenServiceError,
    UnknownActionError,
    ValidationError,
)
from src.db import get_db
from src.models.user import User, UserRole
from src.providers import PaymentProvider, get_payment_provider
from src.services.authorizer_service import ActionAuthorizer
from src.services.ledger_service import LedgerService
from src.services.package_service import PackageService
from src.services.payment_service import PaymentService
from src.services.reconcile_service import ReconcileService

logger = logging.getLogger(__name__)


# ============ Services ============


def get_provider() -> PaymentProvider:
    return get_payment_provider()


DbSession = Annotated[AsyncSession, Depends(get_db)]
Provider = Annotated[PaymentProvider, Depends(get_provider)]


def get_ledger_service(db: DbSession) -> LedgerService:
    return LedgerService(db)


def get_authorizer(db: DbSession) -> ActionAuthorizer:
    return ActionAuthorizer(db)


def get_package_service(db: DbSession) -> PackageService:
    return PackageService(db)


def get_payment_service(db: DbSession, provider: Provider) -> PaymentService:
    return PaymentService(db, provider=provider)


def get_reconcile_service(db: DbSession, provider: Provider) -> ReconcileService:
    return ReconcileService(db, provider=provider)


# ============ Error translation ============


def raise_http_error(error: TokenServiceError) -> NoReturn:
    """Translate a service error into an HTTPException."""
    if isinstance(error, InsufficientBalanceError):
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "message": error.message,
                "required": error.required,
                "available": error.available,
            },
        ) from error
    if isinstance(error, PaymentProviderError):
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": error.message, "code": error.code, "transient": error.transient},
        ) from error
    if isinstance(error, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error.message) from error
    if isinstance(error, AuthorizationError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=error.message) from error
    if isinstance(error, UnknownActionError | ValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.message) from error
    logger.error(f"[api] unmapped service error {type(error).__name__}: {error.message}")
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=error.message) from error


# ============ Type Aliases for Common Dependencies ============

# Current user (authenticated)
CurrentUser = Annotated[User, Depends(get_current_user)]

# Marketplace administrator
AdminUser = Annotated[User, Depends(require_role(UserRole.ADMIN))]

LedgerSvc = Annotated[LedgerService, Depends(get_ledger_service)]
AuthorizerSvc = Annotated[ActionAuthorizer, Depends(get_authorizer)]
PackageSvc = Annotated[PackageService, Depends(get_package_service)]
PaymentSvc = Annotated[PaymentService, Depends(get_payment_service)]
ReconcileSvc = Annotated[ReconcileService, Depends(get_reconcile_service)]
