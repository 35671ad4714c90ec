"""API module - route handlers and common dependencies."""

from fastapi import FastAPI

from src.api.deps import AdminUser, CurrentUser

__all__ = [
    "AdminUser",
    "CurrentUser",
    "register_routers",
]

API_PREFIX = "/api/v1"


def register_routers(app: FastAPI) -> None:
    """Register all API routers to the application.

    Args:
        app: FastAPI application instance
    """
    from src.api.admin import router as admin_router
    from src.api.auth import router as auth_router
    from src.api.payments import router as payments_router
    from src.api.tokens import router as tokens_router
    from src.api.webhooks import router as webhooks_router

    app.include_router(auth_router, prefix=API_PREFIX)
    app.include_router(tokens_router, prefix=API_PREFIX)
    app.include_router(payments_router, prefix=API_PREFIX)
    app.include_router(webhooks_router, prefix=API_PREFIX)  # M-Pesa result callbacks
    app.include_router(admin_router, prefix=API_PREFIX)
