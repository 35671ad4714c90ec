"""Rental Token Service - Clerk authentication."""

import logging
from typing import Annotated

from clerk_backend_api import AuthenticateRequestOptions, Clerk, authenticate_request
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from src.core.config import get_settings
from src.db import get_db
from src.models.user import User, UserRole

logger = logging.getLogger(__name__)


class ClerkAuth:
    """Clerk authentication handler.

    Verifies session tokens issued by Clerk and mirrors users locally.
    """

    def __init__(self) -> None:
        settings = get_settings()
        self._client = Clerk(bearer_auth=settings.clerk_secret_key)

    async def verify_token(self, request: Request) -> dict:
        """Verify the Clerk bearer token of a request.

        Returns:
            Decoded JWT claims

        Raises:
            HTTPException: If token is invalid or missing
        """
        try:
            request_state = authenticate_request(
                request,
                AuthenticateRequestOptions(secret_key=get_settings().clerk_secret_key),
            )
        except Exception as e:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Authentication failed: {e!s}",
            ) from e

        if not request_state.is_signed_in:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired token",
            )
        return request_state.payload or {}

    def get_user_info(self, clerk_id: str) -> dict[str, str]:
        """Fetch email and username from the Clerk API.

        Returns empty strings when Clerk cannot be reached; the local
        mirror keeps its previous values in that case.
        """
        try:
            user = self._client.users.get(user_id=clerk_id)
        except Exception as e:
            logger.warning(f"[auth] Clerk user lookup failed clerk_id={clerk_id}: {e}")
            return {"email": "", "username": ""}

        email = ""
        if user.email_addresses:
            primary = next(
                (e for e in user.email_addresses if e.id == user.primary_email_address_id),
                user.email_addresses[0],
            )
            email = primary.email_address
        return {"email": email, "username": user.username or ""}


_clerk_auth: ClerkAuth | None = None


def get_clerk_auth() -> ClerkAuth:
    """Get Clerk auth singleton."""
    global _clerk_auth
    if _clerk_auth is None:
        _clerk_auth = ClerkAuth()
    return _clerk_auth


async def get_current_user(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    clerk: Annotated[ClerkAuth, Depends(get_clerk_auth)],
) -> User:
    """FastAPI dependency to get the current authenticated user.

    A signed-in Clerk user seen for the first time gets a local tenant row.
    """
    claims = await clerk.verify_token(request)

    clerk_id = claims.get("sub")
    if not clerk_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user ID",
        )

    result = await db.execute(select(User).where(User.clerk_id == clerk_id))
    user = result.scalar_one_or_none()

    if user is None:
        info = clerk.get_user_info(clerk_id)
        user = User(clerk_id=clerk_id, email=info["email"], username=info["username"] or None)
        db.add(user)
        try:
            await db.commit()
        except IntegrityError:
            # Parallel first requests of the same user
            await db.rollback()
            result = await db.execute(select(User).where(User.clerk_id == clerk_id))
            user = result.scalar_one()
        else:
            await db.refresh(user)
            logger.info(f"[auth] mirrored new user clerk_id={clerk_id} user_id={user.id}")

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is disabled",
        )

    return user


def require_role(*roles: UserRole):
    """Factory for role-based access control dependency.

    Usage:
        @router.post("/admin/tokens/rewards")
        async def grant(user: User = Depends(require_role(UserRole.ADMIN))):
            ...
    """

    async def role_checker(user: Annotated[User, Depends(get_current_user)]) -> User:
        if user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Required role: {', '.join(r.value for r in roles)}",
            )
        return user

    return role_checker


router = APIRouter(prefix="/auth", tags=["Auth"])


@router.get("/me")
async def get_me(user: Annotated[User, Depends(get_current_user)]):
    """Get current user profile with role information."""
    return {
        "id": user.id,
        "clerk_id": user.clerk_id,
        "email": user.email,
        "username": user.username,
        "role": user.role.value,
        "is_active": user.is_active,
        "created_at": user.created_at.isoformat(),
    }
