"""Package Service - Read-only token package catalog."""

from collections.abc import Sequence

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from src.core.exceptions import NotFoundError
from src.models.token_package import TokenPackage


class PackageService:
    """Service for the token package catalog."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_active(self) -> Sequence[TokenPackage]:
        """Active packages, cheapest first."""
        result = await self.db.execute(
            select(TokenPackage)
            .where(TokenPackage.is_active == True)  # noqa: E712
            .order_by(TokenPackage.price, TokenPackage.id)
        )
        return result.scalars().all()

    async def get_by_id(self, package_id: int) -> TokenPackage:
        """Get a package by id, active or not.

        Raises:
            NotFoundError: Package does not exist
        """
        package = await self.db.get(TokenPackage, package_id)
        if package is None:
            raise NotFoundError(f"Token package {package_id} not found")
        return package

    async def get_active(self, package_id: int) -> TokenPackage:
        """Get a package that can currently be bought.

        Raises:
            NotFoundError: Package does not exist or is inactive
        """
        package = await self.get_by_id(package_id)
        if not package.is_active:
            raise NotFoundError(f"Token package {package_id} is not available")
        return package
