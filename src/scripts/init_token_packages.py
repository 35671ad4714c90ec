"""Initialize the default token package catalog.

Usage:
    uv run python -m src.scripts.init_token_packages
"""

import asyncio
from decimal import Decimal

from sqlmodel import select

from src.core.config import get_settings
from src.db.engine import async_session_factory, close_db
from src.models.token_package import TokenPackage

DEFAULT_PACKAGES = [
    {
        "name": "Starter",
        "description": "Try out search and contact a few owners",
        "token_count": 10,
        "price": Decimal("100.00"),
        "features": ["10 searches or 5 owner contacts", "Valid for 30 days"],
    },
    {
        "name": "Popular",
        "description": "Best value for an active house hunt",
        "token_count": 50,
        "price": Decimal("400.00"),
        "features": ["50 searches or 25 owner contacts", "Valid for 30 days", "Save 20%"],
    },
    {
        "name": "Pro",
        "description": "For agents and frequent movers",
        "token_count": 120,
        "price": Decimal("800.00"),
        "features": ["120 searches or 60 owner contacts", "Valid for 30 days", "Save 33%"],
    },
]


async def init_token_packages() -> None:
    """Create the default token packages."""
    currency = get_settings().default_currency

    async with async_session_factory() as session:
        result = await session.execute(select(TokenPackage))
        existing = result.scalars().all()

        if existing:
            print(f"Found {len(existing)} existing token packages:")
            for package in existing:
                print(f"  - {package.name}: {package.token_count} tokens (active: {package.is_active})")
            print("\nSkipping initialization. Delete existing packages first if you want to reset.")
            return

        packages = [TokenPackage(currency=currency, **data) for data in DEFAULT_PACKAGES]
        for package in packages:
            session.add(package)

        await session.commit()

        print("✅ Successfully created token packages:")
        for package in packages:
            print(f"  - {package.name}: {package.token_count} tokens for {package.price} {package.currency}")


async def main() -> None:
    """Main function with proper cleanup."""
    try:
        await init_token_packages()
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
