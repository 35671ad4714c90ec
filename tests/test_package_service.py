from decimal import Decimal

import pytest

from src.core.exceptions import NotFoundError
from src.models.token_package import TokenPackage
from src.services.package_service import PackageService


async def test_list_active_orders_by_price(db, package, inactive_package):
    db.add(TokenPackage(name="Pro", token_count=120, price=Decimal("800.00")))
    db.add(TokenPackage(name="Mini", token_count=3, price=Decimal("50.00")))
    await db.commit()

    packages = await PackageService(db).list_active()

    assert [p.name for p in packages] == ["Mini", "Starter", "Pro"]


async def test_get_by_id_returns_inactive(db, inactive_package):
    found = await PackageService(db).get_by_id(inactive_package.id)
    assert found.name == "Legacy"


async def test_get_active_hides_inactive(db, inactive_package):
    with pytest.raises(NotFoundError):
        await PackageService(db).get_active(inactive_package.id)


async def test_missing_package(db):
    with pytest.raises(NotFoundError):
        await PackageService(db).get_by_id(404)
