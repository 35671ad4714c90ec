"""Shared fixtures for the token service test suite.

Tests run against a file-backed SQLite database through aiosqlite. Every
transaction starts with BEGIN IMMEDIATE, so concurrent sessions serialize
on the database write lock the way SELECT ... FOR UPDATE serializes them
on MySQL.
"""

import os
import tempfile
from collections.abc import AsyncIterator
from decimal import Decimal
from typing import Any

# Settings are read at import time; configure before importing src.
_TEST_DIR = tempfile.mkdtemp(prefix="token-service-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR}/app.db"
os.environ["CLERK_SECRET_KEY"] = "sk_test_dummy"
os.environ["MPESA_CONSUMER_KEY"] = "consumer-key"
os.environ["MPESA_CONSUMER_SECRET"] = "consumer-secret"
os.environ["MPESA_SHORTCODE"] = "174379"
os.environ["MPESA_PASSKEY"] = "passkey"
os.environ["MPESA_CALLBACK_URL"] = "https://example.com/api/v1/webhooks/mpesa/callback"
os.environ["MPESA_CALLBACK_TOKEN"] = ""

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

import src.models  # noqa: E402, F401
from src.core.exceptions import PaymentProviderError  # noqa: E402
from src.models.ledger import LedgerReason  # noqa: E402
from src.models.payment import PaymentStatus  # noqa: E402
from src.models.token_package import TokenPackage  # noqa: E402
from src.models.user import User, UserRole  # noqa: E402
from src.providers.base import (  # noqa: E402
    PaymentProvider,
    ProviderStatus,
    PushResult,
    status_from_result_code,
)
from src.providers.mpesa import MpesaProvider  # noqa: E402
from src.services.ledger_service import LedgerService  # noqa: E402


# =============================================================================
# Fake payment provider
# =============================================================================


def stk_callback(
    checkout_request_id: str,
    result_code: int = 0,
    receipt: str | None = "ABC123",
    amount: Decimal | int = 100,
    result_desc: str | None = None,
) -> dict[str, Any]:
    """Daraja stkCallback body."""
    callback: dict[str, Any] = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": result_desc
        or ("The service request is processed successfully." if result_code == 0 else "Failed"),
    }
    if result_code == 0:
        callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": float(amount)},
                {"Name": "MpesaReceiptNumber", "Value": receipt},
                {"Name": "TransactionDate", "Value": 20261019102115},
                {"Name": "PhoneNumber", "Value": 254712345678},
            ]
        }
    return {"Body": {"stkCallback": callback}}


class FakeProvider(PaymentProvider):
    """In-memory provider: pushes always succeed unless push_error is set.

    Queries report pending until the test settles a reference with
    complete() or resolve().
    """

    name = "fake"

    def __init__(self) -> None:
        self.pushes: list[dict[str, Any]] = []
        self.statuses: dict[str, ProviderStatus] = {}
        self.push_error: PaymentProviderError | None = None
        self.query_error: PaymentProviderError | None = None
        self.query_count = 0
        self._parser = MpesaProvider(
            client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        )

    async def push_payment(self, phone_number, amount, reference, description) -> PushResult:
        if self.push_error is not None:
            raise self.push_error
        self.pushes.append(
            {
                "phone_number": phone_number,
                "amount": amount,
                "reference": reference,
                "description": description,
            }
        )
        n = len(self.pushes)
        return PushResult(
            provider_reference=f"ws_CO_{n:06d}",
            merchant_request_id=f"mr-{n}",
            customer_message="Success. Request accepted for processing",
        )

    async def query_status(self, provider_reference: str) -> ProviderStatus:
        self.query_count += 1
        if self.query_error is not None:
            raise self.query_error
        return self.statuses.get(
            provider_reference,
            ProviderStatus(
                provider_reference=provider_reference,
                status=PaymentStatus.PENDING,
                message="The transaction is being processed",
            ),
        )

    def parse_callback(self, payload: dict[str, Any]) -> ProviderStatus:
        return self._parser.parse_callback(payload)

    async def close(self) -> None:
        await self._parser.close()

    def complete(self, reference: str, receipt: str = "ABC123", amount: Decimal | None = None) -> None:
        self.statuses[reference] = ProviderStatus(
            provider_reference=reference,
            status=PaymentStatus.COMPLETED,
            message="The service request is processed successfully.",
            result_code=0,
            receipt=receipt,
            amount=amount,
        )

    def resolve(self, reference: str, result_code: int, message: str = "") -> None:
        self.statuses[reference] = ProviderStatus(
            provider_reference=reference,
            status=status_from_result_code(result_code),
            message=message,
            result_code=result_code,
        )


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
async def engine(tmp_path) -> AsyncIterator:
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path}/test.db",
        connect_args={"timeout": 30},
    )

    @event.listens_for(test_engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(test_engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with test_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


# =============================================================================
# Data
# =============================================================================


async def _create_user(db: AsyncSession, clerk_id: str, role: UserRole = UserRole.TENANT) -> User:
    user = User(clerk_id=clerk_id, email=f"{clerk_id}@example.com", role=role)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    await db.commit()
    return user


@pytest.fixture
async def user(db) -> User:
    return await _create_user(db, "user_tenant")


@pytest.fixture
async def other_user(db) -> User:
    return await _create_user(db, "user_other")


@pytest.fixture
async def admin_user(db) -> User:
    return await _create_user(db, "user_admin", role=UserRole.ADMIN)


@pytest.fixture
async def package(db) -> TokenPackage:
    pkg = TokenPackage(
        name="Starter",
        description="Ten tokens",
        token_count=10,
        price=Decimal("100.00"),
        features=["10 searches"],
    )
    db.add(pkg)
    await db.commit()
    await db.refresh(pkg)
    await db.commit()
    return pkg


@pytest.fixture
async def inactive_package(db) -> TokenPackage:
    pkg = TokenPackage(name="Legacy", token_count=5, price=Decimal("60.00"), is_active=False)
    db.add(pkg)
    await db.commit()
    await db.refresh(pkg)
    await db.commit()
    return pkg


@pytest.fixture
async def provider() -> AsyncIterator[FakeProvider]:
    fake = FakeProvider()
    yield fake
    await fake.close()


async def fund(session_factory, user_id: int, amount: int) -> int:
    """Give a user tokens through a reward credit in its own session."""
    async with session_factory() as session:
        return await LedgerService(session).credit(user_id, amount, LedgerReason.REWARD)


async def balance_of(session_factory, user_id: int) -> int:
    async with session_factory() as session:
        balance = await LedgerService(session).get_balance(user_id)
        await session.commit()
        return balance
