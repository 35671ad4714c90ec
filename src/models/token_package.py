"""Rental Token Service - Token package model."""

from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from src.utils.helpers import utcnow


class TokenPackage(SQLModel, table=True):
    """Purchasable bundle of tokens.

    Payment transactions snapshot price, currency and token count at
    initiation, so later edits never change historical purchases.

    Attributes:
        id: Auto-increment primary key
        name: Display name (e.g., 'Starter')
        token_count: Tokens credited on purchase
        price: Price in `currency`
        features: Marketing bullet points
        duration_days: Advertised validity period
        is_active: Only active packages can be bought
    """

    __tablename__ = "token_packages"
    __table_args__ = (
        sa.CheckConstraint("token_count > 0", name="ck_token_packages_token_count"),
        sa.CheckConstraint("price > 0", name="ck_token_packages_price"),
    )

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(max_length=100)
    description: str | None = Field(default=None, max_length=500)
    token_count: int
    price: Decimal = Field(sa_column=sa.Column(sa.DECIMAL(12, 2), nullable=False))
    currency: str = Field(default="KES", max_length=3)
    features: list[str] = Field(
        default=[],
        sa_column=sa.Column(sa.JSON, nullable=False, default=[]),
    )
    duration_days: int = Field(default=30)
    is_active: bool = Field(default=True, index=True)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
