"""Token package schemas."""

from decimal import Decimal

from pydantic import BaseModel


class TokenPackageResponse(BaseModel):
    """Purchasable token package."""

    id: int
    name: str
    description: str | None = None
    token_count: int
    price: Decimal
    currency: str
    features: list[str] = []
    duration_days: int

    class Config:
        from_attributes = True
