"""Rental Token Service - Core Configuration."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.models.ledger import MeteredAction

DEFAULT_ACTION_COSTS: dict[MeteredAction, int] = {
    MeteredAction.SEARCH: 1,
    MeteredAction.CONTACT: 2,
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "Rental Token Service"
    debug: bool = False
    allowed_origins: str = Field(
        default="http://localhost:5173,http://localhost:3000",
        description="Comma-separated list of allowed CORS origins",
    )

    # Database
    database_url: str = Field(
        ..., description="Async SQLAlchemy URL (mysql+aiomysql in production)"
    )

    # Clerk Authentication
    clerk_secret_key: str = Field(..., description="Clerk secret key")
    clerk_publishable_key: str = Field(default="", description="Clerk publishable key")

    # Redis (for task queue)
    redis_url: str = Field(
        default="redis://localhost:6379",
        description="Redis connection URL for task queue",
    )

    # M-Pesa (Daraja)
    payment_provider: Literal["mpesa"] = Field(default="mpesa", description="Payment provider")
    mpesa_environment: Literal["sandbox", "production"] = Field(
        default="sandbox", description="Daraja environment"
    )
    mpesa_consumer_key: str = Field(default="", description="Daraja consumer key")
    mpesa_consumer_secret: str = Field(default="", description="Daraja consumer secret")
    mpesa_shortcode: str = Field(default="174379", description="Paybill / till shortcode")
    mpesa_passkey: str = Field(default="", description="Lipa Na M-Pesa Online passkey")
    mpesa_callback_url: str = Field(
        default="http://localhost:8000/api/v1/webhooks/mpesa/callback",
        description="Public URL Daraja posts STK results to",
    )
    mpesa_callback_token: str = Field(
        default="", description="Shared token expected on the callback URL (?token=)"
    )
    mpesa_timeout_seconds: float = Field(default=30.0, description="Daraja HTTP timeout")

    # Payment settings
    default_currency: str = Field(default="KES", description="Currency for token packages")
    payment_status_check_delay_seconds: int = Field(
        default=30, description="Delay before the first background status check"
    )
    payment_reconcile_after_minutes: int = Field(
        default=3, description="Pending age before the sweep queries the provider"
    )
    payment_expire_after_minutes: int = Field(
        default=30, description="Pending age after which a still-pending payment times out"
    )

    # Metered actions
    action_costs: dict[MeteredAction, int] = Field(
        default_factory=lambda: dict(DEFAULT_ACTION_COSTS),
        description='Token cost per metered action, e.g. {"search": 1, "contact": 2}',
    )

    @field_validator("action_costs")
    @classmethod
    def validate_action_costs(cls, v: dict[MeteredAction, int]) -> dict[MeteredAction, int]:
        """Every metered action needs a positive integer cost."""
        missing = [action.value for action in MeteredAction if action not in v]
        if missing:
            raise ValueError(f"Missing token cost for actions: {', '.join(missing)}")
        for action, cost in v.items():
            if cost <= 0:
                raise ValueError(f"Token cost for '{action.value}' must be positive")
        return v

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    @property
    def mpesa_base_url(self) -> str:
        if self.mpesa_environment == "production":
            return "https://api.safaricom.co.ke"
        return "https://sandbox.safaricom.co.ke"


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()  # type: ignore[call-arg]
