"""
config/settings.py
Application settings loaded from environment variables.
Uses Pydantic BaseSettings for validation and type safety.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Dict, List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    APP_NAME: str = "Stoodioz Booking Platform"
    APP_ENV: str = "development"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # ── Server ───────────────────────────────────────────────
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # ── Database ─────────────────────────────────────────────
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_POOL_TIMEOUT: int = 30

    # ── Redis ────────────────────────────────────────────────
    REDIS_URL: str = "redis://localhost:6379/0"
    WEBHOOK_EVENT_TTL: int = 86400      # Stripe retries for up to 3 days; 1 day covers bursts

    # ── JWT ──────────────────────────────────────────────────
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    JWT_REFRESH_TOKEN_EXPIRE_DAYS: int = 30

    # ── Stripe ───────────────────────────────────────────────
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_CURRENCY: str = "usd"
    STRIPE_SUCCESS_URL: str = "http://localhost:3000/wallet?checkout=success"
    STRIPE_CANCEL_URL: str = "http://localhost:3000/wallet?checkout=cancelled"
    STRIPE_MAX_RETRIES: int = 3

    # ── Subscriptions (monthly, in STRIPE_CURRENCY) ──────────
    SUBSCRIPTION_PRICE_ENGINEER_PLUS: Decimal = Decimal("19.99")
    SUBSCRIPTION_PRICE_PRODUCER_PRO: Decimal = Decimal("19.99")
    SUBSCRIPTION_PRICE_STOODIO_PRO: Decimal = Decimal("49.99")

    # ── Assistant (Gemini via OpenAI-compatible endpoint) ────
    GEMINI_API_KEY: str = ""
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    GEMINI_MODEL: str = "gemini-2.5-flash"
    ASSISTANT_TIMEOUT_SECONDS: float = 10.0
    ASSISTANT_MAX_RETRIES: int = 1
    SMART_REPLY_HISTORY: int = 5

    # ── Email ────────────────────────────────────────────────
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "noreply@stoodioz.com"
    EMAIL_FROM_NAME: str = "Stoodioz"

    # ── Frontend ─────────────────────────────────────────────
    FRONTEND_URL: str = "http://localhost:3000"
    ALLOWED_ORIGINS: str = "http://localhost:3000"

    # ── Celery ───────────────────────────────────────────────
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    # ── Rate Limiting ────────────────────────────────────────
    RATE_LIMIT_UNAUTH_PER_MINUTE: int = 20

    # ── Business Config ──────────────────────────────────────
    SERVICE_FEE_PERCENTAGE: Decimal = Decimal("0.15")
    DEFAULT_ENGINEER_PAY_RATE: Decimal = Decimal("50.00")
    REFUND_FULL_HOURS: int = 48
    REFUND_PARTIAL_HOURS: int = 24
    REFUND_PARTIAL_RATE: Decimal = Decimal("0.5")
    SETTLEMENT_DELAY_SECONDS: int = 120
    WALLET_ALLOW_NEGATIVE_BALANCE: bool = True
    BOOKING_REMINDER_HOURS: int = 24

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def subscription_prices(self) -> Dict[str, Decimal]:
        return {
            "ENGINEER_PLUS": self.SUBSCRIPTION_PRICE_ENGINEER_PLUS,
            "PRODUCER_PRO": self.SUBSCRIPTION_PRICE_PRODUCER_PRO,
            "STOODIO_PRO": self.SUBSCRIPTION_PRICE_STOODIO_PRO,
        }


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance. Call this everywhere."""
    return Settings()


settings = get_settings()
