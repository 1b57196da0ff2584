"""
OOH Billing — Service Configuration
Centralises all environment-driven settings with sensible defaults.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """All config sourced from environment / .env file."""

    # ── Database ─────────────────────────────────────────────────────────
    DB_HOST: str = "postgres"
    DB_PORT: int = 5432
    DB_NAME: str = "ooh"
    DB_USER: str = "ooh_billing"
    DB_PASSWORD: str = "changeme"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DATABASE_URL: Optional[str] = None  # overrides the parts above when set

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    # ── Company / tax ────────────────────────────────────────────────────
    COMPANY_ID: str = "default"
    COMPANY_STATE_CODE: str = "TS"     # jurisdiction code compared against client's
    DEFAULT_GST_PERCENT: float = 18.0  # used when a campaign carries no rate
    HSN_SAC_CODE: str = "998361"       # advertising services

    # ── Billing ──────────────────────────────────────────────────────────
    PAYMENT_TERMS_DAYS: int = 30

    # ── Invoice numbering ────────────────────────────────────────────────
    INVOICE_PREFIX: str = "INV"
    INVOICE_PREFIX_ZERO_RATED: str = "INV-Z"

    # ── Notifications (Redis pub/sub) ────────────────────────────────────
    REDIS_URL: Optional[str] = None    # None → log-only notifier
    NOTIFY_REDIS_CHANNEL: str = "ooh:billing:notifications"

    # ── Observability ────────────────────────────────────────────────────
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
