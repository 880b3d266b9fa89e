"""Application settings loaded from environment variables."""
from __future__ import annotations

import logging
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SQLITE_PATH = Path("data/affiliate.db")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="AFFILIATE_", env_file=".env", extra="ignore")

    DATABASE_URL: str = f"sqlite:///{DEFAULT_SQLITE_PATH}"
    EXPORT_DIR: Path = Path("downloads/payouts")
    TDS_EXPORT_DIR: Path = Path("downloads/tds")
    LOG_LEVEL: str = "INFO"

    # Payout policy
    TDS_PERCENT: Decimal = Decimal("2")
    CURRENCY: str = "INR"
    DEFAULT_TRANSACTION_TYPE: str = "NEFT"
    EARNINGS_LABEL: str = "Affiliate Marketing"

    # Bank reconciliation
    RECONCILE_TOLERANCE: Decimal = Decimal("0.01")
    RECONCILE_LOOKBACK_DAYS: int = 14

    # Email/SMTP
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_EMAIL: str = ""
    SMTP_FROM_NAME: str = "AffiliateDesk"

    # Scheduled jobs
    PAYOUT_SCHEDULER_ENABLED: bool = False
    PAYOUT_SCHEDULE_DAY: str = "mon"
    PAYOUT_SCHEDULE_HOUR: int = 1
    TIMEZONE: str = "Asia/Kolkata"

    # Month-end TDS statement
    TDS_REPORT_HOUR: int = 23
    TDS_REPORT_MINUTE: int = 59


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str | None = None) -> None:
    """Install a basic root handler; safe to call more than once."""

    logging.basicConfig(
        level=(level or get_settings().LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
