import os
from decimal import Decimal
from enum import StrEnum

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"
    STAGING = "staging"


ENVIRONMENT = os.getenv("RENDER_ENV", Environment.DEVELOPMENT)


class Settings(BaseSettings):
    app_name: str = "PACMAC - ESCROW"
    db_user: str = "postgres"
    db_password: str = "postgres"
    db_name: str = "pacmac"
    db_host: str = "localhost"
    db_port: int = 5432
    testing: str | None = None
    render_env: str = ENVIRONMENT
    log_level: str = "INFO"
    # logs every SQL statement
    db_echo: bool = False

    # payment processor
    stripe_secret_key: str = ""
    currency: str = "usd"
    # Stripe refuses charges under $0.50
    minimum_charge_minor_units: int = 50

    # escrow fee
    escrow_flat_fee: Decimal = Decimal("3.00")
    escrow_percentage_rate: Decimal = Decimal("0.03")

    # handoff verification, 30.48 m is 100 feet
    proximity_radius_meters: float = 30.48
    location_max_age_seconds: int = 120
    location_max_accuracy_meters: float = 100.0

    # auctions
    default_auction_duration_seconds: int = 24 * 60 * 60
    minimum_bid_increment: Decimal = Decimal("0.05")
    auction_reconcile_interval_seconds: int = 30

    # disputes
    dispute_window_days: int = 7
    staff_emails: list[str] = []

    # seller fund hold after completion
    fund_hold_initial_transactions: int = 5
    fund_hold_initial_hours: int = 24
    fund_hold_standard_minutes: int = 15

    model_config = SettingsConfigDict(
        env_file=".env" if ENVIRONMENT != Environment.PRODUCTION else None,
        env_file_encoding="utf-8",
        extra="ignore",
    )


config = Settings()
