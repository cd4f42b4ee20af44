"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup — if a setting has the wrong type, the shop fails fast with a
clear error message.

Usage:
    from letter_shop.config import get_settings
    settings = get_settings()
    print(settings.letter_price)
"""

from __future__ import annotations

import string
from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the letter shop and its payment client."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 18000
    shop_public_url: str = "http://localhost:18000"

    # --- Ledger ---
    # Import string of a callable (account, settings) -> LedgerClient.
    ledger_factory: str = "letter_shop.infrastructure.ledger.memory:create_client"
    ledger_prefix: str = "test.letter-shop."
    ledger_currency_code: str = "XRP"
    ledger_currency_scale: int = Field(default=6, ge=0, le=18)
    ledger_initial_balance: int = 1_000_000

    # --- Accounts ---
    shop_account: str = "shop"
    buyer_account: str = "customer"

    # --- Pricing ---
    letter_price: int = Field(default=10, gt=0)  # ledger base units
    letter_alphabet: str = Field(default=string.ascii_uppercase, min_length=1)

    # --- Escrow lifecycle ---
    escrow_offer_ttl_seconds: int = Field(default=3600, gt=0)
    escrow_sweep_interval_seconds: int = Field(default=60, gt=0)
    escrow_settled_cache_size: int = Field(default=1024, gt=0)

    # --- Buyer ---
    transfer_expiry_seconds: int = Field(default=1000, gt=0)

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def transfer_expiry(self) -> timedelta:
        return timedelta(seconds=self.transfer_expiry_seconds)

    @property
    def escrow_offer_ttl(self) -> timedelta:
        return timedelta(seconds=self.escrow_offer_ttl_seconds)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
