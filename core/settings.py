"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Per-store gateway credentials are NOT configured here; they come from the
store's payment_settings via the credential lookup. This module only holds
platform-wide knobs (timeouts, retry, token cache, client identification).
"""
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 3.0
    read: float = 10.0
    write: float = 10.0
    total: float = 15.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class BkashSettings(BaseModel):
    # Provider states a 1 hour id_token lifetime; used when expires_in is absent
    token_lifetime_seconds: int = 3600
    token_safety_margin_seconds: int = 300
    currency: str = "BDT"
    mode: str = "0011"


class NagadSettings(BaseModel):
    client_ip: str = "127.0.0.1"
    client_type: str = "PC_WEB"
    currency_code: str = "050"  # ISO-4217 numeric for BDT
    default_api_version: str = "v-0.2.0"


class SettlementSettings(BaseModel):
    lock_timeout_seconds: int = 30
    lock_blocking_timeout_seconds: int = 10


class PaymentSettings(BaseSettings):
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    bkash: BkashSettings = Field(default_factory=BkashSettings)
    nagad: NagadSettings = Field(default_factory=NagadSettings)
    settlement: SettlementSettings = Field(default_factory=SettlementSettings)

    model_config = SettingsConfigDict(
        env_prefix="PAYMENT__",
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
