"""
Payment and fulfillment settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings so gateway adapters and fulfillment
clients can be constructed with an explicit settings object.
"""
from __future__ import annotations

from typing import Optional
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


class WebhookSettings(BaseModel):
    ip_allowlist: list[str] | None = None  # Optional IPs/CIDRs allowed to post webhooks


class MidtransSettings(BaseModel):
    server_key: Optional[str] = None
    client_key: Optional[str] = None
    is_production: bool = False
    snap_sandbox_url: str = "https://app.sandbox.midtrans.com/snap/v1/transactions"
    snap_production_url: str = "https://app.midtrans.com/snap/v1/transactions"
    core_sandbox_url: str = "https://api.sandbox.midtrans.com/v2"
    core_production_url: str = "https://api.midtrans.com/v2"
    expiry_minutes: int = 1440

    @property
    def snap_url(self) -> str:
        return self.snap_production_url if self.is_production else self.snap_sandbox_url

    @property
    def core_url(self) -> str:
        return self.core_production_url if self.is_production else self.core_sandbox_url


class DuitkuSettings(BaseModel):
    merchant_code: Optional[str] = None
    api_key: Optional[str] = None
    is_production: bool = False
    sandbox_url: str = "https://sandbox.duitku.com/webapi/api/merchant"
    production_url: str = "https://passport.duitku.com/webapi/api/merchant"
    expiry_minutes: int = 1440
    default_payment_method: str = "VC"

    @property
    def base_url(self) -> str:
        return self.production_url if self.is_production else self.sandbox_url


class PaymentSettings(BaseSettings):
    default_provider: str = "midtrans"
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)

    midtrans: MidtransSettings = Field(default_factory=MidtransSettings)
    duitku: DuitkuSettings = Field(default_factory=DuitkuSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )


class FulfillmentSettings(BaseSettings):
    """Endpoints of the gamepass purchase automation and account inspector services."""

    automation_url: str = "http://localhost:4000"
    purchase_path: str = "/api/purchase-gamepass"
    inspect_path: str = "/api/check-robux"
    api_key: Optional[str] = None
    timeouts: PaymentTimeouts = Field(
        default_factory=lambda: PaymentTimeouts(connect=5.0, read=120.0, write=10.0, total=150.0)
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="FULFILLMENT__",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
fulfillment_settings = FulfillmentSettings()
