"""
Payment DTOs (Pydantic v2) used at the gateway boundary.

Amounts are Decimal in whole IDR; adapters convert to the provider's wire
type (Midtrans and Duitku both take integers).
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional
from pydantic import BaseModel, Field, field_validator
from pydantic.types import condecimal

from application.dto import DTOBase, OrderDTO


class GatewayLineItem(BaseModel):
    id: str
    name: str
    price: Decimal
    quantity: int = Field(ge=1)
    category: Optional[str] = None
    brand: Optional[str] = None

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity


class PaymentCustomer(BaseModel):
    name: str
    email: str
    phone: Optional[str] = None


class CreatePayment(BaseModel):
    correlation_id: str
    gross_amount: condecimal(ge=0)  # type: ignore[valid-type]
    items: list[GatewayLineItem]
    customer: PaymentCustomer
    payment_method_id: Optional[str] = None
    return_url: Optional[str] = None
    callback_url: Optional[str] = None
    expiry_minutes: Optional[int] = None

    @field_validator("items")
    @classmethod
    def _non_empty(cls, v: list[GatewayLineItem]) -> list[GatewayLineItem]:
        if not v:
            raise ValueError("at least one line item is required")
        return v


class PaymentSession(BaseModel):
    provider: str
    session_ref: Optional[str] = None
    redirect_url: Optional[str] = None
    provider_reference: Optional[str] = None
    provider_metadata: dict[str, Any] = Field(default_factory=dict)


class PaymentNotification(BaseModel):
    """Provider notification normalized to one shape."""
    provider: str
    order_id: str
    provider_status: str
    status_code: Optional[str] = None
    gross_amount: Optional[str] = None
    signature: Optional[str] = None
    payment_type: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    provider_reference: Optional[str] = None
    fraud_status: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class ProviderStatus(BaseModel):
    provider: str
    order_id: str
    provider_status: str
    payment_type: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    provider_reference: Optional[str] = None
    fraud_status: Optional[str] = None
    gross_amount: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class WebhookAck(DTOBase):
    success: bool = True
    processed: bool
    correlation_id: str
    payment_status: Optional[str] = None
    orders: list[OrderDTO] = Field(default_factory=list)


class StatusCheckResult(DTOBase):
    orders: list[OrderDTO]
    provider_status: str
    payment_status: Optional[str] = None
    updated: bool
