"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from application.dtos.payments import (
    CreatePayment,
    PaymentNotification,
    PaymentSession,
    ProviderStatus,
)
from domain.order.entity import OrderStatus, PaymentStatus


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for third-party payment providers.

    Implementations should be async and side-effect free beyond IO.
    ``create_payment`` and ``get_status`` raise GatewayUnavailable on any
    network, auth or provider failure.
    """

    provider: str

    async def create_payment(self, req: CreatePayment) -> PaymentSession: ...

    def map_provider_status(
        self, provider_status: str, payment_method_hint: Optional[str] = None
    ) -> tuple[PaymentStatus, OrderStatus]: ...

    def verify_signature(self, payload: dict[str, Any], signature: Optional[str]) -> bool: ...

    async def get_status(self, correlation_id: str) -> ProviderStatus: ...

    def parse_notification(self, headers: dict[str, Any], body: bytes) -> PaymentNotification: ...

    async def aclose(self) -> None: ...
