"""Invoice / payment notification port (fire-and-forget)."""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class InvoiceNotifier(Protocol):
    """Implementations must not hold the event loop while talking to a broker."""

    async def send_invoice(self, correlation_id: str) -> None:
        """Queue the invoice email for a checkout."""
        ...

    async def send_payment_confirmation(self, correlation_id: str) -> None: ...

    async def enqueue_status_check(self, correlation_id: str, *, countdown: Optional[int] = None) -> None:
        """Schedule a provider status poll, used when a webhook never arrives."""
        ...
