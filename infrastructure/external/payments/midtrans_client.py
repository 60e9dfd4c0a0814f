"""
Midtrans adapter: Snap for payment sessions, Core API v2 for status polling.

Notification signature: SHA-512 over order_id + status_code + gross_amount +
server_key, sent as ``signature_key`` in the JSON body.
"""
from __future__ import annotations

import base64
import hashlib
from typing import Any, Optional

import httpx

from application.dtos.payments import (
    CreatePayment,
    PaymentNotification,
    PaymentSession,
    ProviderStatus,
)
from core.settings import PaymentSettings
from domain.order.entity import OrderStatus, PaymentStatus
from infrastructure.external.payments.base import BasePaymentClient, opt_str
from infrastructure.external.payments.exceptions import PaymentProviderError
from shared.codes.payment_codes import MIDTRANS_CAPTURE, UNKNOWN_STATUS_MAPPING


# Snap shows every channel unless the buyer already picked one
DEFAULT_ENABLED_PAYMENTS = [
    "credit_card",
    "bca_va",
    "bni_va",
    "bri_va",
    "echannel",
    "permata_va",
    "other_va",
    "gopay",
    "qris",
    "shopeepay",
    "indomaret",
    "alfamart",
]

PAYMENT_METHOD_ALIASES = {
    "mandiri_va": "echannel",
    "mandiri_bill": "echannel",
}

# Midtrans rejects item names longer than this
ITEM_NAME_MAX = 50


def enabled_payments_for(payment_method_id: Optional[str]) -> list[str]:
    if not payment_method_id:
        return list(DEFAULT_ENABLED_PAYMENTS)
    code = payment_method_id.lower()
    code = PAYMENT_METHOD_ALIASES.get(code, code)
    if code in DEFAULT_ENABLED_PAYMENTS:
        return [code]
    return list(DEFAULT_ENABLED_PAYMENTS)


class MidtransClient(BasePaymentClient):
    provider = "midtrans"

    def __init__(self, settings: PaymentSettings, *, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(settings, transport=transport)
        self.cfg = settings.midtrans
        if not self.cfg.server_key:
            raise RuntimeError("MIDTRANS configuration incomplete: server_key is required")

    def _auth_headers(self) -> dict[str, str]:
        token = base64.b64encode(f"{self.cfg.server_key}:".encode("utf-8")).decode("ascii")
        return {
            "Authorization": f"Basic {token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _build_snap_request(self, req: CreatePayment) -> dict[str, Any]:
        items = [
            {
                "id": item.id,
                "price": self._as_amount(item.price),
                "quantity": item.quantity,
                "name": item.name[:ITEM_NAME_MAX],
                "brand": item.brand,
                "category": item.category,
            }
            for item in req.items
        ]
        body: dict[str, Any] = {
            "transaction_details": {
                "order_id": req.correlation_id,
                "gross_amount": self._as_amount(req.gross_amount),
            },
            "item_details": items,
            "customer_details": {
                "first_name": req.customer.name,
                "email": req.customer.email,
                "phone": req.customer.phone or "",
            },
            "enabled_payments": enabled_payments_for(req.payment_method_id),
            "expiry": {
                "unit": "minutes",
                "duration": req.expiry_minutes or self.cfg.expiry_minutes,
            },
        }
        if req.return_url:
            body["callbacks"] = {
                "finish": req.return_url,
                "error": req.return_url,
                "pending": req.return_url,
            }
        return body

    async def create_payment(self, req: CreatePayment) -> PaymentSession:  # type: ignore[override]
        body = self._build_snap_request(req)
        data = await self._request_json("POST", self.cfg.snap_url, json=body, headers=self._auth_headers())
        token = data.get("token")
        if not token:
            messages = data.get("error_messages") or []
            raise PaymentProviderError(
                "Midtrans did not return a Snap token: " + ", ".join(map(str, messages)),
                provider=self.provider,
            )
        self._log("payment_session_created", correlation_id=req.correlation_id, items=len(req.items))
        return PaymentSession(
            provider=self.provider,
            session_ref=token,
            redirect_url=data.get("redirect_url"),
            provider_reference=None,
            provider_metadata={"enabled_payments": body["enabled_payments"]},
        )

    def map_provider_status(
        self, provider_status: str, payment_method_hint: Optional[str] = None
    ) -> tuple[PaymentStatus, OrderStatus]:
        """``payment_method_hint`` carries fraud_status for card captures."""
        status = str(provider_status or "").lower()
        if status == "capture":
            payment, order = MIDTRANS_CAPTURE.get(str(payment_method_hint or "").lower(), UNKNOWN_STATUS_MAPPING)
            return PaymentStatus(payment), OrderStatus(order)
        return super().map_provider_status(status, payment_method_hint)

    def expected_signature(self, order_id: str, status_code: str, gross_amount: str) -> str:
        raw = f"{order_id}{status_code}{gross_amount}{self.cfg.server_key}"
        return hashlib.sha512(raw.encode("utf-8")).hexdigest()

    def verify_signature(self, payload: dict[str, Any], signature: Optional[str]) -> bool:  # type: ignore[override]
        order_id = payload.get("order_id")
        status_code = payload.get("status_code")
        gross_amount = payload.get("gross_amount")
        if not (order_id and status_code and gross_amount is not None):
            return False
        expected = self.expected_signature(str(order_id), str(status_code), str(gross_amount))
        return self._digest_matches(expected, signature)

    def parse_notification(self, headers: dict[str, Any], body: bytes) -> PaymentNotification:  # type: ignore[override]
        data = self._load_body(body)
        return PaymentNotification(
            provider=self.provider,
            order_id=str(data.get("order_id") or ""),
            provider_status=str(data.get("transaction_status") or ""),
            status_code=opt_str(data.get("status_code")),
            gross_amount=opt_str(data.get("gross_amount")),
            signature=opt_str(data.get("signature_key")),
            payment_type=opt_str(data.get("payment_type")),
            provider_transaction_id=opt_str(data.get("transaction_id")),
            fraud_status=opt_str(data.get("fraud_status")),
            raw=data,
        )

    async def get_status(self, correlation_id: str) -> ProviderStatus:  # type: ignore[override]
        url = f"{self.cfg.core_url}/{correlation_id}/status"
        data = await self._request_json("GET", url, headers=self._auth_headers())
        return ProviderStatus(
            provider=self.provider,
            order_id=str(data.get("order_id") or correlation_id),
            provider_status=str(data.get("transaction_status") or ""),
            payment_type=opt_str(data.get("payment_type")),
            provider_transaction_id=opt_str(data.get("transaction_id")),
            fraud_status=opt_str(data.get("fraud_status")),
            gross_amount=opt_str(data.get("gross_amount")),
            raw=data,
        )
