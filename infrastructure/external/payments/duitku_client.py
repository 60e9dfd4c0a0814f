"""
Duitku adapter: v2 inquiry for payment sessions, transactionStatus for polling.

Signatures are MD5 hex digests keyed with the merchant API key:
- inquiry:        merchantCode + merchantOrderId + paymentAmount + apiKey
- callback:       merchantCode + amount + merchantOrderId + apiKey
- status check:   merchantCode + merchantOrderId + apiKey
Callbacks arrive form-encoded; the adapter also accepts JSON.
"""
from __future__ import annotations

import hashlib
import re
from typing import Any, Optional

import httpx

from application.dtos.payments import (
    CreatePayment,
    PaymentNotification,
    PaymentSession,
    ProviderStatus,
)
from core.settings import PaymentSettings
from infrastructure.external.payments.base import BasePaymentClient, opt_str
from infrastructure.external.payments.exceptions import PaymentProviderError


# Storefront payment method id -> Duitku paymentMethod code
PAYMENT_METHOD_CODES = {
    # Virtual Account
    "bca_va": "BC",
    "mandiri_va": "M2",
    "maybank_va": "VA",
    "bni_va": "I1",
    "cimb_va": "B1",
    "permata_va": "BT",
    "atm_bersama": "A1",
    # E-Wallet
    "ovo": "OV",
    "shopeepay": "SA",
    "linkaja": "LA",
    "dana": "DA",
    # QRIS
    "qris": "SP",
    "qris_shopeepay": "SP",
    "qris_linkaja": "LQ",
    "qris_nobu": "NQ",
    "qris_dana": "DQ",
    # Credit Card
    "credit_card": "VC",
    # Retail
    "indomaret": "IR",
    "alfamart": "AG",
    "pegadaian": "FT",
}

SUCCESS_STATUS_CODE = "00"


def to_duitku_method(payment_method_id: Optional[str], default: str) -> str:
    if not payment_method_id:
        return default
    return PAYMENT_METHOD_CODES.get(payment_method_id.lower(), payment_method_id.upper())


def format_phone_number(phone: Optional[str]) -> str:
    """Normalize to local (0…) or international (62…) digits."""
    if not phone:
        return ""
    cleaned = re.sub(r"\D", "", phone)
    if cleaned.startswith(("62", "0")):
        return cleaned
    if cleaned.startswith("8"):
        return "0" + cleaned
    return cleaned


def _md5(raw: str) -> str:
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


class DuitkuClient(BasePaymentClient):
    provider = "duitku"

    def __init__(self, settings: PaymentSettings, *, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(settings, transport=transport)
        self.cfg = settings.duitku
        if not (self.cfg.merchant_code and self.cfg.api_key):
            raise RuntimeError("DUITKU configuration incomplete: merchant_code and api_key are required")

    def _build_inquiry(self, req: CreatePayment) -> dict[str, Any]:
        amount = self._as_amount(req.gross_amount)
        product_details = ", ".join(item.name for item in req.items)[:255]
        return {
            "merchantCode": self.cfg.merchant_code,
            "paymentAmount": amount,
            "paymentMethod": to_duitku_method(req.payment_method_id, self.cfg.default_payment_method),
            "merchantOrderId": req.correlation_id,
            "productDetails": product_details,
            "additionalParam": "",
            "merchantUserInfo": req.customer.email,
            "customerVaName": req.customer.name,
            "email": req.customer.email,
            "phoneNumber": format_phone_number(req.customer.phone),
            "itemDetails": [
                {
                    "name": item.name,
                    "price": self._as_amount(item.subtotal),
                    "quantity": item.quantity,
                }
                for item in req.items
            ],
            "callbackUrl": req.callback_url,
            "returnUrl": req.return_url,
            "signature": _md5(f"{self.cfg.merchant_code}{req.correlation_id}{amount}{self.cfg.api_key}"),
            "expiryPeriod": req.expiry_minutes or self.cfg.expiry_minutes,
        }

    async def create_payment(self, req: CreatePayment) -> PaymentSession:  # type: ignore[override]
        body = self._build_inquiry(req)
        data = await self._request_json(
            "POST",
            f"{self.cfg.base_url}/v2/inquiry",
            json=body,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )
        if str(data.get("statusCode")) != SUCCESS_STATUS_CODE:
            raise PaymentProviderError(
                f"Duitku inquiry rejected: {data.get('statusMessage') or 'unknown error'}",
                provider=self.provider,
                provider_code=str(data.get("statusCode")),
            )
        self._log(
            "payment_session_created",
            correlation_id=req.correlation_id,
            reference=data.get("reference"),
            payment_method=body["paymentMethod"],
        )
        return PaymentSession(
            provider=self.provider,
            session_ref=data.get("reference"),
            redirect_url=data.get("paymentUrl"),
            provider_reference=data.get("reference"),
            provider_metadata={
                "va_number": data.get("vaNumber"),
                "qr_string": data.get("qrString"),
                "payment_method": body["paymentMethod"],
            },
        )

    def verify_signature(self, payload: dict[str, Any], signature: Optional[str]) -> bool:  # type: ignore[override]
        amount = payload.get("amount")
        order_id = payload.get("merchantOrderId")
        if not (amount and order_id):
            return False
        if payload.get("merchantCode") and payload.get("merchantCode") != self.cfg.merchant_code:
            return False
        expected = _md5(f"{self.cfg.merchant_code}{amount}{order_id}{self.cfg.api_key}")
        return self._digest_matches(expected, signature)

    def parse_notification(self, headers: dict[str, Any], body: bytes) -> PaymentNotification:  # type: ignore[override]
        data = self._load_body(body)
        return PaymentNotification(
            provider=self.provider,
            order_id=str(data.get("merchantOrderId") or ""),
            provider_status=str(data.get("resultCode") or ""),
            status_code=opt_str(data.get("resultCode")),
            gross_amount=opt_str(data.get("amount")),
            signature=opt_str(data.get("signature")),
            payment_type=opt_str(data.get("paymentCode")),
            # Duitku's reference is its unique transaction id
            provider_transaction_id=opt_str(data.get("reference")),
            provider_reference=opt_str(data.get("reference")),
            raw=data,
        )

    async def get_status(self, correlation_id: str) -> ProviderStatus:  # type: ignore[override]
        body = {
            "merchantCode": self.cfg.merchant_code,
            "merchantOrderId": correlation_id,
            "signature": _md5(f"{self.cfg.merchant_code}{correlation_id}{self.cfg.api_key}"),
        }
        data = await self._request_json(
            "POST",
            f"{self.cfg.base_url}/transactionStatus",
            json=body,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )
        return ProviderStatus(
            provider=self.provider,
            order_id=str(data.get("merchantOrderId") or correlation_id),
            provider_status=str(data.get("statusCode") or ""),
            provider_transaction_id=opt_str(data.get("reference")),
            provider_reference=opt_str(data.get("reference")),
            gross_amount=opt_str(data.get("amount")),
            raw=data,
        )
