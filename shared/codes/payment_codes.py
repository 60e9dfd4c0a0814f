"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    RATE_LIMITED = 60004
    UNKNOWN_CORRELATION_ID = 60005

    # Post-settlement side effects (7xxxx)
    FULFILLMENT_FAILED = 70000
    LEDGER_UPDATE_FAILED = 70001


# Fallback for any provider value outside the documented enums
UNKNOWN_STATUS_MAPPING = ("pending", "waiting_payment")

# Provider status -> (payment_status, order_status hint)
PROVIDER_STATUS_TO_INTERNAL: dict[str, dict[str, tuple[str, str]]] = {
    "midtrans": {
        # Per transaction_status; "capture" depends on fraud_status, see MIDTRANS_CAPTURE
        "settlement": ("settlement", "processing"),
        "pending": ("pending", "waiting_payment"),
        "deny": ("cancelled", "cancelled"),
        "cancel": ("cancelled", "cancelled"),
        "expire": ("expired", "cancelled"),
        "failure": ("failed", "cancelled"),
    },
    "duitku": {
        # Per resultCode
        "00": ("settlement", "processing"),
        "01": ("pending", "waiting_payment"),
        "02": ("cancelled", "cancelled"),
        "03": ("failed", "cancelled"),
    },
}

# Card captures settle only once the fraud screen accepts them
MIDTRANS_CAPTURE = {
    "accept": ("settlement", "processing"),
}
