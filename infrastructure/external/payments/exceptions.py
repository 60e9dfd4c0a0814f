"""
Exceptions for payment providers mapped to unified BusinessException variants.

Both variants are GatewayUnavailable so the checkout flow treats them alike;
the code distinguishes a provider rejection from a transport failure.
"""
from __future__ import annotations

from typing import Optional
from domain.common.exceptions import GatewayUnavailable
from shared.codes.payment_codes import PaymentCode


class PaymentProviderError(GatewayUnavailable):
    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        super().__init__(
            message,
            provider=provider,
            provider_code=provider_code,
            details=details,
            code=PaymentCode.PROVIDER_ERROR,
            error_type="PaymentProviderError",
        )


class PaymentRecoverableError(GatewayUnavailable):
    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        super().__init__(
            message,
            provider=provider,
            provider_code=provider_code,
            details=details,
            code=PaymentCode.PROVIDER_RECOVERABLE,
            error_type="PaymentRecoverableError",
        )
