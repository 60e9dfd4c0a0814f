"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class CheckoutValidationException(BusinessException):
    """Checkout input rejected; every offending cart item is listed in details."""

    def __init__(self, errors: list[dict]):
        first = errors[0] if errors else {}
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=first.get("message", "Invalid checkout request"),
            error_type="ValidationError",
            details={"errors": errors},
            field=first.get("field"),
        )
        self.errors = errors


class ScheduledDeliveryLimitExceeded(BusinessException):
    def __init__(self, count: int):
        super().__init__(
            code=BusinessCode.CHECKOUT_RULE_VIOLATION,
            message=(
                "Only one scheduled delivery item can be checked out per order because "
                "each one runs its own gamepass automation. Please check out the others separately."
            ),
            error_type="ScheduledDeliveryLimitExceeded",
            details={"count": count},
            field="items",
        )


class OrderConcurrencyConflict(BusinessException):
    """Raised when a version-guarded write lost the race to another writer."""

    def __init__(self, order_id: int, expected_version: int):
        super().__init__(
            code=BusinessCode.ORDER_CONFLICT,
            message=f"Order {order_id} was modified concurrently",
            error_type="OrderConcurrencyConflict",
            details={"order_id": order_id, "expected_version": expected_version},
        )


class GatewayUnavailable(BusinessException):
    """支付渠道不可用（网络、鉴权或渠道错误），调用方可重新发起结账"""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        provider_code: str | None = None,
        details: Optional[dict] = None,
        code: int = PaymentCode.PROVIDER_RECOVERABLE,
        error_type: str = "GatewayUnavailable",
    ):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        super().__init__(
            code=code,
            message=message,
            error_type=error_type,
            details=full_details,
        )
        self.provider = provider


class SignatureInvalid(BusinessException):
    def __init__(self, provider: str, message: str = "Invalid notification signature"):
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="SignatureInvalid",
            details={"provider": provider},
        )


class UnknownCorrelationId(BusinessException):
    def __init__(self, correlation_id: str):
        super().__init__(
            code=PaymentCode.UNKNOWN_CORRELATION_ID,
            message=f"No orders found for {correlation_id}",
            error_type="UnknownCorrelationId",
            details={"correlation_id": correlation_id},
        )


class FulfillmentFailed(BusinessException):
    """履约失败：只在服务内部流转，最终转为订单备注"""

    def __init__(self, message: str, *, order_id: Optional[int] = None, details: Optional[dict] = None):
        super().__init__(
            code=PaymentCode.FULFILLMENT_FAILED,
            message=message,
            error_type="FulfillmentFailed",
            details={"order_id": order_id, **(details or {})},
        )


class LedgerUpdateFailed(BusinessException):
    def __init__(self, customer_id: int, correlation_id: str, reason: str):
        super().__init__(
            code=PaymentCode.LEDGER_UPDATE_FAILED,
            message=f"Ledger update failed: {reason}",
            error_type="LedgerUpdateFailed",
            details={"customer_id": customer_id, "correlation_id": correlation_id},
        )
