"""
订单领域实体 - 订单聚合根

One Order per cart line item. Orders created by the same checkout share a
correlation id, which is also the payment gateway's order reference.

业务规则：
1. total_amount 总是由 quantity × unit_price 重新计算
2. final_amount = total_amount - discount_amount，且不能小于0
3. 订单状态只能沿状态图流转；cancelled 可从任意非终态到达
4. 支付终态（settlement/expired/cancelled/failed）不可再变更
5. status_history 只追加不修改
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union

from domain.common.exceptions import DomainValidationException


class PaymentStatus(str, Enum):
    """支付状态（与支付渠道保持一致）"""
    PENDING = "pending"
    SETTLEMENT = "settlement"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    FAILED = "failed"


class OrderStatus(str, Enum):
    """订单/履约状态"""
    WAITING_PAYMENT = "waiting_payment"
    PROCESSING = "processing"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ServiceType(str, Enum):
    ROBUX = "robux"
    GAMEPASS = "gamepass"
    JOKI = "joki"
    TIER_PACKAGE = "tier_package"


class ServiceCategory(str, Enum):
    INSTANT = "instant"
    SCHEDULED_DELIVERY = "scheduled_delivery"


TERMINAL_PAYMENT_STATUSES = frozenset({
    PaymentStatus.SETTLEMENT,
    PaymentStatus.EXPIRED,
    PaymentStatus.CANCELLED,
    PaymentStatus.FAILED,
})

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.WAITING_PAYMENT: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.IN_PROGRESS, OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.IN_PROGRESS: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Service payloads (tagged by `kind`)
# ---------------------------------------------------------------------------


@dataclass
class GamepassInfo:
    gamepass_id: int
    name: str
    price: Decimal
    product_id: int
    seller_id: int

    def __post_init__(self):
        self.price = Decimal(str(self.price))


@dataclass
class JokiDetails:
    description: Optional[str] = None
    game_type: Optional[str] = None
    target_level: Optional[str] = None
    estimated_time: Optional[str] = None
    notes: Optional[str] = None
    kind: str = "joki"


@dataclass
class InstantDetails:
    notes: Optional[str] = None
    kind: str = "instant"


@dataclass
class ScheduledDeliveryDetails:
    gamepass: GamepassInfo
    kind: str = "scheduled_delivery"


@dataclass
class GamepassDetails:
    game_name: Optional[str] = None
    item_name: Optional[str] = None
    kind: str = "gamepass"


@dataclass
class TierPackageDetails:
    package_id: str
    kind: str = "tier_package"


ServiceDetails = Union[JokiDetails, InstantDetails, ScheduledDeliveryDetails, GamepassDetails, TierPackageDetails]


def expected_details_kind(service_type: ServiceType, service_category: Optional[ServiceCategory]) -> Optional[str]:
    """Which payload variant an item of this type/category carries (None: no payload)."""
    if service_type == ServiceType.ROBUX:
        return service_category.value if service_category else None
    return service_type.value


def details_to_dict(details: Optional[ServiceDetails]) -> Optional[dict[str, Any]]:
    if details is None:
        return None
    data = asdict(details)
    gamepass = data.get("gamepass")
    if gamepass is not None:
        gamepass["price"] = str(gamepass["price"])
    return data


def details_from_dict(data: Optional[dict[str, Any]]) -> Optional[ServiceDetails]:
    if not data:
        return None
    payload = dict(data)
    kind = payload.get("kind")
    if kind == "scheduled_delivery":
        payload["gamepass"] = GamepassInfo(**payload["gamepass"])
        return ScheduledDeliveryDetails(**payload)
    variants = {
        "joki": JokiDetails,
        "instant": InstantDetails,
        "gamepass": GamepassDetails,
        "tier_package": TierPackageDetails,
    }
    cls = variants.get(kind)
    if cls is None:
        raise DomainValidationException(f"Unknown service details kind: {kind}", field="details")
    return cls(**payload)


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass
class CustomerInfo:
    name: str
    email: str
    phone: Optional[str] = None
    user_id: Optional[int] = None


@dataclass
class StatusHistoryEntry:
    status: str
    note: str = ""
    actor: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class GatewayRef:
    """Provider-specific references written after the payment session exists."""
    provider: Optional[str] = None
    session_ref: Optional[str] = None
    redirect_url: Optional[str] = None
    provider_reference: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    payment_type: Optional[str] = None


# ---------------------------------------------------------------------------
# Aggregate root
# ---------------------------------------------------------------------------


@dataclass
class Order:
    id: Optional[int]
    invoice_id: str
    correlation_id: str
    service_type: ServiceType
    service_id: str
    service_name: str
    account_username: str
    quantity: int
    unit_price: Decimal
    customer_info: CustomerInfo
    service_category: Optional[ServiceCategory] = None
    details: Optional[ServiceDetails] = None

    # 金额
    total_amount: Decimal = field(default_factory=lambda: Decimal("0"))
    discount_percentage: Decimal = field(default_factory=lambda: Decimal("0"))
    discount_amount: Decimal = field(default_factory=lambda: Decimal("0"))
    final_amount: Decimal = field(default_factory=lambda: Decimal("0"))
    payment_fee: Decimal = field(default_factory=lambda: Decimal("0"))

    # 状态
    payment_status: PaymentStatus = PaymentStatus.PENDING
    order_status: OrderStatus = OrderStatus.WAITING_PAYMENT
    status_history: list[StatusHistoryEntry] = field(default_factory=list)
    gateway_ref: GatewayRef = field(default_factory=GatewayRef)

    account_password: Optional[str] = None
    customer_notes: str = ""
    payment_method_id: Optional[str] = None

    # 时间戳
    paid_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    version: int = 0

    def __post_init__(self):
        self.service_type = ServiceType(self.service_type)
        if self.service_category is not None:
            self.service_category = ServiceCategory(self.service_category)
        self.payment_status = PaymentStatus(self.payment_status)
        self.order_status = OrderStatus(self.order_status)
        self.unit_price = Decimal(str(self.unit_price))
        self.discount_amount = Decimal(str(self.discount_amount))
        self.discount_percentage = Decimal(str(self.discount_percentage))
        self.payment_fee = Decimal(str(self.payment_fee))
        if self.quantity < 1:
            raise DomainValidationException(f"Quantity must be at least 1: {self.quantity}", field="quantity")
        if self.unit_price < 0:
            raise DomainValidationException(f"Unit price must not be negative: {self.unit_price}", field="unit_price")
        self.recompute_amounts()
        self.paid_at = _ensure_utc(self.paid_at)
        self.completed_at = _ensure_utc(self.completed_at)
        self.expires_at = _ensure_utc(self.expires_at)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    def recompute_amounts(self) -> None:
        """业务规则：总额由数量×单价得出，最终金额不可为负"""
        self.total_amount = self.unit_price * self.quantity
        if self.discount_amount < 0:
            raise DomainValidationException(
                f"Discount must not be negative: {self.discount_amount}", field="discount_amount"
            )
        self.final_amount = self.total_amount - self.discount_amount
        if self.final_amount < 0:
            raise DomainValidationException(
                f"Discount {self.discount_amount} exceeds item total {self.total_amount}",
                field="discount_amount",
            )

    @property
    def is_scheduled_delivery(self) -> bool:
        return self.service_category == ServiceCategory.SCHEDULED_DELIVERY

    @property
    def is_tier_package(self) -> bool:
        return self.service_type == ServiceType.TIER_PACKAGE

    @property
    def gamepass(self) -> Optional[GamepassInfo]:
        if isinstance(self.details, ScheduledDeliveryDetails):
            return self.details.gamepass
        return None

    def is_payment_final(self) -> bool:
        return self.payment_status in TERMINAL_PAYMENT_STATUSES

    def has_transaction(self, provider_transaction_id: Optional[str]) -> bool:
        return bool(provider_transaction_id) and self.gateway_ref.provider_transaction_id == provider_transaction_id

    def can_transition_to(self, new_status: OrderStatus) -> bool:
        return OrderStatus(new_status) in ORDER_TRANSITIONS[self.order_status]

    def record(self, status: str, note: str = "", actor: Optional[str] = None) -> None:
        self.status_history.append(StatusHistoryEntry(status=status, note=note or "", actor=actor))
        self.updated_at = _utcnow()

    def apply_payment_status(self, new_status: PaymentStatus, note: str = "", actor: Optional[str] = None) -> bool:
        """
        应用支付状态

        Returns False without touching the order when the status is unchanged or
        the current status is terminal (terminal states absorb).
        """
        new_status = PaymentStatus(new_status)
        if new_status == self.payment_status or self.is_payment_final():
            return False
        self.payment_status = new_status
        if new_status == PaymentStatus.SETTLEMENT:
            self.paid_at = _utcnow()
        self.record(f"payment:{new_status.value}", note, actor)
        return True

    def transition_order(self, new_status: OrderStatus, note: str = "", actor: Optional[str] = None) -> bool:
        """Move along the order graph; illegal transitions are refused, never forced."""
        new_status = OrderStatus(new_status)
        if new_status == self.order_status or not self.can_transition_to(new_status):
            return False
        self.order_status = new_status
        if new_status == OrderStatus.COMPLETED:
            self.completed_at = _utcnow()
        self.record(f"order:{new_status.value}", note, actor)
        return True

    def note_fulfillment_pending(self, note: str) -> None:
        """Keep the order in its retryable state and leave a note for operators."""
        self.record("fulfillment:pending", note)
