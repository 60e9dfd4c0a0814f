"""
数据传输对象（DTO）- 应用层与表现层之间的数据传输
"""
from pydantic import BaseModel, model_serializer, ConfigDict
from typing import Optional
from datetime import datetime, timezone
from decimal import Decimal

from domain.order.entity import Order


class DTOBase(BaseModel):
    """Base DTO: unify datetime serialization to UTC-Z for all subclasses."""

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):  # type: ignore[override]
        data = handler(self)

        def convert(value):
            if isinstance(value, datetime):
                ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
                s = ts.astimezone(timezone.utc).isoformat()
                return s.replace("+00:00", "Z")
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, tuple):
                return tuple(convert(v) for v in value)
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(data)


class StatusHistoryDTO(DTOBase):
    status: str
    note: str
    actor: Optional[str] = None
    timestamp: datetime


class OrderDTO(DTOBase):
    """订单响应DTO（不包含账号密码）"""
    id: int
    invoice_id: str
    correlation_id: str
    service_type: str
    service_category: Optional[str] = None
    service_id: str
    service_name: str
    account_username: str
    quantity: int
    unit_price: Decimal
    total_amount: Decimal
    discount_percentage: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    payment_fee: Decimal
    payment_status: str
    order_status: str
    redirect_url: Optional[str] = None
    provider_reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    status_history: list[StatusHistoryDTO] = []

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_entity(cls, order: Order) -> "OrderDTO":
        return cls(
            id=order.id,
            invoice_id=order.invoice_id,
            correlation_id=order.correlation_id,
            service_type=order.service_type.value,
            service_category=order.service_category.value if order.service_category else None,
            service_id=order.service_id,
            service_name=order.service_name,
            account_username=order.account_username,
            quantity=order.quantity,
            unit_price=order.unit_price,
            total_amount=order.total_amount,
            discount_percentage=order.discount_percentage,
            discount_amount=order.discount_amount,
            final_amount=order.final_amount,
            payment_fee=order.payment_fee,
            payment_status=order.payment_status.value,
            order_status=order.order_status.value,
            redirect_url=order.gateway_ref.redirect_url,
            provider_reference=order.gateway_ref.provider_reference,
            paid_at=order.paid_at,
            completed_at=order.completed_at,
            expires_at=order.expires_at,
            created_at=order.created_at,
            status_history=[
                StatusHistoryDTO(status=h.status, note=h.note, actor=h.actor, timestamp=h.timestamp)
                for h in order.status_history
            ],
        )
