"""
订单仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import OrderConcurrencyConflict
from domain.order.entity import (
    CustomerInfo,
    GatewayRef,
    Order,
    StatusHistoryEntry,
    details_from_dict,
    details_to_dict,
)
from domain.order.repository import OrderRepository
from infrastructure.models.order import OrderModel


logger = get_logger(__name__)


def _history_to_json(entries: List[StatusHistoryEntry]) -> List[dict[str, Any]]:
    return [
        {
            "status": e.status,
            "note": e.note,
            "actor": e.actor,
            "timestamp": e.timestamp.isoformat(),
        }
        for e in entries
    ]


def _history_from_json(raw: Optional[List[dict[str, Any]]]) -> List[StatusHistoryEntry]:
    entries = []
    for item in raw or []:
        ts = item.get("timestamp")
        entries.append(
            StatusHistoryEntry(
                status=item["status"],
                note=item.get("note") or "",
                actor=item.get("actor"),
                timestamp=datetime.fromisoformat(ts) if ts else datetime.now(timezone.utc),
            )
        )
    return entries


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        """将数据库模型转换为领域实体"""
        return Order(
            id=model.id,
            invoice_id=model.invoice_id,
            correlation_id=model.correlation_id,
            service_type=model.service_type,
            service_category=model.service_category,
            service_id=model.service_id,
            service_name=model.service_name,
            account_username=model.account_username,
            account_password=model.account_password,
            customer_notes=model.customer_notes or "",
            details=details_from_dict(model.details),
            quantity=model.quantity,
            unit_price=Decimal(str(model.unit_price)),
            discount_percentage=Decimal(str(model.discount_percentage)),
            discount_amount=Decimal(str(model.discount_amount)),
            payment_fee=Decimal(str(model.payment_fee)),
            payment_status=model.payment_status,
            order_status=model.order_status,
            status_history=_history_from_json(model.status_history),
            gateway_ref=GatewayRef(
                provider=model.gateway_provider,
                session_ref=model.session_ref,
                redirect_url=model.redirect_url,
                provider_reference=model.provider_reference,
                provider_transaction_id=model.provider_transaction_id,
                payment_type=model.payment_type,
            ),
            customer_info=CustomerInfo(
                name=model.customer_name,
                email=model.customer_email,
                phone=model.customer_phone,
                user_id=model.user_id,
            ),
            payment_method_id=model.payment_method_id,
            paid_at=model.paid_at,
            completed_at=model.completed_at,
            expires_at=model.expires_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
            version=model.version,
        )

    @staticmethod
    def _mutable_values(entity: Order) -> dict[str, Any]:
        """Columns written on both insert and update."""
        return {
            "total_amount": entity.total_amount,
            "discount_percentage": entity.discount_percentage,
            "discount_amount": entity.discount_amount,
            "final_amount": entity.final_amount,
            "payment_fee": entity.payment_fee,
            "payment_status": entity.payment_status.value,
            "order_status": entity.order_status.value,
            "status_history": _history_to_json(entity.status_history),
            "gateway_provider": entity.gateway_ref.provider,
            "session_ref": entity.gateway_ref.session_ref,
            "redirect_url": entity.gateway_ref.redirect_url,
            "provider_reference": entity.gateway_ref.provider_reference,
            "provider_transaction_id": entity.gateway_ref.provider_transaction_id,
            "payment_type": entity.gateway_ref.payment_type,
            "paid_at": entity.paid_at,
            "completed_at": entity.completed_at,
            "updated_at": entity.updated_at or datetime.now(timezone.utc),
        }

    def _to_model(self, entity: Order) -> OrderModel:
        """将领域实体转换为数据库模型"""
        now = datetime.now(timezone.utc)
        return OrderModel(
            invoice_id=entity.invoice_id,
            correlation_id=entity.correlation_id,
            service_type=entity.service_type.value,
            service_category=entity.service_category.value if entity.service_category else None,
            service_id=entity.service_id,
            service_name=entity.service_name,
            account_username=entity.account_username,
            account_password=entity.account_password,
            customer_notes=entity.customer_notes,
            details=details_to_dict(entity.details),
            quantity=entity.quantity,
            unit_price=entity.unit_price,
            customer_name=entity.customer_info.name,
            customer_email=entity.customer_info.email,
            customer_phone=entity.customer_info.phone,
            user_id=entity.customer_info.user_id,
            payment_method_id=entity.payment_method_id,
            expires_at=entity.expires_at,
            created_at=entity.created_at or now,
            version=entity.version,
            **self._mutable_values(entity),
        )

    async def create_many(self, orders: List[Order]) -> List[Order]:
        """批量创建订单"""
        db_orders = [self._to_model(o) for o in orders]
        self.session.add_all(db_orders)
        await self.session.flush()
        for db_order in db_orders:
            await self.session.refresh(db_order)
        logger.info(
            "orders_created",
            correlation_id=orders[0].correlation_id if orders else None,
            count=len(db_orders),
        )
        return [self._to_entity(m) for m in db_orders]

    async def _fetch_one(self, *criteria) -> Optional[Order]:
        result = await self.session.execute(
            select(OrderModel).where(*criteria).execution_options(populate_existing=True)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def get_by_id(self, order_id: int) -> Optional[Order]:
        """根据ID获取订单"""
        return await self._fetch_one(OrderModel.id == order_id)

    async def list_by_correlation_id(self, correlation_id: str) -> List[Order]:
        """获取同一支付会话的订单，按发票号升序"""
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.correlation_id == correlation_id)
            .order_by(OrderModel.invoice_id.asc())
            .execution_options(populate_existing=True)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def update(self, order: Order) -> Order:
        """条件更新：仅当版本号未变化时写入"""
        result = await self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order.id, OrderModel.version == order.version)
            .values(version=OrderModel.version + 1, **self._mutable_values(order))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning("order_update_conflict", order_id=order.id, expected_version=order.version)
            raise OrderConcurrencyConflict(order.id, order.version)
        order.version += 1
        logger.info(
            "order_updated",
            order_id=order.id,
            invoice_id=order.invoice_id,
            payment_status=order.payment_status.value,
            order_status=order.order_status.value,
        )
        return order

    async def delete_by_correlation_id(self, correlation_id: str) -> int:
        """删除同一支付会话的所有订单（结账补偿）"""
        result = await self.session.execute(
            delete(OrderModel)
            .where(OrderModel.correlation_id == correlation_id)
            .execution_options(synchronize_session=False)
        )
        logger.info("orders_deleted", correlation_id=correlation_id, count=result.rowcount)
        return result.rowcount
