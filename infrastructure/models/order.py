"""
订单数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Text, JSON, Index
from datetime import datetime, timezone

from .base import Base


class OrderModel(Base):
    """
    订单数据库模型

    所有业务规则都在 domain.order.entity.Order 中；
    version 列用于条件更新（乐观并发控制）
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(String(64), unique=True, index=True, nullable=False, comment="发票号")
    correlation_id = Column(String(64), index=True, nullable=False, comment="支付会话ID（渠道订单号）")

    # 商品信息
    service_type = Column(String(32), nullable=False, comment="robux/gamepass/joki/tier_package")
    service_category = Column(String(32), nullable=True, comment="instant/scheduled_delivery")
    service_id = Column(String(64), nullable=False)
    service_name = Column(String(255), nullable=False)
    account_username = Column(String(100), nullable=False, comment="游戏账号")
    account_password = Column(String(255), nullable=True, comment="joki 服务账号密码")
    customer_notes = Column(Text, nullable=False, default="")
    details = Column(JSON, nullable=True, comment="按 kind 区分的服务数据")

    # 金额信息（使用 Numeric 存储精确金额）
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(precision=15, scale=2), nullable=False)
    total_amount = Column(Numeric(precision=15, scale=2), nullable=False)
    discount_percentage = Column(Numeric(precision=5, scale=2), nullable=False, default=0)
    discount_amount = Column(Numeric(precision=15, scale=2), nullable=False, default=0)
    final_amount = Column(Numeric(precision=15, scale=2), nullable=False)
    payment_fee = Column(Numeric(precision=15, scale=2), nullable=False, default=0)

    # 状态
    payment_status = Column(String(32), nullable=False, default="pending", index=True)
    order_status = Column(String(32), nullable=False, default="waiting_payment", index=True)
    status_history = Column(JSON, nullable=False, default=list)

    # 支付渠道信息
    gateway_provider = Column(String(32), nullable=True)
    session_ref = Column(String(255), nullable=True, comment="Snap token / Duitku reference")
    redirect_url = Column(String(500), nullable=True)
    provider_reference = Column(String(255), nullable=True)
    provider_transaction_id = Column(String(255), nullable=True, index=True)
    payment_type = Column(String(64), nullable=True)
    payment_method_id = Column(String(64), nullable=True)

    # 客户信息
    customer_name = Column(String(255), nullable=False)
    customer_email = Column(String(255), nullable=False)
    customer_phone = Column(String(32), nullable=True)
    user_id = Column(Integer, nullable=True, index=True)

    # 时间戳
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )
    paid_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_orders_correlation_invoice", "correlation_id", "invoice_id"),
    )

    def __repr__(self):
        return (
            f"<OrderModel(id={self.id}, invoice_id='{self.invoice_id}', "
            f"correlation_id='{self.correlation_id}', payment_status='{self.payment_status}')>"
        )
