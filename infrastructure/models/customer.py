"""客户数据库模型"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime
from datetime import datetime, timezone

from .base import Base


class CustomerModel(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)

    # 账本
    lifetime_spend = Column(Numeric(precision=18, scale=2), nullable=False, default=0, comment="累计消费")
    last_credited_correlation_id = Column(String(64), nullable=True, comment="最近一次入账的支付会话ID")

    # 经销商等级
    reseller_tier = Column(Integer, nullable=True)
    reseller_expiry = Column(DateTime(timezone=True), nullable=True)
    reseller_package_id = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    def __repr__(self):
        return f"<CustomerModel(id={self.id}, email='{self.email}')>"
