"""履约相关数据库模型：库存账号与等级套餐"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Text, Index

from .base import Base


class StockAccountModel(Base):
    __tablename__ = "stock_accounts"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), unique=True, nullable=False)
    credential = Column(Text, nullable=False, comment="会话凭证（禁止写入日志）")
    capacity = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="当前余额")
    status = Column(String(16), nullable=False, default="active")
    last_checked = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_stock_accounts_status_capacity", "status", "capacity"),
    )

    def __repr__(self):
        return f"<StockAccountModel(id={self.id}, username='{self.username}', status='{self.status}')>"


class TierPackageModel(Base):
    __tablename__ = "tier_packages"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    tier = Column(Integer, nullable=False)
    duration_months = Column(Integer, nullable=False)
    discount = Column(Numeric(precision=5, scale=2), nullable=False, default=0)

    def __repr__(self):
        return f"<TierPackageModel(id='{self.id}', tier={self.tier})>"
