"""
履约领域实体

StockAccount 是共享资源池中的账号，capacity 为账号当前余额；
credential 为会话凭证，任何时候都不得写入日志。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional


class StockAccountStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


@dataclass
class StockAccount:
    id: Optional[int]
    username: str
    credential: str = field(repr=False)
    capacity: Decimal = Decimal("0")
    status: StockAccountStatus = StockAccountStatus.ACTIVE
    last_checked: Optional[datetime] = None
    version: int = 0

    def __post_init__(self):
        self.capacity = Decimal(str(self.capacity))
        self.status = StockAccountStatus(self.status)

    @property
    def is_active(self) -> bool:
        return self.status == StockAccountStatus.ACTIVE

    def can_cover(self, price: Decimal) -> bool:
        return self.is_active and self.capacity >= price

    def refresh(self, capacity: Decimal, active: bool = True) -> None:
        """Apply a live capacity reading from the account inspector."""
        self.capacity = Decimal(str(capacity))
        self.status = StockAccountStatus.ACTIVE if active else StockAccountStatus.INACTIVE
        self.last_checked = datetime.now(timezone.utc)


@dataclass
class TierPackage:
    id: str
    name: str
    tier: int
    duration_months: int
    discount: Decimal = Decimal("0")

    def __post_init__(self):
        if self.tier not in (1, 2, 3):
            raise ValueError(f"Invalid reseller tier: {self.tier}")
        if self.duration_months < 1:
            raise ValueError(f"Invalid package duration: {self.duration_months}")
        self.discount = Decimal(str(self.discount))


@dataclass
class FulfillmentResult:
    """履约结果：成功时订单进入 completed，失败时仅记录备注"""
    ok: bool
    note: str
    account_username: Optional[str] = None
    completed: bool = False

    @classmethod
    def success(cls, note: str, account_username: Optional[str] = None) -> "FulfillmentResult":
        return cls(ok=True, note=note, account_username=account_username, completed=True)

    @classmethod
    def pending(cls, note: str) -> "FulfillmentResult":
        return cls(ok=False, note=note)
