"""
客户领域实体 - 累计消费账本与经销商等级
"""
from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional


def add_months(moment: datetime, months: int) -> datetime:
    """Calendar month addition; the day is clamped to the target month's length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


@dataclass
class Customer:
    """客户实体"""

    id: Optional[int]
    email: str
    name: Optional[str] = None
    lifetime_spend: Decimal = Decimal("0")
    last_credited_correlation_id: Optional[str] = None
    reseller_tier: Optional[int] = None
    reseller_expiry: Optional[datetime] = None
    reseller_package_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.lifetime_spend = Decimal(str(self.lifetime_spend))

    def already_credited(self, correlation_id: str) -> bool:
        return self.last_credited_correlation_id == correlation_id

    def activate_tier(self, tier: int, duration_months: int, package_id: str,
                      now: Optional[datetime] = None) -> datetime:
        """业务规则：激活经销商等级，到期时间 = 当前时间 + N 个月"""
        if tier not in (1, 2, 3):
            raise ValueError(f"Invalid reseller tier: {tier}")
        if duration_months < 1:
            raise ValueError(f"Invalid package duration: {duration_months}")
        now = now or datetime.now(timezone.utc)
        self.reseller_tier = tier
        self.reseller_expiry = add_months(now, duration_months)
        self.reseller_package_id = package_id
        self.updated_at = now
        return self.reseller_expiry
