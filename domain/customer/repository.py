"""
客户仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Optional

from .entity import Customer


class CustomerRepository(ABC):
    """客户仓储抽象接口"""

    @abstractmethod
    async def get_by_id(self, customer_id: int) -> Optional[Customer]:
        """根据ID获取客户"""
        pass

    @abstractmethod
    async def credit_spend(self, customer_id: int, amount: Decimal, correlation_id: str) -> bool:
        """
        原子累加累计消费

        Single conditional update guarded by last_credited_correlation_id.
        Returns False when the row is missing or already credited for this
        correlation id.
        """
        pass

    @abstractmethod
    async def set_reseller_tier(
        self,
        customer_id: int,
        tier: int,
        expiry: datetime,
        package_id: str,
    ) -> bool:
        """设置经销商等级，客户不存在时返回 False"""
        pass
