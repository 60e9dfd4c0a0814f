"""
履约相关仓储接口
"""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from .entity import StockAccount, TierPackage


class StockAccountRepository(ABC):
    """库存账号仓储"""

    @abstractmethod
    async def find_smallest_covering(self, price: Decimal) -> Optional[StockAccount]:
        """选出 capacity >= price 的活跃账号中余额最小的一个"""
        pass

    @abstractmethod
    async def get_by_id(self, account_id: int) -> Optional[StockAccount]:
        pass

    @abstractmethod
    async def update_if_active(self, account: StockAccount) -> bool:
        """
        条件更新（status=active 且 version 未变）

        Returns False when another worker changed or deactivated the account
        first. On success the entity's version is bumped.
        """
        pass


class TierPackageRepository(ABC):
    """等级套餐仓储"""

    @abstractmethod
    async def get_by_id(self, package_id: str) -> Optional[TierPackage]:
        pass
