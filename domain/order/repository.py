"""
订单仓储接口 - 定义订单数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from typing import Optional, List

from .entity import Order


class OrderRepository(ABC):
    """订单仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create_many(self, orders: List[Order]) -> List[Order]:
        """批量创建订单（同一次结账的所有订单）"""
        pass

    @abstractmethod
    async def get_by_id(self, order_id: int) -> Optional[Order]:
        """根据ID获取订单"""
        pass

    @abstractmethod
    async def list_by_correlation_id(self, correlation_id: str) -> List[Order]:
        """获取同一支付会话下的所有订单，按 invoice_id 升序"""
        pass

    @abstractmethod
    async def update(self, order: Order) -> Order:
        """
        条件更新订单

        The write only lands when the stored version equals ``order.version``;
        otherwise OrderConcurrencyConflict is raised. The returned order carries
        the bumped version.
        """
        pass

    @abstractmethod
    async def delete_by_correlation_id(self, correlation_id: str) -> int:
        """删除同一支付会话下的所有订单（结账补偿），返回删除数量"""
        pass
