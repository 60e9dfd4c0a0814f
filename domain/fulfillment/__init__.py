"""履约领域：库存账号、等级套餐与履约结果"""
from .entity import FulfillmentResult, StockAccount, StockAccountStatus, TierPackage

__all__ = ["FulfillmentResult", "StockAccount", "StockAccountStatus", "TierPackage"]
