"""Infrastructure models package exports."""
from .base import Base, metadata
from .order import OrderModel
from .customer import CustomerModel
from .fulfillment import StockAccountModel, TierPackageModel

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "CustomerModel",
    "StockAccountModel",
    "TierPackageModel",
]
