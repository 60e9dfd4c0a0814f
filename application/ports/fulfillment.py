"""
Ports for the external fulfillment collaborators.

The purchase automation drives a headless browser against the game store and
the inspector validates stock-account sessions; both live outside this
service and are reached over HTTP.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol, runtime_checkable

from domain.fulfillment.entity import StockAccount
from domain.order.entity import GamepassInfo


@dataclass
class PurchaseOutcome:
    success: bool
    message: str = ""
    purchase_id: Optional[str] = None


@dataclass
class AccountSnapshot:
    """Live reading of a stock account."""
    valid: bool
    capacity: Decimal
    message: str = ""


@runtime_checkable
class GamepassPurchaser(Protocol):
    async def purchase(self, gamepass: GamepassInfo, account: StockAccount) -> PurchaseOutcome: ...


@runtime_checkable
class StockAccountInspector(Protocol):
    async def inspect(self, account: StockAccount) -> AccountSnapshot: ...
