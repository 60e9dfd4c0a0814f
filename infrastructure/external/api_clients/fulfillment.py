"""
Fulfillment automation client

One HTTP service hosts both the gamepass purchase automation and the stock
account inspector. The session credential travels only in request bodies and
is never logged.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

import httpx

from application.ports.fulfillment import AccountSnapshot, PurchaseOutcome
from core.logging_config import get_logger
from core.settings import FulfillmentSettings
from domain.common.exceptions import FulfillmentFailed
from domain.fulfillment.entity import StockAccount
from domain.order.entity import GamepassInfo

from .base import APIError, BaseAPIClient

logger = get_logger(__name__)


class FulfillmentAutomationClient(BaseAPIClient):
    """Implements GamepassPurchaser and StockAccountInspector."""

    def __init__(self, settings: FulfillmentSettings, transport: Optional[httpx.AsyncBaseTransport] = None):
        timeouts = settings.timeouts
        headers = {"X-API-Key": settings.api_key} if settings.api_key else None
        super().__init__(
            base_url=settings.automation_url,
            timeout=httpx.Timeout(
                connect=timeouts.connect, read=timeouts.read, write=timeouts.write, pool=timeouts.total
            ),
            headers=headers,
            transport=transport,
        )
        self.settings = settings

    async def purchase(self, gamepass: GamepassInfo, account: StockAccount) -> PurchaseOutcome:
        """
        购买 gamepass

        Never retried: a timeout after the store accepted the purchase would
        otherwise buy twice. Transport failures raise FulfillmentFailed.
        """
        payload = {
            "robloxCookie": account.credential,
            "productId": gamepass.product_id,
            "price": int(gamepass.price),
            "sellerId": gamepass.seller_id,
        }
        try:
            resp = await self.post(self.settings.purchase_path, payload, retry=False)
        except APIError as exc:
            logger.warning("gamepass_purchase_unreachable", account=account.username, error=exc.message)
            raise FulfillmentFailed(f"Purchase service unavailable: {exc.message}") from exc

        data = resp.data if isinstance(resp.data, dict) else {}
        success = resp.is_success and bool(data.get("success"))
        message = str(data.get("message") or ("purchased" if success else f"HTTP {resp.status_code}"))
        logger.info(
            "gamepass_purchase_result",
            account=account.username,
            gamepass_id=gamepass.gamepass_id,
            success=success,
        )
        purchase_id = data.get("purchaseId") or data.get("purchase_id")
        return PurchaseOutcome(
            success=success,
            message=message,
            purchase_id=str(purchase_id) if purchase_id is not None else None,
        )

    async def inspect(self, account: StockAccount) -> AccountSnapshot:
        """Validate the account session and read its live balance."""
        try:
            resp = await self.post(self.settings.inspect_path, {"robloxCookie": account.credential})
        except APIError as exc:
            raise FulfillmentFailed(f"Account inspector unavailable: {exc.message}") from exc

        data = resp.data if isinstance(resp.data, dict) else {}
        if not (resp.is_success and data.get("success")):
            return AccountSnapshot(
                valid=False,
                capacity=Decimal("0"),
                message=str(data.get("message") or "Cookie invalid / expired"),
            )
        return AccountSnapshot(valid=True, capacity=Decimal(str(data.get("robux") or 0)))
