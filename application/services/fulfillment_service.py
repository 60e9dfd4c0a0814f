"""
履约调度服务

Runs the post-settlement work for a single order and always answers with a
FulfillmentResult. The caller owns the order write; this service only touches
stock accounts and customers.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from application.ports.fulfillment import GamepassPurchaser, StockAccountInspector
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.fulfillment.entity import FulfillmentResult, StockAccount
from domain.order.entity import Order, TierPackageDetails


logger = get_logger(__name__)


class FulfillmentService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        purchaser: GamepassPurchaser,
        inspector: StockAccountInspector,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._purchaser = purchaser
        self._inspector = inspector
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def dispatch(self, order: Order) -> Optional[FulfillmentResult]:
        """Route a freshly settled order; None when it needs no automated fulfillment."""
        try:
            if order.is_tier_package:
                return await self.activate_tier(order)
            if order.is_scheduled_delivery:
                return await self.deliver_scheduled(order)
            return None
        except BusinessException as exc:
            logger.warning("fulfillment_failed", invoice_id=order.invoice_id, error=exc.message)
            return FulfillmentResult.pending(exc.message)
        except Exception as exc:
            logger.exception("fulfillment_crashed", invoice_id=order.invoice_id)
            return FulfillmentResult.pending(f"Fulfillment error: {exc}")

    async def deliver_scheduled(self, order: Order) -> FulfillmentResult:
        """
        自动购买 gamepass

        1. best-fit 选择库存账号（余额 >= 价格的最小者）
        2. 通过 inspector 刷新实时余额
        3. 条件更新预留账号，随后调用购买自动化
        4. 购买成功后再次刷新账号余额
        """
        gamepass = order.gamepass
        if gamepass is None:
            return FulfillmentResult.pending("Scheduled delivery order has no gamepass data")
        price = gamepass.price

        async with self._uow_factory() as uow:
            account = await uow.stock_account_repository.find_smallest_covering(price)
            if account is None:
                logger.warning("stock_account_unavailable", invoice_id=order.invoice_id, price=str(price))
                return FulfillmentResult.pending(f"No stock account with at least {price} available")

            snapshot = await self._inspector.inspect(account)
            if not snapshot.valid:
                account.refresh(snapshot.capacity, active=False)
                await uow.stock_account_repository.update_if_active(account)
                logger.warning("stock_account_invalid", account=account.username, message=snapshot.message)
                return FulfillmentResult.pending(
                    f"Stock account {account.username} is no longer valid: {snapshot.message}"
                )

            account.refresh(snapshot.capacity)
            reserved = await uow.stock_account_repository.update_if_active(account)
            if not account.can_cover(price):
                return FulfillmentResult.pending(
                    f"Stock account {account.username} capacity {account.capacity} is below price {price}"
                )
            if not reserved:
                return FulfillmentResult.pending(
                    f"Stock account {account.username} was changed by another worker"
                )

        outcome = await self._purchaser.purchase(gamepass, account)
        if not outcome.success:
            logger.warning(
                "gamepass_purchase_rejected",
                invoice_id=order.invoice_id,
                account=account.username,
                message=outcome.message,
            )
            return FulfillmentResult.pending(f"Gamepass purchase failed: {outcome.message}")

        await self._refresh_after_purchase(account, price)
        logger.info(
            "scheduled_delivery_completed",
            invoice_id=order.invoice_id,
            account=account.username,
            gamepass_id=gamepass.gamepass_id,
        )
        return FulfillmentResult.success(
            f"Gamepass '{gamepass.name}' purchased with stock account {account.username}",
            account_username=account.username,
        )

    async def _refresh_after_purchase(self, account: StockAccount, price: Decimal) -> None:
        try:
            snapshot = await self._inspector.inspect(account)
            capacity = snapshot.capacity if snapshot.valid else account.capacity - price
        except BusinessException:
            capacity = account.capacity - price
        account.refresh(max(capacity, Decimal("0")))
        async with self._uow_factory() as uow:
            if not await uow.stock_account_repository.update_if_active(account):
                logger.info("stock_account_refresh_skipped", account=account.username)

    async def activate_tier(self, order: Order) -> FulfillmentResult:
        """激活经销商等级"""
        details = order.details
        if not isinstance(details, TierPackageDetails):
            return FulfillmentResult.pending("Tier package order has no package id")
        customer_id = order.customer_info.user_id
        if customer_id is None:
            return FulfillmentResult.pending("Tier package order is not linked to a customer account")

        async with self._uow_factory() as uow:
            package = await uow.tier_package_repository.get_by_id(details.package_id)
            if package is None:
                return FulfillmentResult.pending(f"Tier package {details.package_id} not found")
            customer = await uow.customer_repository.get_by_id(customer_id)
            if customer is None:
                return FulfillmentResult.pending(f"Customer {customer_id} not found")

            expiry = customer.activate_tier(package.tier, package.duration_months, package.id, now=self._clock())
            if not await uow.customer_repository.set_reseller_tier(customer_id, package.tier, expiry, package.id):
                return FulfillmentResult.pending(f"Customer {customer_id} not found")

        logger.info(
            "reseller_tier_activated",
            invoice_id=order.invoice_id,
            customer_id=customer_id,
            tier=package.tier,
            expiry=expiry.isoformat(),
        )
        return FulfillmentResult.success(
            f"Reseller tier {package.tier} ({package.name}) active until {expiry:%Y-%m-%d}"
        )
