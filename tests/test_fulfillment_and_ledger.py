from decimal import Decimal

import pytest

from application.ports.fulfillment import AccountSnapshot
from application.services.fulfillment_service import FulfillmentService
from application.services.ledger_service import LedgerService
from domain.common.exceptions import LedgerUpdateFailed
from domain.order.entity import (
    CustomerInfo,
    GamepassInfo,
    Order,
    ScheduledDeliveryDetails,
    TierPackageDetails,
)

from fakes import FakeInspector, FakePurchaser


def scheduled_order(price="500", user_id=None) -> Order:
    return Order(
        id=1,
        invoice_id="INV-1-AAAAAA",
        correlation_id="MULTI-1-AAAAAA",
        service_type="robux",
        service_category="scheduled_delivery",
        service_id="rbx-5d",
        service_name="Robux 5 Hari",
        account_username="player1",
        quantity=1,
        unit_price=Decimal("45000"),
        customer_info=CustomerInfo(name="Budi", email="budi@example.com", user_id=user_id),
        details=ScheduledDeliveryDetails(
            gamepass=GamepassInfo(gamepass_id=7, name="VIP", price=Decimal(price), product_id=70, seller_id=700)
        ),
    )


def tier_order(package_id="PKG-T2-3M", user_id=None) -> Order:
    return Order(
        id=2,
        invoice_id="INV-1-BBBBBB",
        correlation_id="MULTI-1-AAAAAA",
        service_type="tier_package",
        service_id="tier-silver",
        service_name="Reseller Silver",
        account_username="player1",
        quantity=1,
        unit_price=Decimal("150000"),
        customer_info=CustomerInfo(name="Budi", email="budi@example.com", user_id=user_id),
        details=TierPackageDetails(package_id=package_id),
    )


@pytest.mark.asyncio
async def test_dispatch_ignores_orders_without_automation(uow_factory):
    order = scheduled_order()
    order.service_category = None
    service = FulfillmentService(uow_factory, FakePurchaser(), FakeInspector())
    assert await service.dispatch(order) is None


@pytest.mark.asyncio
async def test_no_covering_account(uow_factory, stock_accounts):
    purchaser = FakePurchaser()
    service = FulfillmentService(uow_factory, purchaser, FakeInspector())
    result = await service.dispatch(scheduled_order(price="10000"))
    assert not result.ok
    assert "No stock account" in result.note
    assert purchaser.calls == []


@pytest.mark.asyncio
async def test_live_capacity_below_price(uow_factory, stock_accounts):
    inspector = FakeInspector({"small-ok": AccountSnapshot(valid=True, capacity=Decimal("400"))})
    purchaser = FakePurchaser()
    service = FulfillmentService(uow_factory, purchaser, inspector)

    result = await service.dispatch(scheduled_order())

    assert not result.ok
    assert "below price" in result.note
    assert purchaser.calls == []
    async with uow_factory(readonly=True) as uow:
        account = await uow.stock_account_repository.get_by_id(stock_accounts["small-ok"])
    assert account.capacity == Decimal("400")


@pytest.mark.asyncio
async def test_purchase_service_error_becomes_pending_note(uow_factory, stock_accounts):
    service = FulfillmentService(uow_factory, FakePurchaser(raise_error=True), FakeInspector())
    result = await service.dispatch(scheduled_order())
    assert not result.ok
    assert "Purchase service unavailable" in result.note


@pytest.mark.asyncio
async def test_capacity_refreshed_after_purchase(uow_factory, stock_accounts):
    class DrainingInspector(FakeInspector):
        async def inspect(self, account):
            self.calls.append(account.username)
            if len(self.calls) == 1:
                return AccountSnapshot(valid=True, capacity=account.capacity)
            return AccountSnapshot(valid=True, capacity=account.capacity - Decimal("500"))

    inspector = DrainingInspector()
    service = FulfillmentService(uow_factory, FakePurchaser(), inspector)

    result = await service.dispatch(scheduled_order())

    assert result.ok and result.account_username == "small-ok"
    assert inspector.calls == ["small-ok", "small-ok"]
    async with uow_factory(readonly=True) as uow:
        account = await uow.stock_account_repository.get_by_id(stock_accounts["small-ok"])
    assert account.capacity == Decimal("100")
    assert account.version == 2


@pytest.mark.asyncio
async def test_unknown_tier_package(uow_factory, customer):
    service = FulfillmentService(uow_factory, FakePurchaser(), FakeInspector())
    result = await service.dispatch(tier_order(package_id="PKG-NOPE", user_id=customer))
    assert not result.ok
    assert "PKG-NOPE" in result.note


@pytest.mark.asyncio
async def test_ledger_credits_each_correlation_once(uow_factory, customer):
    ledger = LedgerService(uow_factory)

    assert await ledger.credit(customer, Decimal("100000"), "MULTI-1") is True
    assert await ledger.credit(customer, Decimal("100000"), "MULTI-1") is False
    assert await ledger.credit(customer, Decimal("25000"), "MULTI-2") is True
    assert await ledger.credit(customer, Decimal("0"), "MULTI-3") is False
    assert await ledger.credit(999, Decimal("1000"), "MULTI-4") is False

    async with uow_factory(readonly=True) as uow:
        stored = await uow.customer_repository.get_by_id(customer)
    assert stored.lifetime_spend == Decimal("125000")
    assert stored.last_credited_correlation_id == "MULTI-2"


@pytest.mark.asyncio
async def test_ledger_storage_failure_is_wrapped():
    class BrokenUnitOfWork:
        def __init__(self, readonly: bool = False):
            pass

        async def __aenter__(self):
            raise ConnectionError("database is gone")

        async def __aexit__(self, *exc):
            return None

    with pytest.raises(LedgerUpdateFailed):
        await LedgerService(BrokenUnitOfWork).credit(1, Decimal("10"), "MULTI-1")
