from datetime import datetime
from decimal import Decimal

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from application.dtos.checkout import CheckoutRequest
from application.ports.fulfillment import AccountSnapshot
from application.services.checkout_service import CheckoutService
from application.services.fulfillment_service import FulfillmentService
from application.services.ledger_service import LedgerService
from application.services.reconciliation_service import ReconciliationService
from core.config import StorefrontSettings
from domain.common.exceptions import SignatureInvalid, UnknownCorrelationId
from domain.order.entity import OrderStatus, PaymentStatus
from infrastructure.external.payments.midtrans_client import MidtransClient
from infrastructure.repositories.order_repository import SQLAlchemyOrderRepository

from fakes import (
    SERVER_KEY,
    FakeGateway,
    FakeInspector,
    FakeNotifier,
    FakePurchaser,
    midtrans_notification,
)


ROBUX = {
    "service_type": "robux",
    "service_category": "instant",
    "service_id": "rbx-1000",
    "service_name": "1000 Robux",
    "quantity": 2,
    "unit_price": "50000",
    "account_username": "player1",
}
JOKI = {
    "service_type": "joki",
    "service_id": "joki-bf",
    "service_name": "Joki Blox Fruits",
    "quantity": 1,
    "unit_price": "30000",
    "account_username": "player1",
}
SCHEDULED = {
    "service_type": "robux",
    "service_category": "scheduled_delivery",
    "service_id": "rbx-5d",
    "service_name": "Robux 5 Hari",
    "quantity": 1,
    "unit_price": "45000",
    "account_username": "player1",
    "details": {
        "kind": "scheduled_delivery",
        "gamepass": {"gamepass_id": 7, "name": "VIP", "price": "500", "product_id": 70, "seller_id": 700},
    },
}
TIER = {
    "service_type": "tier_package",
    "service_id": "tier-silver",
    "service_name": "Reseller Silver 3 Bulan",
    "quantity": 1,
    "unit_price": "150000",
    "account_username": "player1",
    "details": {"kind": "tier_package", "package_id": "PKG-T2-3M"},
}


@pytest.fixture
def place_order(uow_factory, fixed_now):
    async def place(items, user_id=None, payment_fee="0") -> str:
        service = CheckoutService(
            uow_factory, FakeGateway(), FakeNotifier(), StorefrontSettings(), clock=lambda: fixed_now
        )
        req = CheckoutRequest.model_validate({
            "items": items,
            "customer": {"name": "Budi", "email": "budi@example.com", "user_id": user_id},
            "payment_fee": payment_fee,
        })
        result = await service.checkout(req)
        return result.correlation_id
    return place


class Harness:
    def __init__(self, uow_factory, payment_settings, fixed_now, purchaser=None, inspector=None, status_body=None):
        self.notifier = FakeNotifier()
        self.purchaser = purchaser or FakePurchaser()
        self.inspector = inspector or FakeInspector()
        self.status_body = status_body or {}
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=self.status_body))
        self.service = ReconciliationService(
            uow_factory=uow_factory,
            gateway_factory=lambda provider: MidtransClient(payment_settings, transport=transport),
            fulfillment=FulfillmentService(uow_factory, self.purchaser, self.inspector, clock=lambda: fixed_now),
            ledger=LedgerService(uow_factory),
            notifier=self.notifier,
        )

    async def notify(self, order_id, **kwargs):
        return await self.service.handle_notification("midtrans", {}, midtrans_notification(SERVER_KEY, order_id, **kwargs))


@pytest.fixture
def harness(uow_factory, payment_settings, fixed_now):
    def build(**kwargs) -> Harness:
        return Harness(uow_factory, payment_settings, fixed_now, **kwargs)
    return build


async def load(uow_factory, correlation_id):
    async with uow_factory(readonly=True) as uow:
        return await uow.order_repository.list_by_correlation_id(correlation_id)


async def load_customer(uow_factory, customer_id):
    async with uow_factory(readonly=True) as uow:
        return await uow.customer_repository.get_by_id(customer_id)


@pytest.mark.asyncio
async def test_settlement_moves_every_order_and_credits_once(place_order, harness, uow_factory, customer):
    cid = await place_order([ROBUX, JOKI], user_id=customer, payment_fee="2500")
    h = harness()

    ack = await h.notify(cid)

    assert ack.processed is True
    assert ack.payment_status == "settlement"
    orders = await load(uow_factory, cid)
    assert all(o.payment_status == PaymentStatus.SETTLEMENT for o in orders)
    assert all(o.order_status == OrderStatus.PROCESSING for o in orders)
    assert all(o.paid_at is not None for o in orders)
    assert all(o.gateway_ref.provider_transaction_id == "tx-1" for o in orders)
    assert all(o.gateway_ref.payment_type == "qris" for o in orders)
    assert h.notifier.confirmations == [cid]

    stored = await load_customer(uow_factory, customer)
    # fee is not part of the ledger amount
    assert stored.lifetime_spend == Decimal("130000")
    assert stored.last_credited_correlation_id == cid


@pytest.mark.asyncio
async def test_duplicate_notification_is_skipped(place_order, harness, uow_factory, customer):
    cid = await place_order([ROBUX, JOKI], user_id=customer)
    h = harness()
    await h.notify(cid)
    before = [len(o.status_history) for o in await load(uow_factory, cid)]

    ack = await h.notify(cid)

    assert ack.processed is False
    assert [len(o.status_history) for o in await load(uow_factory, cid)] == before
    assert h.notifier.confirmations == [cid]
    assert (await load_customer(uow_factory, customer)).lifetime_spend == Decimal("130000")


@pytest.mark.asyncio
async def test_terminal_state_absorbs_later_notifications(place_order, harness, uow_factory, customer):
    cid = await place_order([ROBUX], user_id=customer)
    h = harness()
    await h.notify(cid)

    ack = await h.notify(cid, transaction_status="expire", status_code="407", transaction_id="tx-2")

    assert ack.processed is False
    (order,) = await load(uow_factory, cid)
    assert order.payment_status == PaymentStatus.SETTLEMENT
    assert order.gateway_ref.provider_transaction_id == "tx-1"
    assert (await load_customer(uow_factory, customer)).lifetime_spend == Decimal("100000")


@pytest.mark.asyncio
async def test_pending_then_settlement(place_order, harness, uow_factory):
    cid = await place_order([ROBUX])
    h = harness()

    first = await h.notify(cid, transaction_status="pending", status_code="201")
    assert first.processed is True
    (order,) = await load(uow_factory, cid)
    assert order.payment_status == PaymentStatus.PENDING
    assert order.gateway_ref.provider_transaction_id == "tx-1"

    second = await h.notify(cid)
    assert second.processed is True
    (order,) = await load(uow_factory, cid)
    assert order.payment_status == PaymentStatus.SETTLEMENT


@pytest.mark.asyncio
async def test_card_capture_under_challenge_stays_pending(place_order, harness, uow_factory):
    cid = await place_order([ROBUX])
    await harness().notify(cid, transaction_status="capture", fraud_status="challenge", payment_type="credit_card")
    (order,) = await load(uow_factory, cid)
    assert order.payment_status == PaymentStatus.PENDING
    assert order.order_status == OrderStatus.WAITING_PAYMENT


@pytest.mark.asyncio
async def test_expiry_cancels_orders(place_order, harness, uow_factory):
    cid = await place_order([ROBUX, JOKI])
    h = harness()
    await h.notify(cid, transaction_status="expire", status_code="407")
    orders = await load(uow_factory, cid)
    assert all(o.payment_status == PaymentStatus.EXPIRED for o in orders)
    assert all(o.order_status == OrderStatus.CANCELLED for o in orders)
    assert h.notifier.confirmations == []


@pytest.mark.asyncio
async def test_invalid_signature_changes_nothing(place_order, harness, uow_factory):
    cid = await place_order([ROBUX])
    with pytest.raises(SignatureInvalid):
        await harness().notify(cid, signature="ab" * 64)
    (order,) = await load(uow_factory, cid)
    assert order.payment_status == PaymentStatus.PENDING
    assert len(order.status_history) == 1


@pytest.mark.asyncio
async def test_unknown_correlation_id(harness):
    with pytest.raises(UnknownCorrelationId):
        await harness().notify("MULTI-0-NOPE00")


@pytest.mark.asyncio
async def test_guest_checkout_skips_ledger(place_order, harness, uow_factory, customer):
    cid = await place_order([ROBUX])
    ack = await harness().notify(cid)
    assert ack.payment_status == "settlement"
    assert (await load_customer(uow_factory, customer)).lifetime_spend == Decimal("0")


@pytest.mark.asyncio
async def test_tier_package_activates_reseller_tier(place_order, harness, uow_factory, customer, tier_package):
    cid = await place_order([TIER], user_id=customer)

    await harness().notify(cid)

    (order,) = await load(uow_factory, cid)
    assert order.order_status == OrderStatus.COMPLETED
    assert order.completed_at is not None
    assert "Reseller tier 2" in order.status_history[-1].note
    stored = await load_customer(uow_factory, customer)
    assert stored.reseller_tier == 2
    assert stored.reseller_package_id == tier_package
    assert stored.reseller_expiry.replace(tzinfo=None) == datetime(2024, 4, 30, 10, 0)
    assert stored.lifetime_spend == Decimal("150000")


@pytest.mark.asyncio
async def test_tier_package_for_guest_stays_processing(place_order, harness, uow_factory, tier_package):
    cid = await place_order([TIER])
    await harness().notify(cid)
    (order,) = await load(uow_factory, cid)
    assert order.order_status == OrderStatus.PROCESSING
    assert order.status_history[-1].status == "fulfillment:pending"


@pytest.mark.asyncio
async def test_scheduled_delivery_uses_best_fit_account(place_order, harness, uow_factory, stock_accounts):
    cid = await place_order([SCHEDULED])
    purchaser = FakePurchaser()
    h = harness(purchaser=purchaser)

    await h.notify(cid)

    assert purchaser.calls == [(7, "small-ok")]
    (order,) = await load(uow_factory, cid)
    assert order.order_status == OrderStatus.COMPLETED
    assert "small-ok" in order.status_history[-1].note


@pytest.mark.asyncio
async def test_failed_purchase_leaves_order_processing(place_order, harness, uow_factory, stock_accounts):
    cid = await place_order([SCHEDULED])
    h = harness(purchaser=FakePurchaser(success=False, message="Insufficient Robux"))

    ack = await h.notify(cid)

    assert ack.success is True
    (order,) = await load(uow_factory, cid)
    assert order.payment_status == PaymentStatus.SETTLEMENT
    assert order.order_status == OrderStatus.PROCESSING
    last = order.status_history[-1]
    assert last.status == "fulfillment:pending"
    assert "Insufficient Robux" in last.note


@pytest.mark.asyncio
async def test_invalid_account_is_deactivated(place_order, harness, uow_factory, stock_accounts):
    cid = await place_order([SCHEDULED])
    inspector = FakeInspector({"small-ok": AccountSnapshot(valid=False, capacity=Decimal("0"), message="expired")})
    purchaser = FakePurchaser()

    await harness(purchaser=purchaser, inspector=inspector).notify(cid)

    assert purchaser.calls == []
    (order,) = await load(uow_factory, cid)
    assert order.order_status == OrderStatus.PROCESSING
    async with uow_factory(readonly=True) as uow:
        account = await uow.stock_account_repository.get_by_id(stock_accounts["small-ok"])
    assert not account.is_active


@pytest.mark.asyncio
async def test_check_status_reconciles_like_a_webhook(place_order, harness, uow_factory):
    cid = await place_order([ROBUX])
    h = harness(status_body={
        "order_id": cid,
        "transaction_status": "settlement",
        "transaction_id": "tx-9",
        "payment_type": "bank_transfer",
        "gross_amount": "100000.00",
    })

    result = await h.service.check_status(cid)

    assert result.updated is True
    assert result.provider_status == "settlement"
    assert result.payment_status == "settlement"
    (order,) = await load(uow_factory, cid)
    assert order.gateway_ref.provider_transaction_id == "tx-9"
    assert order.status_history[-1].actor == "status_check"


@pytest.mark.asyncio
async def test_check_status_unknown_correlation_id(harness):
    with pytest.raises(UnknownCorrelationId):
        await harness().service.check_status("MULTI-0-NOPE00")


@pytest.fixture
def stale_reads(monkeypatch):
    """Counts of upcoming reads that return the first order with an outdated version."""
    stale = {"list": 0, "get": 0}
    list_orders = SQLAlchemyOrderRepository.list_by_correlation_id
    get_order = SQLAlchemyOrderRepository.get_by_id

    async def list_by_correlation_id(self, correlation_id):
        orders = await list_orders(self, correlation_id)
        if stale["list"] and orders:
            stale["list"] -= 1
            orders[0].version -= 1
        return orders

    async def get_by_id(self, order_id):
        order = await get_order(self, order_id)
        if stale["get"] and order is not None:
            stale["get"] -= 1
            order.version -= 1
        return order

    monkeypatch.setattr(SQLAlchemyOrderRepository, "list_by_correlation_id", list_by_correlation_id)
    monkeypatch.setattr(SQLAlchemyOrderRepository, "get_by_id", get_by_id)
    return stale


@pytest.mark.asyncio
async def test_version_conflict_is_reloaded_and_reapplied(
    place_order, harness, uow_factory, customer, stale_reads
):
    cid = await place_order([ROBUX, JOKI], user_id=customer)
    stale_reads["list"] = 1

    ack = await harness().notify(cid)

    assert ack.processed is True
    orders = await load(uow_factory, cid)
    assert all(o.payment_status == PaymentStatus.SETTLEMENT for o in orders)
    assert all(o.order_status == OrderStatus.PROCESSING for o in orders)
    stored = await load_customer(uow_factory, customer)
    assert stored.lifetime_spend == Decimal("130000")


@pytest.mark.asyncio
async def test_second_conflict_leaves_order_for_redelivery(
    place_order, harness, uow_factory, customer, stale_reads
):
    cid = await place_order([ROBUX, JOKI], user_id=customer)
    before = await load(uow_factory, cid)
    stale_reads["list"] = 1
    stale_reads["get"] = 1
    h = harness()

    ack = await h.notify(cid)

    assert ack.success is True
    first, second = await load(uow_factory, cid)
    assert first.payment_status == PaymentStatus.PENDING
    assert first.version == before[0].version
    assert first.gateway_ref.provider_transaction_id is None
    assert second.payment_status == PaymentStatus.SETTLEMENT
    # the ledger is tied to the first order, which did not settle yet
    assert (await load_customer(uow_factory, customer)).lifetime_spend == Decimal("0")

    # the provider retries the notification; the group converges and credits once
    await h.notify(cid)
    await h.notify(cid)

    orders = await load(uow_factory, cid)
    assert all(o.payment_status == PaymentStatus.SETTLEMENT for o in orders)
    assert (await load_customer(uow_factory, customer)).lifetime_spend == Decimal("130000")


class RacingInspector(FakeInspector):
    """Another worker touches the account while its live capacity is being read."""

    async def inspect(self, account) -> AccountSnapshot:
        snapshot = await super().inspect(account)
        account.version -= 1
        return snapshot


@pytest.mark.asyncio
async def test_lost_account_reservation_leaves_pending_note(place_order, harness, uow_factory, stock_accounts):
    cid = await place_order([SCHEDULED])
    purchaser = FakePurchaser()

    ack = await harness(purchaser=purchaser, inspector=RacingInspector()).notify(cid)

    assert ack.success is True
    assert purchaser.calls == []
    (order,) = await load(uow_factory, cid)
    assert order.payment_status == PaymentStatus.SETTLEMENT
    assert order.order_status == OrderStatus.PROCESSING
    last = order.status_history[-1]
    assert last.status == "fulfillment:pending"
    assert "changed by another worker" in last.note


@pytest.mark.asyncio
async def test_fulfillment_write_failure_still_acknowledges(
    place_order, harness, uow_factory, stock_accounts, monkeypatch
):
    cid = await place_order([SCHEDULED])
    update_order = SQLAlchemyOrderRepository.update

    async def update(self, order):
        if order.order_status == OrderStatus.COMPLETED:
            raise OperationalError("UPDATE orders", {}, Exception("database is locked"))
        return await update_order(self, order)

    monkeypatch.setattr(SQLAlchemyOrderRepository, "update", update)
    h = harness()

    ack = await h.notify(cid)

    assert ack.success is True
    assert ack.payment_status == "settlement"
    assert h.notifier.confirmations == [cid]
    (order,) = await load(uow_factory, cid)
    assert order.order_status == OrderStatus.PROCESSING


class OperatorEditingPurchaser(FakePurchaser):
    """An admin edits the order while the purchase is in flight."""

    def __init__(self, uow_factory, correlation_id):
        super().__init__()
        self.uow_factory = uow_factory
        self.correlation_id = correlation_id

    async def purchase(self, gamepass, account):
        async with self.uow_factory() as uow:
            (order,) = await uow.order_repository.list_by_correlation_id(self.correlation_id)
            order.record("note", "buyer contacted", "admin")
            await uow.order_repository.update(order)
        return await super().purchase(gamepass, account)


@pytest.mark.asyncio
async def test_fulfillment_result_survives_concurrent_edit(place_order, harness, uow_factory, stock_accounts):
    cid = await place_order([SCHEDULED])
    purchaser = OperatorEditingPurchaser(uow_factory, cid)

    await harness(purchaser=purchaser).notify(cid)

    (order,) = await load(uow_factory, cid)
    assert order.order_status == OrderStatus.COMPLETED
    statuses = [entry.status for entry in order.status_history]
    assert "note" in statuses
    assert "small-ok" in order.status_history[-1].note
