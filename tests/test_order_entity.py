from datetime import datetime, timezone
from decimal import Decimal

import pytest

from domain.common.exceptions import DomainValidationException
from domain.customer.entity import Customer, add_months
from domain.order.entity import (
    CustomerInfo,
    GamepassInfo,
    Order,
    OrderStatus,
    PaymentStatus,
    ScheduledDeliveryDetails,
    TierPackageDetails,
    details_from_dict,
    details_to_dict,
)


def make_order(**overrides) -> Order:
    data = dict(
        id=1,
        invoice_id="INV-1-AAAAAA",
        correlation_id="MULTI-1-ZZZZZZ",
        service_type="robux",
        service_category="instant",
        service_id="rbx-1000",
        service_name="1000 Robux",
        account_username="player1",
        quantity=2,
        unit_price=Decimal("50000"),
        customer_info=CustomerInfo(name="Budi", email="budi@example.com"),
    )
    data.update(overrides)
    return Order(**data)


def test_amounts_recomputed_from_quantity_and_price():
    order = make_order(total_amount=Decimal("1"), discount_amount=Decimal("10000"))
    assert order.total_amount == Decimal("100000")
    assert order.final_amount == Decimal("90000")


def test_discount_larger_than_total_rejected():
    with pytest.raises(DomainValidationException):
        make_order(discount_amount=Decimal("100001"))


def test_quantity_must_be_positive():
    with pytest.raises(DomainValidationException):
        make_order(quantity=0)


def test_payment_terminal_status_absorbs():
    order = make_order()
    assert order.apply_payment_status(PaymentStatus.SETTLEMENT, "paid", "webhook:midtrans")
    assert order.paid_at is not None
    assert not order.apply_payment_status(PaymentStatus.EXPIRED, "late expire")
    assert order.payment_status == PaymentStatus.SETTLEMENT
    assert [h.status for h in order.status_history] == ["payment:settlement"]


def test_same_payment_status_is_noop():
    order = make_order()
    assert not order.apply_payment_status(PaymentStatus.PENDING)
    assert order.status_history == []


def test_order_transitions_follow_graph():
    order = make_order()
    assert not order.transition_order(OrderStatus.COMPLETED)
    assert order.transition_order(OrderStatus.PROCESSING)
    assert order.transition_order(OrderStatus.COMPLETED)
    assert order.completed_at is not None
    assert not order.transition_order(OrderStatus.CANCELLED)
    assert order.order_status == OrderStatus.COMPLETED


def test_cancel_reachable_from_any_non_terminal_state():
    for path in ([], [OrderStatus.PROCESSING], [OrderStatus.PROCESSING, OrderStatus.IN_PROGRESS]):
        order = make_order()
        for status in path:
            order.transition_order(status)
        assert order.transition_order(OrderStatus.CANCELLED)


def test_fulfillment_pending_note_keeps_status():
    order = make_order()
    order.transition_order(OrderStatus.PROCESSING)
    order.note_fulfillment_pending("No stock account available")
    assert order.order_status == OrderStatus.PROCESSING
    assert order.status_history[-1].status == "fulfillment:pending"


def test_details_roundtrip_through_storage_dict():
    details = ScheduledDeliveryDetails(
        gamepass=GamepassInfo(gamepass_id=7, name="VIP", price=Decimal("500"), product_id=70, seller_id=700)
    )
    restored = details_from_dict(details_to_dict(details))
    assert restored == details
    assert details_from_dict({"kind": "tier_package", "package_id": "PKG"}) == TierPackageDetails("PKG")
    with pytest.raises(DomainValidationException):
        details_from_dict({"kind": "mystery"})


def test_add_months_clamps_day():
    assert add_months(datetime(2024, 1, 31), 1) == datetime(2024, 2, 29)
    assert add_months(datetime(2023, 11, 30), 3) == datetime(2024, 2, 29)
    assert add_months(datetime(2024, 5, 15), 12) == datetime(2025, 5, 15)


def test_activate_tier_sets_expiry():
    customer = Customer(id=1, email="budi@example.com")
    now = datetime(2024, 1, 31, 10, 0, tzinfo=timezone.utc)
    expiry = customer.activate_tier(2, 3, "PKG-T2-3M", now=now)
    assert expiry == datetime(2024, 4, 30, 10, 0, tzinfo=timezone.utc)
    assert customer.reseller_tier == 2
    assert customer.reseller_package_id == "PKG-T2-3M"
    with pytest.raises(ValueError):
        customer.activate_tier(4, 1, "PKG")
