from decimal import Decimal

from domain.order.allocation import (
    AllocationLine,
    allocate,
    discount_percentage_of,
    recompute_total,
    resolve_cart_discount,
    round_half_up,
)


def test_round_half_up_not_bankers():
    assert round_half_up(Decimal("2.5")) == Decimal("3")
    assert round_half_up(Decimal("3.5")) == Decimal("4")
    assert round_half_up(Decimal("1249.5"), 1) == Decimal("1250")


def test_recompute_total_ignores_caller_totals():
    assert recompute_total(3, Decimal("15000")) == Decimal("45000")


def test_amount_wins_over_percentage_and_is_capped():
    assert resolve_cart_discount(Decimal("1000"), Decimal("100"), Decimal("50")) == Decimal("100")
    assert resolve_cart_discount(Decimal("1000"), Decimal("5000")) == Decimal("1000")
    assert resolve_cart_discount(Decimal("1000"), None, Decimal("10")) == Decimal("100")
    assert resolve_cart_discount(Decimal("0"), Decimal("100")) == Decimal("0")


def test_allocate_proportionally():
    lines = [
        AllocationLine(quantity=1, unit_price=Decimal("30000")),
        AllocationLine(quantity=2, unit_price=Decimal("35000")),
    ]
    result = allocate(lines, cart_discount_amount=Decimal("10000"))
    assert [a.total_amount for a in result] == [Decimal("30000"), Decimal("70000")]
    assert [a.discount_amount for a in result] == [Decimal("3000"), Decimal("7000")]
    assert [a.final_amount for a in result] == [Decimal("27000"), Decimal("63000")]


def test_allocate_rounding_error_bounded_by_item_count():
    lines = [AllocationLine(quantity=1, unit_price=Decimal("1000")) for _ in range(3)]
    result = allocate(lines, cart_discount_amount=Decimal("100"))
    shares = [a.discount_amount for a in result]
    assert shares == [Decimal("33"), Decimal("33"), Decimal("33")]
    assert abs(sum(shares) - Decimal("100")) <= len(lines) - 1


def test_fractional_discount_amount_is_quantized():
    assert resolve_cart_discount(Decimal("5000"), Decimal("1000.5")) == Decimal("1001")
    result = allocate([AllocationLine(quantity=1, unit_price=Decimal("5000"))], cart_discount_amount=Decimal("1000.5"))
    resolved = resolve_cart_discount(Decimal("5000"), Decimal("1000.5"))
    assert result[0].discount_amount == resolved
    assert result[0].final_amount == Decimal("3999")


def test_allocate_without_discount():
    result = allocate([AllocationLine(quantity=2, unit_price=Decimal("500"))])
    assert result[0].discount_amount == 0
    assert result[0].final_amount == Decimal("1000")


def test_allocate_never_produces_negative_final():
    lines = [
        AllocationLine(quantity=1, unit_price=Decimal("1")),
        AllocationLine(quantity=1, unit_price=Decimal("999")),
    ]
    for allocation in allocate(lines, cart_discount_amount=Decimal("1000")):
        assert allocation.final_amount >= 0


def test_discount_percentage_of():
    assert discount_percentage_of(Decimal("30000"), Decimal("3000")) == Decimal("10")
    assert discount_percentage_of(Decimal("0"), Decimal("10")) == Decimal("0")
