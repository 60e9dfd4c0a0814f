"""
金额分摊 - 将整单折扣按比例分摊到每个订单项

Pure functions, no I/O. Rounding is half-up at the configured quantum
(1 = whole minor units, which is what IDR gateways accept).
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Sequence

ZERO = Decimal("0")


@dataclass(frozen=True)
class AllocationLine:
    """A single cart line as seen by the allocator."""
    quantity: int
    unit_price: Decimal


@dataclass(frozen=True)
class Allocation:
    total_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal


def round_half_up(value: Decimal, quantum: Decimal | int = 1) -> Decimal:
    """四舍五入到指定精度（不使用银行家舍入）"""
    q = Decimal(str(quantum))
    return (Decimal(value) / q).quantize(Decimal("1"), rounding=ROUND_HALF_UP) * q


def recompute_total(quantity: int, unit_price: Decimal) -> Decimal:
    """Item total is always quantity × unit price; caller-supplied totals are ignored."""
    return Decimal(str(unit_price)) * int(quantity)


def resolve_cart_discount(
    subtotal: Decimal,
    cart_discount_amount: Optional[Decimal] = None,
    cart_discount_pct: Optional[Decimal] = None,
    quantum: Decimal | int = 1,
) -> Decimal:
    """
    计算整单折扣金额

    An explicit amount wins over a percentage. Both are quantized, then capped at
    the subtotal so no item can end up with a negative final amount.
    """
    if subtotal <= 0:
        return ZERO
    if cart_discount_amount is not None and Decimal(str(cart_discount_amount)) > 0:
        discount = round_half_up(Decimal(str(cart_discount_amount)), quantum)
    elif cart_discount_pct is not None and Decimal(str(cart_discount_pct)) > 0:
        discount = round_half_up(subtotal * Decimal(str(cart_discount_pct)) / Decimal("100"), quantum)
    else:
        return ZERO
    return min(discount, subtotal)


def allocate(
    items: Sequence[AllocationLine] | Iterable[AllocationLine],
    cart_discount_amount: Optional[Decimal] = None,
    cart_discount_pct: Optional[Decimal] = None,
    quantum: Decimal | int = 1,
) -> list[Allocation]:
    """
    按金额比例分摊整单折扣

    Each item gets round_half_up(D × total / subtotal). The per-item rounding
    means the sum may differ from D by at most (item count - 1) quanta.
    """
    lines = list(items)
    totals = [recompute_total(line.quantity, line.unit_price) for line in lines]
    subtotal = sum(totals, ZERO)
    discount = resolve_cart_discount(subtotal, cart_discount_amount, cart_discount_pct, quantum)

    allocations: list[Allocation] = []
    for total in totals:
        if discount <= 0 or subtotal <= 0:
            share = ZERO
        else:
            share = min(round_half_up(discount * total / subtotal, quantum), total)
        allocations.append(Allocation(total_amount=total, discount_amount=share, final_amount=total - share))
    return allocations


def discount_percentage_of(total: Decimal, discount: Decimal) -> Decimal:
    """Effective per-item discount percentage, rounded to whole percent for display."""
    if total <= 0 or discount <= 0:
        return ZERO
    return round_half_up(discount * Decimal("100") / total)
