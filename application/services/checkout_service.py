"""
结账编排服务 - 购物车 → 订单 → 支付会话

流程：
1. 校验购物车（一次性报告所有错误项）
2. 整单折扣分摊
3. 生成支付会话ID并持久化 N 个订单（先提交，再调用支付渠道）
4. 调用支付渠道一次
5. 成功：回写渠道信息并异步发送发票；失败：删除订单（补偿）后抛出
"""
from __future__ import annotations

import secrets
import string
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Optional

from application.dto import OrderDTO
from application.dtos.checkout import CheckoutItem, CheckoutRequest, CheckoutResult
from application.dtos.payments import CreatePayment, GatewayLineItem, PaymentCustomer, PaymentSession
from application.ports.notifications import InvoiceNotifier
from application.ports.payment_gateway import PaymentGateway
from core.config import StorefrontSettings
from core.logging_config import get_logger
from domain.common.exceptions import (
    CheckoutValidationException,
    GatewayUnavailable,
    ScheduledDeliveryLimitExceeded,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.allocation import AllocationLine, allocate, discount_percentage_of, round_half_up
from domain.order.entity import (
    Order,
    OrderStatus,
    ServiceCategory,
    ServiceDetails,
    ServiceType,
    expected_details_kind,
)


logger = get_logger(__name__)

ID_ALPHABET = string.ascii_uppercase + string.digits
ID_SUFFIX_LENGTH = 6


def _suffix() -> str:
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(ID_SUFFIX_LENGTH))


def generate_reference(prefix: str, millis: Optional[int] = None) -> str:
    """<PREFIX>-<epoch ms>-<6 uppercase alnum>"""
    ms = millis if millis is not None else int(time.time() * 1000)
    return f"{prefix}-{ms}-{_suffix()}"


def generate_invoice_ids(prefix: str, count: int, millis: Optional[int] = None) -> list[str]:
    """
    Invoice ids for one checkout, ascending in cart order.

    All ids share one timestamp and the suffixes are sorted, so the smallest
    invoice id is always the first cart item.
    """
    ms = millis if millis is not None else int(time.time() * 1000)
    suffixes: set[str] = set()
    while len(suffixes) < count:
        suffixes.add(_suffix())
    return [f"{prefix}-{ms}-{s}" for s in sorted(suffixes)]


class CheckoutService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        notifier: InvoiceNotifier,
        config: StorefrontSettings,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._notifier = notifier
        self._config = config
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(self, req: CheckoutRequest) -> list[Optional[ServiceDetails]]:
        """Collect every problem before failing; returns the domain payload per item."""
        errors: list[dict] = []

        def fail(index: Optional[int], field: str, message: str) -> None:
            errors.append({"index": index, "field": field, "message": message})

        if not req.items:
            fail(None, "items", "Cart is empty")
        if not (req.customer.name or "").strip():
            fail(None, "customer.name", "Customer name is required")
        if not (req.customer.email or "").strip():
            fail(None, "customer.email", "Customer email is required")

        payloads: list[Optional[ServiceDetails]] = []
        for index, item in enumerate(req.items):
            payloads.append(self._validate_item(index, item, fail))

        if errors:
            logger.info("checkout_validation_failed", errors=len(errors))
            raise CheckoutValidationException(errors)
        return payloads

    @staticmethod
    def _validate_item(index: int, item: CheckoutItem, fail) -> Optional[ServiceDetails]:
        if not (item.service_id or "").strip():
            fail(index, "service_id", "Service id is required")
        if not (item.service_name or "").strip():
            fail(index, "service_name", "Service name is required")
        if item.quantity < 1:
            fail(index, "quantity", "Quantity must be at least 1")
        if item.unit_price < 0:
            fail(index, "unit_price", "Unit price must not be negative")
        if not (item.account_username or "").strip():
            fail(index, "account_username", "Game account username is required")

        category = ServiceCategory(item.service_category) if item.service_category else None
        expected = expected_details_kind(ServiceType(item.service_type), category)
        needs_payload = category == ServiceCategory.SCHEDULED_DELIVERY or item.service_type == "tier_package"

        if item.details is None:
            if needs_payload:
                fail(index, "details", f"{expected} items require details")
            return None
        if expected is None:
            fail(index, "details", f"{item.service_type} items without a category take no details")
            return None
        if item.details.kind != expected:
            fail(index, "details", f"Details of kind '{item.details.kind}' do not match a {expected} item")
            return None
        try:
            return item.details.to_domain()
        except ValueError as exc:
            fail(index, "details", str(exc))
            return None

    # ------------------------------------------------------------------
    # Use case
    # ------------------------------------------------------------------

    async def checkout(self, req: CheckoutRequest) -> CheckoutResult:
        payloads = self._validate(req)

        scheduled = sum(1 for item in req.items if item.service_category == ServiceCategory.SCHEDULED_DELIVERY.value)
        if scheduled > 1:
            raise ScheduledDeliveryLimitExceeded(scheduled)

        allocations = allocate(
            [AllocationLine(quantity=i.quantity, unit_price=i.unit_price) for i in req.items],
            cart_discount_amount=req.discount_amount,
            cart_discount_pct=req.discount_percentage,
            quantum=self._config.money_quantum,
        )

        now = self._clock()
        millis = int(now.timestamp() * 1000)
        correlation_id = generate_reference(self._config.correlation_prefix, millis)
        invoice_ids = generate_invoice_ids(self._config.invoice_prefix, len(req.items), millis)
        customer = req.customer.to_domain()

        orders: list[Order] = []
        for index, (item, allocation, details) in enumerate(zip(req.items, allocations, payloads)):
            if allocation.discount_amount <= 0:
                pct = Decimal("0")
            elif req.discount_percentage and not req.discount_amount:
                pct = req.discount_percentage
            else:
                pct = discount_percentage_of(allocation.total_amount, allocation.discount_amount)
            order = Order(
                id=None,
                invoice_id=invoice_ids[index],
                correlation_id=correlation_id,
                service_type=item.service_type,
                service_category=item.service_category,
                service_id=item.service_id,
                service_name=item.service_name,
                account_username=item.account_username.strip(),
                account_password=item.account_password,
                customer_notes=req.customer_notes,
                details=details,
                quantity=item.quantity,
                unit_price=item.unit_price,
                discount_percentage=pct,
                discount_amount=allocation.discount_amount,
                payment_fee=req.payment_fee if index == 0 else Decimal("0"),
                customer_info=customer,
                payment_method_id=req.payment_method_id,
                expires_at=now + timedelta(hours=self._config.order_expiry_hours),
                created_at=now,
                updated_at=now,
            )
            order.record(f"order:{OrderStatus.WAITING_PAYMENT.value}", "Order created", "checkout")
            orders.append(order)

        async with self._uow_factory() as uow:
            orders = await uow.order_repository.create_many(orders)

        logger.info(
            "checkout_orders_created",
            correlation_id=correlation_id,
            count=len(orders),
            provider=self._gateway.provider,
        )

        line_items = self._line_items(orders)
        gross_amount = sum((li.subtotal for li in line_items), Decimal("0"))
        request = CreatePayment(
            correlation_id=correlation_id,
            gross_amount=gross_amount,
            items=line_items,
            customer=PaymentCustomer(name=customer.name, email=customer.email, phone=customer.phone),
            payment_method_id=req.payment_method_id,
            return_url=f"{self._config.base_url.rstrip('/')}{self._config.return_path}?order_id={correlation_id}",
            callback_url=(
                f"{self._config.api_base_url.rstrip('/')}/api/v1/payments/webhooks/{self._gateway.provider}"
            ),
        )

        try:
            session = await self._gateway.create_payment(request)
        except GatewayUnavailable as exc:
            logger.warning(
                "checkout_gateway_failed",
                correlation_id=correlation_id,
                provider=exc.provider,
                error=exc.message,
            )
            await self._compensate(correlation_id)
            raise

        orders = await self._attach_session(orders, session)

        try:
            await self._notifier.send_invoice(correlation_id)
        except Exception as exc:
            logger.warning("invoice_dispatch_failed", correlation_id=correlation_id, error=str(exc))
        # 过期时主动查询一次，兜底丢失的回调
        try:
            await self._notifier.enqueue_status_check(
                correlation_id, countdown=self._config.order_expiry_hours * 3600
            )
        except Exception as exc:
            logger.warning("status_check_dispatch_failed", correlation_id=correlation_id, error=str(exc))

        total = sum((o.total_amount for o in orders), Decimal("0"))
        discount = sum((o.discount_amount for o in orders), Decimal("0"))
        return CheckoutResult(
            correlation_id=correlation_id,
            provider=session.provider,
            orders=[OrderDTO.from_entity(o) for o in orders],
            session_ref=session.session_ref,
            redirect_url=session.redirect_url,
            provider_reference=session.provider_reference,
            total_amount=total,
            discount_amount=discount,
            final_amount=total - discount,
            payment_fee=req.payment_fee,
            gross_amount=gross_amount,
        )

    def _line_items(self, orders: list[Order]) -> list[GatewayLineItem]:
        """Flatten orders into gateway line items (discounted unit price, fee as its own item)."""
        items: list[GatewayLineItem] = []
        for order in orders:
            price = order.unit_price
            name = order.service_name
            if order.discount_amount > 0:
                price = round_half_up(order.final_amount / order.quantity, self._config.money_quantum)
                name = f"{name} (Diskon {order.discount_percentage.normalize():f}%)"
            items.append(
                GatewayLineItem(
                    id=order.service_id,
                    name=name,
                    price=price,
                    quantity=order.quantity,
                    category=order.service_type.value,
                    brand=self._config.brand,
                )
            )
        fee = sum((o.payment_fee for o in orders), Decimal("0"))
        if fee > 0:
            items.append(
                GatewayLineItem(
                    id=self._config.fee_item_id,
                    name=self._config.fee_item_name,
                    price=fee,
                    quantity=1,
                    category="fee",
                    brand=self._config.brand,
                )
            )
        return items

    async def _attach_session(self, orders: list[Order], session: PaymentSession) -> list[Order]:
        async with self._uow_factory() as uow:
            updated = []
            for order in orders:
                ref = order.gateway_ref
                ref.provider = session.provider
                ref.session_ref = session.session_ref
                ref.redirect_url = session.redirect_url
                ref.provider_reference = session.provider_reference
                updated.append(await uow.order_repository.update(order))
        logger.info(
            "checkout_session_attached",
            correlation_id=orders[0].correlation_id,
            provider=session.provider,
        )
        return updated

    async def _compensate(self, correlation_id: str) -> None:
        """Saga compensation: remove the orders written before the gateway call."""
        try:
            async with self._uow_factory() as uow:
                deleted = await uow.order_repository.delete_by_correlation_id(correlation_id)
            logger.info("checkout_rolled_back", correlation_id=correlation_id, deleted=deleted)
        except Exception:
            logger.exception("checkout_rollback_failed", correlation_id=correlation_id)

    async def aclose(self) -> None:
        await self._gateway.aclose()
