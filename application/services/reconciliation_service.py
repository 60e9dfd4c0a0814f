"""
支付对账服务 - 处理支付渠道回调与人工状态查询

Webhook notifications and operator status checks share one code path
(``_reconcile_group``): every order of the correlation group is mapped and
written independently with a version-guarded update, and the post-settlement
side effects (ledger credit, tier activation, scheduled delivery, payment
confirmation) run only for orders this call actually moved into settlement.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Optional

from application.dto import OrderDTO
from application.dtos.payments import StatusCheckResult, WebhookAck
from application.ports.notifications import InvoiceNotifier
from application.ports.payment_gateway import PaymentGateway
from application.services.fulfillment_service import FulfillmentService
from application.services.ledger_service import LedgerService
from core.logging_config import get_logger
from domain.common.exceptions import (
    LedgerUpdateFailed,
    OrderConcurrencyConflict,
    SignatureInvalid,
    UnknownCorrelationId,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.fulfillment.entity import FulfillmentResult
from domain.order.entity import Order, OrderStatus, PaymentStatus
from domain.order.repository import OrderRepository


logger = get_logger(__name__)

GatewayFactory = Callable[[Optional[str]], PaymentGateway]


@dataclass
class ProviderUpdate:
    """Provider state normalized from a notification or a status poll."""
    provider: str
    provider_status: str
    hint: Optional[str] = None
    transaction_id: Optional[str] = None
    provider_reference: Optional[str] = None
    payment_type: Optional[str] = None
    actor: str = "system"


@dataclass
class ReconcileOutcome:
    orders: list[Order]
    payment_status: PaymentStatus
    processed: bool
    settled: list[Order] = field(default_factory=list)


class ReconciliationService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway_factory: GatewayFactory,
        fulfillment: FulfillmentService,
        ledger: LedgerService,
        notifier: InvoiceNotifier,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway_factory = gateway_factory
        self._fulfillment = fulfillment
        self._ledger = ledger
        self._notifier = notifier

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def handle_notification(self, provider: str, headers: dict[str, Any], body: bytes) -> WebhookAck:
        """
        处理支付回调

        Raises SignatureInvalid before any state is read and
        UnknownCorrelationId when no order carries the notified order id.
        Anything that goes wrong after that is logged or written as an order
        note; the provider still gets its acknowledgement.
        """
        gateway = self._gateway_factory(provider)
        try:
            notification = gateway.parse_notification(headers, body)
            if not gateway.verify_signature(notification.raw, notification.signature):
                logger.warning(
                    "webhook_signature_invalid",
                    provider=gateway.provider,
                    order_id=notification.order_id or None,
                )
                raise SignatureInvalid(gateway.provider)

            logger.info(
                "webhook_received",
                provider=gateway.provider,
                correlation_id=notification.order_id,
                provider_status=notification.provider_status,
                transaction_id=notification.provider_transaction_id,
            )
            update = ProviderUpdate(
                provider=gateway.provider,
                provider_status=notification.provider_status,
                hint=notification.fraud_status,
                transaction_id=notification.provider_transaction_id,
                provider_reference=notification.provider_reference,
                payment_type=notification.payment_type,
                actor=f"webhook:{gateway.provider}",
            )
            outcome = await self._reconcile_group(gateway, notification.order_id, update)
        finally:
            await gateway.aclose()

        return WebhookAck(
            success=True,
            processed=outcome.processed,
            correlation_id=notification.order_id,
            payment_status=outcome.payment_status.value,
            orders=[OrderDTO.from_entity(o) for o in outcome.orders],
        )

    async def check_status(self, correlation_id: str) -> StatusCheckResult:
        """人工查询支付状态并按回调同样的规则对账"""
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.order_repository.list_by_correlation_id(correlation_id)
        if not orders:
            raise UnknownCorrelationId(correlation_id)

        gateway = self._gateway_factory(orders[0].gateway_ref.provider)
        try:
            status = await gateway.get_status(correlation_id)
            logger.info(
                "payment_status_polled",
                provider=gateway.provider,
                correlation_id=correlation_id,
                provider_status=status.provider_status,
            )
            update = ProviderUpdate(
                provider=gateway.provider,
                provider_status=status.provider_status,
                hint=status.fraud_status,
                transaction_id=status.provider_transaction_id,
                provider_reference=status.provider_reference,
                payment_type=status.payment_type,
                actor="status_check",
            )
            outcome = await self._reconcile_group(gateway, correlation_id, update)
        finally:
            await gateway.aclose()

        return StatusCheckResult(
            orders=[OrderDTO.from_entity(o) for o in outcome.orders],
            provider_status=status.provider_status,
            payment_status=outcome.payment_status.value,
            updated=outcome.processed,
        )

    # ------------------------------------------------------------------
    # Core reconciliation
    # ------------------------------------------------------------------

    async def _reconcile_group(
        self, gateway: PaymentGateway, correlation_id: str, update: ProviderUpdate
    ) -> ReconcileOutcome:
        payment_status, order_hint = gateway.map_provider_status(update.provider_status, update.hint)

        async with self._uow_factory() as uow:
            orders = await uow.order_repository.list_by_correlation_id(correlation_id)
            if not orders:
                raise UnknownCorrelationId(correlation_id)

            if update.transaction_id and all(
                o.has_transaction(update.transaction_id) and o.payment_status == payment_status for o in orders
            ):
                logger.info(
                    "webhook_duplicate_skipped",
                    correlation_id=correlation_id,
                    transaction_id=update.transaction_id,
                    payment_status=payment_status.value,
                )
                return ReconcileOutcome(orders=orders, payment_status=orders[0].payment_status, processed=False)

            results: list[Order] = []
            settled: list[Order] = []
            processed = False
            for order in orders:
                current, changed, became_settled = await self._apply_with_retry(
                    uow.order_repository, order, payment_status, order_hint, update
                )
                results.append(current)
                processed = processed or changed
                if became_settled:
                    settled.append(current)

        logger.info(
            "payment_group_reconciled",
            correlation_id=correlation_id,
            provider_status=update.provider_status,
            payment_status=payment_status.value,
            processed=processed,
            settled=len(settled),
        )

        if settled:
            await self._after_settlement(correlation_id, results, settled)
            async with self._uow_factory(readonly=True) as uow:
                results = await uow.order_repository.list_by_correlation_id(correlation_id)

        return ReconcileOutcome(
            orders=results,
            payment_status=results[0].payment_status,
            processed=processed,
            settled=settled,
        )

    async def _apply_with_retry(
        self,
        repo: OrderRepository,
        order: Order,
        payment_status: PaymentStatus,
        order_hint: OrderStatus,
        update: ProviderUpdate,
    ) -> tuple[Order, bool, bool]:
        """Returns (order, changed, moved_into_settlement)."""
        for attempt in range(2):
            was_settled = order.payment_status == PaymentStatus.SETTLEMENT
            if not self._apply(order, payment_status, order_hint, update):
                return order, False, False
            try:
                await repo.update(order)
            except OrderConcurrencyConflict:
                fresh = await repo.get_by_id(order.id)
                if attempt or fresh is None:
                    logger.error(
                        "order_update_abandoned",
                        order_id=order.id,
                        invoice_id=order.invoice_id,
                    )
                    return fresh or order, False, False
                logger.info("order_update_retry", order_id=order.id, invoice_id=order.invoice_id)
                order = fresh
                continue
            became_settled = not was_settled and order.payment_status == PaymentStatus.SETTLEMENT
            return order, True, became_settled
        return order, False, False

    @staticmethod
    def _apply(
        order: Order,
        payment_status: PaymentStatus,
        order_hint: OrderStatus,
        update: ProviderUpdate,
    ) -> bool:
        """Mutate one order in memory; False when nothing changed."""
        if order.is_payment_final():
            return False

        changed = False
        ref = order.gateway_ref
        if update.transaction_id and ref.provider_transaction_id != update.transaction_id:
            ref.provider_transaction_id = update.transaction_id
            changed = True
        if update.payment_type and ref.payment_type != update.payment_type:
            ref.payment_type = update.payment_type
            changed = True
        if update.provider_reference and not ref.provider_reference:
            ref.provider_reference = update.provider_reference
            changed = True

        note = f"{update.provider} status: {update.provider_status}"
        if order.apply_payment_status(payment_status, note, update.actor):
            changed = True
        if order_hint != order.order_status and order.transition_order(order_hint, note, update.actor):
            changed = True
        return changed

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    async def _after_settlement(self, correlation_id: str, group: list[Order], settled: list[Order]) -> None:
        first = group[0]
        if any(o.id == first.id for o in settled):
            await self._credit_ledger(correlation_id, group)

        for order in settled:
            result = await self._fulfillment.dispatch(order)
            if result is not None:
                await self._record_fulfillment(order, result)

        try:
            await self._notifier.send_payment_confirmation(correlation_id)
        except Exception as exc:
            logger.warning("payment_confirmation_dispatch_failed", correlation_id=correlation_id, error=str(exc))

    async def _credit_ledger(self, correlation_id: str, group: list[Order]) -> None:
        customer_id = group[0].customer_info.user_id
        if customer_id is None:
            logger.info("ledger_credit_skipped", correlation_id=correlation_id, reason="guest")
            return
        amount = sum((o.final_amount for o in group), Decimal("0"))
        try:
            credited = await self._ledger.credit(customer_id, amount, correlation_id)
        except LedgerUpdateFailed as exc:
            logger.error("ledger_credit_error", correlation_id=correlation_id, error=exc.message)
            return
        logger.info(
            "ledger_credited" if credited else "ledger_already_credited",
            correlation_id=correlation_id,
            customer_id=customer_id,
            amount=str(amount),
        )

    async def _record_fulfillment(self, order: Order, result: FulfillmentResult) -> None:
        """Write a fulfillment result onto the order (completed or a pending note).

        The webhook has already been reconciled at this point, so storage
        failures are logged rather than raised.
        """
        try:
            await self._write_fulfillment(order, result)
        except Exception as exc:
            logger.error(
                "fulfillment_note_failed",
                invoice_id=order.invoice_id,
                note=result.note,
                error=str(exc),
                exc_info=True,
            )

    async def _write_fulfillment(self, order: Order, result: FulfillmentResult) -> None:
        async with self._uow_factory() as uow:
            repo = uow.order_repository
            current: Optional[Order] = order
            for attempt in range(2):
                if current is None:
                    return
                if result.completed and current.can_transition_to(OrderStatus.COMPLETED):
                    current.transition_order(OrderStatus.COMPLETED, result.note, "fulfillment")
                else:
                    current.note_fulfillment_pending(result.note)
                try:
                    await repo.update(current)
                    return
                except OrderConcurrencyConflict:
                    if attempt:
                        logger.error("fulfillment_note_lost", invoice_id=order.invoice_id, note=result.note)
                        return
                    current = await repo.get_by_id(order.id)
