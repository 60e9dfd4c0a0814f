"""Invoice / payment confirmation tasks"""
from __future__ import annotations

import asyncio
from decimal import Decimal

from celery import shared_task

from ..utils.base_task import BaseTask
from core.logging_config import get_logger
from infrastructure.database import engine
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

logger = get_logger(__name__)


async def build_invoice_summary(correlation_id: str, uow_factory=SQLAlchemyUnitOfWork) -> dict | None:
    """Everything the mail service needs to render an invoice for one payment session."""
    async with uow_factory(readonly=True) as uow:
        orders = await uow.order_repository.list_by_correlation_id(correlation_id)
    if not orders:
        return None
    first = orders[0]
    final_amount = sum((o.final_amount for o in orders), Decimal("0"))
    payment_fee = sum((o.payment_fee for o in orders), Decimal("0"))
    return {
        "correlation_id": correlation_id,
        "recipient": first.customer_info.email,
        "customer_name": first.customer_info.name,
        "payment_status": first.payment_status.value,
        "redirect_url": first.gateway_ref.redirect_url,
        "invoices": [
            {
                "invoice_id": o.invoice_id,
                "service_name": o.service_name,
                "quantity": o.quantity,
                "final_amount": str(o.final_amount),
                "order_status": o.order_status.value,
            }
            for o in orders
        ],
        "final_amount": str(final_amount),
        "payment_fee": str(payment_fee),
        "grand_total": str(final_amount + payment_fee),
    }


def _run_summary(correlation_id: str) -> dict | None:
    async def _run():
        try:
            return await build_invoice_summary(correlation_id)
        finally:
            # asyncio.run closes the loop; pooled connections must not outlive it
            await engine.dispose()

    return asyncio.run(_run())


@shared_task(
    name="notifications.send_invoice",
    bind=True,
    base=BaseTask,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)
def send_invoice(self, correlation_id: str) -> dict | None:
    """Build the invoice for a new checkout and hand it to the mail service."""
    summary = _run_summary(correlation_id)
    if summary is None:
        logger.warning("invoice_orders_missing", correlation_id=correlation_id)
        return None
    logger.info(
        "invoice_email_requested",
        correlation_id=correlation_id,
        recipient=summary["recipient"],
        invoices=len(summary["invoices"]),
        grand_total=summary["grand_total"],
    )
    return summary


@shared_task(
    name="notifications.send_payment_confirmation",
    bind=True,
    base=BaseTask,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)
def send_payment_confirmation(self, correlation_id: str) -> dict | None:
    summary = _run_summary(correlation_id)
    if summary is None:
        logger.warning("confirmation_orders_missing", correlation_id=correlation_id)
        return None
    logger.info(
        "payment_confirmation_requested",
        correlation_id=correlation_id,
        recipient=summary["recipient"],
        payment_status=summary["payment_status"],
    )
    return summary
