"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

import asyncio
from typing import Any, Dict

from core.logging_config import get_logger

from ..config.celery import celery_app


logger = get_logger(__name__)

SEND_INVOICE = "notifications.send_invoice"
SEND_PAYMENT_CONFIRMATION = "notifications.send_payment_confirmation"
RECONCILE_STATUS = "payments.reconcile_status"


class TaskDispatcher:
    """Celery-backed InvoiceNotifier; also schedules status polling.

    ``send_task`` publishes synchronously through kombu, so the async methods
    run it in a worker thread.
    """

    async def send_invoice(self, correlation_id: str) -> None:
        await asyncio.to_thread(self.enqueue, SEND_INVOICE, kwargs={"correlation_id": correlation_id})

    async def send_payment_confirmation(self, correlation_id: str) -> None:
        await asyncio.to_thread(
            self.enqueue, SEND_PAYMENT_CONFIRMATION, kwargs={"correlation_id": correlation_id}
        )

    async def enqueue_status_check(self, correlation_id: str, *, countdown: int | None = None) -> None:
        await asyncio.to_thread(
            self.enqueue, RECONCILE_STATUS, kwargs={"correlation_id": correlation_id}, countdown=countdown
        )

    def enqueue(
        self,
        task_name: str,
        *,
        args: tuple | None = None,
        kwargs: Dict[str, Any] | None = None,
        countdown: int | None = None,
    ) -> None:
        """Blocking publish of an arbitrary task by name."""
        celery_app.send_task(task_name, args=args or (), kwargs=kwargs or {}, countdown=countdown)
        logger.info("task_enqueued", task_name=task_name, kwargs=kwargs or {})
