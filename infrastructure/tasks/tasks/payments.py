"""
Celery tasks for payment status polling.

Runs the same reconciliation as the webhook route, for sessions whose
notification never arrived.
"""
from __future__ import annotations

import asyncio

from celery import shared_task

from ..utils.base_task import BaseTask
from core.logging_config import get_logger
from domain.common.exceptions import GatewayUnavailable, UnknownCorrelationId
from infrastructure.container import build_fulfillment_client, build_reconciliation_service
from infrastructure.database import engine


logger = get_logger(__name__)


async def reconcile(correlation_id: str) -> dict:
    client = build_fulfillment_client()
    try:
        service = build_reconciliation_service(client)
        result = await service.check_status(correlation_id)
        return {
            "correlation_id": correlation_id,
            "provider_status": result.provider_status,
            "payment_status": result.payment_status,
            "updated": result.updated,
        }
    finally:
        await client.close()
        await engine.dispose()


@shared_task(name="payments.reconcile_status", bind=True, base=BaseTask, max_retries=3, default_retry_delay=30)
def reconcile_status(self, correlation_id: str) -> dict:
    try:
        return asyncio.run(reconcile(correlation_id))
    except UnknownCorrelationId:
        logger.warning("reconcile_unknown_correlation_id", correlation_id=correlation_id)
        return {"correlation_id": correlation_id, "updated": False, "found": False}
    except GatewayUnavailable as exc:
        logger.error("payment_status_poll_failed", correlation_id=correlation_id, error=exc.message)
        raise self.retry(exc=exc)
