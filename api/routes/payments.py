"""
Payments API routes.

Webhook receiver per provider plus an operator status check. Keep this thin:
provider payloads are parsed and verified by the gateway adapters.
"""
from __future__ import annotations

import ipaddress

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from api.dependencies import get_reconciliation_service
from application.services.reconciliation_service import ReconciliationService
from core.logging_config import get_logger
from core.response import success_response
from core.settings import payment_settings
from infrastructure.external.payments import normalize_provider


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


def _resolve_provider(provider: str) -> str:
    try:
        return normalize_provider(provider, payment_settings)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


def _ip_permitted(remote_ip: str, allowlist: list[str]) -> bool:
    try:
        rip = ipaddress.ip_address(remote_ip)
    except ValueError:
        return False
    for entry in allowlist:
        try:
            if "/" in entry:
                if rip in ipaddress.ip_network(entry, strict=False):
                    return True
            elif remote_ip == entry:
                return True
        except ValueError:
            logger.warning("webhook_allowlist_entry_invalid", entry=entry)
    return False


@router.post("/webhooks/{provider}", summary="Payment notification receiver")
async def payments_webhook(
    provider: str,
    request: Request,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    支付渠道异步通知

    200 once the signature is valid and the correlation id is known, even when
    fulfillment or ledger work failed (those become order notes). 401 on a bad
    signature, 404 on an unknown correlation id.
    """
    name = _resolve_provider(provider)

    # Optional IP allowlist
    allowlist = payment_settings.webhook.ip_allowlist or []
    if allowlist:
        remote_ip = getattr(request.state, "client_ip", None) or (request.client.host if request.client else "")
        if not _ip_permitted(remote_ip, allowlist):
            logger.warning("webhook_ip_rejected", provider=name, remote_ip=remote_ip)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Webhook source not allowed")

    raw_body = await request.body()
    headers = {k: v for k, v in request.headers.items()}
    try:
        ack = await service.handle_notification(name, headers, raw_body)
    except RuntimeError as exc:
        # 渠道未配置密钥
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return success_response(
        data=ack.model_dump(mode="json"),
        message="Notification processed" if ack.processed else "Notification already applied",
    )


@router.get("/webhooks/{provider}", summary="Webhook endpoint liveness probe")
async def payments_webhook_probe(provider: str):
    """Providers probe the callback URL with GET when it is registered."""
    name = _resolve_provider(provider)
    return success_response(data={"provider": name, "status": "ok"}, message="Webhook endpoint is active")


@router.get("/status", summary="Poll the provider and reconcile a payment session")
async def payment_status(
    order_id: str = Query(..., min_length=1, description="Correlation id (gateway order id)"),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    try:
        result = await service.check_status(order_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return success_response(
        data=result.model_dump(mode="json"),
        message="Payment status updated" if result.updated else "Payment status unchanged",
    )
