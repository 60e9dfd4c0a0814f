"""
API依赖项 - 应用服务装配

Routes depend on these providers; tests swap them through
``app.dependency_overrides``.
"""
from typing import AsyncIterator, Optional

from fastapi import Depends, HTTPException, Query, status

from application.services.checkout_service import CheckoutService
from application.services.reconciliation_service import ReconciliationService
from core.settings import payment_settings
from infrastructure.container import (
    build_checkout_service,
    build_fulfillment_client,
    build_reconciliation_service,
)
from infrastructure.external.payments import normalize_provider


def get_provider(provider: Optional[str] = Query(default=None, description="midtrans | duitku")) -> str:
    """解析支付渠道（未指定时使用 PAYMENT__DEFAULT_PROVIDER）"""
    try:
        return normalize_provider(provider, payment_settings)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


async def get_checkout_service(provider: str = Depends(get_provider)) -> AsyncIterator[CheckoutService]:
    try:
        service = build_checkout_service(provider)
    except RuntimeError as exc:
        # 渠道未配置密钥
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    try:
        yield service
    finally:
        await service.aclose()


async def get_reconciliation_service() -> AsyncIterator[ReconciliationService]:
    client = build_fulfillment_client()
    try:
        yield build_reconciliation_service(client)
    finally:
        await client.close()
