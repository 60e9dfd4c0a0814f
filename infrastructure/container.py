"""
服务装配（composition root）

Wires application services to their infrastructure adapters. Used by the API
dependencies and the Celery tasks so both build services the same way.
"""
from __future__ import annotations

from typing import Callable, Optional

from application.ports.notifications import InvoiceNotifier
from application.services.checkout_service import CheckoutService
from application.services.fulfillment_service import FulfillmentService
from application.services.ledger_service import LedgerService
from application.services.reconciliation_service import ReconciliationService
from core.config import settings
from core.settings import fulfillment_settings
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.external.api_clients import FulfillmentAutomationClient
from infrastructure.external.payments import get_payment_gateway
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


def default_notifier() -> InvoiceNotifier:
    from infrastructure.tasks import TaskDispatcher
    return TaskDispatcher()


def build_fulfillment_client() -> FulfillmentAutomationClient:
    return FulfillmentAutomationClient(fulfillment_settings)


def build_checkout_service(
    provider: Optional[str] = None,
    *,
    uow_factory: Callable[..., AbstractUnitOfWork] = SQLAlchemyUnitOfWork,
    notifier: Optional[InvoiceNotifier] = None,
) -> CheckoutService:
    return CheckoutService(
        uow_factory=uow_factory,
        gateway=get_payment_gateway(provider),
        notifier=notifier or default_notifier(),
        config=settings.storefront,
    )


def build_reconciliation_service(
    client: FulfillmentAutomationClient,
    *,
    uow_factory: Callable[..., AbstractUnitOfWork] = SQLAlchemyUnitOfWork,
    notifier: Optional[InvoiceNotifier] = None,
) -> ReconciliationService:
    return ReconciliationService(
        uow_factory=uow_factory,
        gateway_factory=get_payment_gateway,
        fulfillment=FulfillmentService(uow_factory, purchaser=client, inspector=client),
        ledger=LedgerService(uow_factory),
        notifier=notifier or default_notifier(),
    )
