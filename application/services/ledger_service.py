"""
累计消费账本服务

The conditional update in the repository is the only guard against double
credit, so this service never reads-then-writes.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Callable

from core.logging_config import get_logger
from domain.common.exceptions import BusinessException, LedgerUpdateFailed
from domain.common.unit_of_work import AbstractUnitOfWork


logger = get_logger(__name__)


class LedgerService:
    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork]):
        self._uow_factory = uow_factory

    async def credit(self, customer_id: int, amount: Decimal, correlation_id: str) -> bool:
        """
        为客户累加消费金额

        Returns False when the customer is missing or this correlation id was
        already credited. Storage failures raise LedgerUpdateFailed.
        """
        if amount <= 0:
            logger.info("ledger_credit_skipped", customer_id=customer_id, correlation_id=correlation_id, reason="zero")
            return False
        try:
            async with self._uow_factory() as uow:
                return await uow.customer_repository.credit_spend(customer_id, amount, correlation_id)
        except BusinessException:
            raise
        except Exception as exc:
            logger.error(
                "ledger_credit_failed",
                customer_id=customer_id,
                correlation_id=correlation_id,
                error=str(exc),
            )
            raise LedgerUpdateFailed(customer_id, correlation_id, str(exc)) from exc
