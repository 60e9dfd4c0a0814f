"""
履约仓储实现：库存账号与等级套餐
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.fulfillment.entity import StockAccount, StockAccountStatus, TierPackage
from domain.fulfillment.repository import StockAccountRepository, TierPackageRepository
from infrastructure.models.fulfillment import StockAccountModel, TierPackageModel


logger = get_logger(__name__)


class SQLAlchemyStockAccountRepository(StockAccountRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: StockAccountModel) -> StockAccount:
        return StockAccount(
            id=model.id,
            username=model.username,
            credential=model.credential,
            capacity=Decimal(str(model.capacity or 0)),
            status=model.status,
            last_checked=model.last_checked,
            version=model.version,
        )

    async def find_smallest_covering(self, price: Decimal) -> Optional[StockAccount]:
        """best-fit：capacity >= price 的活跃账号中余额最小者"""
        result = await self.session.execute(
            select(StockAccountModel)
            .where(
                StockAccountModel.status == StockAccountStatus.ACTIVE.value,
                StockAccountModel.capacity >= price,
            )
            .order_by(StockAccountModel.capacity.asc(), StockAccountModel.id.asc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_id(self, account_id: int) -> Optional[StockAccount]:
        result = await self.session.execute(
            select(StockAccountModel)
            .where(StockAccountModel.id == account_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def update_if_active(self, account: StockAccount) -> bool:
        result = await self.session.execute(
            update(StockAccountModel)
            .where(
                StockAccountModel.id == account.id,
                StockAccountModel.version == account.version,
                StockAccountModel.status == StockAccountStatus.ACTIVE.value,
            )
            .values(
                capacity=account.capacity,
                status=account.status.value,
                last_checked=account.last_checked,
                version=StockAccountModel.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning("stock_account_update_skipped", account=account.username, version=account.version)
            return False
        account.version += 1
        logger.info(
            "stock_account_updated",
            account=account.username,
            capacity=str(account.capacity),
            status=account.status.value,
        )
        return True


class SQLAlchemyTierPackageRepository(TierPackageRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, package_id: str) -> Optional[TierPackage]:
        model = await self.session.get(TierPackageModel, package_id)
        if model is None:
            return None
        return TierPackage(
            id=model.id,
            name=model.name,
            tier=model.tier,
            duration_months=model.duration_months,
            discount=Decimal(str(model.discount or 0)),
        )
