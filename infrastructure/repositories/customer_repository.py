"""
客户仓储实现 - 累计消费账本
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.customer.entity import Customer
from domain.customer.repository import CustomerRepository
from infrastructure.models.customer import CustomerModel


logger = get_logger(__name__)


class SQLAlchemyCustomerRepository(CustomerRepository):
    """客户仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: CustomerModel) -> Customer:
        """将数据库模型转换为领域实体"""
        return Customer(
            id=model.id,
            email=model.email,
            name=model.name,
            lifetime_spend=Decimal(str(model.lifetime_spend or 0)),
            last_credited_correlation_id=model.last_credited_correlation_id,
            reseller_tier=model.reseller_tier,
            reseller_expiry=model.reseller_expiry,
            reseller_package_id=model.reseller_package_id,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def get_by_id(self, customer_id: int) -> Optional[Customer]:
        """根据ID获取客户"""
        result = await self.session.execute(
            select(CustomerModel)
            .where(CustomerModel.id == customer_id)
            .execution_options(populate_existing=True)
        )
        db_customer = result.scalar_one_or_none()
        return self._to_entity(db_customer) if db_customer else None

    async def credit_spend(self, customer_id: int, amount: Decimal, correlation_id: str) -> bool:
        """单条条件 UPDATE 累加消费；同一支付会话最多入账一次"""
        result = await self.session.execute(
            update(CustomerModel)
            .where(
                CustomerModel.id == customer_id,
                or_(
                    CustomerModel.last_credited_correlation_id.is_(None),
                    CustomerModel.last_credited_correlation_id != correlation_id,
                ),
            )
            .values(
                lifetime_spend=CustomerModel.lifetime_spend + amount,
                last_credited_correlation_id=correlation_id,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        credited = result.rowcount == 1
        logger.info(
            "customer_spend_credit",
            customer_id=customer_id,
            correlation_id=correlation_id,
            amount=str(amount),
            credited=credited,
        )
        return credited

    async def set_reseller_tier(
        self,
        customer_id: int,
        tier: int,
        expiry: datetime,
        package_id: str,
    ) -> bool:
        """设置经销商等级"""
        result = await self.session.execute(
            update(CustomerModel)
            .where(CustomerModel.id == customer_id)
            .values(
                reseller_tier=tier,
                reseller_expiry=expiry,
                reseller_package_id=package_id,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        updated = result.rowcount == 1
        if updated:
            logger.info("reseller_tier_set", customer_id=customer_id, tier=tier, package_id=package_id)
        else:
            logger.warning("reseller_tier_customer_missing", customer_id=customer_id)
        return updated
