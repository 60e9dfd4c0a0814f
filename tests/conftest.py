"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PAYMENT__MIDTRANS__SERVER_KEY", "SB-Mid-server-test")
os.environ.setdefault("PAYMENT__DUITKU__MERCHANT_CODE", "DS0001")
os.environ.setdefault("PAYMENT__DUITKU__API_KEY", "duitku-test-key")

from datetime import datetime, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from core.settings import PaymentRetry, PaymentSettings  # noqa: E402
from infrastructure.models import Base, CustomerModel, StockAccountModel, TierPackageModel  # noqa: E402
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork  # noqa: E402

from fakes import DUITKU_API_KEY, MERCHANT_CODE, SERVER_KEY  # noqa: E402


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def uow_factory(session_factory):
    def factory(readonly: bool = False) -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_factory=session_factory, readonly=readonly)
    return factory


@pytest.fixture
def payment_settings():
    return PaymentSettings(
        default_provider="midtrans",
        retry=PaymentRetry(max=0, base_backoff=0.0),
        midtrans={"server_key": SERVER_KEY},
        duitku={"merchant_code": MERCHANT_CODE, "api_key": DUITKU_API_KEY},
    )


@pytest.fixture
def fixed_now():
    return datetime(2024, 1, 31, 10, 0, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def customer(session_factory):
    async with session_factory() as session:
        model = CustomerModel(email="budi@example.com", name="Budi", lifetime_spend=Decimal("0"))
        session.add(model)
        await session.commit()
        return model.id


@pytest_asyncio.fixture
async def tier_package(session_factory):
    async with session_factory() as session:
        session.add(TierPackageModel(id="PKG-T2-3M", name="Reseller Silver", tier=2, duration_months=3, discount=5))
        await session.commit()
    return "PKG-T2-3M"


@pytest_asyncio.fixture
async def stock_accounts(session_factory):
    """Three active accounts; best fit for a 500 gamepass is 'small-ok'."""
    async with session_factory() as session:
        rows = [
            StockAccountModel(username="tiny", credential="cookie-tiny", capacity=Decimal("100")),
            StockAccountModel(username="small-ok", credential="cookie-small", capacity=Decimal("600")),
            StockAccountModel(username="large", credential="cookie-large", capacity=Decimal("5000")),
        ]
        session.add_all(rows)
        await session.commit()
        return {row.username: row.id for row in rows}
