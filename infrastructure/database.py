"""
数据库引擎与会话工厂

Orders, tier packages, stock accounts and user balances all live in one
database; every write goes through SQLAlchemyUnitOfWork.
"""
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from core.config import settings
from infrastructure.models import Base


_ASYNC_DRIVERS = {
    "postgresql": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}


def _build_async_url(database_url: str) -> str:
    """确保数据库URL使用异步驱动"""
    url = make_url(database_url)
    if "+" in url.drivername:
        return database_url
    if url.drivername not in _ASYNC_DRIVERS:
        raise ValueError(f"不支持的数据库驱动: {url.drivername}. 请使用 async 驱动或更新DATABASE__URL")
    return str(url.set(drivername=_ASYNC_DRIVERS[url.drivername]))


def _engine_options(async_url: str) -> dict:
    # sqlite 使用单连接池，不接受 pool_size
    if async_url.startswith("sqlite"):
        return {}
    return {
        "pool_size": settings.database.pool_size,
        "max_overflow": settings.database.max_overflow,
        "pool_pre_ping": True,
    }


_async_url = _build_async_url(settings.database.url)
engine = create_async_engine(_async_url, echo=settings.DEBUG, **_engine_options(_async_url))

AsyncSessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False)


async def create_tables():
    """按 models 建表（仅开发环境由 lifespan 调用）"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
