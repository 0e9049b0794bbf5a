from typing import Annotated

from fastapi import Depends
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import AsyncAdaptedQueuePool

from trade_ledger.config import DATABASE_URL, DB_ECHO
from trade_ledger.logger import logger


def normalize_url(url: str) -> str:
    if url.startswith('postgresql://'):
        return url.replace('postgresql://', 'postgresql+asyncpg://', 1)
    return url


def make_engine(url: str, echo: bool = False) -> AsyncEngine:
    url = normalize_url(url)

    if url.startswith('sqlite'):
        engine = create_async_engine(url, echo=echo)

        @event.listens_for(engine.sync_engine, 'connect')
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute('PRAGMA foreign_keys=ON')
            cursor.close()

        return engine

    return create_async_engine(
        url,
        echo=echo,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=1800,
        pool_pre_ping=True,
        isolation_level='READ COMMITTED'
    )


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


engine = make_engine(DATABASE_URL, echo=DB_ECHO)
async_session = make_sessionmaker(engine)


async def get_session():
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.debug(f'Transaction rolled back: {type(e).__name__}: {e}')
            raise

SessionDep = Annotated[AsyncSession, Depends(get_session)]


class Base(DeclarativeBase):
    pass


def import_models():
    # Registers every table on Base.metadata.
    from trade_ledger.users import models as users_models  # noqa: F401
    from trade_ledger.instruments import models as instruments_models  # noqa: F401
    from trade_ledger.balance import models as balance_models  # noqa: F401
    from trade_ledger.orders import models as orders_models  # noqa: F401
    from trade_ledger.transactions import models as transactions_models  # noqa: F401
    from trade_ledger.sync import models as sync_models  # noqa: F401


async def create_tables(target: AsyncEngine = engine):
    import_models()
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f'Primary store tables ensured on {target.url.render_as_string(hide_password=True)}')
