from decimal import Decimal

import pytest

from trade_ledger.balance.service import post_entry
from trade_ledger.database import Base, import_models, make_engine, make_sessionmaker
from trade_ledger.instruments.models import InstrumentModel
from trade_ledger.market.prices import MarketPriceService
from trade_ledger.mirror.store import SqlMirrorStore
from trade_ledger.transactions.models import TransactionTypeEnum
from trade_ledger.users import auth
from trade_ledger.users.models import RoleEnum


@pytest.fixture
async def engine(tmp_path):
    import_models()
    engine = make_engine(f'sqlite+aiosqlite:///{tmp_path / "primary.db"}')
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessionmaker(engine):
    return make_sessionmaker(engine)


@pytest.fixture
async def session(sessionmaker):
    async with sessionmaker() as session:
        yield session


@pytest.fixture
async def mirror(tmp_path):
    store = SqlMirrorStore.from_url(f'sqlite+aiosqlite:///{tmp_path / "mirror.db"}')
    await store.create_tables()
    yield store
    await store.close()


@pytest.fixture
def prices():
    return MarketPriceService.fixed({'BTC': 100, 'ETH': 2000})


async def create_user(session, email, password='correct-horse', role=RoleEnum.USER, first_name='Test', last_name='Trader'):
    user = await auth.register_user(session, email, password, first_name, last_name, role=role)
    await session.commit()
    return user


async def deposit(session, user_id, amount, currency='USD', key=None):
    await post_entry(session, user_id, currency, Decimal(str(amount)), TransactionTypeEnum.DEPOSIT, idempotency_key=key)
    await session.commit()


@pytest.fixture
async def user(session):
    return await create_user(session, 'trader@tradeledger.io')


@pytest.fixture
async def instruments(session):
    session.add_all([
        InstrumentModel(ticker='BTC', name='Bitcoin', reference_price=Decimal('43250')),
        InstrumentModel(ticker='ETH', name='Ethereum'),
        InstrumentModel(ticker='XYZ', name='Reference only', reference_price=Decimal('12.5')),
    ])
    await session.commit()


@pytest.fixture
async def funded_user(session, user, instruments):
    await deposit(session, user.id, 1000)
    return user


@pytest.fixture
def make_user():
    return create_user


@pytest.fixture
def make_deposit():
    return deposit
