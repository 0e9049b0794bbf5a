"""Mirror store boundary.

``MirrorStore`` is the typed interface the sync engine talks to. Two
backends exist: ``SqlMirrorStore`` (a separate SQLAlchemy database) and
``SupabaseMirrorStore`` in ``trade_ledger.mirror.client`` (PostgREST over
HTTP).
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine

from trade_ledger.database import make_engine, make_sessionmaker
from trade_ledger.errors import Conflict
from trade_ledger.mirror.applier import ApplyResult, TransactionApplier, WalletBalance, WalletKind
from trade_ledger.mirror.models import MirrorBase, MirrorUserModel
from trade_ledger.logger import logger


@dataclass(frozen=True)
class MirrorUser:
    id: UUID
    email: str
    first_name: str = ''
    last_name: str = ''
    is_active: bool = True


class MirrorStore(ABC):
    @abstractmethod
    async def get_user(self, user_id: UUID) -> Optional[MirrorUser]:
        ...

    @abstractmethod
    async def find_user_by_email(self, email: str) -> Optional[MirrorUser]:
        ...

    @abstractmethod
    async def upsert_user(self, user: MirrorUser) -> MirrorUser:
        ...

    @abstractmethod
    async def get_wallet(self, user_id: UUID, currency: str) -> WalletBalance:
        ...

    @abstractmethod
    async def apply_transaction(
        self,
        user_id: UUID,
        amount,
        kind: WalletKind,
        currency: str,
        idempotency_key: str,
        metadata: Optional[dict] = None
    ) -> ApplyResult:
        ...

    async def close(self):
        pass


def _user(model: MirrorUserModel) -> MirrorUser:
    return MirrorUser(
        id=model.id,
        email=model.email,
        first_name=model.first_name,
        last_name=model.last_name,
        is_active=model.is_active
    )


class SqlMirrorStore(MirrorStore):
    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.sessionmaker = make_sessionmaker(engine)
        self.applier = TransactionApplier(self.sessionmaker)

    @classmethod
    def from_url(cls, url: str, echo: bool = False) -> 'SqlMirrorStore':
        return cls(make_engine(url, echo=echo))

    async def create_tables(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(MirrorBase.metadata.create_all)
        logger.info(f'Mirror store tables ensured on {self.engine.url.render_as_string(hide_password=True)}')

    async def get_user(self, user_id: UUID) -> Optional[MirrorUser]:
        async with self.sessionmaker() as session:
            user = await session.get(MirrorUserModel, user_id)
            return _user(user) if user else None

    async def find_user_by_email(self, email: str) -> Optional[MirrorUser]:
        async with self.sessionmaker() as session:
            user = await session.scalar(
                select(MirrorUserModel).where(MirrorUserModel.email == email.strip().lower())
            )
            return _user(user) if user else None

    async def upsert_user(self, user: MirrorUser) -> MirrorUser:
        email = user.email.strip().lower()
        async with self.sessionmaker() as session:
            owner = await session.scalar(select(MirrorUserModel.id).where(MirrorUserModel.email == email))
            if owner and owner != user.id:
                raise Conflict(f'Mirror email {email} belongs to user {owner}')

            model = await session.get(MirrorUserModel, user.id, with_for_update=True)
            if not model:
                model = MirrorUserModel(id=user.id)
                session.add(model)
            model.email = email
            model.first_name = user.first_name
            model.last_name = user.last_name
            model.is_active = user.is_active
            await session.commit()
            logger.debug(f'[upsert_user] Mirror user saved: id={user.id}, email={email}, is_active={user.is_active}')
            return _user(model)

    async def get_wallet(self, user_id: UUID, currency: str) -> WalletBalance:
        return await self.applier.get_wallet(user_id, currency)

    async def apply_transaction(
        self,
        user_id: UUID,
        amount,
        kind: WalletKind,
        currency: str,
        idempotency_key: str,
        metadata: Optional[dict] = None
    ) -> ApplyResult:
        return await self.applier.apply(user_id, amount, kind, currency, idempotency_key, metadata)

    async def close(self):
        await self.engine.dispose()
