"""Idempotent Transaction Applier for the mirror store.

A wallet mutation and its transaction row are written in one database
transaction. The caller-supplied idempotency key is unique, so replaying
the same key reports a duplicate instead of moving funds twice.
"""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional, Union
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trade_ledger.errors import InsufficientBalance, NotFound, ValidationError
from trade_ledger.mirror.models import MirrorUserModel, MirrorWalletModel, MirrorTransactionModel
from trade_ledger.money import ZERO, to_decimal
from trade_ledger.logger import logger


class WalletKind(str, Enum):
    DEPOSIT = 'DEPOSIT'
    WITHDRAWAL = 'WITHDRAWAL'
    ADMIN_TOPUP = 'ADMIN_TOPUP'
    TRADE_OPEN = 'TRADE_OPEN'
    TRADE_CLOSE = 'TRADE_CLOSE'
    ADJUSTMENT = 'ADJUSTMENT'
    # available -> locked
    HOLD = 'HOLD'
    # locked -> available
    RELEASE = 'RELEASE'


@dataclass(frozen=True)
class WalletBalance:
    currency: str
    available: Decimal = ZERO
    locked: Decimal = ZERO


@dataclass(frozen=True)
class ApplyResult:
    applied: bool
    duplicate: bool
    balance: WalletBalance


def wallet_deltas(kind: WalletKind, amount: Decimal) -> tuple[Decimal, Decimal]:
    """(available_delta, locked_delta) for ``amount`` of ``kind``."""
    if kind == WalletKind.HOLD:
        if amount <= 0:
            raise ValidationError('Hold amount must be positive')
        return -amount, amount
    if kind == WalletKind.RELEASE:
        if amount <= 0:
            raise ValidationError('Release amount must be positive')
        return amount, -amount
    if amount == 0:
        raise ValidationError('Amount must not be zero')
    return amount, ZERO


class TransactionApplier:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self.sessionmaker = sessionmaker

    @staticmethod
    async def _wallet(session: AsyncSession, user_id: UUID, currency: str, for_update: bool = False) -> Optional[MirrorWalletModel]:
        query = (
            select(MirrorWalletModel)
            .where(MirrorWalletModel.user_id == user_id)
            .where(MirrorWalletModel.currency == currency)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        return await session.scalar(query)

    @staticmethod
    def _view(wallet: Optional[MirrorWalletModel], currency: str) -> WalletBalance:
        if not wallet:
            return WalletBalance(currency=currency)
        return WalletBalance(currency=currency, available=wallet.available, locked=wallet.locked)

    async def get_wallet(self, user_ref: UUID, currency: str) -> WalletBalance:
        async with self.sessionmaker() as session:
            return self._view(await self._wallet(session, user_ref, currency), currency)

    async def _duplicate(self, user_ref: UUID, currency: str, idempotency_key: str) -> ApplyResult:
        logger.info(f'[apply_transaction] Duplicate key: {idempotency_key}')
        return ApplyResult(applied=False, duplicate=True, balance=await self.get_wallet(user_ref, currency))

    async def apply(
        self,
        user_ref: UUID,
        amount,
        kind: Union[str, WalletKind],
        currency: str,
        idempotency_key: str,
        metadata: Optional[dict] = None
    ) -> ApplyResult:
        if not idempotency_key:
            raise ValidationError('Idempotency key is required')
        kind = WalletKind(kind)
        amount = to_decimal(amount)
        available_delta, locked_delta = wallet_deltas(kind, amount)

        async with self.sessionmaker() as session:
            existing = await session.scalar(
                select(MirrorTransactionModel.id).where(MirrorTransactionModel.idempotency_key == idempotency_key)
            )
            if existing:
                return await self._duplicate(user_ref, currency, idempotency_key)

            if not await session.get(MirrorUserModel, user_ref):
                raise NotFound(f'Mirror user {user_ref} not found')

            try:
                wallet = await self._wallet(session, user_ref, currency, for_update=True)
                if not wallet:
                    session.add(MirrorWalletModel(user_id=user_ref, currency=currency, available=ZERO, locked=ZERO))
                    await session.flush()

                result = await session.execute(
                    update(MirrorWalletModel)
                    .where(MirrorWalletModel.user_id == user_ref)
                    .where(MirrorWalletModel.currency == currency)
                    .where(MirrorWalletModel.available + available_delta >= 0)
                    .where(MirrorWalletModel.locked + locked_delta >= 0)
                    .values(
                        available=MirrorWalletModel.available + available_delta,
                        locked=MirrorWalletModel.locked + locked_delta
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    logger.warning(f'[apply_transaction] Rejected: user={user_ref}, kind={kind.value}, currency={currency}, amount={amount}')
                    raise InsufficientBalance(f'Insufficient {currency} balance')

                wallet = await self._wallet(session, user_ref, currency)
                session.add(MirrorTransactionModel(
                    user_id=user_ref,
                    kind=kind.value,
                    currency=currency,
                    amount=amount,
                    idempotency_key=idempotency_key,
                    metadata_=metadata,
                    available_after=wallet.available,
                    locked_after=wallet.locked
                ))
                balance = self._view(wallet, currency)
                await session.commit()
            except IntegrityError:
                await session.rollback()
                duplicate = await session.scalar(
                    select(MirrorTransactionModel.id).where(MirrorTransactionModel.idempotency_key == idempotency_key)
                )
                if duplicate:
                    return await self._duplicate(user_ref, currency, idempotency_key)
                raise

        logger.info(f'[apply_transaction] Applied: user={user_ref}, kind={kind.value}, currency={currency}, amount={amount}, available={balance.available}, locked={balance.locked}, key={idempotency_key}')
        return ApplyResult(applied=True, duplicate=False, balance=balance)
