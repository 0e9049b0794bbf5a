"""Balance Store.

Per (user, currency) ``available``/``locked`` amounts. Every mutation is one
guarded relative UPDATE, so two writers on the same row can never both pass
the non-negative check. Nothing here commits: callers run these inside the
same transaction as the order/transaction rows they write.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from trade_ledger.balance.models import BalanceModel
from trade_ledger.errors import DuplicateOperation, InsufficientFunds, StaleBalance, ValidationError
from trade_ledger.money import ZERO, to_decimal
from trade_ledger.sync.outbox import enqueue_balance_sync
from trade_ledger.transactions.models import TransactionModel, TransactionTypeEnum
from trade_ledger.transactions.service import find_by_idempotency_key, record_transaction
from trade_ledger.logger import logger


@dataclass(frozen=True)
class BalanceView:
    currency: str
    available: Decimal = ZERO
    locked: Decimal = ZERO
    version: int = 0

    @property
    def total(self) -> Decimal:
        return self.available + self.locked


def _positive(amount) -> Decimal:
    amount = to_decimal(amount)
    if amount <= 0:
        raise ValidationError('Amount must be positive')
    return amount

async def _select_row(session: AsyncSession, user_id: int, currency: str, for_update: bool = False) -> Optional[BalanceModel]:
    query = (
        select(BalanceModel)
        .where(BalanceModel.user_id == user_id)
        .where(BalanceModel.currency == currency)
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update()
    return await session.scalar(query)

async def _adjust(
    session: AsyncSession,
    user_id: int,
    currency: str,
    available_delta: Decimal,
    locked_delta: Decimal,
    operation: str,
    expected_version: Optional[int] = None
):
    query = (
        update(BalanceModel)
        .where(BalanceModel.user_id == user_id)
        .where(BalanceModel.currency == currency)
        .where(BalanceModel.available + available_delta >= 0)
        .where(BalanceModel.locked + locked_delta >= 0)
    )
    if expected_version is not None:
        query = query.where(BalanceModel.version == expected_version)

    result = await session.execute(
        query
        .values(
            available=BalanceModel.available + available_delta,
            locked=BalanceModel.locked + locked_delta,
            version=BalanceModel.version + 1
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        if expected_version is not None:
            logger.info(f'[{operation}] Balance moved since read: user_id={user_id}, currency={currency}, expected_version={expected_version}')
            raise StaleBalance(f'{currency} balance changed, retry')
        logger.warning(f'[{operation}] Rejected: user_id={user_id}, currency={currency}, available_delta={available_delta}, locked_delta={locked_delta}')
        raise InsufficientFunds(f'Insufficient {currency} funds')

    logger.debug(f'[{operation}] Applied: user_id={user_id}, currency={currency}, available_delta={available_delta}, locked_delta={locked_delta}')


async def get_balance(session: AsyncSession, user_id: int, currency: str, for_update: bool = False) -> BalanceView:
    balance = await _select_row(session, user_id, currency, for_update=for_update)
    if not balance:
        return BalanceView(currency=currency)
    return BalanceView(currency=currency, available=balance.available, locked=balance.locked, version=balance.version)

async def list_balances(session: AsyncSession, user_id: int) -> list[BalanceView]:
    balances = await session.scalars(
        select(BalanceModel)
        .where(BalanceModel.user_id == user_id)
        .order_by(BalanceModel.currency)
        .execution_options(populate_existing=True)
    )
    return [
        BalanceView(currency=balance.currency, available=balance.available, locked=balance.locked, version=balance.version)
        for balance in balances.all()
    ]

async def _ensure_row(session: AsyncSession, user_id: int, currency: str):
    if session.bind.dialect.name == 'postgresql':
        from sqlalchemy.dialects.postgresql import insert
    else:
        from sqlalchemy.dialects.sqlite import insert

    # concurrent creators race on idx_balances_user_currency; the loser does nothing
    result = await session.execute(
        insert(BalanceModel)
        .values(user_id=user_id, currency=currency, available=ZERO, locked=ZERO, version=0)
        .on_conflict_do_nothing(index_elements=['user_id', 'currency'])
    )
    if result.rowcount:
        logger.info(f'[credit] No {currency} balance for user {user_id}, created one')

async def credit(session: AsyncSession, user_id: int, currency: str, amount, expected_version: Optional[int] = None) -> None:
    amount = _positive(amount)
    await _ensure_row(session, user_id, currency)
    await _adjust(session, user_id, currency, amount, ZERO, 'credit', expected_version)

async def debit(session: AsyncSession, user_id: int, currency: str, amount, expected_version: Optional[int] = None) -> None:
    amount = _positive(amount)
    await _adjust(session, user_id, currency, -amount, ZERO, 'debit', expected_version)

async def lock(session: AsyncSession, user_id: int, currency: str, amount) -> None:
    amount = _positive(amount)
    await _adjust(session, user_id, currency, -amount, amount, 'lock')

async def unlock(session: AsyncSession, user_id: int, currency: str, amount) -> None:
    amount = _positive(amount)
    await _adjust(session, user_id, currency, amount, -amount, 'unlock')


async def post_entry(
    session: AsyncSession,
    user_id: int,
    currency: str,
    amount,
    type: TransactionTypeEnum,
    idempotency_key: Optional[str] = None,
    description: str = '',
    expected_version: Optional[int] = None
) -> TransactionModel:
    """Credit (amount > 0) or debit (amount < 0) available funds and record a
    COMPLETED transaction for the same signed amount.

    Raises DuplicateOperation if ``idempotency_key`` was already recorded, and
    StaleBalance if ``expected_version`` is given and the row has moved on.
    """
    amount = to_decimal(amount)
    if amount == 0:
        raise ValidationError('Amount must not be zero')

    if idempotency_key and await find_by_idempotency_key(session, idempotency_key):
        logger.info(f'[post_entry] Duplicate idempotency key ignored: key={idempotency_key}')
        raise DuplicateOperation(f'Operation {idempotency_key} already applied')

    if amount > 0:
        await credit(session, user_id, currency, amount, expected_version)
    else:
        await debit(session, user_id, currency, -amount, expected_version)

    transaction = await record_transaction(
        session,
        user_id=user_id,
        type=type,
        currency=currency,
        amount=amount,
        idempotency_key=idempotency_key,
        description=description
    )
    await enqueue_balance_sync(session, user_id, currency)
    return transaction
