from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select, func, desc
from sqlalchemy.ext.asyncio import AsyncSession

from trade_ledger.money import ZERO
from trade_ledger.transactions.models import TransactionModel, TransactionTypeEnum, TransactionStatusEnum
from trade_ledger.logger import logger


async def record_transaction(
    session: AsyncSession,
    user_id: int,
    type: TransactionTypeEnum,
    currency: str,
    amount: Decimal,
    status: TransactionStatusEnum = TransactionStatusEnum.COMPLETED,
    order_id: Optional[UUID] = None,
    idempotency_key: Optional[str] = None,
    description: str = ''
) -> TransactionModel:
    transaction = TransactionModel(
        user_id=user_id,
        type=type,
        currency=currency,
        amount=amount,
        status=status,
        order_id=order_id,
        idempotency_key=idempotency_key,
        description=description[:255]
    )
    session.add(transaction)
    await session.flush()
    logger.info(f'[record_transaction] id={transaction.id}, user_id={user_id}, type={type.value}, currency={currency}, amount={amount}, status={status.value}, order_id={order_id}')
    return transaction

async def find_by_idempotency_key(session: AsyncSession, idempotency_key: str) -> Optional[TransactionModel]:
    return await session.scalar(
        select(TransactionModel).where(TransactionModel.idempotency_key == idempotency_key)
    )

async def completed_total(session: AsyncSession, user_id: int, currency: str) -> Decimal:
    total = await session.scalar(
        select(func.coalesce(func.sum(TransactionModel.amount), 0))
        .where(TransactionModel.user_id == user_id)
        .where(TransactionModel.currency == currency)
        .where(TransactionModel.status == TransactionStatusEnum.COMPLETED)
    )
    return Decimal(str(total)) if total is not None else ZERO

async def latest_transaction_id(session: AsyncSession, user_id: int, currency: str) -> Optional[UUID]:
    return await session.scalar(
        select(TransactionModel.id)
        .where(TransactionModel.user_id == user_id)
        .where(TransactionModel.currency == currency)
        .order_by(desc(TransactionModel.created_at), desc(TransactionModel.id))
        .limit(1)
    )

async def list_transactions(
    session: AsyncSession,
    user_id: int,
    currency: Optional[str] = None,
    limit: int = 50
) -> list[TransactionModel]:
    query = (
        select(TransactionModel)
        .where(TransactionModel.user_id == user_id)
        .order_by(desc(TransactionModel.created_at))
        .limit(limit)
    )
    if currency:
        query = query.where(TransactionModel.currency == currency)
    result = await session.scalars(query)
    return list(result.all())
