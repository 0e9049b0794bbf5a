"""Transactional outbox for mirror synchronization.

Jobs are written by the same session that mutates the ledger, so a job
exists if and only if the ledger change committed. A user/currency pair has
at most one PENDING job at a time; a re-enqueue makes it due immediately.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from trade_ledger.sync.models import SyncJobModel, SyncJobKindEnum, SyncJobStatusEnum
from trade_ledger.logger import logger


async def _enqueue(session: AsyncSession, kind: SyncJobKindEnum, user_id: int, currency: Optional[str]) -> SyncJobModel:
    pending = await session.scalar(
        select(SyncJobModel)
        .where(SyncJobModel.kind == kind)
        .where(SyncJobModel.user_id == user_id)
        .where(SyncJobModel.currency == currency if currency else SyncJobModel.currency.is_(None))
        .where(SyncJobModel.status == SyncJobStatusEnum.PENDING)
        .limit(1)
    )
    if pending:
        pending.next_attempt_at = datetime.now(timezone.utc)
        logger.debug(f'[enqueue_sync] Pending job reused: id={pending.id}, kind={kind.value}, user_id={user_id}, currency={currency}')
        return pending

    job = SyncJobModel(kind=kind, user_id=user_id, currency=currency)
    session.add(job)
    await session.flush()
    logger.debug(f'[enqueue_sync] Job queued: id={job.id}, kind={kind.value}, user_id={user_id}, currency={currency}')
    return job

async def enqueue_user_sync(session: AsyncSession, user_id: int) -> SyncJobModel:
    return await _enqueue(session, SyncJobKindEnum.USER, user_id, None)

async def enqueue_balance_sync(session: AsyncSession, user_id: int, currency: str) -> SyncJobModel:
    return await _enqueue(session, SyncJobKindEnum.BALANCE, user_id, currency)
