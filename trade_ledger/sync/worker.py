"""Outbox worker: delivers queued sync jobs to the mirror store.

Each job runs under ``asyncio.wait_for`` with a short timeout. A failed job
is retried with exponential backoff until ``max_attempts``, then marked
FAILED. Delivery is at-least-once; the wallet idempotency keys make a
repeated delivery a no-op.

Run the out-of-band retry loop with::

    python -m trade_ledger.sync.worker
"""
import argparse
import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trade_ledger import config
from trade_ledger.errors import LedgerError, SyncBusy
from trade_ledger.sync.engine import SyncEngine
from trade_ledger.sync.models import SyncJobModel, SyncJobStatusEnum
from trade_ledger.logger import logger


@dataclass
class DrainStats:
    done: int = 0
    retried: int = 0
    failed: int = 0
    busy: int = 0


class SyncWorker:
    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        engine: SyncEngine,
        timeout: float = config.SYNC_TIMEOUT_SECONDS,
        max_attempts: int = config.SYNC_MAX_ATTEMPTS,
        poll_interval: float = config.SYNC_POLL_INTERVAL,
        base_delay: float = 1.0,
        batch_size: int = 50
    ):
        self.sessionmaker = sessionmaker
        self.engine = engine
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.poll_interval = poll_interval
        self.base_delay = base_delay
        self.batch_size = batch_size

    def backoff(self, attempts: int) -> timedelta:
        return timedelta(seconds=self.base_delay * 2 ** max(attempts - 1, 0))

    async def _due_jobs(self, user_id: Optional[int] = None) -> list:
        query = (
            select(SyncJobModel.id, SyncJobModel.kind, SyncJobModel.user_id, SyncJobModel.currency, SyncJobModel.attempts)
            .where(SyncJobModel.status == SyncJobStatusEnum.PENDING)
            .where(SyncJobModel.next_attempt_at <= datetime.now(timezone.utc))
            # USER jobs before BALANCE jobs
            .order_by(SyncJobModel.kind.desc(), SyncJobModel.id)
            .limit(self.batch_size)
        )
        if user_id is not None:
            query = query.where(SyncJobModel.user_id == user_id)
        async with self.sessionmaker() as session:
            result = await session.execute(query)
            return result.all()

    async def _finish(self, job_id: int, started_at: datetime, attempts: int, error: Optional[str] = None) -> SyncJobStatusEnum:
        if error is None:
            values = {'status': SyncJobStatusEnum.DONE, 'attempts': attempts, 'last_error': None}
        elif attempts >= self.max_attempts:
            values = {'status': SyncJobStatusEnum.FAILED, 'attempts': attempts, 'last_error': error}
        else:
            values = {
                'attempts': attempts,
                'last_error': error,
                'next_attempt_at': datetime.now(timezone.utc) + self.backoff(attempts)
            }

        # a job re-enqueued while running stays due
        async with self.sessionmaker() as session:
            result = await session.execute(
                update(SyncJobModel)
                .where(SyncJobModel.id == job_id)
                .where(SyncJobModel.status == SyncJobStatusEnum.PENDING)
                .where(SyncJobModel.next_attempt_at <= started_at)
                .values(updated_at=datetime.now(timezone.utc), **values)
            )
            await session.commit()
        if result.rowcount == 0:
            logger.debug(f'[sync_worker] Job {job_id} was re-enqueued while running, left pending')
            return SyncJobStatusEnum.PENDING
        return values.get('status', SyncJobStatusEnum.PENDING)

    async def drain(self, user_id: Optional[int] = None) -> DrainStats:
        """Run every due job once, optionally only those of ``user_id``."""
        stats = DrainStats()
        for job_id, kind, job_user_id, currency, attempts in await self._due_jobs(user_id):
            attempts += 1
            started_at = datetime.now(timezone.utc)
            try:
                await asyncio.wait_for(self.engine.run_job(kind, job_user_id, currency), timeout=self.timeout)
            except SyncBusy:
                # the lease holder delivers it, or a later drain picks it up
                stats.busy += 1
                continue
            except asyncio.TimeoutError:
                error = f'Timed out after {self.timeout}s'
            except LedgerError as e:
                error = f'{e.kind}: {e.message}'
            else:
                await self._finish(job_id, started_at, attempts)
                stats.done += 1
                continue

            status = await self._finish(job_id, started_at, attempts, error)
            if status == SyncJobStatusEnum.FAILED:
                stats.failed += 1
                logger.error(f'[sync_worker] Job {job_id} ({kind.value}, user_id={job_user_id}, currency={currency}) failed permanently after {attempts} attempts: {error}')
            else:
                stats.retried += 1
                logger.warning(f'[sync_worker] Job {job_id} ({kind.value}, user_id={job_user_id}) attempt {attempts} failed, will retry: {error}')

        if stats.done or stats.retried or stats.failed or stats.busy:
            logger.info(f'[sync_worker] Drain finished: user_id={user_id}, done={stats.done}, retried={stats.retried}, failed={stats.failed}, busy={stats.busy}')
        return stats

    async def drain_safely(self, user_id: Optional[int] = None) -> Optional[DrainStats]:
        try:
            return await self.drain(user_id)
        except Exception as e:
            logger.error(f'[sync_worker] Drain crashed: user_id={user_id}: {e}', exc_info=True)
            return None

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None):
        stop_event = stop_event or asyncio.Event()
        logger.info(f'[sync_worker] Retry loop started, poll interval {self.poll_interval}s')
        while not stop_event.is_set():
            await self.drain_safely()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info('[sync_worker] Retry loop stopped')


async def _run(args):
    from trade_ledger.database import async_session, create_tables
    from trade_ledger.mirror.factory import build_mirror_store

    if config.AUTO_CREATE_TABLES:
        await create_tables()
    store = await build_mirror_store()
    if store is None:
        logger.error('[sync_worker] MIRROR_BACKEND is disabled, nothing to deliver')
        return

    worker = SyncWorker(async_session, SyncEngine(async_session, store))
    try:
        if args.once:
            await worker.drain(args.user_id)
        else:
            await worker.run_forever()
    finally:
        await store.close()


def main():
    parser = argparse.ArgumentParser(description='Deliver queued sync jobs to the mirror store')
    parser.add_argument('--once', action='store_true', help='drain due jobs once and exit')
    parser.add_argument('--user-id', type=int, default=None, help='only jobs of this primary user')
    asyncio.run(_run(parser.parse_args()))


if __name__ == '__main__':
    main()
