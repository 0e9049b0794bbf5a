"""Cross-store sync engine.

Outbound, the primary store is the source of truth: ``sync_user`` upserts
the mirror user record and ``sync_balance`` replays the difference between
the primary balance and the mirror wallet as idempotent wallet
transactions (release, adjustment, hold). Mirror balance fields are never
written directly.

Inbound, ``handle_inbound_update`` applies changes made on the mirror side
(admin panel) to the primary store, resolving the user by email.

No primary-store transaction is held open while the mirror is called.
"""
import hashlib
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4, uuid5, NAMESPACE_URL

import httpx
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trade_ledger import config
from trade_ledger.balance import service as balance_service
from trade_ledger.errors import DuplicateOperation, LedgerError, StaleBalance, SyncBusy, SyncFailure, UserNotFound, ValidationError
from trade_ledger.mirror.applier import WalletBalance, WalletKind
from trade_ledger.mirror.store import MirrorStore, MirrorUser
from trade_ledger.money import USD, to_decimal
from trade_ledger.sync.models import IdentityLinkModel, LinkSourceEnum, SyncJobKindEnum, SyncLeaseModel
from trade_ledger.transactions.models import TransactionTypeEnum
from trade_ledger.transactions.service import latest_transaction_id
from trade_ledger.users.models import UserModel, UserStatusEnum
from trade_ledger.logger import logger


BALANCE_UPDATED = 'balance_updated'
USER_BLOCKED = 'user_blocked'
USER_UNBLOCKED = 'user_unblocked'
USER_UPDATED = 'user_updated'

INBOUND_KINDS = (BALANCE_UPDATED, USER_BLOCKED, USER_UNBLOCKED, USER_UPDATED)
INBOUND_RETRIES = 3


@dataclass(frozen=True)
class SyncOutcome:
    mirror_user_id: UUID
    currency: str
    applied: list[str] = field(default_factory=list)
    balance: Optional[WalletBalance] = None


@dataclass(frozen=True)
class InboundResult:
    kind: str
    user_id: int
    applied: bool
    duplicate: bool = False


def derived_mirror_id(primary_user_id: int) -> UUID:
    return uuid5(NAMESPACE_URL, f'trade-ledger:user:{primary_user_id}')

def balance_digest(latest_id: Optional[UUID], available: Decimal, locked: Decimal, mirror_available: Decimal, mirror_locked: Decimal) -> str:
    """Primary state plus the mirror wallet it was diffed against."""
    raw = '|'.join(str(part) for part in (
        latest_id,
        available.normalize(),
        locked.normalize(),
        mirror_available.normalize(),
        mirror_locked.normalize()
    ))
    return hashlib.sha256(raw.encode()).hexdigest()[:16]

@contextmanager
def mirror_errors(operation: str):
    try:
        yield
    except SyncFailure:
        raise
    except (LedgerError, SQLAlchemyError, httpx.HTTPError) as e:
        logger.error(f'[{operation}] Mirror call failed: {type(e).__name__}: {e}')
        raise SyncFailure(f'{operation} failed: {e}') from e


class SyncEngine:
    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        store: Optional[MirrorStore] = None,
        lease_seconds: float = config.SYNC_LEASE_SECONDS
    ):
        self.sessionmaker = sessionmaker
        self.store = store
        self.lease_seconds = lease_seconds

    def _require_store(self) -> MirrorStore:
        if self.store is None:
            raise SyncFailure('Mirror store is not configured')
        return self.store

    async def _resolve_mirror_id(self, store: MirrorStore, primary_user_id: int, email: str) -> tuple[UUID, LinkSourceEnum]:
        derived = derived_mirror_id(primary_user_id)
        with mirror_errors('sync_user'):
            if await store.get_user(derived):
                return derived, LinkSourceEnum.DERIVED
            by_email = await store.find_user_by_email(email)
        if by_email:
            logger.info(f'[sync_user] Linked by email: user_id={primary_user_id}, mirror_id={by_email.id}')
            return by_email.id, LinkSourceEnum.EMAIL
        return derived, LinkSourceEnum.DERIVED

    async def _save_link(self, primary_user_id: int, mirror_id: UUID, source: LinkSourceEnum) -> UUID:
        async with self.sessionmaker() as session:
            session.add(IdentityLinkModel(primary_user_id=primary_user_id, mirror_user_id=mirror_id, source=source))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                link = await session.get(IdentityLinkModel, primary_user_id)
                if not link:
                    raise SyncFailure(f'Mirror user {mirror_id} is already linked to another account')
                logger.info(f'[sync_user] Link created concurrently, keeping first: user_id={primary_user_id}, mirror_id={link.mirror_user_id}')
                return link.mirror_user_id
        logger.info(f'[sync_user] Identity link saved: user_id={primary_user_id}, mirror_id={mirror_id}, source={source.value}')
        return mirror_id

    async def sync_user(self, primary_user_id: int) -> UUID:
        store = self._require_store()

        async with self.sessionmaker() as session:
            user = await session.get(UserModel, primary_user_id)
            if not user:
                raise UserNotFound()
            email, first_name, last_name = user.email, user.first_name, user.last_name
            is_active = user.status == UserStatusEnum.ACTIVE
            link = await session.get(IdentityLinkModel, primary_user_id)
            mirror_id = link.mirror_user_id if link else None

        if mirror_id is None:
            mirror_id, source = await self._resolve_mirror_id(store, primary_user_id, email)
            mirror_id = await self._save_link(primary_user_id, mirror_id, source)

        with mirror_errors('sync_user'):
            await store.upsert_user(MirrorUser(
                id=mirror_id,
                email=email,
                first_name=first_name,
                last_name=last_name,
                is_active=is_active
            ))

        logger.info(f'[sync_user] Mirrored: user_id={primary_user_id}, mirror_id={mirror_id}, is_active={is_active}')
        return mirror_id

    @asynccontextmanager
    async def balance_lease(self, primary_user_id: int, currency: str):
        """Hold the (user, currency) sync lease for the duration of the block.

        Raises SyncBusy if another live holder has it. An expired lease is
        taken over.
        """
        holder = uuid4().hex
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(seconds=self.lease_seconds)

        async with self.sessionmaker() as session:
            result = await session.execute(
                update(SyncLeaseModel)
                .where(SyncLeaseModel.user_id == primary_user_id)
                .where(SyncLeaseModel.currency == currency)
                .where(SyncLeaseModel.expires_at <= now)
                .values(holder=holder, expires_at=expires_at)
            )
            if result.rowcount == 0:
                session.add(SyncLeaseModel(user_id=primary_user_id, currency=currency, holder=holder, expires_at=expires_at))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(f'[sync_balance] Sync already in flight: user_id={primary_user_id}, currency={currency}')
                raise SyncBusy(f'Balance sync for user {primary_user_id} {currency} already in flight')

        try:
            yield
        finally:
            async with self.sessionmaker() as session:
                await session.execute(
                    delete(SyncLeaseModel)
                    .where(SyncLeaseModel.user_id == primary_user_id)
                    .where(SyncLeaseModel.currency == currency)
                    .where(SyncLeaseModel.holder == holder)
                )
                await session.commit()

    async def sync_balance(self, primary_user_id: int, currency: str = USD) -> SyncOutcome:
        store = self._require_store()
        mirror_id = await self.sync_user(primary_user_id)

        async with self.balance_lease(primary_user_id, currency):
            return await self._replay_balance(store, mirror_id, primary_user_id, currency)

    async def _replay_balance(self, store: MirrorStore, mirror_id: UUID, primary_user_id: int, currency: str) -> SyncOutcome:
        async with self.sessionmaker() as session:
            view = await balance_service.get_balance(session, primary_user_id, currency)
            latest_id = await latest_transaction_id(session, primary_user_id, currency)

        with mirror_errors('sync_balance'):
            wallet = await store.get_wallet(mirror_id, currency)

        total_delta = view.total - (wallet.available + wallet.locked)
        locked_delta = view.locked - wallet.locked
        digest = balance_digest(latest_id, view.available, view.locked, wallet.available, wallet.locked)
        metadata = {
            'source': 'primary_sync',
            'primary_user_id': primary_user_id,
            'latest_transaction_id': str(latest_id) if latest_id else None
        }

        steps = []
        if locked_delta < 0:
            steps.append(('release', WalletKind.RELEASE, -locked_delta))
        if total_delta != 0:
            steps.append(('adjust', WalletKind.ADJUSTMENT, total_delta))
        if locked_delta > 0:
            steps.append(('hold', WalletKind.HOLD, locked_delta))

        applied = []
        balance = wallet
        for part, kind, amount in steps:
            key = f'{mirror_id}_{currency}_sync_{digest}_{part}'
            with mirror_errors('sync_balance'):
                result = await store.apply_transaction(mirror_id, amount, kind, currency, key, metadata)
            balance = result.balance
            if result.applied:
                applied.append(key)

        logger.info(f'[sync_balance] user_id={primary_user_id}, currency={currency}, primary=({view.available}, {view.locked}), mirror_before=({wallet.available}, {wallet.locked}), applied={len(applied)}')
        return SyncOutcome(mirror_user_id=mirror_id, currency=currency, applied=applied, balance=balance)

    async def run_job(self, kind: SyncJobKindEnum, user_id: int, currency: Optional[str] = None):
        if kind == SyncJobKindEnum.USER:
            return await self.sync_user(user_id)
        return await self.sync_balance(user_id, currency or USD)

    async def handle_inbound_update(self, kind: str, payload: dict) -> InboundResult:
        if kind not in INBOUND_KINDS:
            raise ValidationError(f'Unsupported update type {kind}')
        email = str(payload.get('email') or '').strip().lower()
        if not email:
            raise ValidationError('Payload email is required')

        async with self.sessionmaker() as session:
            user = await session.scalar(
                select(UserModel).where(UserModel.email == email).with_for_update()
            )
            if not user:
                logger.warning(f'[handle_inbound_update] {kind}: no user with email={email}')
                raise UserNotFound()
            user_id = user.id

            if kind == BALANCE_UPDATED:
                return await self._inbound_balance(session, user_id, payload)

            if kind == USER_BLOCKED:
                user.status = UserStatusEnum.INACTIVE
            elif kind == USER_UNBLOCKED:
                user.status = UserStatusEnum.ACTIVE
            else:
                for name in ('first_name', 'last_name'):
                    if isinstance(payload.get(name), str):
                        setattr(user, name, payload[name].strip()[:100])
                ignored = sorted(set(payload) - {'email', 'first_name', 'last_name'})
                if ignored:
                    logger.info(f'[handle_inbound_update] user_updated: ignoring fields {ignored}')
            await session.commit()

        logger.info(f'[handle_inbound_update] {kind} applied: user_id={user_id}')
        return InboundResult(kind=kind, user_id=user_id, applied=True)

    async def _inbound_balance(self, session: AsyncSession, user_id: int, payload: dict) -> InboundResult:
        currency = str(payload.get('currency') or USD).strip().upper()
        if 'available' not in payload:
            raise ValidationError('Payload available is required')
        target = to_decimal(payload['available'], 'available')
        if target < 0:
            raise ValidationError('Available balance cannot be negative')

        event_id = payload.get('event_id')
        key = f'{user_id}_{currency}_webhook_{event_id}' if event_id else None

        for attempt in range(1, INBOUND_RETRIES + 1):
            view = await balance_service.get_balance(session, user_id, currency, for_update=True)
            if attempt == 1 and 'locked' in payload and to_decimal(payload['locked'], 'locked') != view.locked:
                logger.warning(f'[handle_inbound_update] Locked mismatch ignored: user_id={user_id}, currency={currency}, primary={view.locked}, mirror={payload["locked"]}')

            delta = target - view.available
            if delta == 0:
                logger.info(f'[handle_inbound_update] balance_updated: already at {target} {currency}, user_id={user_id}')
                return InboundResult(kind=BALANCE_UPDATED, user_id=user_id, applied=False)

            try:
                await balance_service.post_entry(
                    session,
                    user_id=user_id,
                    currency=currency,
                    amount=delta,
                    type=TransactionTypeEnum.ADMIN_ADJUSTMENT,
                    idempotency_key=key,
                    description=f'Mirror balance update to {target} {currency}',
                    expected_version=view.version
                )
                await session.commit()
            except DuplicateOperation:
                await session.rollback()
                logger.info(f'[handle_inbound_update] Event already applied: key={key}')
                return InboundResult(kind=BALANCE_UPDATED, user_id=user_id, applied=False, duplicate=True)
            except StaleBalance:
                await session.rollback()
                logger.info(f'[handle_inbound_update] Balance moved during update, retrying: user_id={user_id}, attempt={attempt}')
                continue

            logger.info(f'[handle_inbound_update] balance_updated: user_id={user_id}, currency={currency}, delta={delta}, available={target}')
            return InboundResult(kind=BALANCE_UPDATED, user_id=user_id, applied=True)

        raise StaleBalance(f'{currency} balance kept changing, update not applied')
