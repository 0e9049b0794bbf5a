from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select, func

from trade_ledger.errors import InsufficientBalance, NotFound, ValidationError
from trade_ledger.mirror.applier import WalletKind
from trade_ledger.mirror.models import MirrorTransactionModel
from trade_ledger.mirror.store import MirrorUser


@pytest.fixture
async def mirror_user(mirror):
    return await mirror.upsert_user(MirrorUser(id=uuid4(), email='Wallet@TradeLedger.io', first_name='Wal', last_name='Let'))


async def transaction_count(mirror, key=None):
    async with mirror.sessionmaker() as session:
        query = select(func.count(MirrorTransactionModel.id))
        if key:
            query = query.where(MirrorTransactionModel.idempotency_key == key)
        return await session.scalar(query)


class TestTransactionApplier:
    async def test_upsert_normalizes_email(self, mirror, mirror_user):
        assert mirror_user.email == 'wallet@tradeledger.io'
        assert (await mirror.find_user_by_email('WALLET@tradeledger.io')).id == mirror_user.id

    async def test_apply_is_idempotent(self, mirror, mirror_user):
        key = f'{mirror_user.id}_USD_deposit_1'

        first = await mirror.apply_transaction(mirror_user.id, Decimal('100'), WalletKind.DEPOSIT, 'USD', key)
        second = await mirror.apply_transaction(mirror_user.id, Decimal('100'), WalletKind.DEPOSIT, 'USD', key)

        assert (first.applied, first.duplicate) == (True, False)
        assert (second.applied, second.duplicate) == (False, True)
        assert second.balance.available == Decimal('100')
        assert await transaction_count(mirror, key) == 1

    async def test_overdraw_is_rejected(self, mirror, mirror_user):
        await mirror.apply_transaction(mirror_user.id, 100, WalletKind.DEPOSIT, 'USD', 'k-deposit')

        with pytest.raises(InsufficientBalance):
            await mirror.apply_transaction(mirror_user.id, -150, WalletKind.WITHDRAWAL, 'USD', 'k-withdraw')

        wallet = await mirror.get_wallet(mirror_user.id, 'USD')
        assert wallet.available == Decimal('100')
        assert await transaction_count(mirror, 'k-withdraw') == 0

    async def test_hold_and_release(self, mirror, mirror_user):
        await mirror.apply_transaction(mirror_user.id, 100, WalletKind.ADMIN_TOPUP, 'USD', 'k-topup')

        held = await mirror.apply_transaction(mirror_user.id, 60, WalletKind.HOLD, 'USD', 'k-hold')
        assert (held.balance.available, held.balance.locked) == (Decimal('40'), Decimal('60'))

        with pytest.raises(InsufficientBalance):
            await mirror.apply_transaction(mirror_user.id, 61, WalletKind.RELEASE, 'USD', 'k-release-too-much')

        released = await mirror.apply_transaction(mirror_user.id, 60, WalletKind.RELEASE, 'USD', 'k-release')
        assert (released.balance.available, released.balance.locked) == (Decimal('100'), Decimal('0'))

    async def test_rows_record_resulting_balance(self, mirror, mirror_user):
        await mirror.apply_transaction(mirror_user.id, 100, 'DEPOSIT', 'USD', 'k-1', {'source': 'test'})
        await mirror.apply_transaction(mirror_user.id, 30, 'HOLD', 'USD', 'k-2')

        async with mirror.sessionmaker() as session:
            rows = (await session.scalars(
                select(MirrorTransactionModel).order_by(MirrorTransactionModel.created_at, MirrorTransactionModel.kind)
            )).all()
        assert [(row.kind, row.available_after, row.locked_after) for row in rows] == [
            ('DEPOSIT', Decimal('100'), Decimal('0')),
            ('HOLD', Decimal('70'), Decimal('30')),
        ]
        assert rows[0].metadata_ == {'source': 'test'}

    async def test_wallets_are_per_currency(self, mirror, mirror_user):
        await mirror.apply_transaction(mirror_user.id, 100, WalletKind.DEPOSIT, 'USD', 'k-usd')
        await mirror.apply_transaction(mirror_user.id, Decimal('0.5'), WalletKind.DEPOSIT, 'BTC', 'k-btc')

        assert (await mirror.get_wallet(mirror_user.id, 'USD')).available == Decimal('100')
        assert (await mirror.get_wallet(mirror_user.id, 'BTC')).available == Decimal('0.5')
        assert (await mirror.get_wallet(mirror_user.id, 'ETH')).available == 0

    @pytest.mark.parametrize('amount, kind', [
        (0, WalletKind.ADJUSTMENT),
        (-5, WalletKind.HOLD),
        (0, WalletKind.RELEASE),
    ])
    async def test_invalid_amounts(self, mirror, mirror_user, amount, kind):
        with pytest.raises(ValidationError):
            await mirror.apply_transaction(mirror_user.id, amount, kind, 'USD', f'k-{kind.value}')

    async def test_unknown_user(self, mirror):
        with pytest.raises(NotFound):
            await mirror.apply_transaction(uuid4(), 100, WalletKind.DEPOSIT, 'USD', 'k-nobody')
