import asyncio
from decimal import Decimal

import pytest

from trade_ledger.balance import service as balance_service
from trade_ledger.errors import DuplicateOperation, InsufficientFunds, StaleBalance, ValidationError
from trade_ledger.transactions.models import TransactionTypeEnum
from trade_ledger.transactions.service import completed_total, list_transactions


class TestBalanceStore:
    async def test_missing_balance_reads_as_zero(self, session, user):
        view = await balance_service.get_balance(session, user.id, 'USD')

        assert view.available == 0
        assert view.locked == 0
        assert await balance_service.list_balances(session, user.id) == []

    async def test_credit_creates_row_lazily(self, session, user):
        await balance_service.credit(session, user.id, 'USD', Decimal('250.50'))
        await session.commit()

        view = await balance_service.get_balance(session, user.id, 'USD')
        assert view.available == Decimal('250.50')
        assert view.locked == 0
        assert [b.currency for b in await balance_service.list_balances(session, user.id)] == ['USD']

    async def test_debit_more_than_available_is_rejected(self, session, user, make_deposit):
        await make_deposit(session, user.id, 100)

        with pytest.raises(InsufficientFunds):
            await balance_service.debit(session, user.id, 'USD', Decimal('100.01'))
        await session.rollback()

        view = await balance_service.get_balance(session, user.id, 'USD')
        assert view.available == Decimal('100')

    async def test_lock_and_unlock_move_funds(self, session, user, make_deposit):
        await make_deposit(session, user.id, 100)

        await balance_service.lock(session, user.id, 'USD', 70)
        view = await balance_service.get_balance(session, user.id, 'USD')
        assert (view.available, view.locked) == (Decimal('30'), Decimal('70'))

        await balance_service.unlock(session, user.id, 'USD', 20)
        view = await balance_service.get_balance(session, user.id, 'USD')
        assert (view.available, view.locked) == (Decimal('50'), Decimal('50'))
        assert view.total == Decimal('100')

    async def test_cannot_lock_or_unlock_beyond_balance(self, session, user, make_deposit):
        await make_deposit(session, user.id, 100)

        with pytest.raises(InsufficientFunds):
            await balance_service.lock(session, user.id, 'USD', 101)
        with pytest.raises(InsufficientFunds):
            await balance_service.unlock(session, user.id, 'USD', 1)

    async def test_concurrent_first_credits_share_one_row(self, sessionmaker, user):
        async def deposit(amount):
            async with sessionmaker() as session:
                await balance_service.credit(session, user.id, 'EUR', Decimal(amount))
                await session.commit()

        await asyncio.gather(deposit('10'), deposit('15'))

        async with sessionmaker() as session:
            balances = await balance_service.list_balances(session, user.id)
        assert [(b.currency, b.available) for b in balances] == [('EUR', Decimal('25'))]

    async def test_every_update_bumps_version(self, session, user, make_deposit):
        await make_deposit(session, user.id, 100)
        before = await balance_service.get_balance(session, user.id, 'USD')

        await balance_service.lock(session, user.id, 'USD', 10)
        await session.commit()

        after = await balance_service.get_balance(session, user.id, 'USD')
        assert after.version == before.version + 1

    @pytest.mark.parametrize('amount', [0, -5, 'abc'])
    async def test_amount_must_be_positive(self, session, user, amount):
        with pytest.raises(ValidationError):
            await balance_service.credit(session, user.id, 'USD', amount)


class TestPostEntry:
    async def test_records_completed_transaction(self, session, user):
        transaction = await balance_service.post_entry(
            session, user.id, 'USD', Decimal('500'), TransactionTypeEnum.DEPOSIT, idempotency_key='dep-1'
        )
        await session.commit()

        assert transaction.amount == Decimal('500')
        history = await list_transactions(session, user.id)
        assert [t.type for t in history] == [TransactionTypeEnum.DEPOSIT]

    async def test_duplicate_key_is_rejected(self, session, user, make_deposit):
        await make_deposit(session, user.id, 500, key='dep-1')

        with pytest.raises(DuplicateOperation):
            await balance_service.post_entry(
                session, user.id, 'USD', Decimal('500'), TransactionTypeEnum.DEPOSIT, idempotency_key='dep-1'
            )
        await session.rollback()

        view = await balance_service.get_balance(session, user.id, 'USD')
        assert view.available == Decimal('500')

    async def test_stale_version_is_rejected(self, session, user, make_deposit):
        await make_deposit(session, user.id, 100)
        seen = await balance_service.get_balance(session, user.id, 'USD')
        await balance_service.lock(session, user.id, 'USD', 40)
        await session.commit()

        with pytest.raises(StaleBalance):
            await balance_service.post_entry(
                session, user.id, 'USD', Decimal('50'), TransactionTypeEnum.ADMIN_ADJUSTMENT, expected_version=seen.version
            )
        await session.rollback()

        view = await balance_service.get_balance(session, user.id, 'USD')
        assert (view.available, view.locked) == (Decimal('60'), Decimal('40'))
        assert await completed_total(session, user.id, 'USD') == Decimal('100')

    async def test_withdrawal_cannot_overdraw(self, session, user, make_deposit):
        await make_deposit(session, user.id, 100)

        with pytest.raises(InsufficientFunds):
            await balance_service.post_entry(session, user.id, 'USD', Decimal('-150'), TransactionTypeEnum.WITHDRAWAL)
        await session.rollback()

        assert await completed_total(session, user.id, 'USD') == Decimal('100')

    async def test_completed_total_matches_balance(self, session, user, make_deposit):
        await make_deposit(session, user.id, 1000)
        await balance_service.post_entry(session, user.id, 'USD', Decimal('-250.25'), TransactionTypeEnum.WITHDRAWAL)
        await session.commit()

        view = await balance_service.get_balance(session, user.id, 'USD')
        assert await completed_total(session, user.id, 'USD') == view.total == Decimal('749.75')
