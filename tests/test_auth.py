from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from trade_ledger.errors import Conflict, Unauthorized, ValidationError
from trade_ledger.users import auth
from trade_ledger.users.models import SessionModel, UserStatusEnum


class TestRegistration:
    async def test_password_is_hashed(self, session, user):
        assert user.password_hash != 'correct-horse'
        assert user.two_factor_secret is None

    async def test_duplicate_email(self, session, user):
        with pytest.raises(Conflict):
            await auth.register_user(session, 'TRADER@tradeledger.io', 'another-password')

    async def test_short_password(self, session):
        with pytest.raises(ValidationError):
            await auth.register_user(session, 'short@tradeledger.io', 'short')


class TestAuthenticate:
    async def test_valid_credentials(self, session, user):
        assert (await auth.authenticate(session, ' Trader@TradeLedger.io ', 'correct-horse')).id == user.id

    async def test_wrong_password(self, session, user):
        with pytest.raises(Unauthorized):
            await auth.authenticate(session, user.email, 'wrong-horse')

    async def test_inactive_user(self, session, user):
        user.status = UserStatusEnum.INACTIVE
        await session.commit()

        with pytest.raises(Unauthorized):
            await auth.authenticate(session, user.email, 'correct-horse')


class TestResolve:
    async def test_session_resolves_to_identity(self, session, user):
        new_session = await auth.create_session(session, user.id)
        await session.commit()

        identity = await auth.resolve(session, new_session.token)

        assert identity.id == user.id
        assert identity.email == 'trader@tradeledger.io'
        assert not identity.is_admin
        assert not hasattr(identity, 'password_hash')
        assert len(new_session.token) >= 43

    async def test_session_lifetimes(self, session, user):
        now = datetime.now(timezone.utc)
        short = await auth.create_session(session, user.id)
        remembered = await auth.create_session(session, user.id, remember=True)

        assert timedelta(hours=23) < short.expires_at - now <= timedelta(hours=24, minutes=1)
        assert remembered.expires_at - now > timedelta(days=29)

    async def test_expired_session(self, session, user):
        new_session = await auth.create_session(session, user.id)
        await session.execute(
            update(SessionModel)
            .where(SessionModel.token == new_session.token)
            .values(expires_at=datetime.now(timezone.utc) - timedelta(seconds=1))
        )
        await session.commit()

        assert await auth.resolve(session, new_session.token) is None

    async def test_unknown_and_missing_tokens(self, session, user):
        assert await auth.resolve(session, 'not-a-token') is None
        assert await auth.resolve(session, None) is None

    async def test_logout_deletes_session(self, session, user):
        new_session = await auth.create_session(session, user.id)
        await session.commit()

        await auth.delete_session(session, new_session.token)
        await session.commit()

        assert await auth.resolve(session, new_session.token) is None
