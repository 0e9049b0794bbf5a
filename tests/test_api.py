from decimal import Decimal

import httpx
import pytest

from trade_ledger import config
from trade_ledger.database import get_session
from trade_ledger.main import app
from trade_ledger.sync.engine import SyncEngine, derived_mirror_id
from trade_ledger.sync.worker import SyncWorker
from trade_ledger.users import auth
from trade_ledger.users.models import RoleEnum


@pytest.fixture
async def client(sessionmaker, mirror, prices):
    async def override_session():
        async with sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_session
    app.state.prices = prices
    app.state.sync_engine = SyncEngine(sessionmaker, mirror)
    app.state.sync_worker = SyncWorker(sessionmaker, app.state.sync_engine)

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url='http://test') as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
async def admin_headers(session, make_user):
    admin = await make_user(session, 'admin@tradeledger.io', role=RoleEnum.ADMIN)
    token = (await auth.create_session(session, admin.id)).token
    await session.commit()
    return {'Authorization': f'Bearer {token}'}


async def register(client, email='alice@tradeledger.io'):
    response = await client.post('/api/v1/public/register', json={
        'email': email, 'password': 'correct-horse', 'first_name': 'Alice', 'last_name': 'Smith'
    })
    assert response.status_code == 200, response.text
    body = response.json()
    return body['user']['id'], {'Authorization': f'Bearer {body["token"]}'}


class TestAuthRoutes:
    async def test_register_login_me_logout(self, client):
        user_id, headers = await register(client)

        me = await client.get('/api/v1/me', headers=headers)
        assert me.json()['email'] == 'alice@tradeledger.io'

        login = await client.post('/api/v1/public/login', json={'email': 'alice@tradeledger.io', 'password': 'correct-horse'})
        assert login.json()['user']['id'] == user_id

        assert (await client.post('/api/v1/logout', headers=headers)).json() == {'success': True}
        assert (await client.get('/api/v1/me', headers=headers)).status_code == 401

    async def test_error_body_shape(self, client):
        response = await client.get('/api/v1/me')

        assert response.status_code == 401
        assert response.json() == {'success': False, 'error': 'Token required'}

    async def test_registration_validation(self, client):
        response = await client.post('/api/v1/public/register', json={'email': 'not-an-email', 'password': 'x'})

        assert response.status_code == 400
        assert response.json()['success'] is False

    async def test_duplicate_registration(self, client):
        await register(client)
        response = await client.post('/api/v1/public/register', json={
            'email': 'alice@tradeledger.io', 'password': 'correct-horse', 'first_name': 'A', 'last_name': 'S'
        })

        assert response.status_code == 409

    async def test_registration_is_mirrored(self, client, mirror):
        user_id, _ = await register(client)

        mirrored = await mirror.get_user(derived_mirror_id(user_id))
        assert mirrored.email == 'alice@tradeledger.io'

    async def test_admin_routes_need_admin(self, client):
        _, headers = await register(client)

        response = await client.post('/api/v1/admin/balance/deposit', headers=headers, json={'user_id': 1, 'amount': '10'})
        assert response.status_code == 403


class TestTradingFlow:
    async def test_deposit_open_close(self, client, admin_headers, mirror, prices):
        user_id, headers = await register(client)
        assert (await client.post('/api/v1/admin/instrument', headers=admin_headers, json={'ticker': 'btc', 'name': 'Bitcoin'})).status_code == 200

        deposit = await client.post('/api/v1/admin/balance/deposit', headers=admin_headers, json={
            'user_id': user_id, 'amount': '1000', 'idempotency_key': 'wire-1'
        })
        assert Decimal(deposit.json()['balance']['available']) == 1000

        repeat = await client.post('/api/v1/admin/balance/deposit', headers=admin_headers, json={
            'user_id': user_id, 'amount': '1000', 'idempotency_key': 'wire-1'
        })
        assert repeat.json()['duplicate'] is True
        assert Decimal(repeat.json()['balance']['available']) == 1000

        opened = await client.post('/api/v1/order', headers=headers, json={'symbol': 'BTC', 'side': 'buy', 'collateral': '600'})
        assert opened.status_code == 200, opened.text
        order_id = opened.json()['order_id']
        assert Decimal(opened.json()['entry_price']) == 100
        assert opened.json()['status'] == 'OPEN'

        balance = (await client.get('/api/v1/balance', headers=headers, params={'currency': 'usd'})).json()
        assert (Decimal(balance['available']), Decimal(balance['locked'])) == (400, 600)

        wallet = await mirror.get_wallet(derived_mirror_id(user_id), 'USD')
        assert (wallet.available, wallet.locked) == (Decimal('400'), Decimal('600'))

        positions = (await client.get('/api/v1/order/positions', headers=headers)).json()
        assert [position['order_id'] for position in positions] == [order_id]

        prices.set_price('BTC', 110)
        closed = await client.post(f'/api/v1/order/{order_id}/close', headers=headers)
        assert Decimal(closed.json()['exit_price']) == 110
        assert Decimal(closed.json()['pnl']) == 60
        assert closed.json()['status'] == 'FILLED'

        again = await client.post(f'/api/v1/order/{order_id}/close', headers=headers)
        assert again.status_code == 404
        assert again.json()['success'] is False

        history = (await client.get('/api/v1/transactions', headers=headers)).json()
        assert [item['type'] for item in history] == ['TRADE_CLOSE', 'TRADE_OPEN', 'DEPOSIT']

        wallet = await mirror.get_wallet(derived_mirror_id(user_id), 'USD')
        assert (wallet.available, wallet.locked) == (Decimal('1060'), Decimal('0'))

    async def test_cancel_and_insufficient_funds(self, client, admin_headers):
        user_id, headers = await register(client)
        await client.post('/api/v1/admin/instrument', headers=admin_headers, json={'ticker': 'BTC', 'name': 'Bitcoin'})
        await client.post('/api/v1/admin/balance/deposit', headers=admin_headers, json={'user_id': user_id, 'amount': '100'})

        too_big = await client.post('/api/v1/order', headers=headers, json={'symbol': 'BTC', 'side': 'buy', 'collateral': '600'})
        assert too_big.status_code == 400
        assert too_big.json() == {'success': False, 'error': 'Insufficient USD funds'}

        resting = await client.post('/api/v1/order', headers=headers, json={
            'symbol': 'BTC', 'side': 'sell', 'collateral': '100', 'order_type': 'limit', 'limit_price': '150'
        })
        assert resting.json()['status'] == 'PENDING'
        cancelled = await client.delete(f'/api/v1/order/{resting.json()["order_id"]}', headers=headers)
        assert cancelled.json()['status'] == 'CANCELLED'

        balances = (await client.get('/api/v1/balances', headers=headers)).json()
        assert [(item['currency'], Decimal(item['available']), Decimal(item['locked'])) for item in balances] == [('USD', 100, 0)]

    async def test_close_prices_at_market(self, client, admin_headers):
        user_id, headers = await register(client)
        await client.post('/api/v1/admin/instrument', headers=admin_headers, json={'ticker': 'BTC', 'name': 'Bitcoin'})
        await client.post('/api/v1/admin/balance/deposit', headers=admin_headers, json={'user_id': user_id, 'amount': '1000'})
        opened = await client.post('/api/v1/order', headers=headers, json={'symbol': 'BTC', 'side': 'buy', 'collateral': '1000'})

        closed = await client.post(
            f'/api/v1/order/{opened.json()["order_id"]}/close', headers=headers, json={'exit_price': '1000000'}
        )

        assert closed.status_code == 200
        assert Decimal(closed.json()['exit_price']) == 100
        assert Decimal(closed.json()['pnl']) == 0
        balance = (await client.get('/api/v1/balance', headers=headers)).json()
        assert (Decimal(balance['available']), Decimal(balance['locked'])) == (1000, 0)

    async def test_filled_order_cannot_be_cancelled(self, client, admin_headers):
        user_id, headers = await register(client)
        await client.post('/api/v1/admin/instrument', headers=admin_headers, json={'ticker': 'BTC', 'name': 'Bitcoin'})
        await client.post('/api/v1/admin/balance/deposit', headers=admin_headers, json={'user_id': user_id, 'amount': '100'})
        opened = await client.post('/api/v1/order', headers=headers, json={'symbol': 'BTC', 'side': 'buy', 'collateral': '100'})

        response = await client.delete(f'/api/v1/order/{opened.json()["order_id"]}', headers=headers)

        assert response.status_code == 400
        balance = (await client.get('/api/v1/balance', headers=headers)).json()
        assert (Decimal(balance['available']), Decimal(balance['locked'])) == (0, 100)

    async def test_portfolio_summary(self, client, admin_headers, prices):
        user_id, headers = await register(client)
        await client.post('/api/v1/admin/instrument', headers=admin_headers, json={'ticker': 'BTC', 'name': 'Bitcoin'})
        await client.post('/api/v1/admin/balance/deposit', headers=admin_headers, json={'user_id': user_id, 'amount': '1000'})
        await client.post('/api/v1/order', headers=headers, json={'symbol': 'BTC', 'side': 'buy', 'collateral': '500'})
        prices.set_price('BTC', 120)

        summary = (await client.get('/api/v1/portfolio/summary', headers=headers)).json()

        assert summary['success'] is True
        assert summary['open_positions'] == 1
        assert Decimal(summary['unrealized_pnl']) == 100
        assert Decimal(summary['equity']) == 1100

        performance = (await client.get('/api/v1/portfolio/performance', headers=headers)).json()
        assert [(row['ticker'], row['open_positions']) for row in performance['performance']] == [('BTC', 1)]

        assert (await client.get('/api/v1/portfolio/summary')).status_code == 401

    async def test_invalid_trigger_price(self, client, admin_headers):
        user_id, headers = await register(client)
        await client.post('/api/v1/admin/instrument', headers=admin_headers, json={'ticker': 'BTC', 'name': 'Bitcoin'})
        await client.post('/api/v1/admin/balance/deposit', headers=admin_headers, json={'user_id': user_id, 'amount': '100'})

        response = await client.post('/api/v1/order', headers=headers, json={
            'symbol': 'BTC', 'side': 'buy', 'collateral': '50', 'take_profit': '90'
        })

        assert response.status_code == 400
        assert 'Take profit' in response.json()['error']

    async def test_check_triggers_route(self, client, admin_headers, prices):
        user_id, headers = await register(client)
        await client.post('/api/v1/admin/instrument', headers=admin_headers, json={'ticker': 'BTC', 'name': 'Bitcoin'})
        await client.post('/api/v1/admin/balance/deposit', headers=admin_headers, json={'user_id': user_id, 'amount': '100'})
        await client.post('/api/v1/order', headers=headers, json={
            'symbol': 'BTC', 'side': 'buy', 'collateral': '100', 'take_profit': '120'
        })

        prices.set_price('BTC', 125)
        response = await client.post('/api/v1/order/check-triggers', headers=headers)

        assert [item['reason'] for item in response.json()['closed']] == ['Take Profit']


class TestWebhook:
    async def test_unconfigured_secret(self, client, monkeypatch):
        monkeypatch.setattr(config, 'WEBHOOK_SECRET', '')

        response = await client.post('/api/v1/webhook', json={'type': 'user_blocked', 'payload': {}})

        assert response.status_code == 500
        assert response.json()['success'] is False

    async def test_wrong_secret(self, client, monkeypatch):
        monkeypatch.setattr(config, 'WEBHOOK_SECRET', 'hook-secret')

        response = await client.post(
            '/api/v1/webhook', headers={'X-Webhook-Secret': 'guess'}, json={'type': 'user_blocked', 'payload': {}}
        )

        assert response.status_code == 401

    async def test_balance_update(self, client, admin_headers, monkeypatch):
        monkeypatch.setattr(config, 'WEBHOOK_SECRET', 'hook-secret')
        user_id, headers = await register(client)
        await client.post('/api/v1/admin/balance/deposit', headers=admin_headers, json={'user_id': user_id, 'amount': '100'})

        response = await client.post('/api/v1/webhook', headers={'X-Webhook-Secret': 'hook-secret'}, json={
            'type': 'balance_updated',
            'payload': {'email': 'alice@tradeledger.io', 'available': '250', 'event_id': 'evt-9'}
        })

        assert response.json() == {'success': True, 'type': 'balance_updated', 'applied': True, 'duplicate': False}
        balance = (await client.get('/api/v1/balance', headers=headers)).json()
        assert Decimal(balance['available']) == 250


class TestAdminRoutes:
    async def test_resync_user(self, client, admin_headers, mirror):
        user_id, _ = await register(client)
        await client.post('/api/v1/admin/balance/deposit', headers=admin_headers, json={'user_id': user_id, 'amount': '42'})

        response = await client.post(f'/api/v1/admin/sync/user/{user_id}', headers=admin_headers)

        assert response.json()['queued'] == 2
        assert response.json()['mirror_user_id'] == str(derived_mirror_id(user_id))
        wallet = await mirror.get_wallet(derived_mirror_id(user_id), 'USD')
        assert wallet.available == Decimal('42')

    async def test_deactivate_and_delete_user(self, client, admin_headers):
        user_id, headers = await register(client)

        deactivated = await client.post(f'/api/v1/admin/user/{user_id}/deactivate', headers=admin_headers)
        assert deactivated.json()['status'] == 'INACTIVE'
        assert (await client.get('/api/v1/me', headers=headers)).status_code == 401

        deleted = await client.delete(f'/api/v1/admin/user/{user_id}', headers=admin_headers)
        assert deleted.json()['id'] == user_id
        assert (await client.delete(f'/api/v1/admin/user/{user_id}', headers=admin_headers)).status_code == 404

    async def test_instrument_admin(self, client, admin_headers):
        assert (await client.post('/api/v1/admin/instrument', headers=admin_headers, json={'ticker': 'ETH', 'name': 'Ether'})).status_code == 200
        assert (await client.post('/api/v1/admin/instrument', headers=admin_headers, json={'ticker': 'eth', 'name': 'Ether'})).status_code == 409

        listed = (await client.get('/api/v1/public/instrument')).json()
        assert [item['ticker'] for item in listed] == ['ETH']

        assert (await client.delete('/api/v1/admin/instrument/eth', headers=admin_headers)).status_code == 200
        assert (await client.delete('/api/v1/admin/instrument/eth', headers=admin_headers)).status_code == 404
