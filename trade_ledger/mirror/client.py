"""Supabase (PostgREST) backend for the mirror store.

Tables are reached under ``/rest/v1/<table>`` and the wallet mutation under
``/rest/v1/rpc/apply_transaction``; the RPC is expected to implement the
same key-first, guarded-update semantics as ``TransactionApplier``.
"""
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

import httpx

from trade_ledger.errors import InsufficientBalance, SyncFailure
from trade_ledger.mirror.applier import ApplyResult, WalletBalance, WalletKind
from trade_ledger.mirror.store import MirrorStore, MirrorUser
from trade_ledger.money import ZERO
from trade_ledger.logger import logger


class SupabaseMirrorStore(MirrorStore):
    def __init__(
        self,
        url: str,
        service_role_key: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        if not url or not service_role_key:
            raise ValueError('SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required for the supabase mirror backend')

        self.client = httpx.AsyncClient(
            base_url=f'{url.rstrip("/")}/rest/v1',
            headers={
                'apikey': service_role_key,
                'Authorization': f'Bearer {service_role_key}',
                'Content-Type': 'application/json',
                'Prefer': 'return=representation'
            },
            timeout=timeout,
            transport=transport
        )

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f'[supabase] {method} {path} failed: {e}')
            raise SyncFailure(f'Mirror request failed: {e}')

        data = response.json() if response.content else None
        if response.status_code >= 400:
            message = f'HTTP {response.status_code}'
            if isinstance(data, dict):
                message = data.get('message') or data.get('error') or data.get('hint') or message
            logger.error(f'[supabase] {method} {path} returned {response.status_code}: {message}')
            if 'insufficient' in message.lower():
                raise InsufficientBalance(message)
            raise SyncFailure(f'Mirror error: {message}')
        return data

    async def rpc(self, name: str, params: dict) -> Any:
        data = await self._request('POST', f'/rpc/{name}', json=params)
        if isinstance(data, list) and len(data) == 1:
            return data[0]
        return data

    @staticmethod
    def _user(row: dict) -> MirrorUser:
        return MirrorUser(
            id=UUID(str(row['id'])),
            email=row['email'],
            first_name=row.get('first_name') or '',
            last_name=row.get('last_name') or '',
            is_active=bool(row.get('is_active', True))
        )

    async def _first(self, table: str, params: dict) -> Optional[dict]:
        rows = await self._request('GET', f'/{table}', params={**params, 'select': '*', 'limit': '1'})
        return rows[0] if rows else None

    async def get_user(self, user_id: UUID) -> Optional[MirrorUser]:
        row = await self._first('mirror_users', {'id': f'eq.{user_id}'})
        return self._user(row) if row else None

    async def find_user_by_email(self, email: str) -> Optional[MirrorUser]:
        row = await self._first('mirror_users', {'email': f'eq.{email.strip().lower()}'})
        return self._user(row) if row else None

    async def upsert_user(self, user: MirrorUser) -> MirrorUser:
        rows = await self._request(
            'POST',
            '/mirror_users',
            params={'on_conflict': 'id'},
            headers={'Prefer': 'resolution=merge-duplicates,return=representation'},
            json={
                'id': str(user.id),
                'email': user.email.strip().lower(),
                'first_name': user.first_name,
                'last_name': user.last_name,
                'is_active': user.is_active
            }
        )
        return self._user(rows[0]) if rows else user

    async def get_wallet(self, user_id: UUID, currency: str) -> WalletBalance:
        row = await self._first('mirror_wallets', {'user_id': f'eq.{user_id}', 'currency': f'eq.{currency}'})
        if not row:
            return WalletBalance(currency=currency)
        return WalletBalance(
            currency=currency,
            available=Decimal(str(row.get('available') or 0)),
            locked=Decimal(str(row.get('locked') or 0))
        )

    async def apply_transaction(
        self,
        user_id: UUID,
        amount,
        kind: WalletKind,
        currency: str,
        idempotency_key: str,
        metadata: Optional[dict] = None
    ) -> ApplyResult:
        data = await self.rpc('apply_transaction', {
            'p_user_id': str(user_id),
            'p_amount': str(amount),
            'p_kind': WalletKind(kind).value,
            'p_currency': currency,
            'p_idempotency_key': idempotency_key,
            'p_metadata': metadata or {}
        })
        data = data or {}
        if data.get('success') is False:
            message = data.get('error') or 'apply_transaction rejected'
            if 'insufficient' in message.lower():
                raise InsufficientBalance(message)
            raise SyncFailure(message)

        return ApplyResult(
            applied=bool(data.get('applied', not data.get('duplicate', False))),
            duplicate=bool(data.get('duplicate', False)),
            balance=WalletBalance(
                currency=currency,
                available=Decimal(str(data.get('available', ZERO))),
                locked=Decimal(str(data.get('locked', ZERO)))
            )
        )

    async def close(self):
        await self.client.aclose()
