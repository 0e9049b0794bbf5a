import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy import select

from trade_ledger import config
from trade_ledger.database import SessionDep
from trade_ledger.balance.models import BalanceModel
from trade_ledger.errors import Internal, Unauthorized, UserNotFound
from trade_ledger.sync.engine import SyncEngine
from trade_ledger.sync.models import IdentityLinkModel
from trade_ledger.sync.outbox import enqueue_balance_sync, enqueue_user_sync
from trade_ledger.sync.schemas import WebhookBodySchema, WebhookResponseSchema, ResyncResponseSchema
from trade_ledger.users.auth import AuthenticatedUser
from trade_ledger.users.dependencies import get_current_admin
from trade_ledger.users.models import UserModel
from trade_ledger.logger import logger


sync_router = APIRouter()

def get_sync_engine(request: Request) -> SyncEngine:
    return request.app.state.sync_engine

def verify_webhook_secret(x_webhook_secret: Optional[str] = Header(default=None)):
    if not config.WEBHOOK_SECRET:
        logger.error('[POST /api/v1/webhook] WEBHOOK_SECRET is not configured, rejecting')
        raise Internal('Webhook secret is not configured')
    if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret.encode(), config.WEBHOOK_SECRET.encode()):
        logger.warning('[POST /api/v1/webhook] Invalid webhook secret')
        raise Unauthorized('Invalid webhook secret')

@sync_router.post('/api/v1/webhook', response_model=WebhookResponseSchema, tags=['webhook'], dependencies=[Depends(verify_webhook_secret)])
async def receive_webhook(
    body: WebhookBodySchema,
    engine: SyncEngine = Depends(get_sync_engine)
):
    logger.info(f'[POST /api/v1/webhook] Update received: type={body.type}, email={body.payload.get("email")}')
    result = await engine.handle_inbound_update(body.type, body.payload)
    return WebhookResponseSchema(type=result.kind, applied=result.applied, duplicate=result.duplicate)

@sync_router.post('/api/v1/admin/sync/user/{user_id}', response_model=ResyncResponseSchema, tags=['admin'])
async def resync_user(
    session: SessionDep,
    user_id: int,
    request: Request,
    admin_user: AuthenticatedUser = Depends(get_current_admin)
):
    logger.info(f'[POST /api/v1/admin/sync/user/{user_id}] Resync requested: admin_id={admin_user.id}')

    if not await session.get(UserModel, user_id):
        raise UserNotFound()

    currencies = (await session.scalars(
        select(BalanceModel.currency).where(BalanceModel.user_id == user_id)
    )).all()
    await enqueue_user_sync(session, user_id)
    for currency in currencies:
        await enqueue_balance_sync(session, user_id, currency)
    await session.commit()

    response = ResyncResponseSchema(queued=1 + len(currencies))
    worker = getattr(request.app.state, 'sync_worker', None)
    if worker is not None:
        stats = await worker.drain(user_id)
        response.done, response.retried, response.failed, response.busy = stats.done, stats.retried, stats.failed, stats.busy

    response.mirror_user_id = await session.scalar(
        select(IdentityLinkModel.mirror_user_id).where(IdentityLinkModel.primary_user_id == user_id)
    )
    logger.info(f'[POST /api/v1/admin/sync/user/{user_id}] Resync finished: {response.model_dump()}')
    return response
