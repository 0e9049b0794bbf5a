from fastapi import APIRouter, BackgroundTasks, Depends, Request

from trade_ledger.database import SessionDep
from trade_ledger.balance import service as balance_service
from trade_ledger.balance.schemas import BalanceSchema, BalanceOperationSchema, BalanceOperationResponseSchema
from trade_ledger.errors import DuplicateOperation, UserNotFound
from trade_ledger.money import USD
from trade_ledger.sync.dispatch import schedule_sync
from trade_ledger.transactions.models import TransactionTypeEnum
from trade_ledger.users.auth import AuthenticatedUser
from trade_ledger.users.dependencies import get_current_admin, get_current_user
from trade_ledger.users.models import UserModel
from trade_ledger.logger import logger


balance_router = APIRouter()

def _schema(view: balance_service.BalanceView) -> BalanceSchema:
    return BalanceSchema(currency=view.currency, available=view.available, locked=view.locked)

@balance_router.get('/api/v1/balance', response_model=BalanceSchema, tags=['balance'])
async def get_balance(
    session: SessionDep,
    currency: str = USD,
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    view = await balance_service.get_balance(session, current_user.id, currency.upper())
    logger.info(f'[GET /api/v1/balance] user_id={current_user.id}, currency={view.currency}, available={view.available}, locked={view.locked}')
    return _schema(view)

@balance_router.get('/api/v1/balances', response_model=list[BalanceSchema], tags=['balance'])
async def get_balances(
    session: SessionDep,
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    views = await balance_service.list_balances(session, current_user.id)
    logger.info(f'[GET /api/v1/balances] user_id={current_user.id}, currencies={[view.currency for view in views]}')
    return [_schema(view) for view in views]

async def _admin_entry(
    session,
    balance_data: BalanceOperationSchema,
    admin_user: AuthenticatedUser,
    type: TransactionTypeEnum,
    route: str
) -> BalanceOperationResponseSchema:
    logger.info(f'[{route}] Admin {admin_user.id} requested {type.value}: user_id={balance_data.user_id}, currency={balance_data.currency}, amount={balance_data.amount}')

    user = await session.get(UserModel, balance_data.user_id)
    if not user:
        logger.warning(f'[{route}] User {balance_data.user_id} not found')
        raise UserNotFound()

    amount = balance_data.amount if type == TransactionTypeEnum.DEPOSIT else -balance_data.amount
    duplicate = False
    try:
        await balance_service.post_entry(
            session,
            user_id=user.id,
            currency=balance_data.currency,
            amount=amount,
            type=type,
            idempotency_key=balance_data.idempotency_key,
            description=balance_data.description or f'{type.value.title()} {balance_data.amount} {balance_data.currency} by admin {admin_user.id}'
        )
        await session.commit()
    except DuplicateOperation:
        await session.rollback()
        duplicate = True

    view = await balance_service.get_balance(session, balance_data.user_id, balance_data.currency)
    logger.info(f'[{route}] Done: user_id={balance_data.user_id}, duplicate={duplicate}, available={view.available}, locked={view.locked}')
    return BalanceOperationResponseSchema(duplicate=duplicate, balance=_schema(view))

@balance_router.post('/api/v1/admin/balance/deposit', response_model=BalanceOperationResponseSchema, tags=['admin', 'balance'])
async def deposit_balance(
    balance_data: BalanceOperationSchema,
    session: SessionDep,
    request: Request,
    background_tasks: BackgroundTasks,
    admin_user: AuthenticatedUser = Depends(get_current_admin)
):
    response = await _admin_entry(session, balance_data, admin_user, TransactionTypeEnum.DEPOSIT, 'POST /api/v1/admin/balance/deposit')
    schedule_sync(background_tasks, request, balance_data.user_id)
    return response

@balance_router.post('/api/v1/admin/balance/withdraw', response_model=BalanceOperationResponseSchema, tags=['admin', 'balance'])
async def withdraw_balance(
    balance_data: BalanceOperationSchema,
    session: SessionDep,
    request: Request,
    background_tasks: BackgroundTasks,
    admin_user: AuthenticatedUser = Depends(get_current_admin)
):
    response = await _admin_entry(session, balance_data, admin_user, TransactionTypeEnum.WITHDRAWAL, 'POST /api/v1/admin/balance/withdraw')
    schedule_sync(background_tasks, request, balance_data.user_id)
    return response
