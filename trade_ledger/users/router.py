from fastapi import APIRouter, BackgroundTasks, Depends, Request

from trade_ledger.database import SessionDep
from trade_ledger.errors import UserNotFound
from trade_ledger.schemas import OkResponseSchema
from trade_ledger.sync.dispatch import schedule_sync
from trade_ledger.sync.outbox import enqueue_user_sync
from trade_ledger.users import auth
from trade_ledger.users.auth import AuthenticatedUser
from trade_ledger.users.dependencies import get_current_user, get_current_admin, get_bearer_token
from trade_ledger.users.models import UserModel, UserStatusEnum
from trade_ledger.users.schemas import UserRegistrationSchema, UserLoginSchema, UserSchema, AuthResponseSchema
from trade_ledger.logger import logger


auth_router = APIRouter()

def _user_schema(user) -> UserSchema:
    return UserSchema(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        role=user.role,
        status=user.status
    )

@auth_router.post('/api/v1/public/register', response_model=AuthResponseSchema, tags=['public'])
async def register_user(
    user_data: UserRegistrationSchema,
    session: SessionDep,
    request: Request,
    background_tasks: BackgroundTasks
):
    logger.info(f'[POST /api/v1/public/register] Registration started: email={user_data.email}')

    new_user = await auth.register_user(
        session,
        email=user_data.email,
        password=user_data.password,
        first_name=user_data.first_name,
        last_name=user_data.last_name
    )
    await enqueue_user_sync(session, new_user.id)
    new_session = await auth.create_session(session, new_user.id, remember=True)
    await session.commit()

    schedule_sync(background_tasks, request, new_user.id)
    logger.info(f'[POST /api/v1/public/register] User registered: id={new_user.id}, email={new_user.email}')

    return AuthResponseSchema(token=new_session.token, user=_user_schema(new_user))

@auth_router.post('/api/v1/public/login', response_model=AuthResponseSchema, tags=['public'])
async def login_user(
    login_data: UserLoginSchema,
    session: SessionDep
):
    logger.info(f'[POST /api/v1/public/login] Login attempt: email={login_data.email}')

    user = await auth.authenticate(session, login_data.email, login_data.password)
    new_session = await auth.create_session(session, user.id, remember=login_data.remember)
    await session.commit()

    logger.info(f'[POST /api/v1/public/login] Login succeeded: user_id={user.id}')
    return AuthResponseSchema(token=new_session.token, user=_user_schema(user))

@auth_router.post('/api/v1/logout', response_model=OkResponseSchema, tags=['user'])
async def logout_user(
    session: SessionDep,
    token: str = Depends(get_bearer_token),
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    await auth.delete_session(session, token)
    await session.commit()
    logger.info(f'[POST /api/v1/logout] Session closed: user_id={current_user.id}')
    return {'success': True}

@auth_router.get('/api/v1/me', response_model=UserSchema, tags=['user'])
async def get_me(
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    return _user_schema(current_user)

@auth_router.post('/api/v1/admin/user/{user_id}/deactivate', response_model=UserSchema, tags=['admin', 'user'])
async def deactivate_user(
    session: SessionDep,
    user_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    admin_user: AuthenticatedUser = Depends(get_current_admin)
):
    logger.info(f'[POST /api/v1/admin/user/{user_id}/deactivate] Deactivation requested: admin_id={admin_user.id}')

    user = await session.get(UserModel, user_id, with_for_update=True)
    if not user:
        logger.warning(f'[POST /api/v1/admin/user/{user_id}/deactivate] User not found')
        raise UserNotFound()

    user.status = UserStatusEnum.INACTIVE
    await enqueue_user_sync(session, user.id)
    await session.commit()

    schedule_sync(background_tasks, request, user.id)
    logger.info(f'[POST /api/v1/admin/user/{user_id}/deactivate] User deactivated: email={user.email}')
    return _user_schema(user)

@auth_router.delete('/api/v1/admin/user/{user_id}', response_model=UserSchema, tags=['admin', 'user'])
async def delete_user(
    session: SessionDep,
    user_id: int,
    admin_user: AuthenticatedUser = Depends(get_current_admin)
):
    logger.info(f'[DELETE /api/v1/admin/user/{user_id}] Hard delete requested: admin_id={admin_user.id}, admin_email={admin_user.email}')

    user = await session.get(UserModel, user_id)
    if not user:
        logger.warning(f'[DELETE /api/v1/admin/user/{user_id}] User not found')
        raise UserNotFound()

    deleted_user = _user_schema(user)

    await session.delete(user)
    await session.commit()

    logger.info(f'[DELETE /api/v1/admin/user/{user_id}] User deleted with sessions, balances, orders and transactions: email={deleted_user.email}')
    return deleted_user
