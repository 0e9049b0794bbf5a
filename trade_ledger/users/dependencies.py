from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from trade_ledger.database import SessionDep
from trade_ledger.errors import Unauthorized, Forbidden
from trade_ledger.users.auth import AuthenticatedUser, resolve


bearer_scheme = HTTPBearer(auto_error=False)


async def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> Optional[str]:
    return credentials.credentials if credentials else None

async def get_current_user(
    session: SessionDep,
    token: Optional[str] = Depends(get_bearer_token)
) -> AuthenticatedUser:
    if not token:
        raise Unauthorized('Token required')

    user = await resolve(session, token)
    if not user:
        raise Unauthorized('Invalid or expired token')
    return user

async def get_current_admin(
    current_user: AuthenticatedUser = Depends(get_current_user)
) -> AuthenticatedUser:
    if not current_user.is_admin:
        raise Forbidden('Admin role required')
    return current_user
