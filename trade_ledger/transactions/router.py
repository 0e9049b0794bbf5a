from typing import Optional

from fastapi import APIRouter, Depends, Query

from trade_ledger.database import SessionDep
from trade_ledger.transactions.schemas import TransactionSchema
from trade_ledger.transactions.service import list_transactions
from trade_ledger.users.auth import AuthenticatedUser
from trade_ledger.users.dependencies import get_current_user
from trade_ledger.logger import logger


transaction_router = APIRouter()

@transaction_router.get('/api/v1/transactions', response_model=list[TransactionSchema], tags=['balance'])
async def get_transaction_history(
    session: SessionDep,
    currency: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=100),
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    logger.info(f'[GET /api/v1/transactions] History requested: user_id={current_user.id}, currency={currency}, limit={limit}')
    transactions = await list_transactions(
        session,
        current_user.id,
        currency=currency.upper() if currency else None,
        limit=limit
    )
    logger.info(f'[GET /api/v1/transactions] Transactions returned: {len(transactions)}')
    return transactions
