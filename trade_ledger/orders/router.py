from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request

from trade_ledger.database import SessionDep
from trade_ledger.market.prices import MarketPriceService
from trade_ledger.orders import service as order_service
from trade_ledger.orders.models import StatusEnum
from trade_ledger.orders.schemas import (
    OpenOrderBodySchema, CreateOrderResponseSchema, CloseOrderResponseSchema,
    CancelOrderResponseSchema, OrderSchema, PositionSchema, TriggerResultSchema
)
from trade_ledger.sync.dispatch import schedule_sync
from trade_ledger.users.auth import AuthenticatedUser
from trade_ledger.users.dependencies import get_current_user
from trade_ledger.logger import logger


order_router = APIRouter()

def get_prices(request: Request) -> MarketPriceService:
    return request.app.state.prices

def _closed_schema(closed: order_service.ClosedOrder) -> CloseOrderResponseSchema:
    return CloseOrderResponseSchema(
        order_id=closed.order_id,
        exit_price=closed.exit_price,
        pnl=closed.pnl,
        reason=closed.reason,
        status=closed.status
    )

@order_router.post('/api/v1/order', response_model=CreateOrderResponseSchema, tags=['order'])
async def create_order(
    session: SessionDep,
    order_data: OpenOrderBodySchema,
    request: Request,
    background_tasks: BackgroundTasks,
    prices: MarketPriceService = Depends(get_prices),
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    logger.info(f'[POST /api/v1/order] Open requested: user_id={current_user.id}, symbol={order_data.symbol}, side={order_data.side}, collateral={order_data.collateral}, type={order_data.order_type}')

    order = await order_service.open_order(
        session,
        current_user.id,
        prices,
        symbol=order_data.symbol,
        side=order_data.side,
        collateral=order_data.collateral,
        order_type=order_data.order_type,
        limit_price=order_data.limit_price,
        take_profit=order_data.take_profit,
        stop_loss=order_data.stop_loss
    )

    schedule_sync(background_tasks, request, current_user.id)
    logger.info(f'[POST /api/v1/order] Order opened: id={order.id}, entry_price={order.entry_price}')
    return CreateOrderResponseSchema(order_id=order.id, entry_price=order.entry_price, status=order.status)

@order_router.get('/api/v1/order/positions', response_model=list[PositionSchema], tags=['order'])
async def get_open_positions(
    session: SessionDep,
    prices: MarketPriceService = Depends(get_prices),
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    positions = await order_service.list_open_positions(session, current_user.id, prices)
    logger.info(f'[GET /api/v1/order/positions] user_id={current_user.id}, open positions: {len(positions)}')
    return positions

@order_router.post('/api/v1/order/check-triggers', response_model=TriggerResultSchema, tags=['order'])
async def check_triggers(
    session: SessionDep,
    request: Request,
    background_tasks: BackgroundTasks,
    prices: MarketPriceService = Depends(get_prices),
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    closed = await order_service.check_triggers(session, current_user.id, prices)
    if closed:
        schedule_sync(background_tasks, request, current_user.id)
    logger.info(f'[POST /api/v1/order/check-triggers] user_id={current_user.id}, closed: {[str(item.order_id) for item in closed]}')
    return TriggerResultSchema(closed=[_closed_schema(item) for item in closed])

@order_router.get('/api/v1/order', response_model=list[OrderSchema], tags=['order'])
async def get_orders(
    session: SessionDep,
    status: Optional[StatusEnum] = None,
    limit: int = Query(default=100, ge=1, le=500),
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    orders = await order_service.list_orders(session, current_user.id, status=status, limit=limit)
    logger.info(f'[GET /api/v1/order] user_id={current_user.id}, orders returned: {len(orders)}')
    return orders

@order_router.get('/api/v1/order/{order_id}', response_model=OrderSchema, tags=['order'])
async def get_order(
    session: SessionDep,
    order_id: UUID,
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    return await order_service.get_order(session, current_user.id, order_id)

@order_router.post('/api/v1/order/{order_id}/close', response_model=CloseOrderResponseSchema, tags=['order'])
async def close_order(
    session: SessionDep,
    order_id: UUID,
    request: Request,
    background_tasks: BackgroundTasks,
    prices: MarketPriceService = Depends(get_prices),
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    logger.info(f'[POST /api/v1/order/{order_id}/close] Close requested: user_id={current_user.id}')

    order = await order_service.get_order(session, current_user.id, order_id)
    exit_price = await order_service.current_price(session, prices, order.ticker)

    closed = await order_service.close_order(session, current_user.id, order_id, exit_price)

    schedule_sync(background_tasks, request, current_user.id)
    return _closed_schema(closed)

@order_router.delete('/api/v1/order/{order_id}', response_model=CancelOrderResponseSchema, tags=['order'])
async def cancel_order(
    session: SessionDep,
    order_id: UUID,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    logger.info(f'[DELETE /api/v1/order/{order_id}] Cancel requested: user_id={current_user.id}')

    order = await order_service.cancel_order(session, current_user.id, order_id)

    schedule_sync(background_tasks, request, current_user.id)
    return CancelOrderResponseSchema(order_id=order.id, status=order.status)
