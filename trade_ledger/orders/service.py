"""Order Ledger.

Positions are USD-collateral margin orders. Opening moves the collateral
from ``available`` to ``locked``; closing releases it and settles the P&L
into ``available``. Each public operation runs in the caller's session and
commits it, writing the order, its transaction row and a sync job together.

States: PENDING (resting limit) -> OPEN (filled position) -> FILLED
(closed), and PENDING -> CANCELLED. Every transition is an UPDATE guarded
on the previous status.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID, uuid4

from sqlalchemy import select, update, desc
from sqlalchemy.ext.asyncio import AsyncSession

from trade_ledger.balance import service as balance_service
from trade_ledger.errors import InvalidTriggerPrice, LedgerError, OrderNotFound, ValidationError
from trade_ledger.instruments.models import InstrumentModel
from trade_ledger.market.prices import MarketPriceService
from trade_ledger.money import USD, ZERO, round_price, round_usd, to_decimal
from trade_ledger.orders.models import OrderModel, DirectionEnum, OrderTypeEnum, StatusEnum
from trade_ledger.sync.outbox import enqueue_balance_sync
from trade_ledger.transactions.models import TransactionTypeEnum, TransactionStatusEnum
from trade_ledger.transactions.service import record_transaction
from trade_ledger.logger import logger


TRIGGER_TOLERANCE = Decimal('0.0001')

TAKE_PROFIT = 'Take Profit'
STOP_LOSS = 'Stop Loss'
MANUAL = 'Manual'


@dataclass(frozen=True)
class ClosedOrder:
    order_id: UUID
    ticker: str
    direction: DirectionEnum
    collateral: Decimal
    entry_price: Decimal
    exit_price: Decimal
    pnl: Decimal
    reason: str
    status: StatusEnum = StatusEnum.FILLED


@dataclass(frozen=True)
class Position:
    order_id: UUID
    ticker: str
    direction: DirectionEnum
    collateral: Decimal
    entry_price: Decimal
    current_price: Decimal
    unrealized_pnl: Decimal
    pnl_percent: Decimal
    take_profit: Optional[Decimal]
    stop_loss: Optional[Decimal]
    opened_at: datetime


def order_key(user_id: int, order_id: UUID, event: str) -> str:
    return f'{user_id}_{USD}_order_{order_id}_{event}'

def parse_direction(side: Union[str, DirectionEnum]) -> DirectionEnum:
    if isinstance(side, DirectionEnum):
        return side
    try:
        return DirectionEnum(str(side).strip().upper())
    except ValueError:
        raise ValidationError('Side must be buy or sell')

def parse_order_type(order_type: Union[str, OrderTypeEnum]) -> OrderTypeEnum:
    if isinstance(order_type, OrderTypeEnum):
        return order_type
    try:
        return OrderTypeEnum(str(order_type).strip().upper())
    except ValueError:
        raise ValidationError('Order type must be market or limit')

def compute_pnl(direction: DirectionEnum, entry_price, exit_price, collateral) -> Decimal:
    """Realized P&L in USD, rounded to cents.

    BUY earns (exit - entry) / entry of the collateral, SELL the inverse. A
    loss never exceeds the collateral.
    """
    entry_price = to_decimal(entry_price, 'entry price')
    exit_price = to_decimal(exit_price, 'exit price')
    collateral = to_decimal(collateral, 'collateral')
    if entry_price <= 0:
        raise ValidationError('Entry price must be positive')

    if direction == DirectionEnum.BUY:
        move = exit_price - entry_price
    else:
        move = entry_price - exit_price

    pnl = round_usd(move / entry_price * collateral)
    return max(pnl, -collateral)

def validate_triggers(direction: DirectionEnum, reference_price: Decimal, take_profit: Optional[Decimal], stop_loss: Optional[Decimal]):
    low = reference_price * (1 - TRIGGER_TOLERANCE)
    high = reference_price * (1 + TRIGGER_TOLERANCE)

    for name, price in (('Take profit', take_profit), ('Stop loss', stop_loss)):
        if price is not None and price <= 0:
            raise InvalidTriggerPrice(f'{name} must be positive')

    if direction == DirectionEnum.BUY:
        if take_profit is not None and take_profit < low:
            raise InvalidTriggerPrice(f'Take profit must be at or above {reference_price}')
        if stop_loss is not None and stop_loss > high:
            raise InvalidTriggerPrice(f'Stop loss must be at or below {reference_price}')
    else:
        if take_profit is not None and take_profit > high:
            raise InvalidTriggerPrice(f'Take profit must be at or below {reference_price}')
        if stop_loss is not None and stop_loss < low:
            raise InvalidTriggerPrice(f'Stop loss must be at or above {reference_price}')

def trigger_reason(direction: DirectionEnum, price: Decimal, take_profit: Optional[Decimal], stop_loss: Optional[Decimal]) -> Optional[str]:
    if direction == DirectionEnum.BUY:
        if take_profit is not None and price >= take_profit:
            return TAKE_PROFIT
        if stop_loss is not None and price <= stop_loss:
            return STOP_LOSS
    else:
        if take_profit is not None and price <= take_profit:
            return TAKE_PROFIT
        if stop_loss is not None and price >= stop_loss:
            return STOP_LOSS
    return None

def limit_marketable(direction: DirectionEnum, limit_price: Decimal, market_price: Decimal) -> bool:
    if direction == DirectionEnum.BUY:
        return market_price <= limit_price
    return market_price >= limit_price

async def current_price(session: AsyncSession, prices: MarketPriceService, ticker: str) -> Decimal:
    reference_price = await session.scalar(
        select(InstrumentModel.reference_price).where(InstrumentModel.ticker == ticker)
    )
    return await prices.get_price(ticker, reference_price)


async def open_order(
    session: AsyncSession,
    user_id: int,
    prices: MarketPriceService,
    symbol: str,
    side: Union[str, DirectionEnum],
    collateral,
    order_type: Union[str, OrderTypeEnum] = OrderTypeEnum.MARKET,
    limit_price=None,
    take_profit=None,
    stop_loss=None
) -> OrderModel:
    """Lock collateral and place an order.

    MARKET orders fill at the current market price. A LIMIT order whose
    limit is already reached fills at the market price too; otherwise it
    rests as PENDING and is filled by ``check_triggers`` at its limit.
    """
    direction = parse_direction(side)
    order_type = parse_order_type(order_type)
    collateral = round_usd(to_decimal(collateral, 'collateral'))
    if collateral <= 0:
        raise ValidationError('Collateral must be positive')

    ticker = (symbol or '').strip().upper()
    instrument = await session.get(InstrumentModel, ticker)
    if not instrument:
        logger.warning(f'[open_order] Unknown instrument: ticker={ticker}')
        raise ValidationError(f'Unknown instrument {ticker}')

    market_price = round_price(await prices.get_price(ticker, instrument.reference_price))
    entry_price = market_price
    status = StatusEnum.OPEN
    if order_type == OrderTypeEnum.LIMIT:
        if limit_price is None or to_decimal(limit_price, 'limit price') <= 0:
            raise ValidationError('Limit orders require a positive limit price')
        limit_price = round_price(limit_price)
        if not limit_marketable(direction, limit_price, market_price):
            entry_price = limit_price
            status = StatusEnum.PENDING

    take_profit = round_price(take_profit) if take_profit is not None else None
    stop_loss = round_price(stop_loss) if stop_loss is not None else None
    validate_triggers(direction, market_price, take_profit, stop_loss)
    if status == StatusEnum.PENDING:
        validate_triggers(direction, entry_price, take_profit, stop_loss)

    logger.info(f'[open_order] user_id={user_id}, ticker={ticker}, direction={direction.value}, type={order_type.value}, collateral={collateral}, market_price={market_price}, entry_price={entry_price}, status={status.value}, tp={take_profit}, sl={stop_loss}')

    await balance_service.lock(session, user_id, USD, collateral)

    now = datetime.now(timezone.utc)
    order = OrderModel(
        id=uuid4(),
        user_id=user_id,
        ticker=ticker,
        direction=direction,
        order_type=order_type,
        collateral=collateral,
        entry_price=entry_price,
        take_profit=take_profit,
        stop_loss=stop_loss,
        status=status,
        opened_at=now,
        filled_at=now if status == StatusEnum.OPEN else None
    )
    session.add(order)
    await session.flush()

    action = 'Open' if status == StatusEnum.OPEN else 'Place limit'
    await record_transaction(
        session,
        user_id=user_id,
        type=TransactionTypeEnum.TRADE_OPEN,
        currency=USD,
        amount=-collateral,
        status=TransactionStatusEnum.HOLD,
        order_id=order.id,
        idempotency_key=order_key(user_id, order.id, 'open'),
        description=f'{action} {direction.value} {ticker} @ {entry_price}'
    )
    await enqueue_balance_sync(session, user_id, USD)
    await session.commit()

    logger.info(f'[open_order] Order placed: id={order.id}, user_id={user_id}, status={status.value}')
    return order

async def fill_order(session: AsyncSession, user_id: int, order_id: UUID) -> bool:
    """Fill a PENDING limit order at its limit price. False if it is no longer pending."""
    result = await session.execute(
        update(OrderModel)
        .where(OrderModel.id == order_id)
        .where(OrderModel.user_id == user_id)
        .where(OrderModel.status == StatusEnum.PENDING)
        .values(status=StatusEnum.OPEN, filled_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await session.rollback()
        return False
    await session.commit()
    logger.info(f'[fill_order] Limit order filled: id={order_id}, user_id={user_id}')
    return True

async def close_order(
    session: AsyncSession,
    user_id: int,
    order_id: UUID,
    exit_price,
    reason: Optional[str] = None
) -> ClosedOrder:
    exit_price = round_price(exit_price)
    if exit_price <= 0:
        raise ValidationError('Exit price must be positive')
    reason = reason or MANUAL

    order = await session.scalar(
        select(OrderModel)
        .where(OrderModel.id == order_id)
        .where(OrderModel.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if not order or order.status != StatusEnum.OPEN:
        logger.warning(f'[close_order] No open order: id={order_id}, user_id={user_id}')
        raise OrderNotFound('Open order not found')

    collateral = order.collateral
    pnl = compute_pnl(order.direction, order.entry_price, exit_price, collateral)
    closed_at = datetime.now(timezone.utc)

    result = await session.execute(
        update(OrderModel)
        .where(OrderModel.id == order_id)
        .where(OrderModel.status == StatusEnum.OPEN)
        .values(
            status=StatusEnum.FILLED,
            closed_at=closed_at,
            exit_price=exit_price,
            realized_pnl=pnl,
            close_reason=reason
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.warning(f'[close_order] Order closed concurrently: id={order_id}')
        raise OrderNotFound('Open order not found')

    await balance_service.unlock(session, user_id, USD, collateral)
    if pnl > 0:
        await balance_service.credit(session, user_id, USD, pnl)
    elif pnl < 0:
        await balance_service.debit(session, user_id, USD, -pnl)

    await record_transaction(
        session,
        user_id=user_id,
        type=TransactionTypeEnum.TRADE_CLOSE,
        currency=USD,
        amount=pnl,
        order_id=order_id,
        idempotency_key=order_key(user_id, order_id, 'close'),
        description=f'Close {order.direction.value} {order.ticker} @ {exit_price} ({reason})'
    )
    await enqueue_balance_sync(session, user_id, USD)

    closed = ClosedOrder(
        order_id=order_id,
        ticker=order.ticker,
        direction=order.direction,
        collateral=collateral,
        entry_price=order.entry_price,
        exit_price=exit_price,
        pnl=pnl,
        reason=reason
    )
    await session.commit()

    logger.info(f'[close_order] Order closed: id={order_id}, user_id={user_id}, exit_price={exit_price}, pnl={pnl}, reason={reason}')
    return closed

async def cancel_order(session: AsyncSession, user_id: int, order_id: UUID) -> OrderModel:
    """Cancel a limit order that has never filled and release its collateral.

    A filled position is closed at the market price instead.
    """
    order = await session.scalar(
        select(OrderModel)
        .where(OrderModel.id == order_id)
        .where(OrderModel.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if not order or order.status not in (StatusEnum.PENDING, StatusEnum.OPEN):
        logger.warning(f'[cancel_order] No open order: id={order_id}, user_id={user_id}')
        raise OrderNotFound('Open order not found')
    if order.status == StatusEnum.OPEN:
        logger.warning(f'[cancel_order] Order already filled, close it instead: id={order_id}, user_id={user_id}')
        raise ValidationError('Order is already filled, close the position instead')

    result = await session.execute(
        update(OrderModel)
        .where(OrderModel.id == order_id)
        .where(OrderModel.status == StatusEnum.PENDING)
        .values(status=StatusEnum.CANCELLED, closed_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise OrderNotFound('Open order not found')

    await balance_service.unlock(session, user_id, USD, order.collateral)
    await enqueue_balance_sync(session, user_id, USD)
    await session.commit()

    order = await get_order(session, user_id, order_id)
    logger.info(f'[cancel_order] Order cancelled: id={order_id}, user_id={user_id}, released={order.collateral}')
    return order

async def fill_pending_orders(session: AsyncSession, user_id: int, prices: MarketPriceService) -> list[UUID]:
    result = await session.execute(
        select(OrderModel.id, OrderModel.ticker, OrderModel.direction, OrderModel.entry_price)
        .where(OrderModel.user_id == user_id)
        .where(OrderModel.status == StatusEnum.PENDING)
        .order_by(OrderModel.opened_at)
    )
    candidates = result.all()

    filled = []
    for order_id, ticker, direction, limit_price in candidates:
        try:
            price = await current_price(session, prices, ticker)
            if not limit_marketable(direction, limit_price, price):
                continue
            if await fill_order(session, user_id, order_id):
                logger.info(f'[check_triggers] Limit reached: order_id={order_id}, ticker={ticker}, limit={limit_price}, price={price}')
                filled.append(order_id)
        except LedgerError as e:
            await session.rollback()
            logger.error(f'[check_triggers] Failed to fill order {order_id}: {e.message}')
    return filled

async def check_triggers(session: AsyncSession, user_id: int, prices: MarketPriceService) -> list[ClosedOrder]:
    """Fill pending limit orders whose limit is reached, then close OPEN
    positions whose take profit or stop loss is hit at the current price.
    """
    await fill_pending_orders(session, user_id, prices)

    result = await session.execute(
        select(OrderModel.id, OrderModel.ticker, OrderModel.direction, OrderModel.take_profit, OrderModel.stop_loss)
        .where(OrderModel.user_id == user_id)
        .where(OrderModel.status == StatusEnum.OPEN)
        .where((OrderModel.take_profit.is_not(None)) | (OrderModel.stop_loss.is_not(None)))
        .order_by(OrderModel.opened_at)
    )
    candidates = result.all()

    closed = []
    for order_id, ticker, direction, take_profit, stop_loss in candidates:
        try:
            price = await current_price(session, prices, ticker)
            reason = trigger_reason(direction, price, take_profit, stop_loss)
            if reason is None:
                continue
            logger.info(f'[check_triggers] {reason} hit: order_id={order_id}, ticker={ticker}, price={price}')
            closed.append(await close_order(session, user_id, order_id, price, reason))
        except LedgerError as e:
            await session.rollback()
            logger.error(f'[check_triggers] Failed to close order {order_id}: {e.message}')

    return closed

def _position(order: OrderModel, price: Decimal) -> Position:
    pnl = compute_pnl(order.direction, order.entry_price, price, order.collateral)
    percent = (pnl / order.collateral * 100).quantize(Decimal('0.01')) if order.collateral else ZERO
    return Position(
        order_id=order.id,
        ticker=order.ticker,
        direction=order.direction,
        collateral=order.collateral,
        entry_price=order.entry_price,
        current_price=price,
        unrealized_pnl=pnl,
        pnl_percent=percent,
        take_profit=order.take_profit,
        stop_loss=order.stop_loss,
        opened_at=order.opened_at
    )

async def list_open_positions(session: AsyncSession, user_id: int, prices: MarketPriceService) -> list[Position]:
    orders = await list_orders(session, user_id, status=StatusEnum.OPEN, limit=None)

    # one quote per ticker per call
    quotes = {}
    positions = []
    for order in orders:
        if order.ticker not in quotes:
            quotes[order.ticker] = await current_price(session, prices, order.ticker)
        positions.append(_position(order, quotes[order.ticker]))
    return positions

async def list_orders(
    session: AsyncSession,
    user_id: int,
    status: Optional[StatusEnum] = None,
    limit: Optional[int] = 100
) -> list[OrderModel]:
    query = (
        select(OrderModel)
        .where(OrderModel.user_id == user_id)
        .order_by(desc(OrderModel.opened_at))
        .execution_options(populate_existing=True)
    )
    if status:
        query = query.where(OrderModel.status == status)
    if limit is not None:
        query = query.limit(limit)
    result = await session.scalars(query)
    return list(result.all())

async def get_order(session: AsyncSession, user_id: int, order_id: UUID) -> OrderModel:
    order = await session.scalar(
        select(OrderModel)
        .where(OrderModel.id == order_id)
        .where(OrderModel.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    if not order:
        raise OrderNotFound()
    return order
