from fastapi import APIRouter, Depends
from sqlalchemy import select

from trade_ledger.database import SessionDep
from trade_ledger.errors import Conflict, NotFound
from trade_ledger.schemas import OkResponseSchema
from trade_ledger.users.auth import AuthenticatedUser
from trade_ledger.users.dependencies import get_current_admin
from trade_ledger.instruments.models import InstrumentModel
from trade_ledger.instruments.schemas import InstrumentSchema
from trade_ledger.orders.models import OrderModel
from trade_ledger.logger import logger


instrument_router = APIRouter()

@instrument_router.get('/api/v1/public/instrument', response_model=list[InstrumentSchema], tags=['public'])
async def get_instruments_list(
    session: SessionDep
):
    result = await session.scalars(select(InstrumentModel).order_by(InstrumentModel.ticker))
    instruments = result.all()
    logger.info(f'[GET /api/v1/public/instrument] Instruments returned: {len(instruments)}')
    return instruments

@instrument_router.post('/api/v1/admin/instrument', response_model=OkResponseSchema, tags=['admin'])
async def create_instrument(
    instrument_data: InstrumentSchema,
    session: SessionDep,
    admin_user: AuthenticatedUser = Depends(get_current_admin)
):
    logger.info(f'[POST /api/v1/admin/instrument] Admin {admin_user.id} creates instrument: ticker={instrument_data.ticker}, name={instrument_data.name}')

    instrument = await session.get(InstrumentModel, instrument_data.ticker)
    if instrument:
        logger.warning(f'[POST /api/v1/admin/instrument] Duplicate instrument: ticker={instrument_data.ticker}, existing_name={instrument.name}')
        raise Conflict('Instrument already exists')

    session.add(InstrumentModel(
        ticker=instrument_data.ticker,
        name=instrument_data.name,
        reference_price=instrument_data.reference_price,
        created_by=admin_user.id
    ))
    await session.commit()
    logger.info(f'[POST /api/v1/admin/instrument] Instrument created: ticker={instrument_data.ticker}, created_by={admin_user.id}')
    return {'success': True}

@instrument_router.delete('/api/v1/admin/instrument/{ticker}', response_model=OkResponseSchema, tags=['admin'])
async def delete_instrument(
    session: SessionDep,
    ticker: str,
    admin_user: AuthenticatedUser = Depends(get_current_admin)
):
    ticker = ticker.upper()
    logger.info(f'[DELETE /api/v1/admin/instrument/{ticker}] Admin {admin_user.id} deletes instrument')

    instrument = await session.get(InstrumentModel, ticker)
    if not instrument:
        logger.warning(f'[DELETE /api/v1/admin/instrument/{ticker}] Instrument not found')
        raise NotFound('Instrument not found')

    referenced = await session.scalar(select(OrderModel.id).where(OrderModel.ticker == ticker).limit(1))
    if referenced:
        logger.warning(f'[DELETE /api/v1/admin/instrument/{ticker}] Instrument has orders, refusing to delete')
        raise Conflict('Instrument has orders')

    await session.delete(instrument)
    await session.commit()
    logger.info(f'[DELETE /api/v1/admin/instrument/{ticker}] Instrument deleted: admin_id={admin_user.id}')
    return {'success': True}
