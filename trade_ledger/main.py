import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from trade_ledger import config
from trade_ledger.database import async_session, create_tables
from trade_ledger.errors import LedgerError
from trade_ledger.market.prices import MarketPriceService
from trade_ledger.mirror.factory import build_mirror_store
from trade_ledger.sync.engine import SyncEngine
from trade_ledger.sync.worker import SyncWorker
from trade_ledger.logger import logger
from trade_ledger.users.router import auth_router
from trade_ledger.instruments.router import instrument_router
from trade_ledger.orders.router import order_router
from trade_ledger.balance.router import balance_router
from trade_ledger.transactions.router import transaction_router
from trade_ledger.sync.router import sync_router
from trade_ledger.portfolio.router import portfolio_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    if config.AUTO_CREATE_TABLES:
        await create_tables()

    store = await build_mirror_store()
    app.state.prices = MarketPriceService()
    app.state.sync_engine = SyncEngine(async_session, store)
    app.state.sync_worker = SyncWorker(async_session, app.state.sync_engine) if store else None

    stop_event = asyncio.Event()
    retry_loop = None
    if app.state.sync_worker and config.SYNC_WORKER_ENABLED:
        retry_loop = asyncio.create_task(app.state.sync_worker.run_forever(stop_event))

    try:
        yield
    finally:
        stop_event.set()
        if retry_loop:
            await retry_loop
        if store:
            await store.close()


app = FastAPI(
    title='Trade Ledger API',
    lifespan=lifespan,
    openapi_tags=[
        {
            'name': 'public',
        },
        {
            'name': 'balance',
        },
        {
            'name': 'order',
        },
        {
            'name': 'portfolio',
        },
        {
            'name': 'admin',
        },
        {
            'name': 'user',
        },
        {
            'name': 'webhook',
        }
    ]
)

def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={'success': False, 'error': message})

@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    log = logger.error if exc.status_code >= 500 else logger.info
    log(f'[{request.method} {request.url.path}] {exc.kind}: {exc.message}')
    return error_response(exc.status_code, exc.message)

@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    return error_response(exc.status_code, str(exc.detail))

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get('msg', 'Invalid request') if errors else 'Invalid request'
    location = '.'.join(str(part) for part in errors[0].get('loc', ())) if errors else ''
    logger.info(f'[{request.method} {request.url.path}] Validation failed: {location}: {message}')
    return error_response(400, f'{location}: {message}' if location else message)

@app.middleware("http")
async def log_errors(request: Request, call_next):
    try:
        return await call_next(request)
    except Exception as e:
        logger.error(f'[ERROR] {request.method} {request.url.path}: {str(e)}', exc_info=True)
        return error_response(500, 'Internal server error')

app.include_router(auth_router)
app.include_router(instrument_router)
app.include_router(order_router)
app.include_router(balance_router)
app.include_router(transaction_router)
app.include_router(sync_router)
app.include_router(portfolio_router)
