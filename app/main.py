import time
import asyncio
import logging
from contextvars import ContextVar
from datetime import timedelta
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load environment variables from .env file before anything else
load_dotenv()

from app.core.config import settings
from app.core.logging import setup_logging
from app.core.errors import register_error_handlers
from app.core.db import SessionLocal, init_models
from app.api.router import api_router
from app.modules.payments.router import webhook_router
from app.modules.events.outbox import run_outbox_relay
from app.modules.appointments.reclaimer import UnpaidReservationReclaimer

setup_logging()
app = FastAPI(title=settings.APP_NAME)

# attach request_id to log records
request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")
old_factory = logging.getLogRecordFactory()
def record_factory(*args, **kwargs):
    record = old_factory(*args, **kwargs)
    record.request_id = request_id_ctx.get()
    return record
logging.setLogRecordFactory(record_factory)

logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id_ctx.set(request.headers.get("x-request-id", "-"))
    start_time = time.time()

    response = await call_next(request)

    process_time = (time.time() - start_time) * 1000
    logger.info(f"Request: {request.method} {request.url.path} - Response: {response.status_code} - Time: {process_time:.2f}ms")
    return response

register_error_handlers(app)

reclaimer = UnpaidReservationReclaimer(
    SessionLocal,
    grace=timedelta(minutes=settings.UNPAID_GRACE_MINUTES),
    interval=settings.RECLAIM_INTERVAL_SECONDS,
)

@app.on_event("startup")
async def on_startup():
    await init_models()
    if settings.OUTBOX_RELAY_ENABLED:
        app.state.outbox_task = asyncio.create_task(run_outbox_relay())
    if settings.RECLAIMER_ENABLED:
        reclaimer.start()

@app.on_event("shutdown")
async def on_shutdown():
    await reclaimer.stop()
    task = getattr(app.state, "outbox_task", None)
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


app.include_router(api_router, prefix=settings.API_PREFIX)
app.include_router(webhook_router, tags=["payments"])
