"""Service entry point para ticket validation"""
from fastapi import FastAPI
from contextlib import asynccontextmanager
import logging

from shared.database.connection import init_db, close_db, create_tables, get_session_maker
from shared.cache.redis_client import init_redis, close_redis, get_redis
from shared.utils.rate_limiter import limiter, rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from services.ticket_validation.routes.validation import router
from services.ticket_validation.routes.validation_logs import router as logs_router
from services.ticket_validation.services.ticket_service import build_validation_service

logger = logging.getLogger(__name__)


async def start_validation_engine(app: FastAPI, create_schema: bool = False):
    """Inicializar DB, Redis y el servicio de validación en app.state"""
    await init_db()
    if create_schema:
        await create_tables()
    await init_redis()
    app.state.validation_service = build_validation_service(get_session_maker(), await get_redis())
    logger.info("Motor de validación iniciado")


async def stop_validation_engine(app: FastAPI):
    app.state.validation_service = None
    await close_db()
    await close_redis()
    logger.info("Motor de validación detenido")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await start_validation_engine(app)
    yield
    await stop_validation_engine(app)


def include_validation_routes(app: FastAPI):
    app.include_router(router, prefix="/api/v1/tickets", tags=["tickets"])
    app.include_router(logs_router, prefix="/api/v1/validation-logs", tags=["validation-logs"])


app = FastAPI(title="Ticket Validation Service", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
include_validation_routes(app)
