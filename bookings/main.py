import asyncio
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger
from tortoise import Tortoise, connections

from bookings import settings
from bookings.cache import close_redis
from bookings.errors import register_error_handlers
from bookings.routers import booking, catalog, disputes, payments
from bookings.worker import release_sweep_loop

logger.remove()
logger.add(sys.stderr, level=settings.LOG_LEVEL)

TORTOISE_MODULES = {"models": ["bookings.models"]}


@asynccontextmanager
async def lifespan(app: FastAPI):
    await Tortoise.init(db_url=settings.db_url, modules=TORTOISE_MODULES, use_tz=True)
    await Tortoise.generate_schemas(safe=True)

    stop_event = asyncio.Event()
    sweep = asyncio.create_task(release_sweep_loop(stop_event))
    logger.info("Bookings service started")
    try:
        yield
    finally:
        stop_event.set()
        await sweep
        await connections.close_all()
        await close_redis()
        logger.info("Bookings service stopped")


def create_app() -> FastAPI:
    app = FastAPI(title="Bookings Service", lifespan=lifespan)
    register_error_handlers(app)
    app.include_router(booking.router)
    app.include_router(disputes.router)
    app.include_router(payments.router)
    app.include_router(catalog.router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "bookings-service"}

    return app


app = create_app()
