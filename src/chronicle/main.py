from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI

from chronicle.api.routes import router
from chronicle.config import get_settings
from chronicle.core.context import StoreContext
from chronicle.core.logging import setup_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifecycle manager.
    Resolves the store on startup and closes it on shutdown.
    """
    settings = get_settings()
    setup_logging(settings.log_level, settings.json_logs)

    context = StoreContext(settings)
    store = await context.get()
    app.state.store_context = context

    logger.info("chronicle_started", backend=store.kind.value, state=context.state.value)
    yield

    await context.close()
    logger.info("chronicle_stopped")


app = FastAPI(
    title=get_settings().app_name,
    lifespan=lifespan,
)

app.include_router(router)
