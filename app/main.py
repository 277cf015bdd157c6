from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from app.api import router
from app.realtime import router as realtime_router
from logging_config import configure_logging
from services.runtime import ServiceRuntime, build_runtime
from settings import Settings, get_settings


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    runtime: ServiceRuntime = app.state.runtime
    await runtime.start()
    try:
        yield
    finally:
        await runtime.stop()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    app = FastAPI(
        title="AirAware Aggregator",
        description="Hourly and daily air quality aggregates with realtime fan-out.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.runtime = build_runtime(settings)
    app.include_router(router)
    app.include_router(realtime_router)
    return app

app = create_app()
