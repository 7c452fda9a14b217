from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from src.core.config import get_settings
from src.core.logging import RequestLoggingMiddleware, setup_logging
from src.routers import connectivity, dashboard, health, treatments
from src.services.runtime import get_side_effects


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, settings.ENVIRONMENT)
    yield
    await get_side_effects().wait_idle()


app = FastAPI(
    title="Pending Care Engine",
    description="Derives a pet's still-due treatments for today and coordinates logging them, online or offline.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(health.router)
app.include_router(dashboard.router)
app.include_router(treatments.router)
app.include_router(connectivity.router)
