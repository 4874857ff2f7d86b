import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.wake import build_wake_signal
from app.routers import newsletters, subscriptions
from app.services.delivery_worker import DeliveryWorker
from app.services.email_service import SmtpEmailGateway
from app.services.expiration_sweeper import ExpirationSweeper

logger = logging.getLogger(__name__)

OPENAPI_TAGS = [
    {"name": "Newsletters", "description": "Publish newsletter issues and track their delivery."},
    {"name": "Subscriptions", "description": "Sign up and confirm newsletter subscriptions."},
    {"name": "Health", "description": "Liveness check."},
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    wake_signal = build_wake_signal(settings.WAKE_SIGNAL_BACKEND)
    app.state.wake_signal = wake_signal

    gateway = SmtpEmailGateway()
    app.state.email_gateway = gateway

    background: list[asyncio.Task[None]] = []
    if settings.RUN_DELIVERY_WORKER_IN_PROCESS:
        for n in range(settings.DELIVERY_WORKER_CONCURRENCY):
            worker = DeliveryWorker(gateway, wake_signal=wake_signal, name=f"delivery-worker-{n}")
            background.append(asyncio.create_task(worker.run()))
        background.append(asyncio.create_task(ExpirationSweeper().run()))
        logger.info("Started %d in-process delivery workers", settings.DELIVERY_WORKER_CONCURRENCY)

    try:
        yield
    finally:
        for task in background:
            task.cancel()
        await asyncio.gather(*background, return_exceptions=True)


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.version,
    description=(
        "Newsletter publishing API. Issues are published idempotently and "
        "delivered to every confirmed subscriber by background workers."
    ),
    openapi_tags=OPENAPI_TAGS,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(newsletters.router, prefix="/newsletters", tags=["Newsletters"])
app.include_router(subscriptions.router, prefix="/subscriptions", tags=["Subscriptions"])


@app.get("/health_check", tags=["Health"])
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "app": settings.APP_NAME,
        "version": settings.version,
        "domain": settings.APP_DOMAIN,
        "status": "running",
    }
