"""FastAPI application for the gateway change request service."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI

from app.api.automation import router as automation_router
from app.api.change_requests import router as change_requests_router
from app.api.roles import admin_router, me_router
from app.core.config import settings
from app.core.errors import ChangeRequestError, change_request_error_handler
from app.core.logging import configure_logging, get_logger
from app.db.session import async_session_maker, dispose_engine, init_db
from app.schemas.common import OkResponse
from app.services.background_tasks import BackgroundTaskRunner
from app.services.change_request_automation import ChangeRequestAutomation, CiWebhookNotifier

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start the background runner and coordinator; drain them on shutdown."""
    configure_logging()
    await init_db()

    runner = BackgroundTaskRunner()
    notifier = CiWebhookNotifier()
    app.state.background_runner = runner
    app.state.change_request_automation = ChangeRequestAutomation(
        session_maker=async_session_maker,
        runner=runner,
        notifier=notifier,
    )
    logger.info(
        "app.startup.complete",
        extra={"environment": settings.environment, "webhook_enabled": notifier.enabled},
    )

    yield

    await runner.shutdown(timeout=settings.background_shutdown_timeout_seconds)
    await dispose_engine()
    logger.info("app.shutdown.complete")


app = FastAPI(title="Gateway Change Requests", version="0.1.0", lifespan=lifespan)
app.add_exception_handler(ChangeRequestError, change_request_error_handler)


@app.get("/health", response_model=OkResponse)
async def health() -> OkResponse:
    return OkResponse()


api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(change_requests_router)
api_v1.include_router(automation_router)
api_v1.include_router(admin_router)
api_v1.include_router(me_router)


@api_v1.get("/health", response_model=OkResponse)
async def health_v1() -> OkResponse:
    return OkResponse()


app.include_router(api_v1)
