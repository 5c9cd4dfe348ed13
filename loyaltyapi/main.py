import logging
from contextlib import asynccontextmanager
from typing import Optional

from dependency_injector import providers
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from mangum import Mangum
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from loyaltyapi import containers
from loyaltyapi.config import Settings
from loyaltyapi.core.exception_handlers import (
    handle_base_api_exception,
    handle_http_exception,
    handle_unexpected_error,
    handle_validation_error,
)
from loyaltyapi.core.exceptions import BaseAPIException
from loyaltyapi.core.logging_middleware import LoggingMiddleware
from loyaltyapi.logging_config import setup_logging
from loyaltyapi.routers import health_router, point_router, settlement_router

load_dotenv("loyaltyapi/.env")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app_settings: Settings = app.container.config.config()  # type: ignore[attr-defined]
    scheduler = None
    if app_settings.SETTLEMENT_SCHEDULER_ENABLED:
        scheduler = app.container.services.settlement_scheduler()  # type: ignore[attr-defined]
        scheduler.start()
    app.state.settlement_scheduler = scheduler

    yield

    if scheduler is not None:
        scheduler.shutdown()
    app.container.services.notification_service().close()  # type: ignore[attr-defined]


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    container = containers.Container()
    if settings is not None:
        container.config.config.override(providers.Object(settings))
    app_settings = container.config.config()

    setup_logging(app_settings.LOG_LEVEL)

    app = FastAPI(title=app_settings.APP_NAME, lifespan=lifespan)
    app.container = container  # type: ignore[attr-defined]

    app.add_exception_handler(BaseAPIException, handle_base_api_exception)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    app.add_middleware(LoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router.router)
    app.include_router(point_router.router, prefix=app_settings.API_V1_STR)
    app.include_router(settlement_router.router, prefix=app_settings.API_V1_STR)
    app.include_router(settlement_router.public_router, prefix=app_settings.API_V1_STR)

    logger.info(f"{app_settings.APP_NAME} started ({app_settings.ENVIRONMENT})")
    return app


app = create_app()

handler = Mangum(app)
