import logging

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from mangum import Mangum
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from payapi import containers
from payapi.core.exception_handlers import (
    handle_base_api_exception,
    handle_http_exception,
    handle_unexpected_error,
    handle_validation_error,
)
from payapi.core.exceptions import BaseAPIException
from payapi.core.logging_middleware import LoggingMiddleware
from payapi.routers import (
    admin_payment_router,
    batch_router,
    health_router,
    payment_router,
    point_router,
    webhook_router,
)
from payapi.utils.config import init_logging

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    load_dotenv("payapi/.env")
    init_logging()

    container = containers.Container()
    settings = container.config.config()

    app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG)
    app.container = container  # type: ignore

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)

    app.add_exception_handler(BaseAPIException, handle_base_api_exception)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    app.include_router(health_router.router)
    for module in (
        point_router,
        payment_router,
        webhook_router,
        admin_payment_router,
        batch_router,
    ):
        app.include_router(module.router, prefix=settings.API_V1_STR)

    logger.info(f"{settings.APP_NAME} started ({settings.ENVIRONMENT})")
    return app


app = create_app()

handler = Mangum(app)
