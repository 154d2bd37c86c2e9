"""
Main FastAPI application.

EasyPass payment verification API with:
- CORS configuration
- Error handling keyed on error kind
- Request ID tracking
- Structured logging
- Prometheus metrics
"""
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from easypass import __version__
from easypass.config import Settings, get_settings
from easypass.core.exceptions import EasyPassError, ErrorKind
from easypass.database.connection import Database
from easypass.integrations.paystack_client import PaystackClient
from easypass.monitoring.logging import setup_logging

from .routes import (
    auth_router,
    monitoring_router,
    payment_router,
    user_router,
    webhook_router,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    settings: Settings = app.state.settings
    logger.info(
        "application_startup",
        app_name=settings.app_name,
        env=settings.app_env,
        test_mode=settings.is_test_mode,
        provider_configured=bool(settings.paystack_secret_key),
    )

    try:
        await app.state.database.create_all()
        logger.info("database_initialized")
    except Exception as e:
        logger.error("database_initialization_failed", error=str(e))
        raise

    yield

    logger.info("application_shutdown")
    try:
        await app.state.provider.aclose()
        await app.state.database.dispose()
        logger.info("database_connections_closed")
    except Exception as e:
        logger.error("database_shutdown_error", error=str(e))


def _error_content(
    settings: Settings, body: Dict[str, Any], exc: Exception, details: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    # Internals only outside production
    if not settings.is_production:
        body["error_type"] = type(exc).__name__
        if details:
            body["details"] = details
        if exc.__traceback__ is not None:
            body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return jsonable_encoder(body)


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    provider: Optional[PaystackClient] = None,
) -> FastAPI:
    """
    Build the application and its long-lived collaborators.

    Args:
        settings: Application settings (defaults to ``get_settings()``)
        database: Database handle (defaults to one built from settings)
        provider: Paystack client (defaults to one built from settings)

    Returns:
        FastAPI: Configured application
    """
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(
        title="EasyPass API",
        description=(
            "User registration, QR token issuance and Paystack payment verification "
            "with reference-based deduplication."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.settings = settings
    app.state.database = database or Database(settings)
    app.state.provider = provider or PaystackClient(settings)

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
        """
        Add request ID to all requests for tracing.

        Also adds timing information and structured logging context.
        """
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start_time = time.time()

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        logger.info(
            "request_started",
            client_host=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id

            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_seconds=time.time() - start_time,
            )
            return response

        except Exception as e:
            logger.error(
                "request_failed",
                error=str(e),
                duration_seconds=time.time() - start_time,
            )
            raise

        finally:
            structlog.contextvars.clear_contextvars()

    @app.exception_handler(EasyPassError)
    async def easypass_exception_handler(request: Request, exc: EasyPassError) -> JSONResponse:
        """Map error kinds to HTTP responses."""
        log = logger.error if exc.http_status >= 500 else logger.warning
        log(
            "api_error",
            error_kind=exc.kind.value,
            error=exc.message,
            status_code=exc.http_status,
            path=request.url.path,
        )
        headers = {"Retry-After": "30"} if exc.retryable else None
        return JSONResponse(
            status_code=exc.http_status,
            content=_error_content(settings, exc.to_dict(), exc, exc.details),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = [
            {
                "field": ".".join(str(part) for part in error["loc"] if part != "body"),
                "message": error["msg"],
            }
            for error in exc.errors()
        ]
        logger.warning("api_validation_error", path=request.url.path, errors=errors)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=jsonable_encoder(
                {
                    "success": False,
                    "message": "Validation failed",
                    "error_code": ErrorKind.INVALID_INPUT.value,
                    "errors": errors,
                }
            ),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled exceptions.
        """
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
        )
        body = {
            "success": False,
            "message": "An unexpected error occurred. Please try again later.",
            "error_code": "internal_error",
        }
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_content(settings, body, exc),
        )

    # Include routers
    app.include_router(auth_router)
    app.include_router(user_router)
    app.include_router(payment_router)
    app.include_router(webhook_router)
    app.include_router(monitoring_router)

    @app.get("/", tags=["root"])
    async def root() -> Dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "service": settings.app_name,
            "version": __version__,
            "status": "operational",
            "environment": settings.app_env,
            "test_mode": settings.is_test_mode,
            "docs": "/docs",
            "health": "/health",
            "metrics": "/metrics",
        }

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "easypass.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
