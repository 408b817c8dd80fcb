import secrets
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from storefront.app.api import contact_router, csrf_router, uploads_router
from storefront.app.core.config import settings
from storefront.app.core.logging import get_logger, setup_logging
from storefront.app.exceptions import StorefrontException
from storefront.app.middleware.rate_limit import get_rate_limiter
from storefront.app.middleware.rate_limit.backends import RedisRateLimitStore
from storefront.app.middleware.request_id import RequestIdMiddleware
from storefront.app.middleware.request_timeout import RequestTimeoutMiddleware


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Log startup and release the rate limit store on shutdown."""
        limiter = get_rate_limiter()
        logger.info(
            "Application startup complete",
            extra={
                "rate_limit_store": type(limiter.store).__name__,
                "debug_mode": settings.debug,
            },
        )
        yield

        if isinstance(limiter.store, RedisRateLimitStore):
            await limiter.store.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="WornVault Storefront Guard",
        description="Request validation for the storefront: rate limiting, CSRF, upload and input checks",
        version="1.0.0",
        lifespan=lifespan,
    )

    session_secret = settings.session_secret
    if not session_secret:
        # Sessions only survive this process; tokens stay unsigned
        logger.warning("SESSION_SECRET is not set, using an ephemeral session key")
        session_secret = secrets.token_hex(32)

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(RequestTimeoutMiddleware, timeout_seconds=settings.request_timeout_seconds)

    app.add_middleware(
        SessionMiddleware,
        secret_key=session_secret,
        session_cookie=settings.session_cookie_name,
        max_age=settings.session_max_age,
        same_site="lax",
        https_only=settings.session_https_only,
    )

    app.add_middleware(RequestIdMiddleware)

    # CORS must stay outermost
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
        max_age=600,
    )

    app.include_router(csrf_router)
    app.include_router(contact_router)
    app.include_router(uploads_router)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check with the active rate limit store."""
        return {
            "status": "ok",
            "components": {
                "rate_limit_store": type(get_rate_limiter().store).__name__,
            },
        }

    @app.exception_handler(StorefrontException)
    async def storefront_exception_handler(request: Request, exc: StorefrontException) -> JSONResponse:
        """Render storefront exceptions with their status code and headers."""
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(),
            headers=exc.headers(),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback to the client. Debug mode adds the
        exception message and type.
        """
        request_id = getattr(request.state, "request_id", "unknown")

        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
            },
        )

        if settings.debug:
            return JSONResponse(
                status_code=500,
                content={
                    "error": "internal_error",
                    "message": str(exc),
                    "exception_type": type(exc).__name__,
                    "request_id": request_id,
                },
            )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_error",
                "message": "Internal server error",
                "request_id": request_id,
            },
        )

    return app


# Create the application instance
app = create_app()
