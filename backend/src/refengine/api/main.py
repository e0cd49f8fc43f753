"""FastAPI application for the referral engine."""

import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware

from refengine import __version__
from refengine.api.deps import notification_executor
from refengine.api.rate_limit import limiter
from refengine.api.v1.admin import router as admin_router
from refengine.api.v1.payouts import router as payouts_router
from refengine.api.v1.referral import router as referral_router
from refengine.api.v1.tiers import router as tiers_router
from refengine.api.v1.webhooks import router as webhooks_router
from refengine.errors import EngineError
from refengine.logging_config import configure_logging, get_logger
from refengine.settings import settings
from refengine.storage.db import db

logger = get_logger(__name__)

API_PREFIX = "/api/v1"
ROUTERS = (webhooks_router, tiers_router, payouts_router, referral_router, admin_router)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """JSON-only API: forbid framing, sniffing, caching and any embedded content."""

    HEADERS = {
        "X-Frame-Options": "DENY",
        "X-Content-Type-Options": "nosniff",
        "Referrer-Policy": "no-referrer",
        "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
        "Cache-Control": "no-store",
    }

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers.update(self.HEADERS)
        return response


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request id to every log line emitted while handling a request."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, path=request.url.path)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


def error_response(status_code: int, message: str, error_code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "error_code": error_code},
    )


def cors_origins(is_production: bool) -> list[str]:
    origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
    if is_production and "*" in origins:
        logger.error("cors_wildcard_blocked", message="Wildcard CORS not allowed in production")
        return []
    return origins


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info("app_starting", env=settings.env, version=__version__)
    db.create_tables()

    yield

    logger.info("app_shutting_down")
    # Let queued notifications finish before the process exits
    notification_executor.shutdown(wait=True)


def register_exception_handlers(app: FastAPI) -> None:
    """Map every failure onto ``{success, message, error_code}``."""

    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError):
        if exc.status_code >= 500:
            logger.error("request_failed", error_code=exc.error_code, error=exc.message)
        else:
            logger.info("request_rejected", error_code=exc.error_code, status=exc.status_code)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ())[1:]) or "body"
        return error_response(400, f"Invalid {field}: {first.get('msg', 'invalid input')}", "validation_error")

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        logger.warning("rate_limited", limit=str(exc.detail))
        return error_response(429, "Too many requests. Please try again later.", "rate_limited")

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("unhandled_error", error=str(exc), error_type=type(exc).__name__)
        return error_response(500, "Internal server error", "internal_error")


def create_app() -> FastAPI:
    """Build the API application.

    Docs are disabled in production, wildcard CORS is refused there, and
    the shared rate limiter is attached to ``app.state``.
    """
    is_production = settings.env == "production"

    app = FastAPI(
        title="Referral Engine API",
        description="Referral commissions, reward tiers and payouts",
        version=__version__,
        docs_url=None if is_production else "/api/docs",
        redoc_url=None if is_production else "/api/redoc",
        openapi_url=None if is_production else "/api/openapi.json",
        lifespan=lifespan,
    )

    # Middleware runs in reverse order of registration
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins(is_production),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "Stripe-Signature", "X-Request-ID"],
        max_age=3600,
    )
    app.add_middleware(RequestContextMiddleware)

    app.state.limiter = limiter
    register_exception_handlers(app)

    for router in ROUTERS:
        app.include_router(router, prefix=API_PREFIX)

    @app.get("/health")
    @app.get(f"{API_PREFIX}/health")
    async def health_check():
        return {"status": "healthy", "version": __version__, "env": settings.env}

    return app


app = create_app()
