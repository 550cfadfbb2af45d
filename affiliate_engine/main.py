"""
Affiliate attribution & commission service.
Main FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from affiliate_engine.config import get_settings
from affiliate_engine.api.router import api_router
from affiliate_engine.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)
from affiliate_engine.database import dispose_engine
from affiliate_engine.utils.redis_client import close_redis

logger = logging.getLogger("affiliate_engine")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    logger.info("Affiliate engine starting up (env=%s)", settings.app_env)

    if not settings.jwt_secret:
        logger.warning(
            "JWT_SECRET not set - falling back to APP_SECRET_KEY. "
            "Set the auth service's signing secret for production."
        )

    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    yield

    await close_redis()
    await dispose_engine()
    logger.info("Affiliate engine shutdown complete")


def _allowed_origins(settings) -> list[str]:
    origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
    if settings.app_env == "development":
        origins += ["http://localhost:3000", "http://localhost:5173"]
    origins.append(settings.app_base_url)
    return list(dict.fromkeys(origins))


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="Affiliate Engine",
        description="Referral attribution, commissions and payouts",
        version="1.0.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(settings),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "OPTIONS"],
        allow_headers=[
            "Authorization", "Content-Type", "X-Correlation-ID",
            "Accept", "Origin", "X-Requested-With",
        ],
    )

    # Correlation ID middleware (must be added AFTER CORS so it runs on every request)
    application.add_middleware(CorrelationIdMiddleware)

    application.include_router(api_router)

    return application


app = create_app()
