from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from talentloop.core.config import settings
from talentloop.core.limit_monitor import start_limit_monitor, stop_limit_monitor
from talentloop.core.logging import configure_logging, get_logger
from talentloop.core.rate_limit import limiter
import talentloop.models  # noqa: F401  # force model registration

from talentloop.api.v1.auth import router as auth_router
from talentloop.api.v1.email import router as email_router
from talentloop.api.v1.plans import router as plans_router
from talentloop.api.v1.roles import router as roles_router
from talentloop.api.v1.stripe_webhook import router as stripe_webhook_router
from talentloop.api.v1.two_factor import router as two_factor_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    monitor = start_limit_monitor()
    logger.info("app_started", environment=settings.ENVIRONMENT)
    try:
        yield
    finally:
        await stop_limit_monitor(monitor)
        logger.info("app_stopped")


def create_application() -> FastAPI:
    app = FastAPI(title="TalentLoop API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    @app.get("/")
    @limiter.exempt
    def root():
        return {"status": "ok", "service": "talentloop"}

    # Routers
    app.include_router(auth_router, prefix="/api/v1")
    app.include_router(two_factor_router, prefix="/api/v1")
    app.include_router(plans_router, prefix="/api/v1")
    app.include_router(roles_router, prefix="/api/v1")
    app.include_router(email_router, prefix="/api/v1")
    app.include_router(stripe_webhook_router, prefix="/api/v1")

    return app


app = create_application()
