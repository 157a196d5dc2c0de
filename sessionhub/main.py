"""ASGI application: session API plus provider webhooks."""

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import FastAPI

from .core.config import settings
from .database import init_db
from .errors import register_error_handlers
from .routes import admin, payment_webhooks, payouts, sessions, zoom_webhooks

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def _validate_startup_config() -> None:
    """Log missing provider secrets; production refuses to start without them."""
    missing = []
    if not settings.stripe_secret_key.get_secret_value():
        missing.append("STRIPE_SECRET_KEY")
    if not settings.stripe_webhook_secret.get_secret_value():
        missing.append("STRIPE_WEBHOOK_SECRET")
    if not settings.zoom_webhook_secret_token.get_secret_value():
        missing.append("ZOOM_WEBHOOK_SECRET_TOKEN")
    if not missing:
        return
    if settings.is_production:
        raise RuntimeError(f"Missing required settings: {', '.join(missing)}")
    logger.warning("Missing provider settings (non-production): %s", ", ".join(missing))


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("Session hub API starting up (environment: %s)", settings.environment)
    _validate_startup_config()
    if not settings.is_production:
        init_db()
    if settings.allow_unsigned_payment_callbacks and not settings.is_production:
        logger.warning("Unsigned payment callbacks are accepted in this environment")
    yield
    logger.info("Session hub API shutting down")


app = FastAPI(title="Session Hub API", version="0.1.0", lifespan=app_lifespan)
register_error_handlers(app)

app.include_router(sessions.router)
app.include_router(payouts.router)
app.include_router(admin.router)
app.include_router(payment_webhooks.router)
app.include_router(zoom_webhooks.router)


@app.get("/health", tags=["health"])
async def health() -> dict:
    return {"status": "ok", "environment": settings.environment}
