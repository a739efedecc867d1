"""
FastAPI application entry point
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from redis.exceptions import RedisError

from api.routes import payments as payments_routes
from api.middleware import RequestIDMiddleware, LoggingMiddleware
from core.config import settings
from core.exceptions import register_exception_handlers
from core.response import success_response
from core.settings import payment_settings
from core.logging_config import get_logger, configure_logging
from infrastructure.adapters.settlement import (
    InProcessSettlementLock,
    NullCartClearer,
    RedisCartClearer,
    RedisSettlementLock,
)
from infrastructure.cache import init_redis_cache, shutdown_redis_cache
from infrastructure.database import create_tables
from infrastructure.external.payments import PaymentGatewayRegistry
from infrastructure.external.payments.token_cache import TokenCache


configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle"""
    # Tables are created only in development; production schemas are managed by the storefront
    if settings.DEBUG:
        await create_tables()
        logger.info("database_initialized", message="Database tables created (development)")

    app.state.token_cache = TokenCache(
        safety_margin=float(payment_settings.bkash.token_safety_margin_seconds),
    )
    app.state.payment_gateway = PaymentGatewayRegistry(app.state.token_cache)
    app.state.cart_clearer = NullCartClearer()
    app.state.settlement_lock = InProcessSettlementLock()

    if settings.redis.url:
        try:
            cache = await init_redis_cache()
            await cache.client.ping()
        except (RedisError, OSError) as exc:
            logger.error("redis_cache_init_failed", error=str(exc))
            await shutdown_redis_cache()
        else:
            app.state.cart_clearer = RedisCartClearer(cache)
            app.state.settlement_lock = RedisSettlementLock(cache)
            logger.info("redis_cache_initialized", message="Redis cache initialized")

    yield

    await app.state.payment_gateway.aclose()
    if settings.redis.url:
        await shutdown_redis_cache()
        logger.info("redis_cache_shutdown", message="Redis cache shutdown")
    logger.info("application_shutdown", message="Application shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="Multi-tenant bKash / Nagad payment core for storefronts",
)

# Last added runs first: request id is bound before logging
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIDMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(payments_routes.router, prefix="/api/v1")


@app.get("/", tags=["Root"])
async def root():
    return success_response(
        data={
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "docs": "/docs",
            "redoc": "/redoc"
        },
        message="Welcome"
    )


@app.get("/health", tags=["Health"])
async def health_check():
    return success_response(data={"status": "healthy"}, message="OK")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
