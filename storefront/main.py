import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from redis.exceptions import RedisError
from sqlalchemy.exc import IntegrityError, OperationalError

from storefront.config import settings
from storefront.database import check_db_connection, engine
from storefront.redis_client import RedisClient
from storefront.utils.exceptions import AppException
from storefront.middleware.error_handler import (
    app_exception_handler,
    validation_exception_handler,
    integrity_error_handler,
    store_unavailable_handler,
    generic_exception_handler,
)

from storefront.api.v1 import auth

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # ─── Startup ──────────────────────────────────────────────────────────────
    await app.state.redis.connect()
    redis_ok = await app.state.redis.ping()
    logger.info("✅ Redis connected" if redis_ok else "❌ Redis connection FAILED")
    db_ok = await check_db_connection()
    logger.info("✅ DB connected" if db_ok else "❌ DB connection FAILED")
    try:
        yield
    finally:
        # ─── Shutdown ─────────────────────────────────────────────────────────
        await app.state.redis.close()
        await engine.dispose()


def create_app(redis: RedisClient | None = None) -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        description="Storefront authentication API: OTP registration, token rotation, password reset",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.redis = redis or RedisClient()

    # ─── CORS ─────────────────────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=True,   # refresh cookie
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ─── Exception Handlers ───────────────────────────────────────────────────
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(RedisError, store_unavailable_handler)
    app.add_exception_handler(OperationalError, store_unavailable_handler)
    app.add_exception_handler(TimeoutError, store_unavailable_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # ─── Routers ──────────────────────────────────────────────────────────────
    PREFIX = "/api/v1"
    app.include_router(auth.router, prefix=PREFIX, tags=["Auth"])

    # ─── Health ───────────────────────────────────────────────────────────────
    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok", "app": settings.APP_NAME, "version": "1.0.0"}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("storefront.main:app", host=settings.APP_HOST, port=settings.APP_PORT,
                reload=settings.is_development)
