from contextlib import asynccontextmanager
from datetime import datetime
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import text
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
import logging

from vetconnect.core.config import settings
from vetconnect.core.database import engine
from vetconnect.core.exceptions import VetConnectException
from vetconnect.core.middleware import (
    RequestIdFilter,
    RequestIdMiddleware,
    RequestValidationMiddleware,
    SecurityHeadersMiddleware,
)
from vetconnect.core.rate_limit import RateLimiter, build_counter_store, limiter
from vetconnect.core.redis_client import create_redis_client
from vetconnect.core.token_blacklist import build_revocation_store
from vetconnect.api.routes.auth import router as auth_router
from vetconnect.api.routes.admin import router as admin_router

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
)
for handler in logging.getLogger().handlers:
    handler.addFilter(RequestIdFilter())
logger = logging.getLogger(__name__)

IS_PRODUCTION = settings.is_production


def run_migrations():
    """Run database migrations on startup."""
    try:
        from alembic.config import Config
        from alembic import command

        logger.info("Running database migrations...")
        alembic_cfg = Config("alembic.ini")
        command.upgrade(alembic_cfg, "head")
        logger.info("Database migrations completed successfully")
    except Exception as e:
        # Migrations might already be applied
        logger.error(f"Failed to run migrations: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting VetConnect API...")

    config_errors = settings.validate_required_secrets()
    for error in config_errors:
        logger.error(f"Configuration error: {error}")
    if config_errors and IS_PRODUCTION:
        raise RuntimeError("Refusing to start with invalid configuration")

    if IS_PRODUCTION:
        run_migrations()

    logger.info(
        f"Token state backends: revocation={app.state.revocation_store.backend}, "
        f"rate_limit={app.state.rate_limiter.store.backend}"
    )
    logger.info("VetConnect API started successfully")
    yield
    if redis_client is not None:
        redis_client.close()
    logger.info("Shutting down VetConnect API...")


app = FastAPI(
    title="VetConnect API",
    description="Session security and account management for the VetConnect veteran resource directory",
    version="1.0.0",
    lifespan=lifespan,
    # Disable docs in production
    docs_url=None if IS_PRODUCTION else "/docs",
    redoc_url=None if IS_PRODUCTION else "/redoc",
)

# Shared token state: Redis when configured, otherwise a local fallback
redis_client = create_redis_client(settings)
app.state.redis = redis_client
app.state.revocation_store = build_revocation_store(settings, redis_client)
app.state.rate_limiter = RateLimiter.from_settings(settings, build_counter_store(settings, redis_client))

# Coarse per-route throttling
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# Exception handlers
@app.exception_handler(VetConnectException)
async def vetconnect_exception_handler(request: Request, exc: VetConnectException):
    """Handle custom VetConnect exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "error_code": exc.error_code,
        },
        headers=exc.headers,
    )


@app.exception_handler(SQLAlchemyError)
async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
    """Handle database errors."""
    logger.error(f"Database error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "A database error occurred",
            "error_code": "DATABASE_ERROR",
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "An unexpected error occurred",
            "error_code": "INTERNAL_ERROR",
        },
    )

# Middleware (first added = last executed)
app.add_middleware(SecurityHeadersMiddleware, enable_hsts=IS_PRODUCTION)
app.add_middleware(RequestValidationMiddleware)
# Applies the limiter's default limits to routes without their own decorator
app.add_middleware(SlowAPIMiddleware)

allowed_origins = [settings.FRONTEND_URL]
if not IS_PRODUCTION:
    # Allow localhost variations in development
    allowed_origins.extend([
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
    ])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=[
        "Authorization",
        "Content-Type",
        "Accept",
        "Origin",
        "X-Requested-With",
        "X-Request-ID",
    ],
    expose_headers=["Retry-After", "X-Request-ID"],
    max_age=600,  # Cache preflight requests for 10 minutes
)
app.add_middleware(RequestIdMiddleware)

# Include routers
app.include_router(auth_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/")
def root():
    return {"message": "Welcome to VetConnect API"}


@app.get("/health")
def health_check(request: Request):
    """Health check endpoint for load balancers and monitoring."""
    health_status = {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": "1.0.0",
    }

    # Check database connectivity
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        health_status["status"] = "unhealthy"
        health_status["database"] = "disconnected"

    # Token state degrades instead of failing: both stores fail open
    store = request.app.state.revocation_store
    if store.ping():
        health_status["token_store"] = store.backend
    else:
        health_status["token_store"] = "unavailable"
        if health_status["status"] == "healthy":
            health_status["status"] = "degraded"

    return health_status
