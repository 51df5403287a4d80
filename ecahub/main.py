from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from slowapi.errors import RateLimitExceeded

from ecahub.core.limits import limiter, rate_limit_handler
from ecahub.core.init_db import init_database
from ecahub.core.error_handlers import setup_exception_handlers
from ecahub.core.database import db_manager
from ecahub.core.middleware import setup_middleware
from ecahub.core.logging_utils import (
    setup_logging,
    get_logger,
    log_business_event,
    error_tracker,
)
from ecahub.core.config import (
    validate_config,
    APP_NAME,
    APP_VERSION,
    CORS_ORIGINS,
    DEBUG,
    LOG_LEVEL,
    LOG_FORMAT,
)

from ecahub.staff.routers import settings as eca_settings
from ecahub.staff.routers import terms as eca_terms
from ecahub.staff.routers import activities as eca_activities
from ecahub.staff.routers import invitations as eca_invitations
from ecahub.staff.routers import allocation as eca_allocation
from ecahub.parents.routers import eca as parent_eca

# Настройка системы логирования
setup_logging(LOG_LEVEL, LOG_FORMAT)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Управление жизненным циклом приложения"""

    # Startup
    logger.info(f"Starting {APP_NAME} v{APP_VERSION}")

    try:
        validate_config()
        logger.info("Configuration validated")

        await db_manager.check_connection()
        logger.info("Database connection established")

        await init_database()
        logger.info("Database initialized")

        log_business_event(
            "application_started",
            "system",
            0,
            {
                "version": APP_VERSION,
                "environment": "development" if DEBUG else "production",
            },
        )

        logger.info("Application startup completed")

    except Exception as e:
        logger.error(f"Application startup failed: {str(e)}")
        error_tracker.track_error(
            "STARTUP_ERROR",
            str(e),
            {"component": "application_startup", "version": APP_VERSION},
        )
        raise

    yield

    # Shutdown
    logger.info("Shutting down application...")
    await db_manager.close_connections()
    logger.info("Application shutdown completed")


app = FastAPI(
    title=APP_NAME,
    description="School extra-curricular activities: registration and allocation",
    version=APP_VERSION,
    lifespan=lifespan,
    debug=DEBUG,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_exception_handlers(app)

setup_middleware(
    app,
    {
        "slow_request_threshold": 5.0,
        "exclude_paths": [
            "/health",
            "/docs",
            "/openapi.json",
            "/redoc",
            "/favicon.ico",
        ],
    },
)

# Add rate limiter to app state
app.state.limiter = limiter

# Add rate limit exception handler
app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

# Include routers with API version prefix
app.include_router(eca_settings.router, prefix="/api/v1")
app.include_router(eca_terms.router, prefix="/api/v1")
app.include_router(eca_activities.router, prefix="/api/v1")
app.include_router(eca_invitations.router, prefix="/api/v1")
app.include_router(eca_allocation.router, prefix="/api/v1")
app.include_router(parent_eca.router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    """Проверка состояния сервиса"""
    return {"status": "ok", "service": APP_NAME, "version": APP_VERSION}
