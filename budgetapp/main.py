"""
Budgeting App API
FastAPI application entry point

- OTP based registration and password reset under /api/auth
- Rate limiting with SlowAPI (per IP) and RateLimiter (per email)
- Error sanitization middleware
- Health endpoint with DB ping
- Email transport and Redis lifecycle management
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from budgetapp import __version__
from budgetapp.api.routes import auth
from budgetapp.core.config import settings
from budgetapp.core.database import AsyncSessionLocal, create_all_tables
from budgetapp.core.error_handler import ErrorSanitizationMiddleware, register_exception_handlers
from budgetapp.core.rate_limit import build_rate_limiter, limiter, rate_limit_exceeded_handler
from budgetapp.core.redis_client import close_redis
from budgetapp.core.token_blacklist import build_revocation_store, token_blacklist
from budgetapp.services.auth_email_service import AuthEmailService

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Set up shared collaborators on startup and release them on shutdown.

    app.state.rate_limiter and app.state.email_sender are read by the
    dependencies in budgetapp.api.deps.
    """
    if settings.DB_AUTO_CREATE:
        await create_all_tables()
        logger.info("Database tables ensured (DB_AUTO_CREATE)")

    app.state.rate_limiter = await build_rate_limiter()
    app.state.email_sender = AuthEmailService()

    token_blacklist.use_store(await build_revocation_store())
    await token_blacklist.start_cleanup_task()

    yield

    await token_blacklist.stop_cleanup_task()

    # Close HTTP clients to prevent connection leaks
    await app.state.email_sender.close()
    await close_redis()
    logger.info("Shutdown complete")


app = FastAPI(
    lifespan=lifespan,
    title=f"{settings.APP_NAME} API",
    description="""
## Budgeting App API

Authentication for the personal finance web app.

### Authentication
- Sign up: `/api/auth/send-otp` -> `/api/auth/verify-otp` -> `/api/auth/register`
- Password reset: `/api/auth/forgot-password` -> `/api/auth/reset-password`
- Send the session token as `Authorization: Bearer <token>`; tokens expire in 7 days

### Rate Limits
- Auth endpoints: 20 requests/minute per IP
- Code sends: 3 per email per 15 minutes
- Code checks and logins: 5 per email per 15 minutes
    """,
    version=__version__,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_tags=[
        {"name": "Health", "description": "Health check endpoints"},
        {"name": "Authentication", "description": "Verification codes, registration, login and account management"},
    ],
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

register_exception_handlers(app)

# Catches unhandled exceptions
app.add_middleware(ErrorSanitizationMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])


@app.get("/", tags=["Health"])
async def root():
    return {
        "message": f"{settings.APP_NAME} API",
        "version": __version__,
        "status": "operational",
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """DB ping. Returns 503 if the database is unreachable."""
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        logger.error(f"Health check database ping failed: {type(e).__name__}: {e}")
        health_status["database"] = f"error: {type(e).__name__}"
        health_status["status"] = "unhealthy"
        return JSONResponse(status_code=503, content=health_status)

    return health_status
