"""
KOR Inventory Backend
FastAPI application entry point

- Inventory alert engine started and stopped with the application lifespan
- Rate limiting with SlowAPI
- Error sanitization middleware
- Health endpoint with DB ping and alert engine state
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from kor_inventory import __version__
from kor_inventory.api.routes import alerts, auth, products
from kor_inventory.core.config import settings
from kor_inventory.core.database import AsyncSessionLocal, create_tables
from kor_inventory.core.error_handler import ErrorSanitizationMiddleware, kor_error_handler
from kor_inventory.core.exceptions import KorBaseError
from kor_inventory.core.rate_limit import limiter, rate_limit_exceeded_handler
from kor_inventory.services.alert_engine import alert_engine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Create tables and start the alert engine on startup; stop it on shutdown.

    A failing engine start is logged and leaves the API serving requests.
    """
    if settings.DB_CREATE_TABLES:
        try:
            await create_tables()
        except Exception as e:
            logger.error(f"Table creation failed: {type(e).__name__}: {e}")

    try:
        await alert_engine.initialize()
        logger.info(f"Alert engine {alert_engine.state.value}")
    except Exception as e:
        logger.error(f"Alert engine failed to start: {e}", exc_info=True)

    yield

    await alert_engine.close()
    logger.info("Alert engine stopped")


app = FastAPI(
    lifespan=lifespan,
    title="KOR Inventory API",
    description="""
## KOR Inventory Alerts API

Automated low-stock alerts and inventory summaries by email.

### Authentication
All endpoints except `/health` require a bearer token. Use `/api/auth/login` to get one.

### Rate Limits
- Auth endpoints: 5 requests/minute
- Manual alert triggers: 10 requests/minute
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "Health", "description": "Health check endpoint"},
        {"name": "Authentication", "description": "Login and token issuance"},
        {"name": "Alerts", "description": "Alert configuration, history and manual triggers"},
        {"name": "Products", "description": "Low-stock listing and inventory statistics"},
    ],
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_exception_handler(KorBaseError, kor_error_handler)

app.add_middleware(ErrorSanitizationMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router, prefix="/api")
app.include_router(alerts.router, prefix="/api")
app.include_router(products.router, prefix="/api")


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check with an actual DB ping.
    Returns 503 if database is unreachable.
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "alert_engine": alert_engine.state.value,
        "scheduled_tasks": alert_engine.scheduled_tasks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        health_status["database"] = f"error: {type(e).__name__}"
        health_status["status"] = "unhealthy"
        return JSONResponse(status_code=503, content=health_status)

    return health_status
