"""
Loud Brands Inventory Backend
FastAPI application entry point

- Notification hub constructed in the lifespan and kept on app.state
- Optional Redis relay for cross-instance new_order fan-out
- Structured inventory errors translated by a single exception handler
- Error sanitization middleware for anything unexpected
- Health endpoint with DB ping
"""
import logging
from datetime import datetime, timezone
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from app.api.routes import inventory, products, ateliers, orders, sse
from app.core.config import settings
from app.core.database import AsyncSessionLocal
from app.core.error_handler import ErrorSanitizationMiddleware, register_exception_handlers
from app.core.redis_client import get_redis, close_redis
from app.services.notification_hub import NotificationHub
from app.services.notification_relay import RedisNotificationRelay

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    hub = NotificationHub(
        max_per_user=settings.SSE_MAX_CONNECTIONS_PER_USER,
        queue_size=settings.SSE_QUEUE_SIZE,
    )
    app.state.notification_hub = hub

    relay = None
    redis_client = await get_redis()
    if redis_client is not None:
        relay = RedisNotificationRelay(redis_client, hub, settings.NOTIFICATION_CHANNEL)
        await relay.start()
        hub.relay = relay
        logger.info("Notification fan-out: Redis relay")
    else:
        logger.info("Notification fan-out: in-process only")

    logger.info(f"{settings.APP_NAME} started ({settings.ENVIRONMENT})")
    yield

    hub.close_all()
    if relay is not None:
        await relay.stop()
    await close_redis()
    logger.info(f"{settings.APP_NAME} shutting down")


app = FastAPI(
    lifespan=lifespan,
    title="Loud Brands Inventory API",
    description="""
## Loud Brands Back Office API

Stock intake, barcode scans, movement ledger and live order notifications.

### Authentication
Bearer JWT issued by the storefront auth service. The SSE stream also
accepts the token as `?token=`.
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "Health", "description": "Health check"},
        {"name": "Inventory", "description": "Receptions, movements and tracking numbers"},
        {"name": "Products", "description": "Barcode scan adjustments"},
        {"name": "Ateliers", "description": "Workshops supplying stock"},
        {"name": "Orders", "description": "Order intake"},
        {"name": "SSE", "description": "Live back-office notifications"},
    ],
)

register_exception_handlers(app)

app.add_middleware(ErrorSanitizationMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(inventory.router, prefix="/api/inventory", tags=["Inventory"])
app.include_router(products.router, prefix="/api/products", tags=["Products"])
app.include_router(ateliers.router, prefix="/api/ateliers", tags=["Ateliers"])
app.include_router(orders.router, prefix="/api/orders", tags=["Orders"])
app.include_router(sse.router, prefix="/api/sse", tags=["SSE"])


@app.get("/", tags=["Health"])
async def root():
    return {
        "message": "Loud Brands Inventory API",
        "version": "1.0.0",
        "status": "operational"
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check with an actual DB ping.
    Returns 503 if database is unreachable.
    """
    hub = getattr(app.state, "notification_hub", None)
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "sse_clients": hub.total_clients() if hub else 0,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        health_status["database"] = f"error: {type(e).__name__}: {str(e)[:100]}"
        health_status["status"] = "unhealthy"
        return JSONResponse(status_code=503, content=health_status)

    return health_status
