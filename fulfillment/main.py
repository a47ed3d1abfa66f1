from contextlib import asynccontextmanager
import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from fulfillment.config import settings
from fulfillment.api.v1.router import api_router
from fulfillment.core.exceptions import FulfillmentError
from fulfillment.database import init_db, async_session_factory, is_sqlite


logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: create tables for local SQLite runs. PostgreSQL deployments
    are migrated with alembic before the app starts.
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    if is_sqlite:
        await init_db()

    yield

    logger.info("Shutting down...")


# OpenAPI Tags with detailed descriptions
OPENAPI_TAGS = [
    {"name": "Allocation", "description": "Plan allocations from open stock requests and submit them as delivery notes"},
    {"name": "Delivery Notes", "description": "Delivery note lifecycle: confirm, queue picking, dispatch, receive, void"},
    {"name": "Pick Lists", "description": "Picking work orders raised against delivery notes"},
    {"name": "Health", "description": "Service health"},
]

API_DESCRIPTION = """
## Delivery Note Fulfillment Engine

Converts stock requests into allocated, picked, dispatched and received
movements between warehouses.

### Acting user

Mutating endpoints require an `X-User-Id` header carrying the acting user's id.
An optional `Idempotency-Key` header is logged with the operation.

### Error Codes

| Code | Description |
|------|-------------|
| 400 | Validation failed (quantities, pickers, driver signature, stale plan) |
| 401 | Missing or malformed X-User-Id |
| 403 | Refused by a fulfillment policy |
| 404 | Not Found - Resource doesn't exist |
| 409 | Conflict - an active pick list already exists |
| 422 | Transition not allowed from the current status |
| 500 | Internal Server Error |
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


@app.exception_handler(FulfillmentError)
async def fulfillment_exception_handler(request: Request, exc: FulfillmentError):
    """Typed service errors keep their message and details."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.message,
            "type": type(exc).__name__,
            "details": exc.details,
            "path": str(request.url.path),
            "method": request.method,
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Unexpected errors: 500 with the same body shape."""
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    error_detail = {
        "error": str(exc),
        "type": type(exc).__name__,
        "details": {},
        "path": str(request.url.path),
        "method": request.method,
    }
    if settings.DEBUG:
        error_detail["details"]["traceback"] = traceback.format_exc()
    return JSONResponse(status_code=500, content=error_detail)


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    from sqlalchemy import text
    from datetime import datetime, timezone

    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        }
    }

    # Check database connectivity
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }
