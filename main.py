import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from core.config import settings
from core.db import create_tables, db_session, get_session_factory
from core.celery import celery_app
from core.exceptions import StorefrontError, http_status_for
from core.logging_config import configure_logging
from routes.inventory import router as inventory_router
from routes.orders import admin_router as admin_orders_router, router as orders_router
from routes.products import router as products_router

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Ensure tables exist (for dev/test; in prod use migrations)
    if settings.DEBUG or settings.TESTING:
        await create_tables()
    yield


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.include_router(products_router)
app.include_router(orders_router)
app.include_router(admin_orders_router)
app.include_router(inventory_router)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    return JSONResponse(status_code=http_status_for(exc.code), content={"detail": exc.message})


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Unhandled database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": str(getattr(exc, "orig", None) or exc)})


@app.get("/health")
async def health_check(session_factory=Depends(get_session_factory)):
    """Health check endpoint"""
    try:
        async with db_session(session_factory) as db:
            await db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as e:
        database = f"error: {e}"
    return {
        "status": "healthy" if database == "ok" else "degraded",
        "service": settings.APP_NAME,
        "database": database,
    }


@app.get("/celery-health")
async def celery_health_check():
    """Check Celery worker status"""
    try:
        inspect = celery_app.control.inspect()
        stats = inspect.stats()
        if stats:
            return {"status": "healthy", "workers": len(stats)}
        else:
            return {"status": "no_workers", "message": "No Celery workers running"}
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}


if __name__ == "__main__":
    import os
    import uvicorn

    port = int(os.getenv("PORT", 8000))

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=settings.DEBUG,
    )
