"""
MedQueue - Hospital Patient Queue Management

Main FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .database import Database
from .errors import QueueError
from .routers import (
    stations_router,
    queue_router,
    analytics_router,
    public_router
)

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "validation": status.HTTP_400_BAD_REQUEST,
    "capacity": status.HTTP_400_BAD_REQUEST,
    "not_found": status.HTTP_404_NOT_FOUND,
    "conflict": status.HTTP_409_CONFLICT,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting %s v%s", settings.APP_NAME, settings.APP_VERSION)
    await Database.connect()

    yield

    # Shutdown
    await Database.disconnect()
    logger.info("Application shutdown complete")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"]
)


# Trace Middleware
@app.middleware("http")
async def trace_middleware(request: Request, call_next):
    logger.debug("INCOMING %s %s", request.method, request.url.path)
    response = await call_next(request)
    logger.debug("OUTGOING %s %s -> %s", request.method, request.url.path, response.status_code)
    return response


@app.exception_handler(QueueError)
async def queue_exception_handler(request: Request, exc: QueueError):
    status_code = ERROR_STATUS.get(exc.kind, status.HTTP_400_BAD_REQUEST)
    if status_code == status.HTTP_409_CONFLICT:
        logger.info("%s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# Include routers
app.include_router(stations_router)
app.include_router(queue_router)
app.include_router(analytics_router)
app.include_router(public_router)


@app.get("/", tags=["Health"])
async def root():
    """Root endpoint - health check."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "healthy",
        "docs": "/docs"
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """Detailed health check."""
    return {
        "status": "healthy",
        "database": "connected" if Database.client else "disconnected",
        "version": settings.APP_VERSION
    }


# Entry point for running directly
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "medqueue.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG
    )
