"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from workhaven.config import settings
from workhaven.database import init_db
from workhaven.routers import spots

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    logger.info("Database tables ready")
    yield


# Create FastAPI app
app = FastAPI(
    title="WorkHaven API",
    description="Backend API for WorkHaven - Work-Friendly Spot Discovery",
    version="1.0.0",
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.frontend_url,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(spots.router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Welcome to WorkHaven API",
        "version": "1.0.0",
        "docs": "/docs" if settings.environment == "development" else "disabled",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/debug/config")
async def debug_config():
    """Debug endpoint to check configuration (development only)."""
    if settings.environment != "development":
        return {"error": "Not available in production"}

    return {
        "status": "ok",
        "grok_configured": settings.has_grok_credentials,
        "places_configured": bool(settings.google_places_api_key),
        "discovery_lock_enabled": settings.discovery_lock_enabled,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "workhaven.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
    )
