"""Main FastAPI application."""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from leadrouter.config import settings
from leadrouter.database import init_db
from leadrouter.redis_client import close_redis_client
from leadrouter.routers import routing_routes
from leadrouter.scheduler import start_scheduler, stop_scheduler

# Configure logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting Lead Router API ({settings.ENVIRONMENT})")
    await init_db()

    if settings.ENABLE_SCHEDULER:
        start_scheduler()

    yield

    stop_scheduler()
    await close_redis_client()
    logger.info("Lead Router API stopped")


# Create FastAPI app
app = FastAPI(
    title="Lead Router API",
    description="Multi-workspace lead routing with retries and duplicate detection",
    version="1.0.0",
    redirect_slashes=False,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(routing_routes.router)


@app.get("/health")
async def health_check():
    """Liveness probe"""
    return {"status": "healthy", "service": "lead-router"}
