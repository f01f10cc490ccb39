"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coliving.api import apartments, bookings, ical
from coliving.core.config import settings
from coliving.core.database import init_db
from coliving.services.scheduler import sync_scheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting Coliving Availability Service")
    logger.info(f"Debug mode: {settings.DEBUG}")

    await init_db()

    if settings.SCHEDULER_ENABLED:
        await sync_scheduler.start()

    yield

    # Shutdown
    logger.info("Shutting down Coliving Availability Service")
    await sync_scheduler.stop()


# Create FastAPI app
app = FastAPI(
    title="Coliving Availability Service",
    description="Apartment availability, bookings, split stays and iCal channel sync",
    version="1.0.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify exact origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(apartments.router)
app.include_router(bookings.router)
app.include_router(ical.router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "scheduler_running": sync_scheduler.running,
    }
