"""TripDesk - Freight Trip Assignment & Fiscal Reconciliation API"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from tripdesk.core.config import get_settings
from tripdesk.core.logging import configure_logging, logger
from tripdesk.routers import board
from tripdesk.services.bootstrap import load_bootstrap
from tripdesk.services.trip_board import trip_board


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    settings = get_settings()
    configure_logging(settings.log_level)
    payload, source = load_bootstrap(settings)
    trip_board.reset(payload)
    logger.info(
        "TripDesk API starting",
        version="0.1.0",
        app_mode=settings.normalized_app_mode(),
        bootstrap_source=source,
    )
    yield
    # Shutdown
    logger.info("TripDesk API shutting down")


app = FastAPI(
    title="TripDesk API",
    description="Freight trip assignment validation and fiscal reconciliation",
    version="0.1.0",
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(board.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "TripDesk API",
        "version": "0.1.0",
        "description": "Freight trip assignment validation and fiscal reconciliation",
        "endpoints": {
            "board": "/board",
            "health": "/health",
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "trips": len(trip_board.trips)}
